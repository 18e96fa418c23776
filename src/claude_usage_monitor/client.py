from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any

import httpx

from claude_usage_monitor.auth import SessionCredential, mask_token
from claude_usage_monitor.models import UsageSnapshot, parse_usage

DEFAULT_BASE_URL = "https://claude.ai"
DEFAULT_TIMEOUT_SECONDS = 30.0
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
ORGANIZATIONS_PATH = "/api/organizations"

log = logging.getLogger(__name__)


class UsageApiError(RuntimeError):
    pass


class NoCredentialError(UsageApiError):
    pass


class SessionAuthError(UsageApiError):
    pass


class NoOrganizationError(UsageApiError):
    pass


class TransientFetchError(UsageApiError):
    pass


class ResponseKind(str, Enum):
    OK = "ok"
    AUTH_FAILURE = "auth_failure"
    TRANSIENT = "transient"


def classify_response(response: httpx.Response) -> ResponseKind:
    # redirects are not followed, so a login redirect shows up as a raw 3xx
    status = response.status_code
    if status in (401, 403):
        return ResponseKind.AUTH_FAILURE
    if 300 <= status < 400:
        return ResponseKind.AUTH_FAILURE
    content_type = response.headers.get("content-type", "").lower()
    if "html" in content_type:
        return ResponseKind.AUTH_FAILURE
    if not 200 <= status < 300:
        return ResponseKind.TRANSIENT
    return ResponseKind.OK


class UsageClient:
    def __init__(
        self,
        credential: SessionCredential | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.credential = credential or SessionCredential()
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._http = client or httpx.Client(
            timeout=timeout,
            follow_redirects=False,
            headers={"User-Agent": USER_AGENT},
        )

    def set_token(self, token: str | None) -> None:
        self.credential.set_token(token)

    def resolve_organization_id(self) -> str:
        token = self._require_token()
        return self._resolve_organization_id(token)

    def fetch_usage(self) -> UsageSnapshot:
        token = self._require_token()
        organization_id = self._resolve_organization_id(token)
        payload = self._get_json(
            f"{ORGANIZATIONS_PATH}/{organization_id}/usage", token
        )
        try:
            return parse_usage(payload)
        except ValueError as exc:
            raise TransientFetchError(str(exc)) from exc

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> UsageClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _require_token(self) -> str:
        token = self.credential.token
        if token is None:
            raise NoCredentialError("No session token set")
        return token

    def _resolve_organization_id(self, token: str) -> str:
        cached = self.credential.organization_id_for(token)
        if cached:
            return cached

        payload = self._get_json(ORGANIZATIONS_PATH, token)
        organization_id = _extract_organization_id(payload)
        if organization_id is None:
            preview = json.dumps(payload)[:300]
            raise NoOrganizationError(f"Organization not found. Response: {preview}")

        self.credential.remember_organization_id(token, organization_id)
        log.debug("Resolved organization %s for %s", organization_id, mask_token(token))
        return organization_id

    def _get_json(self, path: str, token: str) -> Any:
        headers = {
            "Cookie": f"sessionKey={token}",
            "Accept": "application/json",
        }
        try:
            response = self._http.get(
                f"{self._base_url}{path}", headers=headers, follow_redirects=False
            )
        except httpx.HTTPError as exc:
            raise TransientFetchError(f"Request to {path} failed: {exc}") from exc

        kind = classify_response(response)
        if kind is ResponseKind.AUTH_FAILURE:
            self.credential.clear_organization_id()
            raise SessionAuthError(_auth_failure_message(response))
        if kind is ResponseKind.TRANSIENT:
            raise TransientFetchError(
                f"{path} returned HTTP {response.status_code}"
            )

        try:
            return response.json()
        except ValueError as exc:
            raise TransientFetchError(f"{path} returned invalid JSON") from exc


def _extract_organization_id(payload: Any) -> str | None:
    if not isinstance(payload, list) or not payload:
        return None
    first = payload[0]
    if not isinstance(first, dict):
        return None
    value = first.get("uuid") or first.get("id")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _auth_failure_message(response: httpx.Response) -> str:
    status = response.status_code
    if status in (401, 403):
        return f"Session expired (HTTP {status})"
    if 300 <= status < 400:
        return f"Session expired (redirected with HTTP {status})"
    return "Session invalid (HTML page instead of JSON)"
