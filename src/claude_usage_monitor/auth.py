from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

SILENT_CAPTURE_TIMEOUT_SECONDS = 15.0


class CaptureMode(str, Enum):
    SILENT = "silent"
    INTERACTIVE = "interactive"


class CaptureStatus(str, Enum):
    TOKEN = "token"
    DECLINED = "declined"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class CaptureResult:
    status: CaptureStatus
    token: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is CaptureStatus.TOKEN and bool(self.token)

    @classmethod
    def captured(cls, token: str) -> CaptureResult:
        return cls(status=CaptureStatus.TOKEN, token=token)

    @classmethod
    def declined(cls, reason: str | None = None) -> CaptureResult:
        return cls(status=CaptureStatus.DECLINED, reason=reason)

    @classmethod
    def timed_out(cls, timeout: float) -> CaptureResult:
        return cls(
            status=CaptureStatus.TIMEOUT,
            reason=f"No session within {timeout:g}s",
        )

    @classmethod
    def cancelled(cls, reason: str | None = None) -> CaptureResult:
        return cls(status=CaptureStatus.CANCELLED, reason=reason)

    @classmethod
    def unavailable(cls, reason: str) -> CaptureResult:
        return cls(status=CaptureStatus.UNAVAILABLE, reason=reason)


class CredentialSource(Protocol):
    def capture(self, mode: CaptureMode, timeout: float | None) -> CaptureResult:
        ...

    def cancel(self) -> None:
        ...


class SessionCredential:
    """Session token plus the organization id resolved with it."""

    def __init__(self, token: str | None = None) -> None:
        self._lock = threading.Lock()
        self._token = _string_or_none(token)
        self._organization_id: str | None = None
        self._organization_token: str | None = None

    @property
    def token(self) -> str | None:
        with self._lock:
            return self._token

    @property
    def has_token(self) -> bool:
        return self.token is not None

    def set_token(self, token: str | None) -> None:
        with self._lock:
            self._token = _string_or_none(token)
            self._organization_id = None
            self._organization_token = None

    def organization_id_for(self, token: str) -> str | None:
        with self._lock:
            if self._organization_token != token or token != self._token:
                return None
            return self._organization_id

    def remember_organization_id(self, token: str, organization_id: str) -> None:
        with self._lock:
            # the token may have been replaced while the request was in flight
            if token != self._token:
                return
            self._organization_id = organization_id
            self._organization_token = token

    def clear_organization_id(self) -> None:
        with self._lock:
            self._organization_id = None
            self._organization_token = None


def mask_token(token: str | None) -> str:
    if not token:
        return "<none>"
    return f"{token[:8]}..."


def _string_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
