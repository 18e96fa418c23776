from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping

from claude_usage_monitor.auth import SILENT_CAPTURE_TIMEOUT_SECONDS
from claude_usage_monitor.client import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_SECONDS

DEFAULT_POLL_INTERVAL_SECONDS = 120
MIN_POLL_INTERVAL_SECONDS = 30
MAX_POLL_INTERVAL_SECONDS = 600
DEFAULT_WARN_PERCENT = 80
ESCALATION_THRESHOLD = 5


@dataclass(frozen=True)
class Settings:
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    warn_at_percent: int = DEFAULT_WARN_PERCENT
    silent_timeout_seconds: float = SILENT_CAPTURE_TIMEOUT_SECONDS
    request_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    base_url: str = DEFAULT_BASE_URL
    token_path: str | None = None

    def with_interval(self, seconds: int | None) -> Settings:
        if seconds is None:
            return self
        return replace(self, poll_interval_seconds=clamp_interval(seconds))


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    defaults = Settings()

    interval = _parse_int(
        env.get("CLAUDE_USAGE_POLL_INTERVAL"), defaults.poll_interval_seconds
    )
    warn_at = _parse_int(env.get("CLAUDE_USAGE_WARN_PERCENT"), defaults.warn_at_percent)
    return Settings(
        poll_interval_seconds=clamp_interval(interval),
        warn_at_percent=max(0, min(100, warn_at)),
        silent_timeout_seconds=_parse_float(
            env.get("CLAUDE_USAGE_SILENT_TIMEOUT"), defaults.silent_timeout_seconds
        ),
        request_timeout_seconds=_parse_float(
            env.get("CLAUDE_USAGE_REQUEST_TIMEOUT"), defaults.request_timeout_seconds
        ),
        base_url=(env.get("CLAUDE_USAGE_BASE_URL") or defaults.base_url).strip(),
        token_path=env.get("CLAUDE_USAGE_TOKEN_PATH") or None,
    )


def clamp_interval(seconds: int) -> int:
    return max(MIN_POLL_INTERVAL_SECONDS, min(MAX_POLL_INTERVAL_SECONDS, seconds))


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except (TypeError, ValueError):
        return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        parsed = float(value.strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default
