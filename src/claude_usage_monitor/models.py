from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

_FRACTION = re.compile(r"\.(\d+)")


@dataclass(frozen=True)
class UsageSnapshot:
    """One successful read of the usage endpoint."""

    session_percent: float
    session_reset_at: datetime | None
    fetched_at: datetime
    weekly_percent: float = 0.0
    weekly_reset_at: datetime | None = None
    has_weekly_window: bool = False

    def session_reset_in(self, now: datetime | None = None) -> timedelta:
        return _remaining(self.session_reset_at, now)

    def weekly_reset_in(self, now: datetime | None = None) -> timedelta:
        if not self.has_weekly_window:
            return timedelta(0)
        return _remaining(self.weekly_reset_at, now)


def parse_usage(
    payload: Any, fetched_at: datetime | None = None
) -> UsageSnapshot:
    if not isinstance(payload, dict):
        raise ValueError("Usage response is not a JSON object")

    session_percent, session_reset_at = _parse_window(payload.get("five_hour"))

    weekly = payload.get("seven_day")
    has_weekly_window = isinstance(weekly, dict)
    weekly_percent, weekly_reset_at = 0.0, None
    if has_weekly_window:
        weekly_percent, weekly_reset_at = _parse_window(weekly)

    return UsageSnapshot(
        session_percent=session_percent,
        session_reset_at=session_reset_at,
        fetched_at=fetched_at or datetime.now(timezone.utc),
        weekly_percent=weekly_percent,
        weekly_reset_at=weekly_reset_at,
        has_weekly_window=has_weekly_window,
    )


def parse_timestamp(value: str | int | float | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        seconds = float(value)
        if seconds > 1_000_000_000_000:
            seconds = seconds / 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    normalized = str(value).strip().replace("Z", "+00:00")
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits
    normalized = _FRACTION.sub(_six_digit_fraction, normalized, count=1)
    parsed = datetime.fromisoformat(normalized)
    # offset-less timestamps are taken as UTC
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_window(entry: Any) -> tuple[float, datetime | None]:
    if not isinstance(entry, dict):
        return 0.0, None
    return _coerce_number(entry.get("utilization")), _parse_reset(
        entry.get("resets_at")
    )


def _parse_reset(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


def _coerce_number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _remaining(reset_at: datetime | None, now: datetime | None) -> timedelta:
    if reset_at is None:
        return timedelta(0)
    current = now or datetime.now(timezone.utc)
    delta = reset_at - current
    return delta if delta > timedelta(0) else timedelta(0)


def _six_digit_fraction(match: re.Match[str]) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")
