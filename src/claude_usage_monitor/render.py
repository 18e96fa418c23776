from __future__ import annotations

from datetime import datetime, timedelta, timezone

from rich.console import Console
from rich.text import Text

from claude_usage_monitor.config import DEFAULT_WARN_PERCENT
from claude_usage_monitor.events import (
    AuthRecovered,
    AuthRequired,
    CaptureUnavailable,
    ErrorEscalation,
    SnapshotUpdated,
    StatusEvent,
    TransientError,
)
from claude_usage_monitor.models import UsageSnapshot

CRITICAL_PERCENT = 90


def render_snapshot(
    console: Console,
    snapshot: UsageSnapshot,
    warn_at: int = DEFAULT_WARN_PERCENT,
    now: datetime | None = None,
) -> None:
    current = now or datetime.now(timezone.utc)
    rows = [
        ("Session (5h)", snapshot.session_percent, snapshot.session_reset_in(current))
    ]
    if snapshot.has_weekly_window:
        rows.append(
            ("Weekly (7d)", snapshot.weekly_percent, snapshot.weekly_reset_in(current))
        )

    label_width = max(len(label) for label, _, _ in rows)
    for label, used_percent, reset_in in rows:
        percent = max(0.0, min(100.0, used_percent))
        label_text = label.ljust(label_width)
        percent_text = f"{used_percent:>3.0f}%"
        reset_text = format_remaining(reset_in)
        if console.is_terminal:
            line = Text(f"{label_text} ")
            line.append(_bar_text(percent, warn_at))
            line.append(" ")
            line.append(Text(percent_text, style=usage_style(percent, warn_at)))
            line.append(f" Resets in: {reset_text}")
            console.print(line)
        else:
            bar = _bar_string(percent)
            console.print(
                f"{label_text} {bar} {percent_text} Resets in: {reset_text}",
                markup=False,
            )

    console.print(f"Updated: {format_clock(snapshot.fetched_at)}", style="dim")


def status_line(snapshot: UsageSnapshot) -> str:
    text = f"Session {snapshot.session_percent:.0f}%"
    if snapshot.has_weekly_window:
        text += f" | Weekly {snapshot.weekly_percent:.0f}%"
    return text


def format_remaining(delta: timedelta) -> str:
    if delta <= timedelta(0):
        return "--:--"
    total_minutes = int(delta.total_seconds() // 60)
    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_clock(value: datetime) -> str:
    return value.astimezone().strftime("%H:%M:%S")


def usage_style(percent: float, warn_at: int = DEFAULT_WARN_PERCENT) -> str:
    if percent >= CRITICAL_PERCENT:
        return "red"
    if percent >= warn_at:
        return "yellow"
    return "green"


def _bar_string(percent: float, width: int = 28) -> str:
    filled = int(round(width * percent / 100.0))
    filled = max(0, min(width, filled))
    return f"[{'#' * filled}{'-' * (width - filled)}]"


def _bar_text(percent: float, warn_at: int, width: int = 28) -> Text:
    filled = int(round(width * percent / 100.0))
    filled = max(0, min(width, filled))
    text = Text("[")
    if filled:
        text.append("#" * filled, style=usage_style(percent, warn_at))
    if width - filled:
        text.append("-" * (width - filled), style="bright_black")
    text.append("]")
    return text


class ConsoleStatusSink:
    """Prints orchestrator events to a rich console."""

    def __init__(self, console: Console, warn_at: int = DEFAULT_WARN_PERCENT) -> None:
        self.console = console
        self.warn_at = warn_at

    def emit(self, event: StatusEvent) -> None:
        if isinstance(event, SnapshotUpdated):
            self.console.print()
            render_snapshot(self.console, event.snapshot, self.warn_at)
        elif isinstance(event, AuthRequired):
            self._message(
                f"Login required: {event.reason}. "
                "Run with --login, then send SIGUSR1 to resume.",
                "yellow",
            )
        elif isinstance(event, AuthRecovered):
            self._message(f"Signed in ({event.mode.value}).", "green")
        elif isinstance(event, TransientError):
            self._message(f"Fetch failed ({event.count}): {event.message}", "red")
        elif isinstance(event, ErrorEscalation):
            self._message(
                f"{event.count} errors in a row. Last error: {event.message}",
                "bold red",
            )
        elif isinstance(event, CaptureUnavailable):
            self._message(f"Cannot sign in: {event.reason}", "bold red")

    def _message(self, message: str, style: str) -> None:
        if self.console.is_terminal:
            self.console.print(Text(message, style=style))
        else:
            self.console.print(message, markup=False)
