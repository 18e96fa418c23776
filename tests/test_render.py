import io
from datetime import datetime, timedelta, timezone

import pytest
from rich.console import Console

from claude_usage_monitor.auth import CaptureMode
from claude_usage_monitor.events import (
    AuthRecovered,
    AuthRequired,
    ErrorEscalation,
    SnapshotUpdated,
    TransientError,
)
from claude_usage_monitor.models import UsageSnapshot
from claude_usage_monitor.render import (
    ConsoleStatusSink,
    format_remaining,
    render_snapshot,
    status_line,
    usage_style,
)

NOW = datetime(2025, 2, 17, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(0), "--:--"),
        (timedelta(seconds=-30), "--:--"),
        (timedelta(minutes=12, seconds=40), "12m"),
        (timedelta(hours=1, minutes=5), "1h 5m"),
        (timedelta(days=2, hours=3, minutes=59), "2d 3h"),
    ],
)
def test_format_remaining(delta: timedelta, expected: str) -> None:
    assert format_remaining(delta) == expected


def test_usage_style_thresholds() -> None:
    assert usage_style(10.0) == "green"
    assert usage_style(80.0) == "yellow"
    assert usage_style(65.0, warn_at=60) == "yellow"
    assert usage_style(90.0) == "red"


def test_render_hides_missing_weekly_window() -> None:
    console = Console(file=io.StringIO(), width=120)
    snapshot = UsageSnapshot(
        session_percent=42.5,
        session_reset_at=NOW + timedelta(hours=2, minutes=30),
        fetched_at=NOW,
    )

    render_snapshot(console, snapshot, now=NOW)

    output = console.file.getvalue()
    assert "Session (5h)" in output
    assert " 42% Resets in: 2h 30m" in output
    assert "Weekly" not in output


def test_render_weekly_window() -> None:
    console = Console(file=io.StringIO(), width=120)
    snapshot = UsageSnapshot(
        session_percent=120.0,
        session_reset_at=None,
        fetched_at=NOW,
        weekly_percent=13.0,
        weekly_reset_at=NOW + timedelta(days=1, hours=4),
        has_weekly_window=True,
    )

    render_snapshot(console, snapshot, now=NOW)

    lines = console.file.getvalue().splitlines()
    assert lines[0].startswith("Session (5h) [" + "#" * 28 + "]")
    assert lines[0].endswith("120% Resets in: --:--")
    assert lines[1].startswith("Weekly (7d)")
    assert lines[1].endswith(" 13% Resets in: 1d 4h")


def test_status_line() -> None:
    snapshot = UsageSnapshot(
        session_percent=42.5,
        session_reset_at=None,
        fetched_at=NOW,
        weekly_percent=13.0,
        has_weekly_window=True,
    )

    assert status_line(snapshot) == "Session 42% | Weekly 13%"


def test_console_sink_prints_events() -> None:
    console = Console(file=io.StringIO(), width=200)
    sink = ConsoleStatusSink(console)
    snapshot = UsageSnapshot(session_percent=7.0, session_reset_at=None, fetched_at=NOW)

    sink.emit(SnapshotUpdated(snapshot))
    sink.emit(AuthRequired("Session expired"))
    sink.emit(AuthRecovered(CaptureMode.SILENT))
    sink.emit(TransientError(2, "[Errno 111] Connection refused"))
    sink.emit(ErrorEscalation(5, "timeout"))

    output = console.file.getvalue()
    assert "Session (5h)" in output
    assert "Login required: Session expired." in output
    assert "Signed in (silent)." in output
    assert "Fetch failed (2): [Errno 111] Connection refused" in output
    assert "5 errors in a row. Last error: timeout" in output
