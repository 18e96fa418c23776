from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

from claude_usage_monitor.auth import CaptureMode, SessionCredential
from claude_usage_monitor.capture import ConsoleCredentialSource
from claude_usage_monitor.client import (
    NoCredentialError,
    SessionAuthError,
    UsageApiError,
    UsageClient,
)
from claude_usage_monitor.config import Settings, load_settings
from claude_usage_monitor.orchestrator import OrchestratorState, PollingOrchestrator
from claude_usage_monitor.render import ConsoleStatusSink, render_snapshot, status_line
from claude_usage_monitor.store import FileTokenStore, token_path

log = logging.getLogger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="claude-usage-monitor",
        description="Watch claude.ai session and weekly usage limits.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Fetch usage once, print it and exit.",
    )
    mode.add_argument(
        "--login",
        action="store_true",
        help="Sign in by pasting a sessionKey and store it.",
    )
    mode.add_argument(
        "--logout",
        action="store_true",
        help="Forget the stored session.",
    )
    parser.add_argument(
        "--status-line",
        action="store_true",
        help="With --once, print a single compact line.",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Polling interval in seconds (30-600).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug output.",
    )
    args = parser.parse_args(argv)

    console = Console()
    configure_logging(args.verbose)
    settings = load_settings().with_interval(args.interval)
    store = FileTokenStore(token_path(settings.token_path))

    if args.logout:
        store.delete()
        console.print("Stored session removed.")
        return 0

    source = ConsoleCredentialSource()
    if args.login:
        return _run_login(console, source, store)

    credential = SessionCredential()
    with UsageClient(
        credential,
        base_url=settings.base_url,
        timeout=settings.request_timeout_seconds,
    ) as client:
        if args.once:
            return _run_once(console, client, source, store, settings, args.status_line)
        return _run_watch(console, client, source, store, settings)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )
    if not verbose:
        # httpx logs every request at INFO
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _print_error(console: Console, message: str) -> None:
    if console.is_terminal:
        console.print(Text(message, style="red"))
    else:
        console.print(message, markup=False)


def _run_login(
    console: Console, source: ConsoleCredentialSource, store: FileTokenStore
) -> int:
    result = source.capture(CaptureMode.INTERACTIVE, None)
    if not result.ok:
        _print_error(console, result.reason or "Login cancelled")
        return 1
    store.set(str(result.token))
    console.print(f"Session stored at {store.path}")
    return 0


def _run_once(
    console: Console,
    client: UsageClient,
    source: ConsoleCredentialSource,
    store: FileTokenStore,
    settings: Settings,
    compact: bool,
) -> int:
    token = store.get()
    if token is None:
        result = source.capture(CaptureMode.SILENT, settings.silent_timeout_seconds)
        token = result.token if result.ok else None
    if token is None:
        _print_error(console, "No session stored. Run with --login first.")
        return 1

    client.set_token(token)
    try:
        snapshot = client.fetch_usage()
    except (NoCredentialError, SessionAuthError) as exc:
        _print_error(console, f"{exc}. Run with --login to sign in again.")
        return 1
    except UsageApiError as exc:
        _print_error(console, f"Usage fetch failed: {exc}")
        return 1

    if compact:
        console.file.write(status_line(snapshot))
    else:
        render_snapshot(console, snapshot, settings.warn_at_percent)
    return 0


def _run_watch(
    console: Console,
    client: UsageClient,
    source: ConsoleCredentialSource,
    store: FileTokenStore,
    settings: Settings,
) -> int:
    orchestrator = PollingOrchestrator(
        client,
        source,
        ConsoleStatusSink(console, settings.warn_at_percent),
        store=store,
        interval=settings.poll_interval_seconds,
        silent_timeout=settings.silent_timeout_seconds,
    )
    _install_signal_handlers(orchestrator)
    console.print(
        f"Polling every {settings.poll_interval_seconds}s. Press Ctrl-C to quit.",
        style="dim",
    )

    stopped = threading.Event()
    try:
        orchestrator.start()
        if orchestrator.state is OrchestratorState.UNAUTHENTICATED:
            return 1
        stopped.wait()
    except KeyboardInterrupt:
        console.print()
    finally:
        orchestrator.stop()
    return 0


def _install_signal_handlers(orchestrator: PollingOrchestrator) -> None:
    if not hasattr(signal, "SIGUSR1"):
        return

    def refresh(signum, frame) -> None:
        log.info("Refresh requested by signal")
        threading.Thread(
            target=orchestrator.refresh, daemon=True, name="manual-refresh"
        ).start()

    def login(signum, frame) -> None:
        log.info("Login requested by signal")
        threading.Thread(
            target=orchestrator.login, daemon=True, name="manual-login"
        ).start()

    signal.signal(signal.SIGUSR1, refresh)
    signal.signal(signal.SIGUSR2, login)


if __name__ == "__main__":
    raise SystemExit(main())
