from __future__ import annotations

import logging
import os
import sys
import threading
from typing import Mapping

from rich.console import Console
from rich.prompt import Prompt

from claude_usage_monitor.auth import CaptureMode, CaptureResult

SESSION_KEY_ENV = "CLAUDE_SESSION_KEY"
SESSION_COOKIE_NAME = "sessionKey"

log = logging.getLogger(__name__)


class ConsoleCredentialSource:
    def __init__(
        self,
        console: Console | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._console = console or Console(stderr=True)
        self._environ = environ
        self._cancelled = threading.Event()

    def capture(self, mode: CaptureMode, timeout: float | None) -> CaptureResult:
        self._cancelled.clear()
        if mode is CaptureMode.SILENT:
            return self._capture_silently()
        return self._capture_interactively()

    def cancel(self) -> None:
        self._cancelled.set()

    def _capture_silently(self) -> CaptureResult:
        env = os.environ if self._environ is None else self._environ
        token = parse_session_key(env.get(SESSION_KEY_ENV))
        if token is None:
            return CaptureResult.declined(f"{SESSION_KEY_ENV} is not set")
        log.debug("Found session key in %s", SESSION_KEY_ENV)
        return CaptureResult.captured(token)

    def _capture_interactively(self) -> CaptureResult:
        if not sys.stdin.isatty():
            return CaptureResult.unavailable(
                "Interactive login needs a terminal; set "
                f"{SESSION_KEY_ENV} or run with --login from a shell"
            )

        self._console.print(
            "Sign in at https://claude.ai, then copy the [bold]sessionKey[/bold] "
            "cookie from the browser's developer tools."
        )
        try:
            raw = Prompt.ask("sessionKey", console=self._console, password=True)
        except (EOFError, KeyboardInterrupt):
            return CaptureResult.cancelled("Login cancelled")

        if self._cancelled.is_set():
            return CaptureResult.cancelled("Login cancelled")
        token = parse_session_key(raw)
        if token is None:
            return CaptureResult.cancelled("No session key entered")
        return CaptureResult.captured(token)


def parse_session_key(raw: str | None) -> str | None:
    """Accept a bare session key or a pasted ``name=value; ...`` cookie string."""
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    if text.lower().startswith("cookie:"):
        text = text[len("cookie:"):].strip()
    if "=" not in text:
        return text
    for part in text.split(";"):
        name, _, value = part.strip().partition("=")
        if name.strip().lower() == SESSION_COOKIE_NAME.lower():
            return value.strip() or None
    return None
