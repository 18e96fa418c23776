from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

log = logging.getLogger(__name__)


class TokenStore(Protocol):
    def get(self) -> str | None:
        ...

    def set(self, token: str) -> None:
        ...

    def delete(self) -> None:
        ...


def token_path(override: str | None = None) -> Path:
    if override:
        return Path(override).expanduser()
    root = os.environ.get("XDG_CONFIG_HOME")
    base = Path(root) if root else Path("~/.config").expanduser()
    return base / "claude-usage-monitor" / "session"


class FileTokenStore:
    """Keeps the single session token in a user-only readable file."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or token_path()

    def get(self) -> str | None:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            log.warning("Could not read session token from %s: %s", self.path, exc)
            return None
        token = text.strip()
        return token or None

    def set(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(token)
        log.debug("Stored session token at %s", self.path)

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        log.info("Deleted stored session token")


class MemoryTokenStore:
    def __init__(self, token: str | None = None) -> None:
        self._token = token

    def get(self) -> str | None:
        return self._token

    def set(self, token: str) -> None:
        self._token = token

    def delete(self) -> None:
        self._token = None
