from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Union

from claude_usage_monitor.auth import CaptureMode
from claude_usage_monitor.models import UsageSnapshot


@dataclass(frozen=True)
class SnapshotUpdated:
    snapshot: UsageSnapshot


@dataclass(frozen=True)
class AuthRequired:
    reason: str


@dataclass(frozen=True)
class AuthRecovered:
    mode: CaptureMode


@dataclass(frozen=True)
class TransientError:
    count: int
    message: str


@dataclass(frozen=True)
class ErrorEscalation:
    count: int
    message: str


@dataclass(frozen=True)
class CaptureUnavailable:
    reason: str


StatusEvent = Union[
    SnapshotUpdated,
    AuthRequired,
    AuthRecovered,
    TransientError,
    ErrorEscalation,
    CaptureUnavailable,
]


class StatusSink(Protocol):
    def emit(self, event: StatusEvent) -> None:
        ...
