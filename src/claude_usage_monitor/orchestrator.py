from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Sequence

from claude_usage_monitor.auth import (
    SILENT_CAPTURE_TIMEOUT_SECONDS,
    CaptureMode,
    CaptureResult,
    CaptureStatus,
    CredentialSource,
)
from claude_usage_monitor.client import (
    NoCredentialError,
    SessionAuthError,
    UsageApiError,
    UsageClient,
)
from claude_usage_monitor.config import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    ESCALATION_THRESHOLD,
)
from claude_usage_monitor.events import (
    AuthRecovered,
    AuthRequired,
    CaptureUnavailable,
    ErrorEscalation,
    SnapshotUpdated,
    StatusEvent,
    StatusSink,
    TransientError,
)
from claude_usage_monitor.models import UsageSnapshot
from claude_usage_monitor.store import TokenStore

log = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    POLLING = "polling"
    RECOVERING_AUTH = "recovering_auth"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class _Cadence:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread."""

    def __init__(self, interval: float, callback: Callable[[], object]) -> None:
        self.interval = interval
        self._callback = callback
        self._lock = threading.Lock()
        self._stopped: threading.Event | None = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._stopped is not None

    def start(self) -> None:
        with self._lock:
            if self._stopped is not None:
                return
            stopped = threading.Event()
            self._stopped = stopped
            thread = threading.Thread(
                target=self._run, args=(stopped,), daemon=True, name="usage-cadence"
            )
            thread.start()

    def stop(self) -> None:
        with self._lock:
            if self._stopped is None:
                return
            self._stopped.set()
            self._stopped = None

    def _run(self, stopped: threading.Event) -> None:
        while not stopped.wait(self.interval):
            try:
                self._callback()
            except Exception:
                log.exception("Scheduled usage refresh failed")


class PollingOrchestrator:
    def __init__(
        self,
        client: UsageClient,
        source: CredentialSource,
        sink: StatusSink,
        store: TokenStore | None = None,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        silent_timeout: float = SILENT_CAPTURE_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._source = source
        self._sink = sink
        self._store = store
        self._silent_timeout = silent_timeout
        self._lock = threading.Lock()
        self._state = OrchestratorState.UNAUTHENTICATED
        self._auth_mode: CaptureMode | None = None
        self._busy = False
        self._capture_done: threading.Event | None = None
        self._consecutive_errors = 0
        self._auth_notified = False
        self._capture_unavailable = False
        self._last_snapshot: UsageSnapshot | None = None
        self._cadence = _Cadence(interval, self._on_tick)

    @property
    def state(self) -> OrchestratorState:
        with self._lock:
            return self._state

    @property
    def auth_mode(self) -> CaptureMode | None:
        with self._lock:
            return self._auth_mode

    @property
    def consecutive_errors(self) -> int:
        with self._lock:
            return self._consecutive_errors

    @property
    def last_snapshot(self) -> UsageSnapshot | None:
        with self._lock:
            return self._last_snapshot

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    @property
    def cadence_running(self) -> bool:
        return self._cadence.running

    def start(self) -> None:
        with self._lock:
            if self._state is not OrchestratorState.UNAUTHENTICATED or self._busy:
                log.debug("Ignoring start in state %s", self._state.value)
                return
            self._busy = True
        try:
            token = self._store.get() if self._store is not None else None
            if token:
                log.info("Using stored session token")
                self._client.set_token(token)
                if self._transition(OrchestratorState.POLLING):
                    self._run_cycle()
            elif self._authenticate((CaptureMode.SILENT, CaptureMode.INTERACTIVE)):
                self._run_cycle()
        finally:
            self._release()

    def login(self, mode: CaptureMode = CaptureMode.INTERACTIVE) -> bool:
        with self._lock:
            if self._state is OrchestratorState.STOPPED or self._busy:
                log.debug("Ignoring login request in state %s", self._state.value)
                return False
            self._busy = True
            self._capture_unavailable = False
            self._cadence.stop()
        try:
            if not self._authenticate((mode,)):
                return False
            self._run_cycle()
            return True
        finally:
            self._release()

    def refresh(self) -> bool:
        return self._trigger("manual refresh")

    def stop(self) -> None:
        with self._lock:
            if self._state is OrchestratorState.STOPPED:
                return
            self._state = OrchestratorState.STOPPED
            self._auth_mode = None
            self._cadence.stop()
            capture_done = self._capture_done
        if capture_done is not None:
            capture_done.set()
            self._source.cancel()
        log.info("Polling stopped")

    def _on_tick(self) -> None:
        self._trigger("timer")

    def _trigger(self, origin: str) -> bool:
        with self._lock:
            if self._busy:
                log.debug("Dropping %s: another fetch is in flight", origin)
                return False
            unauthenticated = self._state is OrchestratorState.UNAUTHENTICATED
            if not unauthenticated and self._state not in (
                OrchestratorState.POLLING,
                OrchestratorState.BACKOFF,
            ):
                log.debug("Dropping %s in state %s", origin, self._state.value)
                return False
            self._busy = True
        try:
            if unauthenticated:
                self._reload_stored_token()
                # a rejected token is kept so the user can retry by hand
                if not self._client.credential.has_token:
                    log.debug("Dropping %s: no session token", origin)
                    return False
            self._run_cycle()
        finally:
            self._release()
        return True

    def _reload_stored_token(self) -> None:
        if self._store is None:
            return
        token = self._store.get()
        if not token or token == self._client.credential.token:
            return
        log.info("Found a new stored session token")
        self._client.set_token(token)
        with self._lock:
            self._auth_notified = False
            self._capture_unavailable = False

    def _release(self) -> None:
        with self._lock:
            self._busy = False

    def _run_cycle(self, recover: bool = True) -> None:
        try:
            snapshot = self._client.fetch_usage()
        except SessionAuthError as exc:
            if recover:
                self._recover_auth(str(exc))
            elif self._transition(OrchestratorState.UNAUTHENTICATED):
                self._notify_auth_required(f"Session expired: {exc}", once=True)
        except NoCredentialError as exc:
            with self._lock:
                if self._state is not OrchestratorState.STOPPED:
                    self._cadence.stop()
            if self._transition(OrchestratorState.UNAUTHENTICATED):
                self._notify_auth_required(str(exc), once=True)
        except Exception as exc:
            if not isinstance(exc, UsageApiError):
                log.exception("Unexpected error while fetching usage")
            self._record_failure(exc)
        else:
            self._apply_snapshot(snapshot)

    def _apply_snapshot(self, snapshot: UsageSnapshot) -> None:
        with self._lock:
            if self._state is OrchestratorState.STOPPED:
                log.debug("Discarding usage fetched after shutdown")
                return
            if self._consecutive_errors:
                log.info("Usage fetch recovered after %d errors", self._consecutive_errors)
            self._consecutive_errors = 0
            self._auth_notified = False
            self._last_snapshot = snapshot
            self._set_state_locked(OrchestratorState.POLLING)
            self._cadence.start()
        self._emit(SnapshotUpdated(snapshot))

    def _record_failure(self, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        with self._lock:
            if self._state is OrchestratorState.STOPPED:
                log.debug("Discarding failure after shutdown: %s", message)
                return
            self._consecutive_errors += 1
            count = self._consecutive_errors
            self._set_state_locked(OrchestratorState.BACKOFF)
            self._cadence.start()
        log.warning("Usage fetch failed (%d in a row): %s", count, message)
        self._emit(TransientError(count, message))
        if count == ESCALATION_THRESHOLD:
            self._emit(ErrorEscalation(count, message))

    def _recover_auth(self, reason: str) -> None:
        with self._lock:
            if self._state is OrchestratorState.STOPPED:
                return
            self._cadence.stop()
            self._set_state_locked(OrchestratorState.RECOVERING_AUTH)
            already_notified = self._auth_notified
            capture_unavailable = self._capture_unavailable
        log.warning("Session rejected: %s", reason)

        if already_notified or capture_unavailable:
            log.info("Not retrying login until the user signs in again")
            self._transition(OrchestratorState.UNAUTHENTICATED)
            return

        result = self._capture(CaptureMode.SILENT)
        if result.ok:
            if self._accept_token(result.token, CaptureMode.SILENT):
                self._run_cycle(recover=False)
            return
        if result.status is CaptureStatus.UNAVAILABLE:
            self._handle_unavailable(result)
            return
        if self._transition(OrchestratorState.UNAUTHENTICATED):
            self._notify_auth_required("Session expired", once=True)

    def _authenticate(self, modes: Sequence[CaptureMode]) -> bool:
        result: CaptureResult | None = None
        for mode in modes:
            if not self._transition(OrchestratorState.AUTHENTICATING, mode):
                return False
            result = self._capture(mode)
            if result.ok:
                return self._accept_token(result.token, mode)
            if result.status is CaptureStatus.UNAVAILABLE:
                self._handle_unavailable(result)
                return False
            log.info("%s login gave no session (%s)", mode.value, result.status.value)

        if self._transition(OrchestratorState.UNAUTHENTICATED):
            self._notify_auth_required(_describe_capture(result), once=False)
        return False

    def _capture(self, mode: CaptureMode) -> CaptureResult:
        with self._lock:
            if self._state is OrchestratorState.STOPPED:
                return CaptureResult.cancelled("Shutting down")
            done = threading.Event()
            self._capture_done = done

        timeout = self._silent_timeout if mode is CaptureMode.SILENT else None
        outcome: list[CaptureResult | Exception] = []

        def run() -> None:
            try:
                outcome.append(self._source.capture(mode, timeout))
            except Exception as exc:
                outcome.append(exc)
            finally:
                done.set()

        # daemon, so a capture that never returns cannot hold the process open
        worker = threading.Thread(target=run, daemon=True, name="credential-capture")
        try:
            worker.start()
            done.wait(timeout)
        finally:
            with self._lock:
                self._capture_done = None
                stopped = self._state is OrchestratorState.STOPPED

        if not outcome:
            if stopped:
                return CaptureResult.cancelled("Shutting down")
            log.info("Silent login timed out after %gs", timeout)
            self._source.cancel()
            return CaptureResult.timed_out(timeout or 0.0)
        result = outcome[0]
        if isinstance(result, Exception):
            log.warning("Credential capture failed: %s", result)
            return CaptureResult.declined(str(result))
        if result.status is CaptureStatus.TOKEN and not result.ok:
            return CaptureResult.declined("Empty session token")
        return result

    def _accept_token(self, token: str | None, mode: CaptureMode) -> bool:
        with self._lock:
            if self._state is OrchestratorState.STOPPED:
                return False
        self._client.set_token(token)
        if self._store is not None and token:
            try:
                self._store.set(token)
            except OSError as exc:
                log.warning("Could not persist session token: %s", exc)

        with self._lock:
            if self._state is OrchestratorState.STOPPED:
                return False
            self._consecutive_errors = 0
            self._auth_notified = False
            self._capture_unavailable = False
            self._set_state_locked(OrchestratorState.POLLING)
        log.info("Signed in (%s)", mode.value)
        self._emit(AuthRecovered(mode))
        return True

    def _handle_unavailable(self, result: CaptureResult) -> None:
        reason = result.reason or "Credential capture is unavailable"
        with self._lock:
            if self._state is OrchestratorState.STOPPED:
                return
            self._capture_unavailable = True
            self._cadence.stop()
            self._set_state_locked(OrchestratorState.UNAUTHENTICATED)
        log.error("Cannot sign in: %s", reason)
        self._emit(CaptureUnavailable(reason))

    def _notify_auth_required(self, reason: str, once: bool) -> None:
        with self._lock:
            if once and self._auth_notified:
                log.debug("Auth notification already sent: %s", reason)
                return
            self._auth_notified = True
        self._emit(AuthRequired(reason))

    def _transition(
        self, state: OrchestratorState, mode: CaptureMode | None = None
    ) -> bool:
        with self._lock:
            if self._state is OrchestratorState.STOPPED:
                return False
            self._set_state_locked(state, mode)
            return True

    def _set_state_locked(
        self, state: OrchestratorState, mode: CaptureMode | None = None
    ) -> None:
        if self._state is not state or self._auth_mode is not mode:
            if mode is None:
                log.info("State %s -> %s", self._state.value, state.value)
            else:
                log.info("State %s -> %s (%s)", self._state.value, state.value, mode.value)
        self._state = state
        self._auth_mode = mode

    def _emit(self, event: StatusEvent) -> None:
        try:
            self._sink.emit(event)
        except Exception:
            log.exception("Status sink failed on %s", type(event).__name__)


def _describe_capture(result: CaptureResult | None) -> str:
    if result is None:
        return "Login required"
    if result.reason:
        return result.reason
    if result.status is CaptureStatus.CANCELLED:
        return "Login cancelled"
    if result.status is CaptureStatus.TIMEOUT:
        return "Login timed out"
    return "Login required"
