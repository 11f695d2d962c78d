"""Background sync daemon.

One worker thread per running handle ticks on a fixed interval. The idle wait
between ticks is ``Event.wait(interval)`` on the handle's wake event. ``wake``
(SIGUSR1 for a daemon in another process) ends the wait early and ``stop``
sets the same event, so a stop request is observed between ticks and never
interrupts a running one. With an idle timeout the daemon stops itself once
no tick has moved data and no wake arrived for that long.

Only one daemon may run per database. Ownership is advertised through a JSON
liveness marker (PID file) carrying a heartbeat that is refreshed every tick.
A marker whose process is gone, or whose heartbeat is too old, is stale and
does not block a new start.
"""

import json
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from itertools import count
from pathlib import Path
from typing import Any, Dict, Optional

from ...database.models import utcnow
from ...database.service import DatabaseService
from ...database.task_store import SQLiteTaskStore
from ...notifications.notification import Notification, NotificationType
from ...utils.logging_config import daemon_log_handler
from ..errors import (
    DaemonAlreadyRunningError,
    DaemonError,
    DaemonNotRunningError,
    ValidationError,
)
from ..interfaces import NotificationSink, RemoteBackend, TaskStore
from .reconciler import ReconcileResult, Reconciler

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 300.0
MIN_STALE_AFTER = 30.0
STALE_INTERVAL_FACTOR = 3

_handle_ids = count(1)

# Not available on Windows
WAKE_SIGNAL = getattr(signal, "SIGUSR1", None)


class OfflineMode(str, Enum):
    """Whether the daemon talks to the remote."""

    AUTO = "auto"  # Online when the remote reports itself available
    ONLINE = "online"
    OFFLINE = "offline"


class DaemonState(str, Enum):
    """Daemon lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class DaemonStatus:
    """Read-only snapshot of a daemon."""

    running: bool
    state: DaemonState
    pid: Optional[int] = None
    interval: Optional[float] = None
    sync_count: int = 0
    last_sync: Optional[datetime] = None
    offline_mode: Optional[str] = None
    heartbeat_at: Optional[datetime] = None
    last_error: Optional[str] = None


# =============================================================================
# Liveness marker
# =============================================================================


@dataclass
class DaemonMarker:
    """Contents of the liveness marker file."""

    pid: int
    interval: float
    started_at: datetime
    heartbeat_at: datetime
    sync_count: int = 0
    last_sync: Optional[datetime] = None
    offline_mode: str = OfflineMode.AUTO.value

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        data = asdict(self)
        for key in ("started_at", "heartbeat_at", "last_sync"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DaemonMarker":
        """Parse a marker dict."""
        last_sync = data.get("last_sync")
        return cls(
            pid=int(data["pid"]),
            interval=float(data["interval"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            heartbeat_at=datetime.fromisoformat(data["heartbeat_at"]),
            sync_count=int(data.get("sync_count", 0)),
            last_sync=datetime.fromisoformat(last_sync) if last_sync else None,
            offline_mode=data.get("offline_mode", OfflineMode.AUTO.value),
        )

    def stale_after(self, override: Optional[float] = None) -> float:
        """Heartbeat age in seconds after which this marker is stale."""
        if override is not None:
            return override
        return max(STALE_INTERVAL_FACTOR * self.interval, MIN_STALE_AFTER)

    def is_stale(
        self, stale_after: Optional[float] = None, now: Optional[datetime] = None
    ) -> bool:
        """Whether the owning process is gone or has stopped heartbeating."""
        if not is_process_running(self.pid):
            return True
        age = (now or utcnow()) - self.heartbeat_at
        return age > timedelta(seconds=self.stale_after(stale_after))


def is_process_running(pid: int) -> bool:
    """Check if a process with the given PID is running."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True


def read_marker(path: Path) -> Optional[DaemonMarker]:
    """Read the liveness marker; None if absent or unreadable."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return DaemonMarker.from_dict(data)
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning("Corrupt daemon marker %s: %s", path, e)
        return None


def write_marker(path: Path, marker: DaemonMarker) -> None:
    """Write the liveness marker atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    tmp_path.write_text(json.dumps(marker.to_dict()), encoding="utf-8")
    tmp_path.replace(path)


def remove_marker(path: Path, pid: Optional[int] = None) -> None:
    """Remove the marker, only if it still belongs to ``pid`` when given."""
    path = Path(path)
    if pid is not None:
        current = read_marker(path)
        if current is not None and current.pid != pid:
            return
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def is_daemon_running(
    path: Path, stale_after: Optional[float] = None
) -> Optional[DaemonMarker]:
    """Return the live marker at ``path``, or None if no live daemon owns it."""
    marker = read_marker(path)
    if marker is None or marker.is_stale(stale_after):
        return None
    return marker


# =============================================================================
# Handle
# =============================================================================


class DaemonHandle:
    """A running (or finished) daemon instance."""

    def __init__(
        self,
        interval: float,
        offline_mode: OfflineMode,
        idle_timeout: Optional[float] = None,
    ) -> None:
        self.id = next(_handle_ids)
        self.pid = os.getpid()
        self.interval = interval
        self.offline_mode = offline_mode
        self.idle_timeout = idle_timeout
        self.started_at = utcnow()
        self.state = DaemonState.STARTING
        self.sync_count = 0
        self.last_sync: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_activity = time.monotonic()

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._stopped_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._log_handler: Optional[logging.Handler] = None
        self._log = logging.getLogger(f"tasksync_daemon.{self.pid}.{self.id}")

    @property
    def running(self) -> bool:
        """Whether the worker is ticking."""
        return self.state in (DaemonState.STARTING, DaemonState.RUNNING)

    def touch(self) -> None:
        """Record activity, postponing the idle timeout."""
        with self._lock:
            self.last_activity = time.monotonic()

    def idle_expired(self) -> bool:
        """Whether the idle timeout has passed since the last activity."""
        if self.idle_timeout is None:
            return False
        with self._lock:
            return time.monotonic() - self.last_activity >= self.idle_timeout

    def log(self, message: str, *args: Any) -> None:
        """Write a line to the daemon log."""
        self._log.info(message, *args)
        logger.debug(message, *args)

    def open_log(self, log_path: Path) -> None:
        """Attach a file handler writing to ``log_path``."""
        handler = daemon_log_handler(log_path)
        self._log.addHandler(handler)
        self._log.setLevel(logging.INFO)
        self._log.propagate = False
        self._log_handler = handler

    def close_log(self) -> None:
        """Detach and close the daemon log handler."""
        if self._log_handler is not None:
            self._log.removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None

    def marker(self) -> DaemonMarker:
        """Build the liveness marker for this handle."""
        with self._lock:
            return DaemonMarker(
                pid=self.pid,
                interval=self.interval,
                started_at=self.started_at,
                heartbeat_at=utcnow(),
                sync_count=self.sync_count,
                last_sync=self.last_sync,
                offline_mode=self.offline_mode.value,
            )

    def snapshot(self) -> DaemonStatus:
        """Consistent read of the counters."""
        with self._lock:
            return DaemonStatus(
                running=self.running,
                state=self.state,
                pid=self.pid,
                interval=self.interval,
                sync_count=self.sync_count,
                last_sync=self.last_sync,
                offline_mode=self.offline_mode.value,
                last_error=self.last_error,
            )

    def __repr__(self) -> str:
        """String representation of DaemonHandle."""
        return (
            f"<DaemonHandle(pid={self.pid}, state='{self.state.value}', "
            f"sync_count={self.sync_count})>"
        )


# =============================================================================
# Daemon
# =============================================================================


class SyncDaemon:
    """Periodic reconciliation in a background thread."""

    def __init__(
        self,
        db_service: DatabaseService,
        store: Optional[TaskStore] = None,
        remote: Optional[RemoteBackend] = None,
        notifier: Optional[NotificationSink] = None,
        *,
        pid_path: Path,
        log_path: Path,
        offline_mode: OfflineMode = OfflineMode.AUTO,
        max_retries: int = 5,
        stale_after: Optional[float] = None,
        idle_timeout: Optional[float] = None,
    ) -> None:
        """Initialize the daemon.

        Args:
            db_service: Database service shared with foreground commands
            store: Local task store; a SQLite store is used when omitted
            remote: Remote backend; without one every tick is offline
            notifier: Sink for sync notifications
            pid_path: Liveness marker location
            log_path: Daemon log location
            offline_mode: auto, online or offline
            max_retries: Failed attempts after which an operation is held
            stale_after: Heartbeat age (seconds) after which a marker is stale
            idle_timeout: Seconds without data movement or wakes after which
                the daemon stops itself; never when None
        """
        self.db_service = db_service
        self.remote = remote
        self.notifier = notifier
        self.pid_path = Path(pid_path)
        self.log_path = Path(log_path)
        self.offline_mode = OfflineMode(offline_mode)
        self.stale_after = stale_after
        self.idle_timeout = idle_timeout

        self.reconciler: Optional[Reconciler] = None
        if remote is not None:
            self.reconciler = Reconciler(
                db_service,
                store or SQLiteTaskStore(db_service),
                remote,
                max_retries=max_retries,
            )

        self._handle: Optional[DaemonHandle] = None
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, interval: Optional[float] = None) -> DaemonHandle:
        """Start ticking in a background thread.

        Starting an instance that is already running returns its handle.

        Args:
            interval: Seconds between ticks (default 300)

        Returns:
            The running DaemonHandle

        Raises:
            DaemonAlreadyRunningError: A live daemon owns the marker
            ValidationError: Non-positive interval or idle timeout
        """
        with self._lock:
            if self._handle is not None and self._handle.running:
                logger.info("Sync daemon is already running")
                return self._handle

            interval = DEFAULT_INTERVAL if interval is None else float(interval)
            if interval <= 0:
                raise ValidationError(f"interval must be positive: {interval}")
            if self.idle_timeout is not None and self.idle_timeout <= 0:
                raise ValidationError(
                    f"idle timeout must be positive: {self.idle_timeout}"
                )

            marker = read_marker(self.pid_path)
            if marker is not None:
                if not marker.is_stale(self.stale_after):
                    raise DaemonAlreadyRunningError(marker.pid)
                logger.warning(
                    "Removing stale daemon marker (PID %d, heartbeat %s)",
                    marker.pid,
                    marker.heartbeat_at.isoformat(),
                )
                remove_marker(self.pid_path)

            handle = DaemonHandle(interval, self.offline_mode, self.idle_timeout)
            handle.open_log(self.log_path)
            try:
                write_marker(self.pid_path, handle.marker())
            except OSError as e:
                handle.close_log()
                raise DaemonError(f"failed to write daemon marker: {e}") from e

            handle._thread = threading.Thread(
                target=self._run, args=(handle,), daemon=True, name="sync-daemon"
            )
            handle.log("Daemon started with interval %ss", _format_seconds(interval))
            handle.state = DaemonState.RUNNING
            handle._thread.start()
            self._handle = handle

            logger.info(
                "Sync daemon started (PID: %d, interval: %ss)",
                handle.pid,
                _format_seconds(interval),
            )
            return handle

    def stop(
        self, handle: Optional[DaemonHandle] = None, timeout: Optional[float] = None
    ) -> None:
        """Stop a handle and wait for its worker to exit.

        The tick in progress, if any, runs to completion first. Stopping a
        stopped handle does nothing; stopping a handle that another caller is
        already stopping waits for that stop to finish.

        Args:
            handle: Handle returned by ``start``; the current one when None
            timeout: Maximum seconds to wait; unbounded when None

        Raises:
            DaemonError: The worker did not exit within ``timeout``
        """
        handle = handle or self._handle
        if handle is None:
            return

        worker = handle._thread
        on_worker = worker is threading.current_thread()
        with handle._lock:
            state = handle.state
            if state != DaemonState.STOPPED:
                handle.state = DaemonState.STOPPING
        if state == DaemonState.STOPPED:
            return
        if state == DaemonState.STOPPING:
            if not on_worker and not handle._stopped_event.wait(timeout):
                raise DaemonError(
                    f"sync daemon did not stop within {timeout}s (PID: {handle.pid})"
                )
            return

        handle._stop_event.set()
        handle._wake_event.set()

        if worker is not None and not on_worker:
            worker.join(timeout)
            if worker.is_alive():
                raise DaemonError(
                    f"sync daemon did not stop within {timeout}s (PID: {handle.pid})"
                )

        handle.log("Daemon stopped")
        handle.close_log()
        remove_marker(self.pid_path, handle.pid)
        with handle._lock:
            handle.state = DaemonState.STOPPED
        handle._stopped_event.set()

        with self._lock:
            if self._handle is handle:
                self._handle = None
        logger.info("Sync daemon stopped")

    def wake(self, handle: Optional[DaemonHandle] = None) -> bool:
        """Run the next tick now instead of at the end of the interval.

        Returns:
            False if there is no running handle to wake
        """
        handle = handle or self._handle
        if handle is None or not handle.running:
            return False
        handle.touch()
        handle._wake_event.set()
        logger.debug("Sync daemon woken (PID: %d)", handle.pid)
        return True

    def status(self, handle: Optional[DaemonHandle] = None) -> DaemonStatus:
        """Snapshot of a handle, or of the current one."""
        handle = handle or self._handle
        if handle is None:
            return DaemonStatus(running=False, state=DaemonState.STOPPED)
        return handle.snapshot()

    def run_forever(self, interval: Optional[float] = None) -> DaemonStatus:
        """Run in the foreground until SIGTERM, SIGINT or the idle timeout.

        SIGUSR1 wakes the worker for an immediate tick. Signal handlers are
        restored on return, including when the daemon fails to start.

        Returns:
            Final status of the handle
        """
        stop_requested = threading.Event()

        def _handle_signal(signum: int, _frame: Any) -> None:
            logger.info("Signal %s received, stopping daemon...", signum)
            stop_requested.set()

        def _handle_wake(_signum: int, _frame: Any) -> None:
            self.wake()

        handlers = {signal.SIGTERM: _handle_signal, signal.SIGINT: _handle_signal}
        if WAKE_SIGNAL is not None:
            handlers[WAKE_SIGNAL] = _handle_wake

        previous = {}
        handle: Optional[DaemonHandle] = None
        try:
            for sig, handler in handlers.items():
                try:
                    previous[sig] = signal.signal(sig, handler)
                except ValueError:
                    # Not on the main thread
                    pass

            handle = self.start(interval)
            while not stop_requested.wait(1.0):
                if not handle.running:
                    break
        finally:
            try:
                if handle is not None:
                    self.stop(handle)
            finally:
                for sig, old in previous.items():
                    signal.signal(sig, old)
        return handle.snapshot()

    # -------------------------------------------------------------------------
    # Ticking
    # -------------------------------------------------------------------------

    def is_offline(self) -> bool:
        """Whether the next tick skips remote work."""
        if self.offline_mode == OfflineMode.OFFLINE or self.reconciler is None:
            return True
        if self.offline_mode == OfflineMode.ONLINE:
            return False
        try:
            return not self.reconciler.remote.is_available()
        except Exception as e:
            logger.debug("Remote availability check failed: %s", e)
            return True

    def _run(self, handle: DaemonHandle) -> None:
        while not handle._stop_event.is_set():
            self.tick(handle)
            woken = handle._wake_event.wait(handle.interval)
            handle._wake_event.clear()
            if handle._stop_event.is_set():
                break
            if not woken and handle.idle_expired():
                handle.log(
                    "Idle for %ss, stopping", _format_seconds(handle.idle_timeout)
                )
                self.stop(handle)
                break

    def tick(self, handle: DaemonHandle) -> Optional[ReconcileResult]:
        """Run one tick. Errors are logged and reported, never raised."""
        with handle._lock:
            handle.sync_count += 1
            handle.last_sync = utcnow()
            attempt = handle.sync_count

        result: Optional[ReconcileResult] = None
        try:
            reconciler = None if self.is_offline() else self.reconciler
            if reconciler is None:
                handle.log("Sync attempt %d (offline mode)", attempt)
                self._notify(
                    NotificationType.SYNC_COMPLETE,
                    "Sync complete",
                    f"Sync attempt {attempt} completed (offline mode)",
                )
            else:
                result = reconciler.run()
                self._report(handle, attempt, result)
                if result.has_changes:
                    handle.touch()
        except Exception as e:
            logger.exception("Sync tick %d failed", attempt)
            with handle._lock:
                handle.last_error = str(e)
            handle.log("Sync error: %s", e)
            self._notify(NotificationType.SYNC_ERROR, "Sync error", f"Sync failed: {e}")

        try:
            write_marker(self.pid_path, handle.marker())
        except OSError as e:
            logger.warning("Failed to update daemon heartbeat: %s", e)
        return result

    def _report(
        self, handle: DaemonHandle, attempt: int, result: ReconcileResult
    ) -> None:
        if result.new_conflicts:
            self._notify(
                NotificationType.CONFLICT,
                "Sync conflict",
                f"{len(result.new_conflicts)} conflict(s) detected: "
                + ", ".join(result.new_conflicts),
            )

        if result.success:
            with handle._lock:
                handle.last_error = None
            handle.log("Sync completed (count: %d)", attempt)
            self._notify(
                NotificationType.SYNC_COMPLETE,
                "Sync complete",
                f"Sync completed: {result.operations_pushed} pushed, "
                f"{result.remote_applied} pulled",
            )
        else:
            with handle._lock:
                handle.last_error = result.errors[-1]
            handle.log("Sync attempt %d failed: %s", attempt, result.errors[-1])
            self._notify(
                NotificationType.SYNC_ERROR,
                "Sync error",
                f"Sync failed with {len(result.errors)} error(s): {result.errors[-1]}",
            )

    def _notify(self, kind: NotificationType, title: str, message: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send_async(Notification(kind, title, message))
        except Exception as e:
            logger.warning("Failed to dispatch %s notification: %s", kind.value, e)


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}"


# =============================================================================
# Detached process helpers (used by the CLI)
# =============================================================================


def spawn_daemon_process(
    interval: float,
    pid_path: Path,
    startup_timeout: float = 10.0,
    env: Optional[Dict[str, str]] = None,
) -> int:
    """Launch ``tasksync sync daemon run`` as a detached process.

    Waits until the child has written its liveness marker.

    Returns:
        PID of the daemon process

    Raises:
        DaemonError: The child exited or did not come up in time
    """
    cmd = [
        sys.executable,
        "-m",
        "tasksync",
        "sync",
        "daemon",
        "run",
        "--interval",
        _format_seconds(interval),
    ]
    process = subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        env=env if env is not None else os.environ.copy(),
    )

    deadline = time.monotonic() + startup_timeout
    while time.monotonic() < deadline:
        marker = read_marker(pid_path)
        if marker is not None and marker.pid == process.pid:
            return process.pid
        returncode = process.poll()
        if returncode is not None:
            raise DaemonError(f"daemon process exited with code {returncode}")
        time.sleep(0.05)

    raise DaemonError(f"daemon process did not start within {startup_timeout}s")


def terminate_daemon(
    pid_path: Path, timeout: float = 30.0, stale_after: Optional[float] = None
) -> int:
    """Ask the daemon owning ``pid_path`` to stop and wait for it.

    Returns:
        PID of the stopped daemon

    Raises:
        DaemonNotRunningError: No live daemon
        DaemonError: The daemon did not exit in time
    """
    marker = is_daemon_running(pid_path, stale_after)
    if marker is None:
        stale = read_marker(pid_path)
        if stale is not None:
            remove_marker(pid_path, stale.pid)
        raise DaemonNotRunningError("sync daemon is not running")

    try:
        os.kill(marker.pid, signal.SIGTERM)
    except ProcessLookupError:
        remove_marker(pid_path, marker.pid)
        return marker.pid

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        current = read_marker(pid_path)
        if current is None or current.pid != marker.pid:
            return marker.pid
        if not is_process_running(marker.pid):
            remove_marker(pid_path, marker.pid)
            return marker.pid
        time.sleep(0.1)

    raise DaemonError(f"sync daemon (PID: {marker.pid}) did not stop in {timeout}s")


def wake_daemon(pid_path: Path, stale_after: Optional[float] = None) -> int:
    """Ask the daemon owning ``pid_path`` to sync now.

    Returns:
        PID of the woken daemon

    Raises:
        DaemonNotRunningError: No live daemon
        DaemonError: The platform has no wake signal
    """
    if WAKE_SIGNAL is None:
        raise DaemonError("waking the sync daemon is not supported on this platform")

    marker = is_daemon_running(pid_path, stale_after)
    if marker is None:
        raise DaemonNotRunningError("sync daemon is not running")
    try:
        os.kill(marker.pid, WAKE_SIGNAL)
    except ProcessLookupError as e:
        raise DaemonNotRunningError("sync daemon is not running") from e
    logger.debug("Woke sync daemon (PID: %d)", marker.pid)
    return marker.pid
