"""Error taxonomy for the sync subsystem.

Foreground commands surface these synchronously; the daemon logs them and keeps
ticking.
"""


class SyncError(Exception):
    """Base class for all sync subsystem errors."""


class StorageError(SyncError):
    """A queue, conflict or metadata store I/O operation failed."""


class ValidationError(SyncError):
    """A request was rejected before touching storage."""


class InvalidStrategyError(ValidationError):
    """Unknown conflict resolution strategy."""

    def __init__(self, strategy: str, valid: tuple[str, ...]) -> None:
        self.strategy = strategy
        self.valid = valid
        super().__init__(
            f"invalid strategy: {strategy} (valid: {', '.join(valid)})"
        )


class NotFoundError(SyncError):
    """A referenced operation, conflict or task does not exist."""


class ConflictNotFoundError(NotFoundError):
    """No pending conflict exists for a task UID."""

    def __init__(self, task_uid: str) -> None:
        self.task_uid = task_uid
        super().__init__(f"conflict not found: {task_uid}")


class TaskNotFoundError(NotFoundError):
    """A task is missing from the task store."""


class UnsupportedCapabilityError(SyncError):
    """The wrapped task store does not implement a delegated capability."""


class RemoteError(SyncError):
    """The remote backend rejected or failed a request."""


class DaemonError(SyncError):
    """Daemon lifecycle failure."""


class DaemonAlreadyRunningError(DaemonError):
    """Another live daemon owns the liveness marker."""

    def __init__(self, pid: int) -> None:
        self.pid = pid
        super().__init__(f"sync daemon is already running (PID: {pid})")


class DaemonNotRunningError(DaemonError):
    """No live daemon was found."""
