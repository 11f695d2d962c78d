"""Synchronization module.

Handles the sync queue, conflict detection and resolution, reconciliation
and the background daemon.
"""

from .circuit_breaker import CircuitBreaker, CircuitState
from .conflict_resolver import ConflictResolver, ResolutionResult, merge_fields
from .conflicts import ConflictStore, validate_strategy
from .coordinator import SyncCoordinator
from .daemon import (
    DaemonHandle,
    DaemonMarker,
    DaemonState,
    DaemonStatus,
    OfflineMode,
    SyncDaemon,
    is_daemon_running,
    read_marker,
    spawn_daemon_process,
    terminate_daemon,
    wake_daemon,
)
from .queue import PendingOperation, SyncQueue
from .reconciler import ReconcileResult, Reconciler

__all__ = [
    # Queue
    "SyncQueue",
    "PendingOperation",
    "SyncCoordinator",
    # Conflicts
    "ConflictStore",
    "ConflictResolver",
    "ResolutionResult",
    "merge_fields",
    "validate_strategy",
    # Reconciliation
    "Reconciler",
    "ReconcileResult",
    "CircuitBreaker",
    "CircuitState",
    # Daemon
    "SyncDaemon",
    "DaemonHandle",
    "DaemonMarker",
    "DaemonState",
    "DaemonStatus",
    "OfflineMode",
    "is_daemon_running",
    "read_marker",
    "spawn_daemon_process",
    "terminate_daemon",
    "wake_daemon",
]
