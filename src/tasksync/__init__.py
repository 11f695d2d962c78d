"""Local-first task manager with offline sync.

Tasks are stored in a local SQLite database. Every local mutation is queued
and a background daemon reconciles the queue with a remote backend, recording
conflicts for later resolution.
"""

__version__ = "1.0.0"
__author__ = "tasksync contributors"
__email__ = ""

from .config import Config, get_config
from .core.sync import (
    ConflictResolver,
    ConflictStore,
    SyncCoordinator,
    SyncDaemon,
    SyncQueue,
)
from .database import DatabaseService, SQLiteTaskStore

__all__ = [
    "Config",
    "get_config",
    "ConflictResolver",
    "ConflictStore",
    "DatabaseService",
    "SyncCoordinator",
    "SyncDaemon",
    "SyncQueue",
    "SQLiteTaskStore",
]
