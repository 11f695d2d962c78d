"""Database package: ORM models, the database service and the task store."""

from .models import (
    ConflictStatus,
    OperationType,
    ResolutionStrategy,
    SyncBaseline,
    SyncConflict,
    SyncMetadata,
    SyncOperation,
    Task,
    TaskList,
    TaskStatus,
)
from .service import DatabaseService
from .task_store import SQLiteTaskStore

__all__ = [
    # Models
    "Task",
    "TaskList",
    "SyncOperation",
    "SyncMetadata",
    "SyncConflict",
    "SyncBaseline",
    # Enums
    "TaskStatus",
    "OperationType",
    "ConflictStatus",
    "ResolutionStrategy",
    # Services
    "DatabaseService",
    "SQLiteTaskStore",
]
