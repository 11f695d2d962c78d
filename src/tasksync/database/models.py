"""SQLAlchemy database models for tasks and offline synchronization."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (SQLite stores no offset)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uid() -> str:
    """Generate a fresh task UID."""
    return str(uuid.uuid4())


class TaskStatus(str, Enum):
    """Task completion state."""

    NEEDS_ACTION = "NEEDS-ACTION"
    IN_PROGRESS = "IN-PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OperationType(str, Enum):
    """Kind of mutation recorded in the sync queue."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ConflictStatus(str, Enum):
    """Conflict lifecycle: pending until a resolver closes it."""

    PENDING = "pending"
    RESOLVED = "resolved"


class ResolutionStrategy(str, Enum):
    """Named policies for closing a conflict."""

    SERVER_WINS = "server_wins"
    LOCAL_WINS = "local_wins"
    MERGE = "merge"
    KEEP_BOTH = "keep_both"

    @classmethod
    def values(cls) -> tuple[str, ...]:
        """Return the accepted strategy names in declaration order."""
        return tuple(member.value for member in cls)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class TaskList(Base):
    """A named list of tasks."""

    __tablename__ = "task_lists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    tasks: Mapped[List["Task"]] = relationship(
        "Task", back_populates="task_list", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        """String representation of TaskList."""
        return f"<TaskList(id={self.id}, name='{self.name}')>"


class Task(Base):
    """A todo item stored locally."""

    __tablename__ = "tasks"

    # Local identifier, usable without sync
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Remote identifier
    uid: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True, default=new_uid
    )

    list_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=False
    )

    summary: Mapped[str] = mapped_column(String(1000), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskStatus.NEEDS_ACTION.value
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    categories: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )  # Comma-separated tags
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    modified_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )

    task_list: Mapped["TaskList"] = relationship("TaskList", back_populates="tasks")

    __table_args__ = (
        Index("idx_tasks_list", "list_id"),
        # Local ids are never reused after a delete
        {"sqlite_autoincrement": True},
    )

    SNAPSHOT_FIELDS = (
        "summary",
        "description",
        "status",
        "priority",
        "categories",
        "due_date",
    )

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize the synchronizable fields to a JSON-compatible dict."""
        return {
            "uid": self.uid,
            "summary": self.summary,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "categories": self.categories,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "modified": self.modified_at.isoformat() if self.modified_at else None,
        }

    def __repr__(self) -> str:
        """String representation of Task."""
        return f"<Task(id={self.id}, uid='{self.uid}', summary='{self.summary}')>"


class SyncOperation(Base):
    """A queued local mutation awaiting remote propagation."""

    __tablename__ = "sync_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Target information (denormalized so it survives task deletion)
    task_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    task_uid: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    task_summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    list_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    operation_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # 'create', 'update', 'delete'

    # Retry bookkeeping (the only mutable columns)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_sync_queue_task", "task_id"),
        Index("idx_sync_queue_type", "operation_type"),
        Index("idx_sync_queue_created", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of SyncOperation."""
        return (
            f"<SyncOperation(id={self.id}, type='{self.operation_type}', "
            f"task_uid='{self.task_uid}', retries={self.retry_count})>"
        )


class SyncMetadata(Base):
    """Process-wide sync facts (e.g. ``last_sync``)."""

    __tablename__ = "sync_metadata"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        """String representation of SyncMetadata."""
        return f"<SyncMetadata(key='{self.key}', value='{self.value}')>"


class SyncConflict(Base):
    """A detected divergence between local and remote versions of a task."""

    __tablename__ = "sync_conflicts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_uid: Mapped[str] = mapped_column(String(255), nullable=False)
    task_summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    list_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # JSON snapshots of each side
    local_version: Mapped[str] = mapped_column(Text, nullable=False, default="")
    remote_version: Mapped[str] = mapped_column(Text, nullable=False, default="")

    local_modified: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    remote_modified: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConflictStatus.PENDING.value
    )
    resolution: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_sync_conflicts_uid", "task_uid"),
        Index("idx_sync_conflicts_status", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "id": self.id,
            "task_uid": self.task_uid,
            "task_summary": self.task_summary,
            "list_id": self.list_id,
            "local_version": self.local_version,
            "remote_version": self.remote_version,
            "local_modified": self.local_modified.isoformat(),
            "remote_modified": self.remote_modified.isoformat(),
            "detected_at": self.detected_at.isoformat(),
            "status": self.status,
        }

    def __repr__(self) -> str:
        """String representation of SyncConflict."""
        return (
            f"<SyncConflict(id={self.id}, task_uid='{self.task_uid}', "
            f"status='{self.status}')>"
        )


class SyncBaseline(Base):
    """Last remote version observed for a task UID at a successful sync."""

    __tablename__ = "sync_baselines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_uid: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    remote_modified: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        """String representation of SyncBaseline."""
        return (
            f"<SyncBaseline(task_uid='{self.task_uid}', "
            f"remote_modified='{self.remote_modified}')>"
        )
