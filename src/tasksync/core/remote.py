"""Remote backend contract types and a SQLite-file remote.

``DatabaseRemoteBackend`` treats a second tasksync database as the remote
side. Two machines sharing a synced folder can point at the same file.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pydantic
from pydantic import BaseModel, field_validator
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..database.models import Task, TaskStatus, utcnow
from ..database.service import DatabaseService
from ..database.task_store import DEFAULT_LIST_NAME, SQLiteTaskStore
from .errors import RemoteError, SyncError, ValidationError

logger = logging.getLogger(__name__)


class RemoteTask(BaseModel):
    """A task as observed on the remote side."""

    uid: str
    summary: str = ""
    modified: datetime
    list_name: str = DEFAULT_LIST_NAME
    description: Optional[str] = None
    status: str = TaskStatus.NEEDS_ACTION.value
    priority: int = 0
    categories: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("summary", mode="before")
    @classmethod
    def validate_summary(cls, v: Optional[str]) -> str:
        """Treat a missing summary as empty."""
        return v or ""

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> str:
        """Default a missing status to NEEDS-ACTION."""
        return v or TaskStatus.NEEDS_ACTION.value

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v: Optional[int]) -> int:
        """Treat a missing priority as 0."""
        return v or 0

    @field_validator("modified", "due_date")
    @classmethod
    def validate_naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store timestamps as naive UTC, like the local database."""
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    def task_fields(self) -> Dict[str, Any]:
        """Fields suitable for ``TaskStore.create_task``/``update_task``."""
        return {
            "summary": self.summary,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "categories": self.categories,
            "due_date": self.due_date,
            "modified_at": self.modified,
        }

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize in the same shape as ``Task.to_snapshot``."""
        return {
            "uid": self.uid,
            "summary": self.summary,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "categories": self.categories,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "modified": self.modified.isoformat(),
        }

    @classmethod
    def from_snapshot(
        cls, snapshot: Dict[str, Any], list_name: str = DEFAULT_LIST_NAME
    ) -> "RemoteTask":
        """Rebuild a RemoteTask from a stored snapshot.

        Raises:
            ValidationError: The snapshot has no UID or malformed fields
        """
        data = dict(snapshot)
        data["modified"] = data.get("modified") or utcnow()
        data["list_name"] = data.get("list_name") or list_name
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as e:
            raise ValidationError(f"invalid task snapshot: {e}") from e


class DatabaseRemoteBackend:
    """Remote backend backed by another SQLite database file."""

    def __init__(self, db_path: Path, name: Optional[str] = None) -> None:
        """Initialize the remote.

        Args:
            db_path: Path to the remote SQLite file
            name: Display name used in status output
        """
        self.db_path = Path(db_path)
        self.name = name or f"sqlite:{self.db_path}"
        self._db_service: Optional[DatabaseService] = None
        self._store: Optional[SQLiteTaskStore] = None

    def _open(self) -> SQLiteTaskStore:
        if self._store is None:
            self._db_service = DatabaseService(self.db_path)
            self._store = SQLiteTaskStore(self._db_service)
        return self._store

    def is_available(self) -> bool:
        """Whether the remote file exists and holds a usable database.

        A missing file is reported unavailable without being created; the
        first explicit sync pass creates it.
        """
        if not self.db_path.exists():
            return False
        try:
            store = self._open()
            return store.db_service.is_initialized()
        except (SQLAlchemyError, SyncError, OSError) as e:
            logger.debug("Remote %s unavailable: %s", self.name, e)
            return False

    def fetch_changes(self, since: Optional[datetime] = None) -> List[RemoteTask]:
        """Return remote tasks modified strictly after ``since``."""
        store = self._open()
        try:
            with store.db_service.get_session() as session:
                stmt = select(Task).order_by(Task.modified_at, Task.id)
                if since is not None:
                    stmt = stmt.where(Task.modified_at > since)
                rows = session.scalars(stmt).all()
                return [
                    RemoteTask(
                        uid=row.uid,
                        summary=row.summary,
                        modified=row.modified_at,
                        list_name=row.task_list.name,
                        description=row.description,
                        status=row.status,
                        priority=row.priority,
                        categories=row.categories,
                        due_date=row.due_date,
                    )
                    for row in rows
                ]
        except SQLAlchemyError as e:
            raise RemoteError(f"fetch from {self.name} failed: {e}") from e

    def list_uids(self) -> List[str]:
        """Return the UIDs of every task currently on the remote."""
        store = self._open()
        try:
            with store.db_service.get_session() as session:
                return list(session.scalars(select(Task.uid)).all())
        except SQLAlchemyError as e:
            raise RemoteError(f"listing {self.name} failed: {e}") from e

    def push_task(self, snapshot: Dict[str, Any]) -> datetime:
        """Create or replace a remote task.

        The remote assigns its own modification time.

        Args:
            snapshot: Task snapshot, optionally carrying ``list_name``

        Returns:
            The remote modification time
        """
        store = self._open()
        remote = RemoteTask.from_snapshot(snapshot)
        fields = remote.task_fields()
        fields["modified_at"] = utcnow()
        try:
            if store.get_task(remote.uid) is None:
                task_list = store.get_or_create_list(remote.list_name)
                task = store.create_task(task_list.id, {"uid": remote.uid, **fields})
            else:
                task = store.update_task(remote.uid, fields)
        except SyncError as e:
            raise RemoteError(f"push of {remote.uid} to {self.name} failed: {e}") from e
        logger.debug("Pushed %s to %s", remote.uid, self.name)
        return task.modified_at

    def delete_task(self, uid: str) -> None:
        """Delete a remote task; a missing task is ignored."""
        store = self._open()
        try:
            if store.get_task(uid) is not None:
                store.delete_task(uid)
        except SyncError as e:
            raise RemoteError(f"delete of {uid} on {self.name} failed: {e}") from e

    def close(self) -> None:
        """Close the remote database."""
        if self._store is not None:
            self._store.close()
            self._store = None
            self._db_service = None
