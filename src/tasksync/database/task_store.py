"""SQLite-backed task store."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.errors import StorageError, TaskNotFoundError, ValidationError
from .models import Task, TaskList, TaskStatus, utcnow
from .service import DatabaseService

logger = logging.getLogger(__name__)

DEFAULT_LIST_NAME = "Tasks"

EDITABLE_FIELDS = {
    "uid",
    "summary",
    "description",
    "status",
    "priority",
    "categories",
    "due_date",
    "modified_at",
}


def _validate(task_data: Dict[str, Any]) -> None:
    unknown = set(task_data) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"unknown task fields: {', '.join(sorted(unknown))}")

    if "summary" in task_data and not (task_data["summary"] or "").strip():
        raise ValidationError("task summary must not be empty")

    status = task_data.get("status")
    if status is not None and status not in {s.value for s in TaskStatus}:
        raise ValidationError(f"invalid task status: {status}")

    priority = task_data.get("priority")
    if priority is not None and not 0 <= int(priority) <= 9:
        raise ValidationError(f"priority must be between 0 and 9: {priority}")


class SQLiteTaskStore:
    """Task persistence over the shared SQLite file.

    Besides the core CRUD contract this store offers local-id lookups and
    storage maintenance.
    """

    def __init__(self, db_service: DatabaseService) -> None:
        """Initialize the store.

        Args:
            db_service: Database service owning the engine
        """
        self.db_service = db_service

    # =========================================================================
    # Lists
    # =========================================================================

    def get_lists(self) -> List[TaskList]:
        """Get all task lists ordered by name."""
        try:
            with self.db_service.get_session() as session:
                stmt = select(TaskList).order_by(TaskList.name)
                return list(session.scalars(stmt).all())
        except SQLAlchemyError as e:
            raise StorageError(f"failed to load lists: {e}") from e

    def get_list_by_name(self, name: str) -> Optional[TaskList]:
        """Get a task list by name."""
        try:
            with self.db_service.get_session() as session:
                return session.scalar(select(TaskList).where(TaskList.name == name))
        except SQLAlchemyError as e:
            raise StorageError(f"failed to load list {name!r}: {e}") from e

    def get_or_create_list(self, name: str) -> TaskList:
        """Get a list by name, creating it when missing.

        Args:
            name: List name

        Returns:
            Existing or newly created TaskList
        """
        name = name.strip()
        if not name:
            raise ValidationError("list name must not be empty")

        try:
            with self.db_service.get_session() as session:
                task_list = session.scalar(
                    select(TaskList).where(TaskList.name == name)
                )
                if task_list is not None:
                    return task_list

                task_list = TaskList(name=name)
                session.add(task_list)
                session.commit()
                session.refresh(task_list)
                logger.info("Created list: %s (ID: %s)", name, task_list.id)
                return task_list
        except SQLAlchemyError as e:
            raise StorageError(f"failed to create list {name!r}: {e}") from e

    # =========================================================================
    # Tasks
    # =========================================================================

    def get_task(self, uid: str) -> Optional[Task]:
        """Get a task by UID."""
        try:
            with self.db_service.get_session() as session:
                return session.scalar(select(Task).where(Task.uid == uid))
        except SQLAlchemyError as e:
            raise StorageError(f"failed to load task {uid}: {e}") from e

    def get_tasks(self, list_id: Optional[int] = None) -> List[Task]:
        """Get tasks, oldest first.

        Args:
            list_id: Optional list filter

        Returns:
            List of Task objects
        """
        try:
            with self.db_service.get_session() as session:
                stmt = select(Task).order_by(Task.created_at, Task.id)
                if list_id is not None:
                    stmt = stmt.where(Task.list_id == list_id)
                return list(session.scalars(stmt).all())
        except SQLAlchemyError as e:
            raise StorageError(f"failed to load tasks: {e}") from e

    def create_task(self, list_id: int, task_data: Dict[str, Any]) -> Task:
        """Create a new task.

        Args:
            list_id: Owning list ID
            task_data: Task fields; ``summary`` is required

        Returns:
            Created Task object
        """
        if "summary" not in task_data:
            raise ValidationError("task summary is required")
        _validate(task_data)

        try:
            with self.db_service.get_session() as session:
                if session.get(TaskList, list_id) is None:
                    raise ValidationError(f"list not found: {list_id}")

                now = utcnow()
                fields = dict(task_data)
                fields.setdefault("modified_at", now)
                task = Task(list_id=list_id, created_at=now, **fields)
                session.add(task)
                session.commit()
                session.refresh(task)
                logger.info("Created task: %s (ID: %s)", task.summary, task.id)
                return task
        except IntegrityError as e:
            raise ValidationError(f"task already exists: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"failed to create task: {e}") from e

    def update_task(self, uid: str, task_data: Dict[str, Any]) -> Task:
        """Update an existing task.

        ``modified_at`` is bumped to now unless the caller supplies it.

        Args:
            uid: Task UID
            task_data: Fields to update

        Returns:
            Updated Task object
        """
        _validate(task_data)

        try:
            with self.db_service.get_session() as session:
                task = session.scalar(select(Task).where(Task.uid == uid))
                if task is None:
                    raise TaskNotFoundError(f"task not found: {uid}")

                for key, value in task_data.items():
                    setattr(task, key, value)
                if "modified_at" not in task_data:
                    task.modified_at = utcnow()

                session.commit()
                session.refresh(task)
                logger.debug("Updated task: %s", task.uid)
                return task
        except SQLAlchemyError as e:
            raise StorageError(f"failed to update task {uid}: {e}") from e

    def delete_task(self, uid: str) -> None:
        """Delete a task by UID."""
        try:
            with self.db_service.get_session() as session:
                task = session.scalar(select(Task).where(Task.uid == uid))
                if task is None:
                    raise TaskNotFoundError(f"task not found: {uid}")
                session.delete(task)
                session.commit()
                logger.info("Deleted task: %s", uid)
        except SQLAlchemyError as e:
            raise StorageError(f"failed to delete task {uid}: {e}") from e

    # =========================================================================
    # Local-id lookups
    # =========================================================================

    def get_task_by_local_id(self, local_id: int) -> Optional[Task]:
        """Get a task by its local numeric id."""
        try:
            with self.db_service.get_session() as session:
                return session.get(Task, local_id)
        except SQLAlchemyError as e:
            raise StorageError(f"failed to load task #{local_id}: {e}") from e

    def get_task_local_id(self, uid: str) -> int:
        """Get the local numeric id for a UID."""
        task = self.get_task(uid)
        if task is None:
            raise TaskNotFoundError(f"task not found: {uid}")
        return task.id

    # =========================================================================
    # Maintenance
    # =========================================================================

    def vacuum(self) -> None:
        """Compact the database file."""
        self.db_service.vacuum()

    def get_storage_stats(self) -> Dict[str, Any]:
        """Return database statistics."""
        return self.db_service.get_statistics()

    def close(self) -> None:
        """Close the underlying database connection."""
        self.db_service.close()
