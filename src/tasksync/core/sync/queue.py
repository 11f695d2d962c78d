"""Durable FIFO of local mutations awaiting remote propagation."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from ...database.models import OperationType, SyncOperation, Task, utcnow
from ...database.service import DatabaseService
from ..errors import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

UNKNOWN_SUMMARY = "Unknown"


@dataclass
class PendingOperation:
    """A queued operation as shown to users."""

    id: int
    task_id: int
    task_uid: str
    task_summary: str
    list_id: int
    operation_type: str
    retry_count: int
    last_attempt_at: Optional[datetime]
    created_at: datetime


class SyncQueue:
    """Queue of pending operations stored in the ``sync_queue`` table.

    Rows are never rewritten except for their retry bookkeeping. Processing
    order is ``created_at`` ascending with ``id`` breaking ties.
    """

    def __init__(self, db_service: DatabaseService) -> None:
        """Initialize the queue.

        Args:
            db_service: Database service shared with the task store
        """
        self.db_service = db_service
        self._closed = False

    def queue_operation(
        self,
        task_id: int,
        task_uid: str,
        summary: str,
        list_id: int,
        op_type: str,
    ) -> SyncOperation:
        """Append one operation to the queue.

        Args:
            task_id: Local task id (0 if unknown)
            task_uid: Remote task UID (may be empty)
            summary: Task summary captured now so it survives deletion
            list_id: Owning list id
            op_type: One of ``create``, ``update``, ``delete``

        Returns:
            The stored SyncOperation

        Raises:
            ValidationError: If ``op_type`` is not a known operation
            StorageError: If the row could not be written
        """
        try:
            operation_type = OperationType(op_type).value
        except ValueError as e:
            raise ValidationError(f"invalid operation type: {op_type}") from e

        try:
            with self.db_service.get_session() as session:
                operation = SyncOperation(
                    task_id=task_id or 0,
                    task_uid=task_uid or "",
                    task_summary=summary or "",
                    list_id=list_id or 0,
                    operation_type=operation_type,
                    created_at=utcnow(),
                )
                session.add(operation)
                session.commit()
                session.refresh(operation)
                logger.debug(
                    "Queued %s for task %s (op ID: %s)",
                    operation_type,
                    task_uid or task_id,
                    operation.id,
                )
                return operation
        except SQLAlchemyError as e:
            raise StorageError(f"failed to queue operation: {e}") from e

    def get_pending_operations(self) -> List[PendingOperation]:
        """Get all queued operations, oldest first.

        The summary shown is the live task's summary when the task still
        exists, then the summary captured at enqueue time, then ``Unknown``.
        """
        try:
            with self.db_service.get_session() as session:
                stmt = (
                    select(SyncOperation, Task.summary)
                    .outerjoin(Task, Task.id == SyncOperation.task_id)
                    .order_by(SyncOperation.created_at, SyncOperation.id)
                )
                rows = session.execute(stmt).all()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read sync queue: {e}") from e

        return [
            PendingOperation(
                id=op.id,
                task_id=op.task_id,
                task_uid=op.task_uid,
                task_summary=live_summary or op.task_summary or UNKNOWN_SUMMARY,
                list_id=op.list_id,
                operation_type=op.operation_type,
                retry_count=op.retry_count,
                last_attempt_at=op.last_attempt_at,
                created_at=op.created_at,
            )
            for op, live_summary in rows
        ]

    def get_pending_count(self) -> int:
        """Count queued operations."""
        try:
            with self.db_service.get_session() as session:
                count = session.scalar(
                    select(func.count()).select_from(SyncOperation)
                )
                return count or 0
        except SQLAlchemyError as e:
            raise StorageError(f"failed to count sync queue: {e}") from e

    def has_pending_for_uid(self, task_uid: str) -> bool:
        """Whether any queued operation targets ``task_uid``."""
        try:
            with self.db_service.get_session() as session:
                stmt = (
                    select(SyncOperation.id)
                    .where(SyncOperation.task_uid == task_uid)
                    .limit(1)
                )
                return session.scalar(stmt) is not None
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read sync queue: {e}") from e

    def remove_operation(self, op_id: int) -> None:
        """Delete one operation after successful remote propagation."""
        try:
            with self.db_service.get_session() as session:
                result = session.execute(
                    delete(SyncOperation).where(SyncOperation.id == op_id)
                )
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to remove operation {op_id}: {e}") from e

        if result.rowcount == 0:
            raise NotFoundError(f"operation not found: {op_id}")

    def mark_attempt(self, op_id: int) -> None:
        """Record a failed propagation attempt."""
        try:
            with self.db_service.get_session() as session:
                result = session.execute(
                    update(SyncOperation)
                    .where(SyncOperation.id == op_id)
                    .values(
                        retry_count=SyncOperation.retry_count + 1,
                        last_attempt_at=utcnow(),
                    )
                )
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to update operation {op_id}: {e}") from e

        if result.rowcount == 0:
            raise NotFoundError(f"operation not found: {op_id}")

    def clear_queue(self) -> int:
        """Delete every queued operation.

        Returns:
            Number of operations removed
        """
        try:
            with self.db_service.get_session() as session:
                result = session.execute(delete(SyncOperation))
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to clear sync queue: {e}") from e

        removed = result.rowcount or 0
        logger.info("Sync queue cleared: %d operations removed", removed)
        return removed

    def close(self) -> None:
        """Release the queue's database resources."""
        if self._closed:
            return
        self._closed = True
        self.db_service.close()
