"""Durable store of detected local/remote divergences."""

import logging
from typing import Any, Dict, List

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from ...database.models import (
    ConflictStatus,
    ResolutionStrategy,
    SyncConflict,
    utcnow,
)
from ...database.service import DatabaseService
from ..errors import (
    ConflictNotFoundError,
    InvalidStrategyError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Stored as the remote version of a conflict whose remote task was deleted
REMOTE_DELETED_KEY = "deleted"


def is_remote_deletion(remote_version: Dict[str, Any]) -> bool:
    """Whether a decoded remote version records a remote deletion."""
    return bool(remote_version.get(REMOTE_DELETED_KEY))


def validate_strategy(strategy: str) -> ResolutionStrategy:
    """Parse a strategy name.

    Raises:
        InvalidStrategyError: If the name is not a known strategy
    """
    try:
        return ResolutionStrategy(strategy)
    except ValueError as e:
        raise InvalidStrategyError(strategy, ResolutionStrategy.values()) from e


class ConflictStore:
    """Conflicts stored in the ``sync_conflicts`` table.

    At most one pending conflict exists per task UID. Rows are never
    deleted; resolving a conflict only changes its status.
    """

    def __init__(self, db_service: DatabaseService) -> None:
        """Initialize the store.

        Args:
            db_service: Database service shared with the sync queue
        """
        self.db_service = db_service

    def add_conflict(self, conflict: SyncConflict) -> SyncConflict:
        """Insert a new pending conflict.

        Args:
            conflict: Unsaved conflict row; ``status`` is forced to pending

        Returns:
            The stored conflict

        Raises:
            ValidationError: If a pending conflict already exists for the UID
        """
        if not conflict.task_uid:
            raise ValidationError("conflict requires a task UID")

        try:
            with self.db_service.get_session() as session:
                existing = session.scalar(
                    select(SyncConflict.id).where(
                        SyncConflict.task_uid == conflict.task_uid,
                        SyncConflict.status == ConflictStatus.PENDING.value,
                    )
                )
                if existing is not None:
                    raise ValidationError(
                        f"pending conflict already exists for {conflict.task_uid}"
                    )

                conflict.status = ConflictStatus.PENDING.value
                conflict.resolution = None
                conflict.resolved_at = None
                if conflict.detected_at is None:
                    conflict.detected_at = utcnow()
                session.add(conflict)
                session.commit()
                session.refresh(conflict)
                logger.info(
                    "Conflict detected for task %s (%s)",
                    conflict.task_uid,
                    conflict.task_summary,
                )
                return conflict
        except SQLAlchemyError as e:
            raise StorageError(f"failed to add conflict: {e}") from e

    def get_conflicts(self) -> List[SyncConflict]:
        """Get pending conflicts, most recently detected first."""
        try:
            with self.db_service.get_session() as session:
                stmt = (
                    select(SyncConflict)
                    .where(SyncConflict.status == ConflictStatus.PENDING.value)
                    .order_by(SyncConflict.detected_at.desc(), SyncConflict.id.desc())
                )
                return list(session.scalars(stmt).all())
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read conflicts: {e}") from e

    def get_conflict_by_uid(self, task_uid: str) -> SyncConflict:
        """Get the pending conflict for a task UID.

        Raises:
            ConflictNotFoundError: If no pending conflict exists
        """
        try:
            with self.db_service.get_session() as session:
                conflict = session.scalar(
                    select(SyncConflict).where(
                        SyncConflict.task_uid == task_uid,
                        SyncConflict.status == ConflictStatus.PENDING.value,
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read conflict {task_uid}: {e}") from e

        if conflict is None:
            raise ConflictNotFoundError(task_uid)
        return conflict

    def get_conflict_count(self) -> int:
        """Count pending conflicts."""
        try:
            with self.db_service.get_session() as session:
                count = session.scalar(
                    select(func.count())
                    .select_from(SyncConflict)
                    .where(SyncConflict.status == ConflictStatus.PENDING.value)
                )
                return count or 0
        except SQLAlchemyError as e:
            raise StorageError(f"failed to count conflicts: {e}") from e

    def has_pending(self, task_uid: str) -> bool:
        """Whether a pending conflict exists for ``task_uid``."""
        try:
            self.get_conflict_by_uid(task_uid)
        except ConflictNotFoundError:
            return False
        return True

    def get_history(self, task_uid: str) -> List[SyncConflict]:
        """All conflicts ever recorded for a UID, newest first."""
        try:
            with self.db_service.get_session() as session:
                stmt = (
                    select(SyncConflict)
                    .where(SyncConflict.task_uid == task_uid)
                    .order_by(
                        SyncConflict.detected_at.desc(), SyncConflict.id.desc()
                    )
                )
                return list(session.scalars(stmt).all())
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read history of {task_uid}: {e}") from e

    def resolve_conflict(self, task_uid: str, strategy: str) -> None:
        """Mark the pending conflict for a UID as resolved.

        The strategy is validated before storage is touched. The status change
        is a single conditional update, so a conflict already resolved by
        another process is reported as not found.

        Args:
            task_uid: Task UID
            strategy: Resolution strategy name

        Raises:
            InvalidStrategyError: Unknown strategy
            ConflictNotFoundError: No pending conflict for the UID
        """
        resolved_with = validate_strategy(strategy)

        try:
            with self.db_service.get_session() as session:
                result = session.execute(
                    update(SyncConflict)
                    .where(
                        SyncConflict.task_uid == task_uid,
                        SyncConflict.status == ConflictStatus.PENDING.value,
                    )
                    .values(
                        status=ConflictStatus.RESOLVED.value,
                        resolution=resolved_with.value,
                        resolved_at=utcnow(),
                    )
                )
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to resolve conflict {task_uid}: {e}") from e

        if result.rowcount == 0:
            raise ConflictNotFoundError(task_uid)

        logger.info(
            "Conflict resolved for task %s using strategy %s",
            task_uid,
            resolved_with.value,
        )

    def reopen_conflict(self, conflict_id: int) -> None:
        """Return a resolved conflict to pending.

        Used when applying a strategy fails after the conflict was claimed.
        Nothing happens if another pending conflict exists for the same UID.
        """
        try:
            with self.db_service.get_session() as session:
                conflict = session.get(SyncConflict, conflict_id)
                if conflict is None:
                    return
                other = session.scalar(
                    select(SyncConflict.id).where(
                        SyncConflict.task_uid == conflict.task_uid,
                        SyncConflict.status == ConflictStatus.PENDING.value,
                    )
                )
                if other is not None:
                    return
                conflict.status = ConflictStatus.PENDING.value
                conflict.resolution = None
                conflict.resolved_at = None
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to reopen conflict {conflict_id}: {e}") from e

        logger.warning("Conflict for task %s reopened", conflict.task_uid)
