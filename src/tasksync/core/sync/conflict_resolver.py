"""Conflict resolution: close the conflict, then apply a strategy to task data.

Strategies:
- server_wins: the local task takes the remote values; nothing is queued
- local_wins: the local task is kept and an update is queued to push it
- merge: equal fields are kept, differing fields take the value from the side
  modified most recently and categories are unioned; an update is queued
- keep_both: the local task takes the remote values and a copy holding the
  local values is created with a ``" (local)"`` suffix; a create is queued

When the remote task was deleted, server_wins deletes the local task and every
other strategy keeps it and queues an update that recreates it remotely.

Without a task store, or when the stored remote version cannot be read, only
the conflict status changes.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ...database.models import ResolutionStrategy, SyncConflict, Task, utcnow
from ...database.service import DatabaseService
from ..errors import StorageError, ValidationError
from ..interfaces import TaskStore
from ..remote import RemoteTask
from .conflicts import ConflictStore, is_remote_deletion, validate_strategy
from .queue import SyncQueue

logger = logging.getLogger(__name__)

LOCAL_COPY_SUFFIX = " (local)"

MERGE_FIELDS = ("summary", "description", "status", "priority", "due_date")


@dataclass
class ResolutionResult:
    """Outcome of resolving one conflict."""

    task_uid: str
    strategy: ResolutionStrategy
    applied: bool = False
    queued_operation: Optional[str] = None
    duplicate_uid: Optional[str] = None

    def get_summary(self) -> str:
        """Get a one-line description of the outcome."""
        parts = [f"Conflict resolved for task {self.task_uid} "]
        parts.append(f"using strategy {self.strategy.value}")
        if self.duplicate_uid:
            parts.append(f" (local copy: {self.duplicate_uid})")
        return "".join(parts)


def _split_categories(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [c.strip() for c in raw.split(",") if c.strip()]


def merge_categories(local: Optional[str], remote: Optional[str]) -> Optional[str]:
    """Union two comma-separated category strings, preserving first-seen order."""
    merged: List[str] = []
    for category in _split_categories(local) + _split_categories(remote):
        if category not in merged:
            merged.append(category)
    return ",".join(merged) if merged else None


def merge_fields(
    local: Dict[str, Any],
    local_modified: datetime,
    remote: Dict[str, Any],
    remote_modified: datetime,
) -> Dict[str, Any]:
    """Field-wise merge of two task field dicts.

    Args:
        local: Local task fields
        local_modified: Local modification time
        remote: Remote task fields
        remote_modified: Remote modification time

    Returns:
        Merged field dict (without ``modified_at``)
    """
    newer, older = (
        (remote, local) if remote_modified > local_modified else (local, remote)
    )
    merged: Dict[str, Any] = {}
    for name in MERGE_FIELDS:
        if local.get(name) == remote.get(name):
            merged[name] = local.get(name)
        else:
            merged[name] = newer.get(name, older.get(name))
    merged["categories"] = merge_categories(
        local.get("categories"), remote.get("categories")
    )
    return merged


def _task_fields(task: Task) -> Dict[str, Any]:
    return {
        "summary": task.summary,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "categories": task.categories,
        "due_date": task.due_date,
    }


class ConflictResolver:
    """Resolves pending conflicts."""

    def __init__(
        self,
        conflict_store: ConflictStore,
        store: Optional[TaskStore] = None,
        queue: Optional[SyncQueue] = None,
        db_service: Optional[DatabaseService] = None,
    ):
        """Initialize conflict resolver.

        Args:
            conflict_store: Where conflicts live
            store: Task store to apply strategies to; status-only when None
            queue: Sync queue for follow-up pushes
            db_service: Database service for baselines; defaults to the
                conflict store's
        """
        self.conflict_store = conflict_store
        self.store = store
        self.queue = queue
        self.db_service = db_service or conflict_store.db_service

    def resolve(self, task_uid: str, strategy: str) -> ResolutionResult:
        """Resolve the pending conflict for a task UID.

        The conflict is claimed with a conditional status update before any
        task data is touched, so of two concurrent resolvers only one applies
        its strategy. If applying fails the conflict is reopened.

        Args:
            task_uid: Task UID
            strategy: Strategy name

        Returns:
            ResolutionResult describing what was changed

        Raises:
            InvalidStrategyError: Unknown strategy, nothing touched
            ConflictNotFoundError: No pending conflict for the UID, nothing
                touched
        """
        resolved_with = validate_strategy(strategy)
        conflict = self.conflict_store.get_conflict_by_uid(task_uid)
        self.conflict_store.resolve_conflict(task_uid, resolved_with.value)

        result = ResolutionResult(task_uid=task_uid, strategy=resolved_with)
        if self.store is not None:
            try:
                self._apply(self.store, conflict, resolved_with, result)
            except Exception:
                self.conflict_store.reopen_conflict(conflict.id)
                raise

        logger.info(result.get_summary())
        return result

    def _remote_version(self, conflict: SyncConflict) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(conflict.remote_version or "{}")
        except ValueError as e:
            self._warn_unreadable(conflict, e)
            return None
        if not isinstance(data, dict):
            self._warn_unreadable(conflict, "not a JSON object")
            return None
        return data

    @staticmethod
    def _warn_unreadable(conflict: SyncConflict, reason: Any) -> None:
        logger.warning(
            "Remote version of %s is unreadable, only the conflict status "
            "changes: %s",
            conflict.task_uid,
            reason,
        )

    def _apply_remote_deleted(
        self,
        store: TaskStore,
        conflict: SyncConflict,
        strategy: ResolutionStrategy,
        result: ResolutionResult,
    ) -> None:
        local = store.get_task(conflict.task_uid)
        if strategy == ResolutionStrategy.SERVER_WINS:
            if local is not None:
                store.delete_task(local.uid)
        elif local is not None:
            # Pushing the local task recreates it remotely
            self._queue(local, "update", result)
        self.db_service.delete_baseline(conflict.task_uid)
        result.applied = True

    def _apply(
        self,
        store: TaskStore,
        conflict: SyncConflict,
        strategy: ResolutionStrategy,
        result: ResolutionResult,
    ) -> None:
        data = self._remote_version(conflict)
        if data is None:
            return
        if is_remote_deletion(data):
            self._apply_remote_deleted(store, conflict, strategy, result)
            return
        try:
            remote = RemoteTask.from_snapshot({**data, "uid": conflict.task_uid})
        except ValidationError as e:
            self._warn_unreadable(conflict, e)
            return
        local = store.get_task(conflict.task_uid)

        if local is None:
            self._apply_without_local(store, conflict, strategy, remote, result)
        elif strategy == ResolutionStrategy.SERVER_WINS:
            store.update_task(local.uid, remote.task_fields())
        elif strategy == ResolutionStrategy.LOCAL_WINS:
            self._queue(local, "update", result)
        elif strategy == ResolutionStrategy.MERGE:
            remote_fields = remote.task_fields()
            merged = merge_fields(
                _task_fields(local), local.modified_at, remote_fields, remote.modified
            )
            merged["modified_at"] = utcnow()
            updated = store.update_task(local.uid, merged)
            self._queue(updated, "update", result)
        elif strategy == ResolutionStrategy.KEEP_BOTH:
            local_fields = _task_fields(local)
            local_fields["summary"] = f"{local.summary}{LOCAL_COPY_SUFFIX}"
            duplicate = store.create_task(local.list_id, local_fields)
            result.duplicate_uid = duplicate.uid
            store.update_task(local.uid, remote.task_fields())
            self._queue(duplicate, "create", result)

        # The remote version in the conflict is now known locally
        self.db_service.set_baseline(conflict.task_uid, remote.modified)
        result.applied = True

    def _apply_without_local(
        self,
        store: TaskStore,
        conflict: SyncConflict,
        strategy: ResolutionStrategy,
        remote: RemoteTask,
        result: ResolutionResult,
    ) -> None:
        if strategy == ResolutionStrategy.LOCAL_WINS:
            # The local side deleted the task; push the deletion
            if self.queue is None:
                logger.warning(
                    "No sync queue configured, delete for %s will not be pushed",
                    conflict.task_uid,
                )
                return
            try:
                self.queue.queue_operation(
                    0, conflict.task_uid, remote.summary, conflict.list_id, "delete"
                )
                result.queued_operation = "delete"
            except StorageError as e:
                logger.warning(
                    "Failed to queue delete for %s: %s", conflict.task_uid, e
                )
            return

        task_list = store.get_or_create_list(remote.list_name)
        store.create_task(
            task_list.id, {"uid": conflict.task_uid, **remote.task_fields()}
        )

    def _queue(self, task: Task, op_type: str, result: ResolutionResult) -> None:
        if self.queue is None:
            logger.warning(
                "No sync queue configured, %s for %s will not be pushed",
                op_type,
                task.uid,
            )
            return
        try:
            self.queue.queue_operation(
                task.id, task.uid, task.summary, task.list_id, op_type
            )
            result.queued_operation = op_type
        except StorageError as e:
            logger.warning("Failed to queue %s for %s: %s", op_type, task.uid, e)
