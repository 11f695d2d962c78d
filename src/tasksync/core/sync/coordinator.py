"""Task store wrapper that records every successful mutation in the sync queue."""

import logging
from typing import Any, Callable, Dict, List, Optional

from ...database.models import OperationType, Task, TaskList
from ..errors import SyncError, TaskNotFoundError, UnsupportedCapabilityError
from ..interfaces import LocalIdLookup, StorageMaintenance, TaskStore
from .queue import SyncQueue

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Presents the TaskStore contract and queues one operation per mutation.

    The wrapped store is always mutated first. An operation is queued only
    when the mutation succeeded; a failure to queue is logged and swallowed so
    the caller still sees the successful mutation.
    """

    def __init__(
        self,
        store: TaskStore,
        queue: SyncQueue,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Underlying task store
            queue: Sync queue receiving mutation intents
            on_change: Called after every successful mutation, e.g. to wake
                the sync daemon; its failures are logged and swallowed
        """
        self.store = store
        self.queue = queue
        self.on_change = on_change

    def _enqueue(
        self, task_id: int, uid: str, summary: str, list_id: int, op: OperationType
    ) -> None:
        try:
            self.queue.queue_operation(task_id, uid, summary, list_id, op.value)
        except SyncError as e:
            logger.warning("Failed to queue %s for task %s: %s", op.value, uid, e)
        self._changed()

    def _changed(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change()
        except Exception as e:
            logger.warning("Change callback failed: %s", e)

    # =========================================================================
    # Mutations
    # =========================================================================

    def create_task(self, list_id: int, task_data: Dict[str, Any]) -> Task:
        """Create a task and queue a ``create`` operation."""
        task = self.store.create_task(list_id, task_data)
        self._enqueue(
            task.id, task.uid, task.summary, task.list_id, OperationType.CREATE
        )
        return task

    def update_task(self, uid: str, task_data: Dict[str, Any]) -> Task:
        """Update a task and queue an ``update`` operation."""
        task = self.store.update_task(uid, task_data)
        self._enqueue(
            task.id, task.uid, task.summary, task.list_id, OperationType.UPDATE
        )
        return task

    def delete_task(self, uid: str) -> None:
        """Delete a task and queue a ``delete`` operation.

        The summary is captured before deletion so the queue entry stays
        readable; it falls back to ``Unknown`` if the lookup fails.
        """
        summary = "Unknown"
        task_id = 0
        list_id = 0
        try:
            existing = self.store.get_task(uid)
        except SyncError as e:
            logger.debug("Could not look up task %s before delete: %s", uid, e)
            existing = None
        if existing is not None:
            summary = existing.summary
            task_id = existing.id
            list_id = existing.list_id

        self.store.delete_task(uid)
        self._enqueue(task_id, uid, summary, list_id, OperationType.DELETE)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_task(self, uid: str) -> Optional[Task]:
        """Get a task by UID."""
        return self.store.get_task(uid)

    def get_tasks(self, list_id: Optional[int] = None) -> List[Task]:
        """Get tasks, optionally for one list."""
        return self.store.get_tasks(list_id)

    def get_lists(self) -> List[TaskList]:
        """Get all lists."""
        return self.store.get_lists()

    def get_or_create_list(self, name: str) -> TaskList:
        """Get or create a list by name. Lists are not synced."""
        return self.store.get_or_create_list(name)

    # =========================================================================
    # Optional capabilities
    # =========================================================================

    def _local_ids(self) -> LocalIdLookup:
        if not isinstance(self.store, LocalIdLookup):
            raise UnsupportedCapabilityError(
                "underlying store does not support local-id lookups"
            )
        return self.store

    def _maintenance(self) -> StorageMaintenance:
        if not isinstance(self.store, StorageMaintenance):
            raise UnsupportedCapabilityError(
                "underlying store does not support storage maintenance"
            )
        return self.store

    def get_task_by_local_id(self, local_id: int) -> Optional[Task]:
        """Look a task up by local id, if the store supports it."""
        return self._local_ids().get_task_by_local_id(local_id)

    def get_task_local_id(self, uid: str) -> int:
        """Get the local id of a UID, if the store supports it."""
        return self._local_ids().get_task_local_id(uid)

    def resolve_task(self, ref: str) -> Task:
        """Find a task by UID, or by local id when ``ref`` is numeric."""
        task = self.store.get_task(ref)
        if task is None and ref.isdigit() and isinstance(self.store, LocalIdLookup):
            task = self.store.get_task_by_local_id(int(ref))
        if task is None:
            raise TaskNotFoundError(f"task not found: {ref}")
        return task

    def vacuum(self) -> None:
        """Compact storage, if the store supports it."""
        self._maintenance().vacuum()

    def get_storage_stats(self) -> Dict[str, Any]:
        """Storage statistics, if the store supports them."""
        return self._maintenance().get_storage_stats()

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self) -> None:
        """Close the queue, then the store.

        A queue close failure is logged and does not prevent the store close.
        """
        try:
            self.queue.close()
        except Exception as e:
            logger.warning("Failed to close sync queue: %s", e)
        self.store.close()
