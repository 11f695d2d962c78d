"""One reconciliation pass between the local replica and a remote backend.

A pass runs in two stages:

1. Pull: fetch remote tasks changed since the last sync and compare each with
   its baseline. Remote-only changes are applied locally. A task changed on
   both sides since the baseline becomes a pending conflict. A task with a
   baseline that no longer exists remotely is deleted locally, or becomes a
   conflict when it has queued local changes.
2. Push: drain the sync queue oldest-first. Operations for UIDs with a pending
   conflict are held back. A successful push removes the operation and records
   the new baseline; a failure bumps its retry count.

Remote calls go through a circuit breaker so a dead remote is not hammered
on every tick.
"""

import json
import logging
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Any, Dict, List, Optional

from ...database.models import OperationType, SyncConflict, Task, utcnow
from ...database.service import DatabaseService
from ..errors import SyncError
from ..interfaces import RemoteBackend, TaskStore
from ..remote import RemoteTask
from .circuit_breaker import CircuitBreaker
from .conflicts import REMOTE_DELETED_KEY, ConflictStore
from .queue import PendingOperation, SyncQueue

logger = logging.getLogger(__name__)

COMPARED_FIELDS = (
    "summary",
    "description",
    "status",
    "priority",
    "categories",
    "due_date",
)


@dataclass
class ReconcileResult:
    """Counters for one reconciliation pass."""

    remote_changes: int = 0
    remote_applied: int = 0
    remote_deleted: int = 0
    operations_pushed: int = 0
    operations_failed: int = 0
    operations_held: int = 0
    new_conflicts: List[str] = dataclass_field(default_factory=list)
    errors: List[str] = dataclass_field(default_factory=list)
    circuit_open: bool = False

    @property
    def success(self) -> bool:
        """Whether the pass finished without errors."""
        return not self.errors

    @property
    def has_changes(self) -> bool:
        """Whether the pass moved any data or found a conflict."""
        return bool(
            self.remote_applied
            or self.remote_deleted
            or self.operations_pushed
            or self.new_conflicts
        )

    def add_error(self, error: str) -> None:
        """Add an error message."""
        self.errors.append(error)
        logger.error(error)

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of the pass."""
        return {
            "success": self.success,
            "remote_changes": self.remote_changes,
            "remote_applied": self.remote_applied,
            "remote_deleted": self.remote_deleted,
            "pushed": self.operations_pushed,
            "failed": self.operations_failed,
            "held": self.operations_held,
            "conflicts": len(self.new_conflicts),
            "errors": len(self.errors),
        }


def _same_content(local: Task, remote: RemoteTask) -> bool:
    remote_fields = remote.task_fields()
    return all(getattr(local, name) == remote_fields[name] for name in COMPARED_FIELDS)


class Reconciler:
    """Runs reconciliation passes for one local replica."""

    def __init__(
        self,
        db_service: DatabaseService,
        store: TaskStore,
        remote: RemoteBackend,
        queue: Optional[SyncQueue] = None,
        conflict_store: Optional[ConflictStore] = None,
        breaker: Optional[CircuitBreaker] = None,
        max_retries: int = 5,
    ):
        """Initialize reconciler.

        Args:
            db_service: Database service holding metadata and baselines
            store: Local task store
            remote: Remote backend
            queue: Sync queue to drain
            conflict_store: Where detected conflicts are recorded
            breaker: Circuit breaker shared across passes
            max_retries: Operations with this many failed attempts are held
        """
        self.db_service = db_service
        self.store = store
        self.remote = remote
        self.queue = queue or SyncQueue(db_service)
        self.conflict_store = conflict_store or ConflictStore(db_service)
        self.breaker = breaker or CircuitBreaker()
        self.max_retries = max_retries

    def run(self) -> ReconcileResult:
        """Run one pass.

        ``last_sync`` is advanced to the start of the pass when the pull
        stage succeeded.
        """
        result = ReconcileResult()
        started = utcnow()

        if not self.breaker.can_proceed():
            result.circuit_open = True
            result.add_error(f"Remote {self.remote.name} skipped: circuit open")
            return result

        pulled = self._pull(result)
        self._push(result)

        if pulled:
            self.db_service.set_last_sync_time(started)

        logger.info("Reconciliation finished: %s", result.get_summary())
        return result

    # =========================================================================
    # Pull
    # =========================================================================

    def _pull(self, result: ReconcileResult) -> bool:
        since = self.db_service.get_last_sync_time()
        try:
            remote_tasks = self.remote.fetch_changes(since)
            remote_uids = set(self.remote.list_uids())
        except Exception as e:
            self.breaker.record_failure()
            result.add_error(f"Fetch from {self.remote.name} failed: {e}")
            return False
        self.breaker.record_success()

        result.remote_changes = len(remote_tasks)
        for remote_task in remote_tasks:
            try:
                self._apply_remote(remote_task, result)
            except SyncError as e:
                result.add_error(f"Applying remote task {remote_task.uid} failed: {e}")

        try:
            gone = [
                uid
                for uid in self.db_service.get_baseline_uids()
                if uid not in remote_uids
            ]
        except SyncError as e:
            result.add_error(f"Reading baselines failed: {e}")
            return True
        for uid in gone:
            try:
                self._apply_remote_deletion(uid, result)
            except SyncError as e:
                result.add_error(f"Applying remote deletion of {uid} failed: {e}")
        return True

    def _apply_remote(self, remote_task: RemoteTask, result: ReconcileResult) -> None:
        uid = remote_task.uid
        baseline = self.db_service.get_baseline(uid)
        if baseline is not None and remote_task.modified <= baseline.remote_modified:
            return

        local = self.store.get_task(uid)
        local_pending = self.queue.has_pending_for_uid(uid)

        if local is None:
            if local_pending:
                # Deleted here, changed there
                self._record_conflict(None, remote_task, result)
                return
            task_list = self.store.get_or_create_list(remote_task.list_name)
            self.store.create_task(
                task_list.id, {"uid": uid, **remote_task.task_fields()}
            )
            self.db_service.set_baseline(uid, remote_task.modified)
            result.remote_applied += 1
            return

        if _same_content(local, remote_task):
            self.db_service.set_baseline(uid, remote_task.modified)
            return

        if local_pending:
            self._record_conflict(local, remote_task, result)
            return

        if baseline is None and remote_task.modified <= local.modified_at:
            # First sighting and the local copy is newer
            self.db_service.set_baseline(uid, remote_task.modified)
            return

        self.store.update_task(uid, remote_task.task_fields())
        self.db_service.set_baseline(uid, remote_task.modified)
        result.remote_applied += 1

    def _record_conflict(
        self,
        local: Optional[Task],
        remote_task: RemoteTask,
        result: ReconcileResult,
    ) -> None:
        if self.conflict_store.has_pending(remote_task.uid):
            logger.debug("Conflict already pending for %s", remote_task.uid)
            return

        remote_snapshot = remote_task.to_snapshot()
        remote_snapshot["list_name"] = remote_task.list_name
        conflict = SyncConflict(
            task_uid=remote_task.uid,
            task_summary=local.summary if local else remote_task.summary,
            list_id=local.list_id if local else 0,
            local_version=json.dumps(local.to_snapshot() if local else {}),
            remote_version=json.dumps(remote_snapshot),
            local_modified=local.modified_at if local else utcnow(),
            remote_modified=remote_task.modified,
            detected_at=utcnow(),
        )
        self.conflict_store.add_conflict(conflict)
        result.new_conflicts.append(remote_task.uid)

    def _apply_remote_deletion(self, uid: str, result: ReconcileResult) -> None:
        local = self.store.get_task(uid)
        if local is not None and self.queue.has_pending_for_uid(uid):
            # Deleted there, changed here
            self._record_remote_deletion(local, result)
            return

        if local is not None:
            self.store.delete_task(uid)
            result.remote_deleted += 1
            logger.info("Task %s deleted on remote, removed locally", uid)
        self.db_service.delete_baseline(uid)

    def _record_remote_deletion(self, local: Task, result: ReconcileResult) -> None:
        if self.conflict_store.has_pending(local.uid):
            logger.debug("Conflict already pending for %s", local.uid)
            return

        conflict = SyncConflict(
            task_uid=local.uid,
            task_summary=local.summary,
            list_id=local.list_id,
            local_version=json.dumps(local.to_snapshot()),
            remote_version=json.dumps({"uid": local.uid, REMOTE_DELETED_KEY: True}),
            local_modified=local.modified_at,
            remote_modified=utcnow(),
            detected_at=utcnow(),
        )
        self.conflict_store.add_conflict(conflict)
        result.new_conflicts.append(local.uid)

    # =========================================================================
    # Push
    # =========================================================================

    def _push(self, result: ReconcileResult) -> None:
        try:
            operations = self.queue.get_pending_operations()
        except SyncError as e:
            result.add_error(f"Reading sync queue failed: {e}")
            return

        list_names = {tl.id: tl.name for tl in self.store.get_lists()}

        for op in operations:
            if op.retry_count >= self.max_retries:
                result.operations_held += 1
                continue
            if op.task_uid and self.conflict_store.has_pending(op.task_uid):
                result.operations_held += 1
                continue
            if not self.breaker.can_proceed():
                result.circuit_open = True
                result.add_error(
                    f"Remote {self.remote.name} circuit opened, push stopped"
                )
                return

            try:
                self._push_operation(op, list_names)
            except Exception as e:
                self.breaker.record_failure()
                self.queue.mark_attempt(op.id)
                result.operations_failed += 1
                result.add_error(
                    f"Push of {op.operation_type} for {op.task_uid or op.task_id} "
                    f"failed: {e}"
                )
                continue

            self.breaker.record_success()
            self.queue.remove_operation(op.id)
            result.operations_pushed += 1

    def _push_operation(self, op: PendingOperation, list_names: Dict[int, str]) -> None:
        if op.operation_type == OperationType.DELETE.value:
            self.remote.delete_task(op.task_uid)
            self.db_service.delete_baseline(op.task_uid)
            return

        task = self.store.get_task(op.task_uid)
        if task is None:
            # Deleted after this operation was queued; its delete follows
            logger.debug(
                "Dropping %s for vanished task %s", op.operation_type, op.task_uid
            )
            return

        snapshot = task.to_snapshot()
        snapshot["list_name"] = list_names.get(task.list_id)
        remote_modified = self.remote.push_task(snapshot)
        self.db_service.set_baseline(task.uid, remote_modified)
