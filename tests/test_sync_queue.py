"""Tests for the sync queue."""

import pytest

from tasksync.core.errors import NotFoundError, ValidationError
from tasksync.core.sync.queue import SyncQueue
from tasksync.database.service import DatabaseService
from tasksync.database.task_store import SQLiteTaskStore


@pytest.fixture
def db_service(tmp_path):
    """Create a temporary database service."""
    service = DatabaseService(tmp_path / "test.db")
    yield service
    service.close()


@pytest.fixture
def queue(db_service):
    """Create a sync queue."""
    return SyncQueue(db_service)


class TestQueueOperation:
    """Test enqueueing operations."""

    def test_enqueue_create(self, queue):
        """A queued create is returned with its summary and list."""
        queue.queue_operation(1, "uid-1", "Buy milk", 7, "create")

        ops = queue.get_pending_operations()
        assert len(ops) == 1
        assert ops[0].operation_type == "create"
        assert ops[0].task_summary == "Buy milk"
        assert ops[0].list_id == 7
        assert ops[0].retry_count == 0
        assert ops[0].last_attempt_at is None

    def test_invalid_operation_type(self, queue):
        """Unknown operation types are rejected and nothing is stored."""
        with pytest.raises(ValidationError, match="invalid operation type"):
            queue.queue_operation(1, "uid-1", "Buy milk", 1, "upsert")
        assert queue.get_pending_count() == 0

    def test_fifo_order(self, queue):
        """Operations come back in insertion order."""
        for i in range(5):
            queue.queue_operation(i, f"uid-{i}", f"Task {i}", 1, "update")

        ops = queue.get_pending_operations()
        assert [op.task_uid for op in ops] == [f"uid-{i}" for i in range(5)]

    def test_has_pending_for_uid(self, queue):
        """Pending lookups by UID."""
        queue.queue_operation(1, "uid-1", "Buy milk", 1, "update")
        assert queue.has_pending_for_uid("uid-1")
        assert not queue.has_pending_for_uid("uid-2")


class TestPendingSummary:
    """Test summary resolution for pending operations."""

    def test_live_summary_preferred(self, db_service, queue):
        """The current task summary is shown when the task still exists."""
        store = SQLiteTaskStore(db_service)
        task_list = store.get_or_create_list("Tasks")
        task = store.create_task(task_list.id, {"summary": "Old name"})
        queue.queue_operation(task.id, task.uid, "Old name", task_list.id, "create")

        store.update_task(task.uid, {"summary": "New name"})

        assert queue.get_pending_operations()[0].task_summary == "New name"

    def test_stored_summary_after_delete(self, queue):
        """The captured summary survives deletion of the task."""
        queue.queue_operation(42, "uid-42", "Gone task", 1, "delete")
        assert queue.get_pending_operations()[0].task_summary == "Gone task"

    def test_unknown_summary(self, queue):
        """Missing summaries fall back to Unknown."""
        queue.queue_operation(0, "uid-x", "", 1, "delete")
        assert queue.get_pending_operations()[0].task_summary == "Unknown"


class TestQueueMaintenance:
    """Test removal, retries and clearing."""

    def test_remove_operation(self, queue):
        """Removing an operation drops it from the queue."""
        op = queue.queue_operation(1, "uid-1", "Buy milk", 1, "create")
        queue.remove_operation(op.id)
        assert queue.get_pending_count() == 0

    def test_remove_missing_operation(self, queue):
        """Removing an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            queue.remove_operation(999)

    def test_mark_attempt(self, queue):
        """Each attempt increments the retry count."""
        op = queue.queue_operation(1, "uid-1", "Buy milk", 1, "create")
        queue.mark_attempt(op.id)
        queue.mark_attempt(op.id)

        pending = queue.get_pending_operations()[0]
        assert pending.retry_count == 2
        assert pending.last_attempt_at is not None

    def test_mark_attempt_missing(self, queue):
        """Marking an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            queue.mark_attempt(999)

    @pytest.mark.parametrize("count", [0, 1, 7])
    def test_clear_queue_returns_count(self, queue, count):
        """Clearing returns the exact number of removed operations."""
        for i in range(count):
            queue.queue_operation(i, f"uid-{i}", f"Task {i}", 1, "create")

        assert queue.clear_queue() == count
        assert queue.get_pending_count() == 0

    def test_close_is_idempotent(self, queue):
        """Closing twice is harmless."""
        queue.close()
        queue.close()
