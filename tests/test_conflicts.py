"""Tests for the conflict store and conflict resolver."""

import json
from contextlib import contextmanager
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from tasksync.core.errors import (
    ConflictNotFoundError,
    InvalidStrategyError,
    StorageError,
    ValidationError,
)
from tasksync.core.sync.conflict_resolver import (
    ConflictResolver,
    merge_categories,
    merge_fields,
)
from tasksync.core.sync.conflicts import ConflictStore, validate_strategy
from tasksync.core.sync.queue import SyncQueue
from tasksync.database.models import ResolutionStrategy, SyncConflict
from tasksync.database.service import DatabaseService
from tasksync.database.task_store import SQLiteTaskStore

LOCAL_TIME = datetime(2020, 1, 16, 10, 0, 0)
REMOTE_TIME = datetime(2020, 1, 16, 11, 0, 0)


@pytest.fixture
def db_service(tmp_path):
    """Create a temporary database service."""
    service = DatabaseService(tmp_path / "test.db")
    yield service
    service.close()


@pytest.fixture
def conflict_store(db_service):
    """Create a conflict store."""
    return ConflictStore(db_service)


@pytest.fixture
def store(db_service):
    """Create a task store."""
    return SQLiteTaskStore(db_service)


@pytest.fixture
def queue(db_service):
    """Create a sync queue."""
    return SyncQueue(db_service)


@pytest.fixture
def resolver(conflict_store, store, queue):
    """Create a resolver that applies strategies to the task store."""
    return ConflictResolver(conflict_store, store, queue)


def make_conflict(uid="abc", summary="Buy milk", local=None, remote=None):
    """Build an unsaved conflict with JSON snapshots."""
    local = local if local is not None else {"uid": uid, "summary": summary}
    remote = remote if remote is not None else {"uid": uid, "summary": summary}
    return SyncConflict(
        task_uid=uid,
        task_summary=summary,
        list_id=1,
        local_version=json.dumps(local),
        remote_version=json.dumps(remote),
        local_modified=LOCAL_TIME,
        remote_modified=REMOTE_TIME,
    )


def seed_conflict(store, conflict_store, local_fields, remote_fields):
    """Create a local task and a conflict against a remote version of it."""
    task_list = store.get_or_create_list("Tasks")
    task = store.create_task(
        task_list.id, {"uid": "abc", "modified_at": LOCAL_TIME, **local_fields}
    )
    remote = {
        "uid": "abc",
        "modified": REMOTE_TIME.isoformat(),
        "list_name": "Tasks",
        **remote_fields,
    }
    conflict_store.add_conflict(
        make_conflict(local=task.to_snapshot(), remote=remote)
    )
    return task


@contextmanager
def db_update(conflict_store, uid="abc"):
    """Edit the stored conflict row for a UID directly."""
    with conflict_store.db_service.get_session() as session:
        conflict = session.scalar(
            select(SyncConflict).where(SyncConflict.task_uid == uid)
        )
        yield conflict
        session.commit()


class TestValidateStrategy:
    """Test strategy validation."""

    @pytest.mark.parametrize("name", ResolutionStrategy.values())
    def test_known_strategies(self, name):
        """Every known name validates."""
        assert validate_strategy(name).value == name

    @pytest.mark.parametrize("name", ["", "SERVER_WINS", "newest", "merge "])
    def test_unknown_strategies(self, name):
        """Anything else is rejected."""
        with pytest.raises(InvalidStrategyError, match="invalid strategy"):
            validate_strategy(name)


class TestConflictStore:
    """Test conflict storage."""

    def test_add_and_get(self, conflict_store):
        """A stored conflict is pending and retrievable by UID."""
        conflict_store.add_conflict(make_conflict())

        stored = conflict_store.get_conflict_by_uid("abc")
        assert stored.status == "pending"
        assert stored.task_summary == "Buy milk"
        assert conflict_store.get_conflict_count() == 1
        assert conflict_store.has_pending("abc")

    def test_duplicate_pending_rejected(self, conflict_store):
        """Only one pending conflict per UID."""
        conflict_store.add_conflict(make_conflict())
        with pytest.raises(ValidationError, match="pending conflict already exists"):
            conflict_store.add_conflict(make_conflict())

    def test_missing_conflict(self, conflict_store):
        """Looking up an unknown UID raises."""
        with pytest.raises(ConflictNotFoundError):
            conflict_store.get_conflict_by_uid("nope")

    def test_conflicts_newest_first(self, conflict_store):
        """Pending conflicts are ordered by detection time, newest first."""
        for i, uid in enumerate(["a", "b", "c"]):
            conflict = make_conflict(uid=uid)
            conflict.detected_at = LOCAL_TIME + timedelta(minutes=i)
            conflict_store.add_conflict(conflict)

        assert [c.task_uid for c in conflict_store.get_conflicts()] == ["c", "b", "a"]

    def test_resolve_conflict(self, conflict_store):
        """Resolving removes the conflict from the pending set."""
        conflict_store.add_conflict(make_conflict())
        conflict_store.resolve_conflict("abc", "merge")

        assert conflict_store.get_conflicts() == []
        history = conflict_store.get_history("abc")
        assert history[0].status == "resolved"
        assert history[0].resolution == "merge"
        assert history[0].resolved_at is not None

    def test_resolve_invalid_strategy_leaves_state(self, conflict_store):
        """An invalid strategy changes nothing."""
        conflict_store.add_conflict(make_conflict())
        with pytest.raises(InvalidStrategyError):
            conflict_store.resolve_conflict("abc", "bogus")
        assert conflict_store.get_conflict_by_uid("abc").status == "pending"

    def test_resolve_missing(self, conflict_store):
        """Resolving without a pending conflict raises."""
        with pytest.raises(ConflictNotFoundError):
            conflict_store.resolve_conflict("abc", "server_wins")

    def test_new_conflict_after_resolution(self, conflict_store):
        """Only the newest pending conflict is listed after re-detection."""
        conflict_store.add_conflict(make_conflict(summary="first"))
        conflict_store.resolve_conflict("abc", "server_wins")
        conflict_store.add_conflict(make_conflict(summary="second"))

        pending = conflict_store.get_conflicts()
        assert len(pending) == 1
        assert pending[0].task_summary == "second"
        assert len(conflict_store.get_history("abc")) == 2


class TestMergeFields:
    """Test field-wise merging."""

    def test_newer_side_wins_differing_fields(self):
        """Differing fields come from the more recently modified side."""
        local = {"summary": "Local", "priority": 1, "status": "NEEDS-ACTION"}
        remote = {"summary": "Remote", "priority": 1, "status": "COMPLETED"}

        merged = merge_fields(local, LOCAL_TIME, remote, REMOTE_TIME)
        assert merged["summary"] == "Remote"
        assert merged["status"] == "COMPLETED"
        assert merged["priority"] == 1

        merged = merge_fields(local, REMOTE_TIME, remote, LOCAL_TIME)
        assert merged["summary"] == "Local"

    def test_categories_union(self):
        """Categories from both sides are kept in first-seen order."""
        assert merge_categories("home,urgent", "urgent,shop") == "home,urgent,shop"
        assert merge_categories(None, None) is None
        assert merge_categories("", "a") == "a"


class TestConflictResolver:
    """Test strategy application."""

    def test_invalid_strategy_touches_nothing(self, resolver, store, conflict_store):
        """Validation happens before any lookup or change."""
        seed_conflict(store, conflict_store, {"summary": "Local"}, {"summary": "R"})
        with pytest.raises(InvalidStrategyError):
            resolver.resolve("abc", "bogus")

        assert conflict_store.has_pending("abc")
        assert store.get_task("abc").summary == "Local"

    def test_missing_conflict(self, resolver):
        """Resolving an unknown UID raises ConflictNotFoundError."""
        with pytest.raises(ConflictNotFoundError):
            resolver.resolve("nope", "server_wins")

    def test_server_wins(self, resolver, store, conflict_store, queue):
        """The local task takes the remote values; nothing is queued."""
        seed_conflict(
            store, conflict_store, {"summary": "Local"}, {"summary": "Remote"}
        )
        result = resolver.resolve("abc", "server_wins")

        assert result.applied
        assert result.queued_operation is None
        task = store.get_task("abc")
        assert task.summary == "Remote"
        assert task.modified_at == REMOTE_TIME
        assert queue.get_pending_count() == 0
        assert not conflict_store.has_pending("abc")

    def test_local_wins(self, resolver, store, conflict_store, queue):
        """The local task is kept and an update is queued."""
        seed_conflict(
            store, conflict_store, {"summary": "Local"}, {"summary": "Remote"}
        )
        result = resolver.resolve("abc", "local_wins")

        assert result.queued_operation == "update"
        assert store.get_task("abc").summary == "Local"
        ops = queue.get_pending_operations()
        assert [(op.operation_type, op.task_uid) for op in ops] == [("update", "abc")]

    def test_merge(self, resolver, store, conflict_store, queue):
        """Differing fields take the newer value and categories are unioned."""
        seed_conflict(
            store,
            conflict_store,
            {"summary": "Local", "priority": 5, "categories": "home"},
            {"summary": "Remote", "priority": 5, "categories": "shop"},
        )
        result = resolver.resolve("abc", "merge")

        task = store.get_task("abc")
        assert task.summary == "Remote"
        assert task.priority == 5
        assert task.categories == "home,shop"
        assert task.modified_at > REMOTE_TIME
        assert result.queued_operation == "update"
        assert queue.get_pending_count() == 1

    def test_keep_both(self, resolver, store, conflict_store, queue):
        """The remote version replaces the task and a local copy is created."""
        seed_conflict(
            store, conflict_store, {"summary": "Local"}, {"summary": "Remote"}
        )
        result = resolver.resolve("abc", "keep_both")

        assert store.get_task("abc").summary == "Remote"
        copy = store.get_task(result.duplicate_uid)
        assert copy.summary == "Local (local)"
        ops = queue.get_pending_operations()
        assert [(op.operation_type, op.task_uid) for op in ops] == [
            ("create", result.duplicate_uid)
        ]

    def test_baseline_recorded(self, resolver, store, conflict_store, db_service):
        """After resolution the remote version is the new baseline."""
        seed_conflict(
            store, conflict_store, {"summary": "Local"}, {"summary": "Remote"}
        )
        resolver.resolve("abc", "server_wins")
        assert db_service.get_baseline("abc").remote_modified == REMOTE_TIME

    def test_local_deleted_local_wins_queues_delete(
        self, resolver, conflict_store, queue
    ):
        """A locally deleted task stays deleted and the delete is pushed."""
        remote = {
            "uid": "abc",
            "summary": "Remote",
            "modified": REMOTE_TIME.isoformat(),
        }
        conflict_store.add_conflict(make_conflict(local={}, remote=remote))

        result = resolver.resolve("abc", "local_wins")

        assert result.queued_operation == "delete"
        assert queue.get_pending_operations()[0].operation_type == "delete"

    def test_local_deleted_server_wins_recreates(self, resolver, store, conflict_store):
        """A locally deleted task is restored from the remote version."""
        remote = {
            "uid": "abc",
            "summary": "Remote",
            "modified": REMOTE_TIME.isoformat(),
            "list_name": "Inbox",
        }
        conflict_store.add_conflict(make_conflict(local={}, remote=remote))

        resolver.resolve("abc", "server_wins")

        task = store.get_task("abc")
        assert task.summary == "Remote"
        assert store.get_list_by_name("Inbox").id == task.list_id

    def test_status_only_without_store(self, conflict_store):
        """Without a task store only the conflict status changes."""
        conflict_store.add_conflict(make_conflict())
        result = ConflictResolver(conflict_store).resolve("abc", "keep_both")

        assert not result.applied
        assert not conflict_store.has_pending("abc")

    def test_conflict_claimed_by_another_resolver(
        self, db_service, resolver, store, conflict_store, queue, monkeypatch
    ):
        """A resolver that loses the race changes no task data."""
        seed_conflict(
            store, conflict_store, {"summary": "Local"}, {"summary": "Remote"}
        )
        other = ConflictResolver(ConflictStore(db_service), store, queue)
        lookup = conflict_store.get_conflict_by_uid

        def lookup_then_lose_race(task_uid):
            conflict = lookup(task_uid)
            other.resolve(task_uid, "keep_both")
            return conflict

        monkeypatch.setattr(
            conflict_store, "get_conflict_by_uid", lookup_then_lose_race
        )

        with pytest.raises(ConflictNotFoundError):
            resolver.resolve("abc", "keep_both")

        assert len(store.get_tasks()) == 2
        assert store.get_task("abc").summary == "Remote"
        assert queue.get_pending_count() == 1
        history = conflict_store.get_history("abc")
        assert [c.status for c in history] == ["resolved"]

    def test_keep_both_copy_created_before_overwrite(
        self, resolver, store, conflict_store, monkeypatch
    ):
        """If the copy cannot be created the local values are not lost."""
        seed_conflict(
            store, conflict_store, {"summary": "Local"}, {"summary": "Remote"}
        )

        def fail_create(list_id, task_data):
            raise StorageError("disk full")

        monkeypatch.setattr(store, "create_task", fail_create)

        with pytest.raises(StorageError):
            resolver.resolve("abc", "keep_both")

        assert store.get_task("abc").summary == "Local"
        assert conflict_store.has_pending("abc")

    def test_failed_apply_reopens_conflict(
        self, resolver, store, conflict_store, monkeypatch
    ):
        """A strategy that fails half way leaves the conflict pending."""
        seed_conflict(
            store, conflict_store, {"summary": "Local"}, {"summary": "Remote"}
        )

        def fail_update(uid, task_data):
            raise StorageError("database is locked")

        monkeypatch.setattr(store, "update_task", fail_update)

        with pytest.raises(StorageError, match="locked"):
            resolver.resolve("abc", "server_wins")

        pending = conflict_store.get_conflict_by_uid("abc")
        assert pending.resolution is None
        assert pending.resolved_at is None

    def test_remote_version_without_uid(self, resolver, store, conflict_store):
        """The conflict's task UID fills in a snapshot that lacks one."""
        seed_conflict(store, conflict_store, {"summary": "Local"}, {})
        with db_update(conflict_store) as conflict:
            conflict.remote_version = '{"summary": "remote"}'

        result = resolver.resolve("abc", "server_wins")

        assert result.applied
        assert store.get_task("abc").summary == "remote"
        assert not conflict_store.has_pending("abc")

    @pytest.mark.parametrize(
        "remote_version", ["not json", "[1, 2]", '{"priority": "high"}']
    )
    def test_unreadable_remote_version_resolves_status_only(
        self, resolver, store, conflict_store, queue, remote_version
    ):
        """A malformed remote version still lets the user close the conflict."""
        seed_conflict(store, conflict_store, {"summary": "Local"}, {})
        with db_update(conflict_store) as conflict:
            conflict.remote_version = remote_version

        result = resolver.resolve("abc", "server_wins")

        assert not result.applied
        assert not conflict_store.has_pending("abc")
        assert store.get_task("abc").summary == "Local"
        assert queue.get_pending_count() == 0

    def test_local_deleted_queue_failure_still_resolves(
        self, resolver, conflict_store, queue, monkeypatch
    ):
        """A delete that cannot be queued is logged, not raised."""
        remote = {
            "uid": "abc",
            "summary": "Remote",
            "modified": REMOTE_TIME.isoformat(),
        }
        conflict_store.add_conflict(make_conflict(local={}, remote=remote))

        def fail_queue(*args):
            raise StorageError("database is locked")

        monkeypatch.setattr(queue, "queue_operation", fail_queue)

        result = resolver.resolve("abc", "local_wins")

        assert result.queued_operation is None
        assert not conflict_store.has_pending("abc")
