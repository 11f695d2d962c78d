"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from tasksync.cli.main import cli
from tasksync.core.sync.conflicts import ConflictStore
from tasksync.database.models import SyncConflict, utcnow
from tasksync.database.service import DatabaseService

CLEARED_VARS = [
    "TASKSYNC_DATABASE_PATH",
    "TASKSYNC_REMOTE_DATABASE_PATH",
    "TASKSYNC_OFFLINE_MODE",
    "TASKSYNC_NOTIFICATIONS_ENABLED",
    "TASKSYNC_NOTIFICATION_LOG_PATH",
    "TASKSYNC_DAEMON_LOG_PATH",
    "TASKSYNC_DAEMON_STALE_AFTER",
    "TASKSYNC_LOG_LEVEL",
    "TASKSYNC_AUTO_SYNC_AFTER_OPERATION",
    "TASKSYNC_DAEMON_IDLE_TIMEOUT",
]


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point every tasksync path into a temporary directory."""
    for name in CLEARED_VARS:
        monkeypatch.delenv(name, raising=False)
    data = tmp_path / "data"
    monkeypatch.setenv("TASKSYNC_DATA_DIR", str(data))
    monkeypatch.setenv("TASKSYNC_DAEMON_PID_PATH", str(tmp_path / "run" / "daemon.pid"))
    return data


@pytest.fixture
def runner(data_dir):
    """Click test runner."""
    return CliRunner()


def seed_conflict(data_dir, uid="abc", summary="Buy milk"):
    """Store a pending conflict directly in the local database."""
    service = DatabaseService(data_dir / "tasks.db")
    try:
        now = utcnow()
        ConflictStore(service).add_conflict(
            SyncConflict(
                task_uid=uid,
                task_summary=summary,
                list_id=1,
                local_version=json.dumps({"uid": uid, "summary": summary}),
                remote_version=json.dumps({"uid": uid, "summary": "Remote"}),
                local_modified=now,
                remote_modified=now,
            )
        )
    finally:
        service.close()


class TestTaskCommands:
    """Test task management."""

    def test_add_and_list(self, runner):
        """Added tasks show up in the list."""
        result = runner.invoke(cli, ["task", "add", "Buy milk", "--list", "Home"])
        assert result.exit_code == 0, result.output
        assert "Created task 1:" in result.output

        result = runner.invoke(cli, ["task", "list"])
        assert result.exit_code == 0
        assert "Buy milk" in result.output
        assert "Home" in result.output

    def test_complete_hides_task(self, runner):
        """Completed tasks are only listed with --all."""
        runner.invoke(cli, ["task", "add", "Buy milk"])
        result = runner.invoke(cli, ["task", "complete", "1"])
        assert result.exit_code == 0, result.output

        assert "No tasks" in runner.invoke(cli, ["task", "list"]).output
        assert "Buy milk" in runner.invoke(cli, ["task", "list", "--all"]).output

    def test_update_requires_fields(self, runner):
        """An update without options is a usage error."""
        runner.invoke(cli, ["task", "add", "Buy milk"])
        result = runner.invoke(cli, ["task", "update", "1"])
        assert result.exit_code == 2
        assert "nothing to update" in result.output

    def test_unknown_task(self, runner):
        """Referring to a missing task fails with exit code 1."""
        result = runner.invoke(cli, ["task", "delete", "42"])
        assert result.exit_code == 1


class TestSyncCommands:
    """Test sync inspection and control."""

    def test_status_without_sync(self, runner):
        """A fresh database has never synced and has no remote."""
        result = runner.invoke(cli, ["sync", "status"])
        assert result.exit_code == 0, result.output
        assert "Last Sync: Never" in result.output
        assert "Pending Operations: 0" in result.output
        assert "Backend: local" in result.output

    def test_queue_and_clear(self, runner):
        """Mutations appear in the queue until it is cleared."""
        runner.invoke(cli, ["task", "add", "Buy milk"])
        runner.invoke(cli, ["task", "add", "Walk dog"])

        result = runner.invoke(cli, ["sync", "queue"])
        assert "Pending Operations: 2" in result.output
        assert "create" in result.output

        result = runner.invoke(cli, ["sync", "queue", "clear"])
        assert "Sync queue cleared: 2 operations removed" in result.output
        result = runner.invoke(cli, ["sync", "queue"])
        assert "No pending operations" in result.output

    def test_sync_without_remote(self, runner):
        """Without a remote a sync pass is a no-op."""
        result = runner.invoke(cli, ["sync"])
        assert result.exit_code == 0
        assert "no remote backend configured" in result.output

    def test_sync_with_remote(self, runner, tmp_path, monkeypatch):
        """A sync pass pushes queued tasks to the remote."""
        monkeypatch.setenv("TASKSYNC_REMOTE_DATABASE_PATH", str(tmp_path / "r.db"))
        runner.invoke(cli, ["task", "add", "Buy milk"])

        result = runner.invoke(cli, ["sync"])
        assert result.exit_code == 0, result.output
        assert "Sync completed" in result.output

        result = runner.invoke(cli, ["sync", "status"])
        assert "Pending Operations: 0" in result.output
        assert "Last Sync: Never" not in result.output

    def test_status_does_not_create_remote(self, runner, tmp_path, monkeypatch):
        """Status reports a missing remote as unreachable and leaves it missing."""
        remote_path = tmp_path / "r.db"
        monkeypatch.setenv("TASKSYNC_REMOTE_DATABASE_PATH", str(remote_path))

        result = runner.invoke(cli, ["sync", "status"])
        assert result.exit_code == 0, result.output
        assert "Unreachable" in result.output
        assert not remote_path.exists()

        runner.invoke(cli, ["sync"])
        assert "Online" in runner.invoke(cli, ["sync", "status"]).output

    def test_conflicts_json(self, runner, data_dir):
        """--json prints the pending conflicts as JSON."""
        runner.invoke(cli, ["sync", "status"])
        seed_conflict(data_dir)

        result = runner.invoke(cli, ["sync", "conflicts", "--json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert [c["task_uid"] for c in payload["conflicts"]] == ["abc"]
        assert payload["conflicts"][0]["status"] == "pending"

    def test_conflicts_table(self, runner, data_dir):
        """Without --json the conflicts are listed with their count."""
        seed_conflict(data_dir)
        result = runner.invoke(cli, ["sync", "conflicts"])
        assert "Conflicts: 1" in result.output
        assert "abc" in result.output

    def test_resolve_conflict(self, runner, data_dir):
        """Resolving reports the strategy and clears the conflict."""
        seed_conflict(data_dir)

        result = runner.invoke(
            cli, ["sync", "conflicts", "resolve", "abc", "--strategy", "local_wins"]
        )
        assert result.exit_code == 0, result.output
        assert "Conflict resolved for task abc using strategy local_wins" in (
            result.output
        )
        assert "Conflicts: 0" in runner.invoke(cli, ["sync", "conflicts"]).output

    def test_resolve_invalid_strategy(self, runner, data_dir):
        """An unknown strategy exits 1 and keeps the conflict."""
        seed_conflict(data_dir)

        result = runner.invoke(
            cli, ["sync", "conflicts", "resolve", "abc", "--strategy", "newest"]
        )
        assert result.exit_code == 1
        assert "invalid strategy" in result.output
        assert "Conflicts: 1" in runner.invoke(cli, ["sync", "conflicts"]).output

    def test_resolve_missing_conflict(self, runner):
        """Resolving a UID without a conflict exits 1."""
        result = runner.invoke(cli, ["sync", "conflicts", "resolve", "nope"])
        assert result.exit_code == 1
        assert "conflict not found" in result.output


class TestDaemonCommands:
    """Test daemon commands when no daemon is running."""

    def test_status_not_running(self, runner):
        """Status reports a stopped daemon."""
        result = runner.invoke(cli, ["sync", "daemon", "status"])
        assert result.exit_code == 0
        assert "Sync daemon is not running" in result.output

    def test_stop_not_running(self, runner):
        """Stopping a stopped daemon is not an error."""
        result = runner.invoke(cli, ["sync", "daemon", "stop"])
        assert result.exit_code == 0
        assert "Sync daemon is not running" in result.output

    def test_wake_not_running(self, runner):
        """Waking without a daemon is reported, not an error."""
        result = runner.invoke(cli, ["sync", "daemon", "wake"])
        assert result.exit_code == 0
        assert "Sync daemon is not running" in result.output

    def test_auto_sync_without_daemon(self, runner, monkeypatch):
        """Task edits still succeed when there is no daemon to wake."""
        monkeypatch.setenv("TASKSYNC_AUTO_SYNC_AFTER_OPERATION", "true")
        result = runner.invoke(cli, ["task", "add", "Buy milk"])
        assert result.exit_code == 0, result.output
        assert "Pending Operations: 1" in runner.invoke(cli, ["sync", "status"]).output

    def test_invalid_interval(self, runner):
        """A non-positive interval is rejected by the option parser."""
        result = runner.invoke(cli, ["sync", "daemon", "start", "--interval", "0"])
        assert result.exit_code == 2


class TestNotificationCommands:
    """Test the notification log commands."""

    def test_empty_log(self, runner):
        """A missing log is reported as empty."""
        result = runner.invoke(cli, ["notification", "log"])
        assert "No notifications in log" in result.output

    def test_send_and_clear(self, runner):
        """A test notification is logged and can be cleared."""
        result = runner.invoke(cli, ["notification", "test"])
        assert result.exit_code == 0, result.output
        assert "Test notification sent" in result.output

        result = runner.invoke(cli, ["notification", "log"])
        assert "[TEST] This is a test notification from tasksync" in result.output

        runner.invoke(cli, ["notification", "log", "--clear"])
        result = runner.invoke(cli, ["notification", "log"])
        assert "No notifications in log" in result.output

    def test_disabled(self, runner, monkeypatch):
        """Nothing is sent when notifications are disabled."""
        monkeypatch.setenv("TASKSYNC_NOTIFICATIONS_ENABLED", "false")
        result = runner.invoke(cli, ["notification", "test"])
        assert "Notifications are disabled" in result.output


def test_version(runner):
    """--version prints the package version."""
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "tasksync" in result.output
