"""Sync commands: status, queue, conflicts and the background daemon."""

import json
import logging
from typing import Optional

import click

from ...core.errors import (
    DaemonAlreadyRunningError,
    DaemonNotRunningError,
    SyncError,
)
from ...core.sync import (
    DaemonMarker,
    OfflineMode,
    Reconciler,
    is_daemon_running,
    spawn_daemon_process,
    terminate_daemon,
    wake_daemon,
)
from ...database.models import ResolutionStrategy
from ..app import TaskSyncApp
from ..display import (
    console,
    display_conflicts,
    display_pending_operations,
    display_reconcile_result,
    format_timestamp,
)

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 60.0


def _live_marker(app: TaskSyncApp) -> Optional[DaemonMarker]:
    return is_daemon_running(app.config.daemon_pid_path, app.config.daemon_stale_after)


@click.group("sync", invoke_without_command=True)
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Synchronize local tasks with the remote backend.

    Without a subcommand, runs one sync pass in the foreground.

    Examples:
        # Push pending operations and pull remote changes
        tasksync sync

        # Inspect what is waiting to be pushed
        tasksync sync queue
    """
    if ctx.invoked_subcommand is not None:
        return

    app: TaskSyncApp = ctx.obj
    try:
        remote = app.remote
        if remote is None or app.config.offline_mode == OfflineMode.OFFLINE.value:
            console.print("Sync completed (no remote backend configured)")
            return

        reconciler = Reconciler(
            app.db_service,
            app.store,
            remote,
            queue=app.queue,
            conflict_store=app.conflict_store,
            max_retries=app.config.max_retries,
        )
        result = reconciler.run()
    except SyncError as e:
        raise click.ClickException(str(e))

    display_reconcile_result(result)
    if not result.success:
        raise click.ClickException(f"sync failed: {result.errors[-1]}")


# =============================================================================
# Status
# =============================================================================


@sync.command("status")
@click.option("--verbose", "-v", is_flag=True, help="Show metadata and daemon info")
@click.pass_obj
def sync_status(app: TaskSyncApp, verbose: bool) -> None:
    """Show sync status for each backend."""
    try:
        last_sync = app.db_service.get_last_sync_time()
        pending = app.queue.get_pending_count()
        conflicts = app.conflict_store.get_conflict_count()
        metadata = app.db_service.get_all_metadata() if verbose else {}
    except SyncError as e:
        raise click.ClickException(str(e))

    console.print("[bold]Sync Status:[/bold]")
    console.print(f"Offline Mode: {app.config.offline_mode}")
    console.print(f"Last Sync: {format_timestamp(last_sync)}")
    console.print(f"Pending Operations: {pending}")
    if conflicts:
        console.print(f"Conflicts: [yellow]{conflicts}[/yellow]")
    else:
        console.print("Conflicts: 0")

    remote = app.remote
    if remote is None:
        console.print("Backend: local")
        console.print("  Status: Offline (no remote backend configured)")
    else:
        try:
            available = remote.is_available()
        except SyncError as e:
            logger.debug("Remote availability check failed: %s", e)
            available = False
        connection = "[green]Online[/green]" if available else "[red]Unreachable[/red]"
        console.print(f"Backend: {remote.name}")
        console.print(f"  Status: {connection}")

    if not verbose:
        return

    console.print("\n[bold]Sync Metadata:[/bold]")
    if not metadata:
        console.print("  [dim](none)[/dim]")
    for key, value in sorted(metadata.items()):
        console.print(f"  {key}: {value}", markup=False)

    console.print("\n[bold]Daemon:[/bold]")
    marker = _live_marker(app)
    if marker is None:
        console.print("  Not running")
    else:
        console.print(f"  PID: {marker.pid}")
        console.print(f"  Sync count: {marker.sync_count}")
        console.print(f"  Heartbeat: {format_timestamp(marker.heartbeat_at)}")


# =============================================================================
# Queue
# =============================================================================


@sync.group("queue", invoke_without_command=True)
@click.pass_context
def sync_queue(ctx: click.Context) -> None:
    """List pending operations."""
    if ctx.invoked_subcommand is not None:
        return
    try:
        operations = ctx.obj.queue.get_pending_operations()
    except SyncError as e:
        raise click.ClickException(str(e))
    display_pending_operations(operations)


@sync_queue.command("clear")
@click.pass_obj
def sync_queue_clear(app: TaskSyncApp) -> None:
    """Remove every pending operation."""
    try:
        removed = app.queue.clear_queue()
    except SyncError as e:
        raise click.ClickException(str(e))
    console.print(f"Sync queue cleared: {removed} operations removed")


# =============================================================================
# Conflicts
# =============================================================================


@sync.group("conflicts", invoke_without_command=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def sync_conflicts(ctx: click.Context, as_json: bool) -> None:
    """List pending conflicts."""
    if ctx.invoked_subcommand is not None:
        return
    try:
        conflicts = ctx.obj.conflict_store.get_conflicts()
    except SyncError as e:
        raise click.ClickException(str(e))

    if as_json:
        payload = {"conflicts": [conflict.to_dict() for conflict in conflicts]}
        click.echo(json.dumps(payload, indent=2))
        return
    display_conflicts(conflicts)


@sync_conflicts.command("resolve")
@click.argument("task_uid")
@click.option(
    "--strategy",
    default=ResolutionStrategy.SERVER_WINS.value,
    show_default=True,
    help="One of: " + ", ".join(ResolutionStrategy.values()),
)
@click.pass_obj
def sync_conflicts_resolve(
    app: TaskSyncApp, task_uid: str, strategy: str
) -> None:
    """Resolve the pending conflict for TASK_UID."""
    try:
        result = app.resolver.resolve(task_uid, strategy)
    except SyncError as e:
        raise click.ClickException(str(e))

    console.print(
        f"Conflict resolved for task {task_uid} using strategy {strategy}",
        markup=False,
    )
    if result.duplicate_uid:
        console.print(f"Local copy kept as {result.duplicate_uid}", markup=False)


# =============================================================================
# Daemon
# =============================================================================


@sync.group("daemon")
def sync_daemon() -> None:
    """Manage the background sync daemon."""
    pass


@sync_daemon.command("start")
@click.option(
    "--interval",
    type=click.FloatRange(min=0, min_open=True),
    help="Seconds between sync attempts (default from configuration)",
)
@click.option(
    "--foreground",
    is_flag=True,
    help="Run in this process until interrupted",
)
@click.pass_obj
def daemon_start(
    app: TaskSyncApp, interval: Optional[float], foreground: bool
) -> None:
    """Start the background sync daemon."""
    interval = interval or app.config.daemon_interval

    if _live_marker(app) is not None:
        console.print("Sync daemon is already running")
        return

    if foreground:
        _run_daemon(app, interval)
        return

    try:
        pid = spawn_daemon_process(interval, app.config.daemon_pid_path)
    except SyncError as e:
        raise click.ClickException(str(e))
    console.print(f"Sync daemon started (PID: {pid}, interval: {interval:g}s)")


@sync_daemon.command("run", hidden=True)
@click.option("--interval", type=float, default=None)
@click.pass_obj
def daemon_run(app: TaskSyncApp, interval: Optional[float]) -> None:
    """Run the daemon loop in this process (used by ``daemon start``)."""
    _run_daemon(app, interval or app.config.daemon_interval)


def _run_daemon(app: TaskSyncApp, interval: float) -> None:
    daemon = app.build_daemon()
    console.print(
        f"Sync daemon running in foreground (interval: {interval:g}s), "
        "press Ctrl+C to stop"
    )
    try:
        status = daemon.run_forever(interval)
    except DaemonAlreadyRunningError:
        console.print("Sync daemon is already running")
        return
    except SyncError as e:
        raise click.ClickException(str(e))
    console.print(f"Sync daemon stopped after {status.sync_count} sync(s)")


@sync_daemon.command("stop")
@click.pass_obj
def daemon_stop(app: TaskSyncApp) -> None:
    """Stop the daemon, waiting for an in-flight sync to finish."""
    try:
        terminate_daemon(
            app.config.daemon_pid_path,
            timeout=STOP_TIMEOUT,
            stale_after=app.config.daemon_stale_after,
        )
    except DaemonNotRunningError:
        console.print("Sync daemon is not running")
        return
    except SyncError as e:
        raise click.ClickException(str(e))
    console.print("Sync daemon stopped")


@sync_daemon.command("wake")
@click.pass_obj
def daemon_wake(app: TaskSyncApp) -> None:
    """Ask the running daemon to sync now instead of at its next interval."""
    try:
        pid = wake_daemon(app.config.daemon_pid_path, app.config.daemon_stale_after)
    except DaemonNotRunningError:
        console.print("Sync daemon is not running")
        return
    except SyncError as e:
        raise click.ClickException(str(e))
    console.print(f"Sync daemon woken (PID: {pid})")


@sync_daemon.command("status")
@click.pass_obj
def daemon_status(app: TaskSyncApp) -> None:
    """Show daemon liveness and counters."""
    marker = _live_marker(app)
    if marker is None:
        console.print("Sync daemon is not running")
        return

    console.print("[bold green]Sync daemon is running[/bold green]")
    console.print(f"  PID: {marker.pid}")
    console.print(f"  Interval: {marker.interval:g}s")
    console.print(f"  Offline mode: {marker.offline_mode}")
    console.print(f"  Sync count: {marker.sync_count}")
    console.print(f"  Last sync: {format_timestamp(marker.last_sync)}")
    console.print(f"  Heartbeat: {format_timestamp(marker.heartbeat_at)}")
