"""Task commands.

Every mutation goes through the SyncCoordinator so that it is queued for the
next sync.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import click

from ...core.errors import SyncError
from ...database.models import TaskStatus
from ...database.task_store import DEFAULT_LIST_NAME
from ..app import TaskSyncApp
from ..display import console, display_tasks

logger = logging.getLogger(__name__)

STATUS_CHOICES = [status.value for status in TaskStatus]


def _task_fields(
    summary: Optional[str],
    description: Optional[str],
    status: Optional[str],
    priority: Optional[int],
    due: Optional[datetime],
    tags: Tuple[str, ...],
) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    if summary is not None:
        fields["summary"] = summary
    if description is not None:
        fields["description"] = description
    if status is not None:
        fields["status"] = status
    if priority is not None:
        fields["priority"] = priority
    if due is not None:
        fields["due_date"] = due
    if tags:
        fields["categories"] = ",".join(tag.strip() for tag in tags if tag.strip())
    return fields


@click.group("task")
def task() -> None:
    """Manage local tasks."""
    pass


@task.command("add")
@click.argument("summary")
@click.option("--list", "list_name", default=DEFAULT_LIST_NAME, show_default=True)
@click.option("--description", "-d", help="Task description")
@click.option("--priority", "-p", type=click.IntRange(0, 9), help="0 (none) to 9")
@click.option("--due", type=click.DateTime(formats=["%Y-%m-%d"]), help="YYYY-MM-DD")
@click.option("--tag", "tags", multiple=True, help="Category (repeatable)")
@click.pass_obj
def task_add(
    app: TaskSyncApp,
    summary: str,
    list_name: str,
    description: Optional[str],
    priority: Optional[int],
    due: Optional[datetime],
    tags: Tuple[str, ...],
) -> None:
    """Add a task."""
    coordinator = app.coordinator
    try:
        task_list = coordinator.get_or_create_list(list_name)
        created = coordinator.create_task(
            task_list.id,
            _task_fields(summary, description, None, priority, due, tags),
        )
    except SyncError as e:
        raise click.ClickException(str(e))

    console.print(f"[green]✓[/green] Created task {created.id}: {created.uid}")


@task.command("list")
@click.option("--list", "list_name", help="Only show tasks in this list")
@click.option("--all", "show_all", is_flag=True, help="Include completed tasks")
@click.pass_obj
def task_list(app: TaskSyncApp, list_name: Optional[str], show_all: bool) -> None:
    """List tasks."""
    coordinator = app.coordinator
    try:
        lists = coordinator.get_lists()
        list_id = None
        if list_name is not None:
            matches = [tl for tl in lists if tl.name == list_name]
            if not matches:
                raise click.ClickException(f"list not found: {list_name}")
            list_id = matches[0].id
        tasks = coordinator.get_tasks(list_id)
    except SyncError as e:
        raise click.ClickException(str(e))

    if not show_all:
        done = (TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value)
        tasks = [t for t in tasks if t.status not in done]
    display_tasks(tasks, {tl.id: tl.name for tl in lists})


@task.command("update")
@click.argument("ref")
@click.option("--summary", "-s", help="New summary")
@click.option("--description", "-d", help="New description")
@click.option("--status", type=click.Choice(STATUS_CHOICES), help="New status")
@click.option("--priority", "-p", type=click.IntRange(0, 9), help="0 (none) to 9")
@click.option("--due", type=click.DateTime(formats=["%Y-%m-%d"]), help="YYYY-MM-DD")
@click.option("--tag", "tags", multiple=True, help="Replace categories")
@click.pass_obj
def task_update(
    app: TaskSyncApp,
    ref: str,
    summary: Optional[str],
    description: Optional[str],
    status: Optional[str],
    priority: Optional[int],
    due: Optional[datetime],
    tags: Tuple[str, ...],
) -> None:
    """Update the task REF (UID or local id)."""
    fields = _task_fields(summary, description, status, priority, due, tags)
    if not fields:
        raise click.UsageError("nothing to update")

    coordinator = app.coordinator
    try:
        existing = coordinator.resolve_task(ref)
        coordinator.update_task(existing.uid, fields)
    except SyncError as e:
        raise click.ClickException(str(e))
    console.print(f"[green]✓[/green] Updated task {existing.id}")


@task.command("complete")
@click.argument("ref")
@click.pass_obj
def task_complete(app: TaskSyncApp, ref: str) -> None:
    """Mark the task REF as completed."""
    coordinator = app.coordinator
    try:
        existing = coordinator.resolve_task(ref)
        coordinator.update_task(existing.uid, {"status": TaskStatus.COMPLETED.value})
    except SyncError as e:
        raise click.ClickException(str(e))
    console.print(f"[green]✓[/green] Completed task {existing.id}")


@task.command("delete")
@click.argument("ref")
@click.pass_obj
def task_delete(app: TaskSyncApp, ref: str) -> None:
    """Delete the task REF."""
    coordinator = app.coordinator
    try:
        existing = coordinator.resolve_task(ref)
        coordinator.delete_task(existing.uid)
    except SyncError as e:
        raise click.ClickException(str(e))
    console.print(f"[green]✓[/green] Deleted task {existing.id}")
