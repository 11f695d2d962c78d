"""Display formatters and UI helpers for CLI."""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ...core.sync import PendingOperation, ReconcileResult
from ...database.models import SyncConflict, Task

console = Console()
logger = logging.getLogger(__name__)

SUMMARY_WIDTH = 28


def truncate(text: str, width: int = SUMMARY_WIDTH) -> str:
    """Shorten ``text`` to ``width`` characters, ending in an ellipsis."""
    if len(text) <= width:
        return text
    return text[: width - 3] + "..."


def format_timestamp(value: Optional[datetime]) -> str:
    """Format a naive UTC datetime for display."""
    if value is None:
        return "Never"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def display_pending_operations(operations: List[PendingOperation]) -> None:
    """Display the sync queue as a table.

    Args:
        operations: Pending operations, oldest first
    """
    console.print(f"Pending Operations: {len(operations)}")
    if not operations:
        console.print("[dim]No pending operations[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Type", style="yellow")
    table.add_column("Task", style="green")
    table.add_column("Retries", justify="right")
    table.add_column("Created", style="dim")

    for op in operations:
        retries = str(op.retry_count)
        if op.retry_count > 0:
            retries = f"[red]{retries}[/red]"
        table.add_row(
            str(op.id),
            op.operation_type,
            escape(truncate(op.task_summary)),
            retries,
            format_timestamp(op.created_at),
        )

    console.print(table)


def display_conflicts(conflicts: List[SyncConflict]) -> None:
    """Display pending conflicts as a table."""
    console.print(f"Conflicts: {len(conflicts)}")
    if not conflicts:
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("UID", style="cyan", no_wrap=True)
    table.add_column("Task", style="green")
    table.add_column("Detected", style="dim")
    table.add_column("Status", style="yellow")

    for conflict in conflicts:
        table.add_row(
            conflict.task_uid,
            escape(truncate(conflict.task_summary)),
            format_timestamp(conflict.detected_at),
            conflict.status,
        )

    console.print(table)


def display_tasks(tasks: List[Task], list_names: Dict[int, str]) -> None:
    """Display tasks with their local ids.

    Args:
        tasks: Tasks to show
        list_names: Mapping of list id to list name
    """
    if not tasks:
        console.print("[dim]No tasks[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Summary", style="green")
    table.add_column("Status", style="yellow")
    table.add_column("Pri", justify="right")
    table.add_column("List")
    table.add_column("Due", style="dim")

    for task in tasks:
        status = task.status
        if status == "COMPLETED":
            status = f"[green]{status}[/green]"
        table.add_row(
            str(task.id),
            escape(task.summary),
            status,
            str(task.priority) if task.priority else "",
            list_names.get(task.list_id, ""),
            task.due_date.strftime("%Y-%m-%d") if task.due_date else "",
        )

    console.print(table)


def display_reconcile_result(result: ReconcileResult) -> None:
    """Display the outcome of a one-off sync pass."""
    if result.success:
        console.print("[bold green]✅ Sync completed[/bold green]")
    else:
        console.print("[bold red]❌ Sync finished with errors[/bold red]")

    table = Table(show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")

    table.add_row("Remote changes", str(result.remote_changes))
    table.add_row("Applied locally", str(result.remote_applied))
    if result.remote_deleted:
        table.add_row("Deleted locally", str(result.remote_deleted))
    table.add_row("Pushed", str(result.operations_pushed))
    if result.operations_failed:
        table.add_row("Failed", f"[red]{result.operations_failed}[/red]")
    if result.operations_held:
        table.add_row("Held", f"[yellow]{result.operations_held}[/yellow]")
    if result.new_conflicts:
        table.add_row("New conflicts", f"[yellow]{len(result.new_conflicts)}[/yellow]")
    console.print(table)

    for error in result.errors:
        console.print(f"  [red]• {escape(error)}[/red]")
