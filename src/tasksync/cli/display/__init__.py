"""Display helpers for CLI output."""

from .formatters import (
    console,
    display_conflicts,
    display_pending_operations,
    display_reconcile_result,
    display_tasks,
    format_timestamp,
    truncate,
)

__all__ = [
    "console",
    "display_conflicts",
    "display_pending_operations",
    "display_reconcile_result",
    "display_tasks",
    "format_timestamp",
    "truncate",
]
