"""CLI command modules."""

from .notification import notification
from .sync import sync
from .tasks import task

__all__ = [
    "notification",
    "sync",
    "task",
]
