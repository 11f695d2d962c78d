"""Human-visible notifications for sync events."""

from .log_channel import LogChannel, clear_log, read_log
from .manager import NotificationManager
from .notification import Notification, NotificationType

__all__ = [
    "LogChannel",
    "Notification",
    "NotificationManager",
    "NotificationType",
    "clear_log",
    "read_log",
]
