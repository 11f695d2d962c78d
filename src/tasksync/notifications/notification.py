"""Notification value type."""

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import datetime
from enum import Enum
from typing import Dict

from ..database.models import utcnow


class NotificationType(str, Enum):
    """Kinds of notifications emitted by the sync subsystem."""

    SYNC_COMPLETE = "sync_complete"
    SYNC_ERROR = "sync_error"
    CONFLICT = "conflict"
    TEST = "test"


@dataclass
class Notification:
    """A human-visible notification."""

    type: NotificationType
    title: str
    message: str
    timestamp: datetime = dataclass_field(default_factory=utcnow)
    metadata: Dict[str, str] = dataclass_field(default_factory=dict)

    def format_log_line(self) -> str:
        """Render as ``2026-01-16T10:30:00Z [SYNC_COMPLETE] Message``."""
        stamp = self.timestamp.strftime("%Y-%m-%dT%H:%M:%SZ")
        return f"{stamp} [{self.type.value.upper()}] {self.message}"

    def __str__(self) -> str:
        """String representation of the notification."""
        return f"{self.type.value}: {self.title} - {self.message}"
