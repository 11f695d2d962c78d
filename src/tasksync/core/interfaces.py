"""Collaborator interfaces consumed by the sync subsystem.

Optional capabilities (local-id lookups, storage maintenance) are separate
runtime-checkable protocols so callers can discover them with ``isinstance``
instead of inspecting concrete store types.
"""

from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

if TYPE_CHECKING:
    from ..database.models import Task, TaskList
    from ..notifications.notification import Notification
    from .remote import RemoteTask


@runtime_checkable
class TaskStore(Protocol):
    """Task and list persistence."""

    def create_task(self, list_id: int, task_data: Dict[str, Any]) -> "Task":
        """Create a task in a list and return it."""
        ...

    def update_task(self, uid: str, task_data: Dict[str, Any]) -> "Task":
        """Update fields of an existing task and return it."""
        ...

    def delete_task(self, uid: str) -> None:
        """Delete a task."""
        ...

    def get_task(self, uid: str) -> Optional["Task"]:
        """Get a task by UID, or None."""
        ...

    def get_tasks(self, list_id: Optional[int] = None) -> List["Task"]:
        """Get all tasks, optionally restricted to one list."""
        ...

    def get_lists(self) -> List["TaskList"]:
        """Get all task lists."""
        ...

    def get_or_create_list(self, name: str) -> "TaskList":
        """Get a list by name, creating it when missing."""
        ...

    def close(self) -> None:
        """Release resources."""
        ...


@runtime_checkable
class LocalIdLookup(Protocol):
    """Stores that expose stable local numeric ids."""

    def get_task_by_local_id(self, local_id: int) -> Optional["Task"]:
        """Get a task by its local id."""
        ...

    def get_task_local_id(self, uid: str) -> int:
        """Get the local id of a task UID."""
        ...


@runtime_checkable
class StorageMaintenance(Protocol):
    """Stores that support on-disk maintenance."""

    def vacuum(self) -> None:
        """Compact the underlying storage."""
        ...

    def get_storage_stats(self) -> Dict[str, Any]:
        """Report storage statistics."""
        ...


@runtime_checkable
class RemoteBackend(Protocol):
    """Remote task service consumed during a daemon tick."""

    name: str

    def is_available(self) -> bool:
        """Whether the remote can be reached right now."""
        ...

    def fetch_changes(self, since: Optional[datetime] = None) -> List["RemoteTask"]:
        """Return remote tasks modified after ``since`` (all when None)."""
        ...

    def list_uids(self) -> List[str]:
        """Return the UIDs of every task that currently exists remotely."""
        ...

    def push_task(self, snapshot: Dict[str, Any]) -> datetime:
        """Create or replace a remote task, returning its remote modified time."""
        ...

    def delete_task(self, uid: str) -> None:
        """Delete a remote task; deleting an absent task is not an error."""
        ...

    def close(self) -> None:
        """Release resources."""
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Delivery of human-visible notifications."""

    def send(self, notification: "Notification") -> None:
        """Deliver synchronously."""
        ...

    def send_async(self, notification: "Notification") -> bool:
        """Enqueue for background delivery; False if the item was dropped."""
        ...

    def close(self) -> None:
        """Flush pending deliveries and stop."""
        ...
