"""Core business logic modules for tasksync.

This package contains the sync subsystem and its collaborator contracts:
- interfaces: protocols for task stores, remote backends and notification sinks
- errors: the error taxonomy shared by foreground commands and the daemon
- remote: remote backend implementations
- sync: queue, conflicts, coordinator, reconciler and daemon
"""

__all__: list[str] = []
