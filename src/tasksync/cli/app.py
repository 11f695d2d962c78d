"""Service wiring shared by CLI commands."""

import logging
from typing import Optional

from ..config import Config
from ..core.errors import DaemonError, DaemonNotRunningError
from ..core.remote import DatabaseRemoteBackend
from ..core.sync import (
    ConflictResolver,
    ConflictStore,
    OfflineMode,
    SyncCoordinator,
    SyncDaemon,
    SyncQueue,
    wake_daemon,
)
from ..database import DatabaseService, SQLiteTaskStore
from ..notifications import NotificationManager

logger = logging.getLogger(__name__)


class TaskSyncApp:
    """Lazily builds the services a command needs from the configuration."""

    def __init__(self, config: Optional[Config] = None) -> None:
        self.config = config or Config()
        self._db_service: Optional[DatabaseService] = None
        self._store: Optional[SQLiteTaskStore] = None
        self._queue: Optional[SyncQueue] = None
        self._conflict_store: Optional[ConflictStore] = None
        self._remote: Optional[DatabaseRemoteBackend] = None
        self._notifier: Optional[NotificationManager] = None

    @property
    def db_service(self) -> DatabaseService:
        """Database service for the local replica."""
        if self._db_service is None:
            self._db_service = DatabaseService(self.config.database_path)
        return self._db_service

    @property
    def store(self) -> SQLiteTaskStore:
        """Local task store."""
        if self._store is None:
            self._store = SQLiteTaskStore(self.db_service)
        return self._store

    @property
    def queue(self) -> SyncQueue:
        """Sync queue."""
        if self._queue is None:
            self._queue = SyncQueue(self.db_service)
        return self._queue

    @property
    def conflict_store(self) -> ConflictStore:
        """Conflict store."""
        if self._conflict_store is None:
            self._conflict_store = ConflictStore(self.db_service)
        return self._conflict_store

    @property
    def coordinator(self) -> SyncCoordinator:
        """Task store wrapper that queues every mutation.

        With auto sync enabled every mutation also wakes a running daemon.
        """
        on_change = (
            self.wake_daemon if self.config.auto_sync_after_operation else None
        )
        return SyncCoordinator(self.store, self.queue, on_change=on_change)

    def wake_daemon(self) -> None:
        """Wake the background daemon, if one is running."""
        try:
            wake_daemon(self.config.daemon_pid_path, self.config.daemon_stale_after)
        except DaemonNotRunningError:
            logger.debug("No sync daemon running to wake")
        except DaemonError as e:
            logger.warning("Failed to wake sync daemon: %s", e)

    @property
    def resolver(self) -> ConflictResolver:
        """Conflict resolver applying strategies to local tasks."""
        return ConflictResolver(self.conflict_store, self.store, self.queue)

    @property
    def remote(self) -> Optional[DatabaseRemoteBackend]:
        """Configured remote backend, if any."""
        if self._remote is None and self.config.remote_database_path is not None:
            self._remote = DatabaseRemoteBackend(self.config.remote_database_path)
        return self._remote

    @property
    def notifier(self) -> NotificationManager:
        """Notification manager writing to the notification log."""
        if self._notifier is None:
            self._notifier = NotificationManager.with_log_file(
                self.config.notification_log_path,
                enabled=self.config.notifications_enabled,
                queue_size=self.config.notification_queue_size,
            )
        return self._notifier

    def build_daemon(self) -> SyncDaemon:
        """Build a sync daemon from the configuration."""
        return SyncDaemon(
            self.db_service,
            self.store,
            self.remote,
            self.notifier,
            pid_path=self.config.daemon_pid_path,
            log_path=self.config.daemon_log_path,
            offline_mode=OfflineMode(self.config.offline_mode),
            max_retries=self.config.max_retries,
            stale_after=self.config.daemon_stale_after,
            idle_timeout=self.config.daemon_idle_timeout,
        )

    def close(self) -> None:
        """Release every service that was created."""
        if self._notifier is not None:
            self._notifier.close()
        if self._remote is not None:
            self._remote.close()
        if self._db_service is not None:
            self._db_service.close()
        logger.debug("Application services closed")
