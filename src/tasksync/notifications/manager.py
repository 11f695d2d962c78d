"""Notification manager with a bounded background delivery queue."""

import logging
import queue
import threading
from pathlib import Path
from typing import List, Optional, Protocol

from .log_channel import DEFAULT_MAX_SIZE_MB, LogChannel
from .notification import Notification

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 64

_STOP = object()


class NotificationChannel(Protocol):
    """A destination for notifications."""

    name: str

    def send(self, notification: Notification) -> None:
        """Deliver one notification."""
        ...

    def close(self) -> None:
        """Release resources."""
        ...


class NotificationManager:
    """Fan notifications out to channels.

    ``send`` delivers on the caller's thread. ``send_async`` hands the
    notification to a single notifier thread through a bounded queue; when
    the queue is full the new notification is dropped and counted, so a slow
    channel never blocks the caller.
    """

    def __init__(
        self,
        channels: Optional[List[NotificationChannel]] = None,
        enabled: bool = True,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        """Initialize the manager.

        Args:
            channels: Delivery channels
            enabled: When False every send is a no-op
            queue_size: Capacity of the asynchronous delivery queue
        """
        self.channels: List[NotificationChannel] = list(channels or [])
        self.enabled = enabled
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=max(1, queue_size))
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._closed = False
        self.dropped = 0

    @classmethod
    def with_log_file(
        cls,
        path: Path,
        enabled: bool = True,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        max_size_mb: float = DEFAULT_MAX_SIZE_MB,
    ) -> "NotificationManager":
        """Build a manager writing to a single notification log."""
        return cls([LogChannel(path, max_size_mb)], enabled, queue_size)

    @property
    def channel_count(self) -> int:
        """Number of configured channels."""
        return len(self.channels)

    def send(self, notification: Notification) -> None:
        """Deliver to every channel; one failing channel does not stop the rest.

        Raises:
            OSError: The last channel error, after all channels were tried
        """
        if not self.enabled:
            return

        last_error: Optional[OSError] = None
        for channel in self.channels:
            try:
                channel.send(notification)
            except OSError as e:
                logger.warning("Notification channel %s failed: %s", channel.name, e)
                last_error = e
        if last_error is not None:
            raise last_error

    def send_async(self, notification: Notification) -> bool:
        """Queue for background delivery.

        Returns:
            False if the notification was dropped
        """
        if not self.enabled or self._closed:
            return False

        self._ensure_worker()
        try:
            self._queue.put_nowait(notification)
        except queue.Full:
            with self._lock:
                self.dropped += 1
                dropped = self.dropped
            logger.warning(
                "Notification queue full, dropped %s (total dropped: %d)",
                notification.type.value,
                dropped,
            )
            return False
        return True

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._run, daemon=True, name="notifier"
                )
                self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.send(item)  # type: ignore[arg-type]
            except OSError as e:
                logger.debug("Async notification delivery failed: %s", e)
            finally:
                self._queue.task_done()

    def flush(self) -> None:
        """Block until every queued notification has been delivered."""
        if self._worker is not None and self._worker.is_alive():
            self._queue.join()

    def close(self) -> None:
        """Deliver what is queued, stop the notifier thread and close channels."""
        if self._closed:
            return
        self._closed = True

        if self._worker is not None and self._worker.is_alive():
            # Blocking put so the stop marker is never dropped
            self._queue.put(_STOP)
            self._worker.join()

        for channel in self.channels:
            try:
                channel.close()
            except OSError as e:
                logger.warning("Failed to close channel %s: %s", channel.name, e)
