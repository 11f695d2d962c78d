"""Notification channel that appends to a log file."""

import logging
import threading
from pathlib import Path
from typing import List, Optional, TextIO

from .notification import Notification

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE_MB = 10


class LogChannel:
    """Append notifications to a text file, one line each.

    When the file has reached ``max_size_mb`` it is renamed to ``<name>.old``
    before the next write.
    """

    name = "log"

    def __init__(self, path: Path, max_size_mb: float = DEFAULT_MAX_SIZE_MB) -> None:
        self.path = Path(path)
        self.max_bytes = int(max_size_mb * 1024 * 1024)
        self._file: Optional[TextIO] = None
        self._lock = threading.Lock()

    def _rotate_if_needed(self) -> None:
        if not self.path.exists() or self.path.stat().st_size < self.max_bytes:
            return
        if self._file is not None:
            self._file.close()
            self._file = None
        old_path = self.path.with_name(self.path.name + ".old")
        self.path.replace(old_path)
        logger.debug("Rotated notification log to %s", old_path)

    def _ensure_file(self) -> TextIO:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "a", encoding="utf-8")
        return self._file

    def send(self, notification: Notification) -> None:
        """Write one notification line."""
        with self._lock:
            self._rotate_if_needed()
            handle = self._ensure_file()
            handle.write(notification.format_log_line() + "\n")
            handle.flush()

    def close(self) -> None:
        """Close the log file."""
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None


def read_log(path: Path) -> List[str]:
    """Return all lines of a notification log; empty if it does not exist."""
    path = Path(path)
    if not path.exists():
        return []
    with open(path, encoding="utf-8") as f:
        return [line.rstrip("\n") for line in f]


def clear_log(path: Path) -> None:
    """Truncate a notification log."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("", encoding="utf-8")
