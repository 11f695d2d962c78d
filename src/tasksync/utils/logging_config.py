"""Logging configuration for the tasksync application."""

import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import Any, Optional

CONSOLE_FORMAT = (
    "%(asctime)s - %(threadName)-11s - %(location)-28s - "
    "%(levelname)s - %(message)s"
)
FILE_FORMAT = (
    "%(asctime)s - %(threadName)-11s - %(location)-28s - "
    "%(levelname)-8s - %(message)s"
)

# Daemon log lines look like "[2026-01-16T10:30:00Z] Sync attempt 3 (offline mode)"
DAEMON_LOG_FORMAT = "[%(asctime)s] %(message)s"
DAEMON_LOG_DATEFMT = "%Y-%m-%dT%H:%M:%SZ"

QUIET_LOGGERS = ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool", "alembic")


class TaskSyncFormatter(logging.Formatter):
    """Formatter adding a ``location`` field (``file.py:line``)."""

    def format(self, record: Any) -> str:
        """Format log record with combined location field."""
        record.location = f"{record.filename}:{record.lineno}"
        return super().format(record)


class ConsoleFormatter(TaskSyncFormatter):
    """Console formatter that colors the level name on terminals."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, *args: Any, colored: bool = True, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.colored = colored

    def format(self, record: Any) -> str:
        """Format log record, colored when writing to a terminal."""
        if not self.colored:
            return super().format(record)

        color = self.LEVEL_COLORS.get(record.levelname, self.RESET)
        original_levelname = record.levelname
        record.levelname = f"{color}{original_levelname:<8}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers see the same record object
            record.levelname = original_levelname


def setup_logging(
    log_level: str = "WARNING",
    log_file: Optional[Path] = None,
    console_output: bool = True,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
) -> None:
    """Set up application logging.

    Console output goes to stderr so that command output on stdout (tables,
    ``--json``) stays machine readable. Records carry the thread name, which
    tells foreground work apart from the ``sync-daemon`` and ``notifier``
    threads.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a rotating log file
        console_output: Whether to log to stderr
        max_file_size: Maximum size of the log file before rotation
        backup_count: Number of rotated files to keep
    """
    numeric_level = getattr(logging, log_level.upper(), logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(
            ConsoleFormatter(
                fmt=CONSOLE_FORMAT, datefmt="%H:%M:%S", colored=sys.stderr.isatty()
            )
        )
        root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(
            TaskSyncFormatter(fmt=FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        )
        root_logger.addHandler(file_handler)

    logger = logging.getLogger(__name__)
    logger.debug("Logging initialized - Level: %s", log_level)
    if log_file:
        logger.debug("Log file: %s", log_file)


def daemon_log_handler(log_path: Path) -> logging.Handler:
    """Build the file handler for a daemon log.

    Timestamps are UTC in ISO-8601 form with a ``Z`` suffix.
    """
    log_path = Path(log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, encoding="utf-8")
    formatter = logging.Formatter(DAEMON_LOG_FORMAT, datefmt=DAEMON_LOG_DATEFMT)
    formatter.converter = time.gmtime
    handler.setFormatter(formatter)
    return handler


def configure_third_party_loggers() -> None:
    """Keep SQLAlchemy and Alembic at WARNING regardless of the app level."""
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
