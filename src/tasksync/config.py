"""Configuration management for the tasksync application."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file from config directory or project root
_config_env = Path(__file__).parent.parent.parent / "config" / ".env"
if _config_env.exists():
    load_dotenv(_config_env)
else:
    # Fallback to working directory .env
    load_dotenv()

OFFLINE_MODES = ("auto", "online", "offline")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _runtime_dir() -> Path:
    runtime_dir = os.getenv("XDG_RUNTIME_DIR")
    if runtime_dir:
        return Path(runtime_dir) / "tasksync"
    return Path.home() / ".tasksync" / "run"


class Config:
    """Application configuration."""

    def __init__(self) -> None:
        """Initialize configuration from environment variables."""
        data_dir = _env_path("TASKSYNC_DATA_DIR", Path.home() / ".tasksync")
        self.data_dir = data_dir

        # Database settings
        self.database_path = _env_path("TASKSYNC_DATABASE_PATH", data_dir / "tasks.db")

        # Remote backend: a second SQLite database acting as the remote side.
        remote_raw = os.getenv("TASKSYNC_REMOTE_DATABASE_PATH", "").strip()
        self.remote_database_path: Optional[Path] = (
            Path(remote_raw).expanduser() if remote_raw else None
        )

        # Sync behaviour
        offline_mode = os.getenv("TASKSYNC_OFFLINE_MODE", "auto").strip().lower()
        self.offline_mode = offline_mode if offline_mode in OFFLINE_MODES else "auto"
        self.max_retries = int(_env_float("TASKSYNC_MAX_RETRIES", 5))

        # Daemon settings
        self.daemon_interval = _env_float("TASKSYNC_DAEMON_INTERVAL", 300.0)
        self.daemon_pid_path = _env_path(
            "TASKSYNC_DAEMON_PID_PATH", _runtime_dir() / "daemon.pid"
        )
        self.daemon_log_path = _env_path(
            "TASKSYNC_DAEMON_LOG_PATH", data_dir / "daemon.log"
        )
        stale_after = _env_float("TASKSYNC_DAEMON_STALE_AFTER", 0.0)
        self.daemon_stale_after: Optional[float] = stale_after or None
        idle_timeout = _env_float("TASKSYNC_DAEMON_IDLE_TIMEOUT", 0.0)
        self.daemon_idle_timeout: Optional[float] = idle_timeout or None
        self.auto_sync_after_operation = _env_bool(
            "TASKSYNC_AUTO_SYNC_AFTER_OPERATION", False
        )

        # Notifications
        self.notifications_enabled = _env_bool("TASKSYNC_NOTIFICATIONS_ENABLED", True)
        self.notification_log_path = _env_path(
            "TASKSYNC_NOTIFICATION_LOG_PATH", data_dir / "notifications.log"
        )
        self.notification_queue_size = int(
            _env_float("TASKSYNC_NOTIFICATION_QUEUE_SIZE", 64)
        )

        # Logging
        self.log_level = os.getenv("TASKSYNC_LOG_LEVEL", "WARNING").upper()

        # Ensure directories exist
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """Ensure required directories exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.daemon_log_path.parent.mkdir(parents=True, exist_ok=True)
        self.daemon_pid_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def has_remote(self) -> bool:
        """Whether a remote backend is configured."""
        return self.remote_database_path is not None


def get_config() -> Config:
    """Get application configuration."""
    return Config()
