"""Database service: engine, sessions, schema and sync metadata."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, delete, event, func, inspect, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from alembic import command  # type: ignore[attr-defined]
from alembic.config import Config as AlembicConfig  # type: ignore[import-not-found]

from ..core.errors import StorageError
from .models import (
    Base,
    ConflictStatus,
    SyncBaseline,
    SyncConflict,
    SyncMetadata,
    SyncOperation,
    Task,
    TaskList,
    utcnow,
)

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 30000

LAST_SYNC_KEY = "last_sync"

REQUIRED_TABLES = ("sync_queue", "sync_metadata", "sync_conflicts", "tasks")


def _set_sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


class DatabaseService:
    """Service for database connections and transaction management."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        """Initialize database service.

        Args:
            db_path: Path to SQLite database file.
                    If None, uses default ~/.tasksync/tasks.db
        """
        if db_path is None:
            db_path = Path.home() / ".tasksync" / "tasks.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        db_exists = self.db_path.exists()

        db_url = f"sqlite:///{self.db_path}"
        self.engine = create_engine(
            db_url,
            echo=False,
            connect_args={
                "timeout": BUSY_TIMEOUT_MS / 1000,
                "check_same_thread": False,
            },
        )
        event.listen(self.engine, "connect", _set_sqlite_pragmas)

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

        logger.debug("Database initialized at: %s", self.db_path)

        if not db_exists:
            logger.info("New database detected, initializing schema...")
            self.init_db()
        elif not self.is_initialized():
            # File exists but predates the sync tables
            Base.metadata.create_all(bind=self.engine)

    def init_db(self) -> None:
        """Initialize database schema.

        Creates all tables with SQLAlchemy and then stamps Alembic so the
        database is recorded as current.
        """
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database schema created successfully")

        self._stamp_migrations()

    def _alembic_config(self) -> Optional[AlembicConfig]:
        # database/ -> tasksync/ -> src/ -> project root
        package_dir = Path(__file__).parent.parent.parent.parent
        alembic_ini = package_dir / "alembic.ini"
        alembic_dir = package_dir / "alembic"

        if not alembic_ini.exists() or not alembic_dir.exists():
            logger.debug("Alembic not found at %s", package_dir)
            return None

        alembic_cfg = AlembicConfig(str(alembic_ini))
        alembic_cfg.set_main_option("script_location", str(alembic_dir))
        alembic_cfg.set_main_option("sqlalchemy.url", f"sqlite:///{self.db_path}")
        alembic_cfg.attributes["configure_logger"] = False
        return alembic_cfg

    def _stamp_migrations(self) -> None:
        """Stamp database as being at the latest migration version."""
        alembic_cfg = self._alembic_config()
        if alembic_cfg is None:
            logger.debug("Skipping migration stamp")
            return
        try:
            command.stamp(alembic_cfg, "head")
            logger.debug("Database stamped with latest migration version")
        except Exception as e:
            logger.error("Failed to stamp migrations: %s", e)
            logger.warning("Database may need manual migration")

    def run_migrations(self) -> None:
        """Run Alembic migrations to upgrade database to latest version."""
        alembic_cfg = self._alembic_config()
        if alembic_cfg is None:
            logger.warning("Alembic configuration not found, skipping migrations")
            return
        try:
            command.upgrade(alembic_cfg, "head")
            logger.info("Database migrations applied successfully")
        except Exception as e:
            logger.error("Failed to run migrations: %s", e)
            # The base tables already exist
            logger.warning("Continuing with base schema only")

    def get_session(self) -> Session:
        """Get a new database session.

        Returns:
            SQLAlchemy Session object

        Note:
            Caller is responsible for closing the session
        """
        return self.SessionLocal()

    def is_initialized(self) -> bool:
        """Check whether the engine is usable and the sync tables exist."""
        try:
            inspector = inspect(self.engine)
            missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
            if missing:
                logger.debug("Required tables missing: %s", ", ".join(missing))
                return False

            with self.SessionLocal() as session:
                session.execute(select(1))

            return True
        except SQLAlchemyError as e:
            logger.debug("Database initialization check failed: %s", e)
            return False

    # =========================================================================
    # Sync Metadata
    # =========================================================================

    def get_metadata(self, key: str) -> Optional[str]:
        """Read one sync metadata value.

        Args:
            key: Metadata key

        Returns:
            Stored value or None if the key was never written
        """
        try:
            with self.get_session() as session:
                stmt = select(SyncMetadata.value).where(SyncMetadata.key == key)
                return session.scalar(stmt)
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read metadata {key!r}: {e}") from e

    def set_metadata(self, key: str, value: str) -> None:
        """Insert or replace a sync metadata value.

        Args:
            key: Metadata key
            value: New value
        """
        try:
            with self.get_session() as session:
                row = session.scalar(
                    select(SyncMetadata).where(SyncMetadata.key == key)
                )
                if row is None:
                    session.add(SyncMetadata(key=key, value=value))
                else:
                    row.value = value
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to write metadata {key!r}: {e}") from e

    def get_all_metadata(self) -> Dict[str, str]:
        """Return every metadata entry as a dict."""
        try:
            with self.get_session() as session:
                rows = session.scalars(
                    select(SyncMetadata).order_by(SyncMetadata.key)
                ).all()
                return {row.key: row.value for row in rows}
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read metadata: {e}") from e

    def get_last_sync_time(self) -> Optional[datetime]:
        """Get the time of the last successful reconciliation.

        Returns:
            Naive UTC datetime, or None if no sync ever completed
        """
        raw = self.get_metadata(LAST_SYNC_KEY)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring malformed last_sync value: %s", raw)
            return None

    def set_last_sync_time(self, when: datetime) -> None:
        """Record the time of a successful reconciliation."""
        self.set_metadata(LAST_SYNC_KEY, when.isoformat())

    # =========================================================================
    # Sync Baselines
    # =========================================================================

    def get_baseline(self, task_uid: str) -> Optional[SyncBaseline]:
        """Get the last remote version recorded for a UID."""
        try:
            with self.get_session() as session:
                return session.scalar(
                    select(SyncBaseline).where(SyncBaseline.task_uid == task_uid)
                )
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read baseline {task_uid}: {e}") from e

    def get_baseline_uids(self) -> List[str]:
        """UIDs this replica has seen on the remote at least once."""
        try:
            with self.get_session() as session:
                stmt = select(SyncBaseline.task_uid).order_by(SyncBaseline.id)
                return list(session.scalars(stmt).all())
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read baselines: {e}") from e

    def set_baseline(self, task_uid: str, remote_modified: datetime) -> None:
        """Record the remote version of a UID as seen by this replica.

        Args:
            task_uid: Task UID
            remote_modified: Remote modification time now known locally
        """
        try:
            with self.get_session() as session:
                baseline = session.scalar(
                    select(SyncBaseline).where(SyncBaseline.task_uid == task_uid)
                )
                if baseline is None:
                    baseline = SyncBaseline(task_uid=task_uid)
                    session.add(baseline)
                baseline.remote_modified = remote_modified
                baseline.synced_at = utcnow()
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to write baseline {task_uid}: {e}") from e

    def delete_baseline(self, task_uid: str) -> None:
        """Forget the baseline of a UID (after a propagated delete)."""
        try:
            with self.get_session() as session:
                session.execute(
                    delete(SyncBaseline).where(SyncBaseline.task_uid == task_uid)
                )
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to delete baseline {task_uid}: {e}") from e

    # =========================================================================
    # Maintenance
    # =========================================================================

    def vacuum(self) -> None:
        """Reclaim free pages in the database file."""
        try:
            with self.engine.connect() as conn:
                conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                    text("VACUUM")
                )
            logger.info("Database vacuumed: %s", self.db_path)
        except SQLAlchemyError as e:
            raise StorageError(f"vacuum failed: {e}") from e

    def get_statistics(self) -> Dict[str, Any]:
        """Get database statistics.

        Returns:
            Dictionary with statistics
        """
        try:
            with self.get_session() as session:
                task_count = session.scalar(select(func.count()).select_from(Task))
                list_count = session.scalar(
                    select(func.count()).select_from(TaskList)
                )
                pending_operations = session.scalar(
                    select(func.count()).select_from(SyncOperation)
                )
                pending_conflicts = session.scalar(
                    select(func.count())
                    .select_from(SyncConflict)
                    .where(SyncConflict.status == ConflictStatus.PENDING.value)
                )
        except SQLAlchemyError as e:
            raise StorageError(f"failed to read statistics: {e}") from e

        size_bytes = self.db_path.stat().st_size if self.db_path.exists() else 0
        return {
            "tasks": task_count or 0,
            "lists": list_count or 0,
            "pending_operations": pending_operations or 0,
            "pending_conflicts": pending_conflicts or 0,
            "size_bytes": size_bytes,
            "database_path": str(self.db_path),
        }

    def close(self) -> None:
        """Close database connection."""
        if hasattr(self, "engine"):
            self.engine.dispose()
            logger.debug("Database connection closed")
