"""create_task_and_sync_tables

Revision ID: 3c8e1f0a9b27
Revises:
Create Date: 2026-01-16 10:30:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c8e1f0a9b27"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "task_lists",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_lists_name", "task_lists", ["name"], unique=True)

    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("uid", sa.String(length=255), nullable=False),
        sa.Column("list_id", sa.Integer(), nullable=False),
        sa.Column("summary", sa.String(length=1000), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("categories", sa.Text(), nullable=True),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("modified_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["list_id"], ["task_lists.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_tasks_uid", "tasks", ["uid"], unique=True)
    op.create_index("ix_tasks_modified_at", "tasks", ["modified_at"])
    op.create_index("idx_tasks_list", "tasks", ["list_id"])

    op.create_table(
        "sync_queue",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("task_uid", sa.String(length=255), nullable=False),
        sa.Column("task_summary", sa.Text(), nullable=False),
        sa.Column("list_id", sa.Integer(), nullable=False),
        sa.Column("operation_type", sa.String(length=20), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_sync_queue_task", "sync_queue", ["task_id"])
    op.create_index("idx_sync_queue_type", "sync_queue", ["operation_type"])
    op.create_index("idx_sync_queue_created", "sync_queue", ["created_at"])

    op.create_table(
        "sync_metadata",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key"),
    )

    op.create_table(
        "sync_conflicts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("task_uid", sa.String(length=255), nullable=False),
        sa.Column("task_summary", sa.Text(), nullable=False),
        sa.Column("list_id", sa.Integer(), nullable=False),
        sa.Column("local_version", sa.Text(), nullable=False),
        sa.Column("remote_version", sa.Text(), nullable=False),
        sa.Column("local_modified", sa.DateTime(), nullable=False),
        sa.Column("remote_modified", sa.DateTime(), nullable=False),
        sa.Column("detected_at", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("resolution", sa.String(length=20), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_sync_conflicts_uid", "sync_conflicts", ["task_uid"])
    op.create_index("idx_sync_conflicts_status", "sync_conflicts", ["status"])

    op.create_table(
        "sync_baselines",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("task_uid", sa.String(length=255), nullable=False),
        sa.Column("remote_modified", sa.DateTime(), nullable=False),
        sa.Column("synced_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_sync_baselines_task_uid", "sync_baselines", ["task_uid"], unique=True
    )


def downgrade() -> None:
    op.drop_index("ix_sync_baselines_task_uid", table_name="sync_baselines")
    op.drop_table("sync_baselines")
    op.drop_index("idx_sync_conflicts_status", table_name="sync_conflicts")
    op.drop_index("idx_sync_conflicts_uid", table_name="sync_conflicts")
    op.drop_table("sync_conflicts")
    op.drop_table("sync_metadata")
    op.drop_index("idx_sync_queue_created", table_name="sync_queue")
    op.drop_index("idx_sync_queue_type", table_name="sync_queue")
    op.drop_index("idx_sync_queue_task", table_name="sync_queue")
    op.drop_table("sync_queue")
    op.drop_index("idx_tasks_list", table_name="tasks")
    op.drop_index("ix_tasks_modified_at", table_name="tasks")
    op.drop_index("ix_tasks_uid", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("ix_task_lists_name", table_name="task_lists")
    op.drop_table("task_lists")
