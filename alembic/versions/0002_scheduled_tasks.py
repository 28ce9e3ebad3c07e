"""scheduled task registry and execution history

Revision ID: 0002_scheduled_tasks
Revises: 0001_dashboard_tables
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mysql


# revision identifiers, used by Alembic.
revision = "0002_scheduled_tasks"
down_revision = "0001_dashboard_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    dt6 = sa.DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")

    op.create_table(
        "scheduled_tasks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("function_id", sa.String(length=128), nullable=False),
        sa.Column("function_name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("schedule_type", sa.String(length=16), nullable=False, server_default=sa.text("'EVENT'")),
        sa.Column("cron_schedule", sa.String(length=128), nullable=True),
        sa.Column("event_name", sa.String(length=255), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default=sa.text("'UTC'")),
        sa.Column("category", sa.String(length=16), nullable=False, server_default=sa.text("'SYSTEM'")),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("retries", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("concurrency_limit", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("timeout", sa.BigInteger(), nullable=False, server_default=sa.text("300000")),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("code_version", sa.String(length=64), nullable=True),
        sa.Column("last_synced_at", dt6, nullable=True),
        sa.Column("created_at", dt6, nullable=False),
        sa.Column("updated_at", dt6, nullable=False),
        sa.UniqueConstraint("function_id", name="uq_scheduled_tasks_function_id"),
        mysql_charset="utf8mb4",
        mysql_collate="utf8mb4_unicode_ci",
    )
    op.create_index("ix_scheduled_tasks_category", "scheduled_tasks", ["category"])

    op.create_table(
        "task_runs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("task_id", sa.String(length=36), sa.ForeignKey("scheduled_tasks.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'RUNNING'")),
        sa.Column("triggered_by", sa.String(length=16), nullable=False, server_default=sa.text("'SCHEDULE'")),
        sa.Column("triggered_by_user", sa.String(length=36), nullable=True),
        sa.Column("dispatcher_run_id", sa.String(length=128), nullable=True),
        sa.Column("dispatcher_event_id", sa.String(length=255), nullable=True),
        sa.Column("started_at", dt6, nullable=False),
        sa.Column("completed_at", dt6, nullable=True),
        sa.Column("duration_ms", sa.BigInteger(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("stack_trace", sa.Text(), nullable=True),
        sa.Column("created_at", dt6, nullable=False),
        sa.Column("updated_at", dt6, nullable=False),
        sa.UniqueConstraint("dispatcher_run_id", name="uq_task_runs_dispatcher_run_id"),
        mysql_charset="utf8mb4",
        mysql_collate="utf8mb4_unicode_ci",
    )
    op.create_index("ix_task_runs_task_id", "task_runs", ["task_id"])
    op.create_index("ix_task_runs_status", "task_runs", ["status"])
    op.create_index("ix_task_runs_started_at", "task_runs", ["started_at"])


def downgrade() -> None:
    op.drop_index("ix_task_runs_started_at", table_name="task_runs")
    op.drop_index("ix_task_runs_status", table_name="task_runs")
    op.drop_index("ix_task_runs_task_id", table_name="task_runs")
    op.drop_table("task_runs")

    op.drop_index("ix_scheduled_tasks_category", table_name="scheduled_tasks")
    op.drop_table("scheduled_tasks")
