from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class ScheduleType(str, enum.Enum):
    CRON = "CRON"
    EVENT = "EVENT"
    HYBRID = "HYBRID"


class TaskCategory(str, enum.Enum):
    SYSTEM = "SYSTEM"
    EMAIL = "EMAIL"
    CLEANUP = "CLEANUP"
    FINANCE = "FINANCE"
    CUSTOM = "CUSTOM"


class RunStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class TriggerSource(str, enum.Enum):
    SCHEDULE = "SCHEDULE"
    MANUAL = "MANUAL"
    EVENT = "EVENT"
    RETRY = "RETRY"


class ScheduledTask(TimestampMixin, Base):
    __tablename__ = "scheduled_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    # registry key; one row per task definition
    function_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    function_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # CRON | EVENT | HYBRID, derived from the definition on every sync
    schedule_type: Mapped[str] = mapped_column(String(16), nullable=False, default=ScheduleType.EVENT.value)
    cron_schedule: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    event_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    category: Mapped[str] = mapped_column(String(16), index=True, nullable=False, default=TaskCategory.SYSTEM.value)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # stored for the dispatcher; not enforced here
    retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    concurrency_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    timeout: Mapped[int] = mapped_column(BigInteger, nullable=False, default=300_000)  # ms

    # `metadata` is reserved on declarative classes
    task_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    code_version: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)


class TaskRun(TimestampMixin, Base):
    __tablename__ = "task_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scheduled_tasks.id"), index=True, nullable=False
    )

    # RUNNING -> SUCCEEDED | FAILED | TIMED_OUT, finalized at most once
    status: Mapped[str] = mapped_column(String(16), index=True, nullable=False, default=RunStatus.RUNNING.value)
    triggered_by: Mapped[str] = mapped_column(String(16), nullable=False, default=TriggerSource.SCHEDULE.value)
    triggered_by_user: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    dispatcher_run_id: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)
    dispatcher_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), index=True, nullable=False, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    stack_trace: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
