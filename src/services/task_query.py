from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from croniter import croniter
from sqlalchemy import asc, func, select
from sqlalchemy.orm import Session
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.core.errors import NotFoundError, TaskValidationError
from src.models.base import utcnow
from src.models.scheduled_task import ScheduleType, ScheduledTask, TaskCategory, TaskRun
from src.services.task_execution import TaskStats, get_stats, list_runs

# the only fields an operator may change; everything else in an update is dropped
OPERATOR_FIELDS = (
    "is_enabled",
    "cron_schedule",
    "retries",
    "concurrency_limit",
    "timeout",
    "metadata",
)


@dataclass
class TaskDetail:
    task: ScheduledTask
    stats: TaskStats
    recent_runs: List[TaskRun] = field(default_factory=list)
    next_run_at: Optional[datetime] = None

    @property
    def last_run(self) -> Optional[TaskRun]:
        return self.recent_runs[0] if self.recent_runs else None


def _to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def compute_next_run(cron_expr: Optional[str], tz_name: str, *, after_utc: datetime) -> Optional[datetime]:
    expr = (cron_expr or "").strip()
    if not expr or not croniter.is_valid(expr):
        return None
    try:
        tz = ZoneInfo((tz_name or "UTC").strip() or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo("UTC")

    base_local_aware = after_utc.replace(tzinfo=timezone.utc).astimezone(tz)
    # croniter behaves best with naive datetimes (interpreted in the given tz)
    base_local_naive = base_local_aware.replace(tzinfo=None)
    next_local_naive = croniter(expr, base_local_naive).get_next(datetime)
    return _to_utc_naive(next_local_naive.replace(tzinfo=tz))


def get_task(db: Session, task_id: str) -> ScheduledTask:
    task = db.get(ScheduledTask, task_id)
    if not task:
        raise NotFoundError("Task not found")
    return task


def list_tasks(
    db: Session,
    *,
    category: Optional[TaskCategory] = None,
    is_enabled: Optional[bool] = None,
    schedule_type: Optional[ScheduleType] = None,
) -> List[ScheduledTask]:
    q = select(ScheduledTask)
    if category is not None:
        q = q.where(ScheduledTask.category == TaskCategory(category).value)
    if is_enabled is not None:
        q = q.where(ScheduledTask.is_enabled.is_(bool(is_enabled)))
    if schedule_type is not None:
        q = q.where(ScheduledTask.schedule_type == ScheduleType(schedule_type).value)
    q = q.order_by(asc(ScheduledTask.category), asc(ScheduledTask.function_id))
    return list(db.execute(q).scalars().all())


def get_task_with_stats(db: Session, task_id: str, *, recent_limit: int = 5) -> TaskDetail:
    task = get_task(db, task_id)
    next_run_at = None
    if task.schedule_type in (ScheduleType.CRON.value, ScheduleType.HYBRID.value):
        next_run_at = compute_next_run(task.cron_schedule, task.timezone, after_utc=utcnow())
    return TaskDetail(
        task=task,
        stats=get_stats(db, task.id),
        recent_runs=list_runs(db, task.id, limit=recent_limit),
        next_run_at=next_run_at,
    )


def _validate_operator_fields(fields: Dict[str, Any]) -> None:
    if "is_enabled" in fields and not isinstance(fields["is_enabled"], bool):
        raise TaskValidationError("isEnabled must be a boolean")
    cron = fields.get("cron_schedule")
    if "cron_schedule" in fields and cron is not None:
        if not isinstance(cron, str) or not croniter.is_valid(cron.strip()):
            raise TaskValidationError(f"invalid cron expression: {cron!r}")
        fields["cron_schedule"] = cron.strip()
    for key, minimum in (("retries", 0), ("concurrency_limit", 1), ("timeout", 1)):
        if key not in fields:
            continue
        val = fields[key]
        if isinstance(val, bool) or not isinstance(val, int) or val < minimum:
            raise TaskValidationError(f"{key} must be an integer >= {minimum}")
    if "metadata" in fields and fields["metadata"] is not None and not isinstance(fields["metadata"], dict):
        raise TaskValidationError("metadata must be an object")


def update_task(db: Session, task_id: str, fields: Mapping[str, Any]) -> ScheduledTask:
    task = get_task(db, task_id)
    changes = {k: v for k, v in fields.items() if k in OPERATOR_FIELDS}
    _validate_operator_fields(changes)

    for key, val in changes.items():
        if key == "metadata":
            task.task_metadata = val
        else:
            setattr(task, key, val)
    db.commit()
    db.refresh(task)
    return task


def set_task_enabled(db: Session, task_id: str, enabled: bool) -> ScheduledTask:
    return update_task(db, task_id, {"is_enabled": bool(enabled)})


def count_by_category(db: Session) -> Dict[str, int]:
    rows = db.execute(
        select(ScheduledTask.category, func.count()).group_by(ScheduledTask.category)
    ).all()
    return {category: int(count) for category, count in rows}
