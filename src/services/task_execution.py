from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func, select, update
from sqlalchemy.orm import Session

from src.core.dispatcher_client import DispatchError, DispatchEvent, JobDispatcher
from src.core.errors import ConflictError, NotFoundError, TaskDisabledError, TaskValidationError, UpstreamError
from src.models.base import utcnow
from src.models.scheduled_task import RunStatus, ScheduledTask, TaskRun, TriggerSource


logger = logging.getLogger(__name__)

FAILURE_STATUSES = (RunStatus.FAILED.value, RunStatus.TIMED_OUT.value)


@dataclass
class TaskStats:
    total_runs: int = 0
    success_count: int = 0
    failure_count: int = 0
    running_count: int = 0
    success_rate: float = 0.0  # percent of finished runs
    avg_duration_ms: Optional[float] = None
    last_run_at: Optional[datetime] = None


def _get_task(db: Session, task_id: str) -> ScheduledTask:
    task = db.get(ScheduledTask, task_id)
    if not task:
        raise NotFoundError("Task not found")
    return task


def get_run(db: Session, run_id: str) -> TaskRun:
    run = db.get(TaskRun, run_id)
    if not run:
        raise NotFoundError("Execution not found")
    return run


def find_by_dispatcher_run_id(db: Session, dispatcher_run_id: str) -> Optional[TaskRun]:
    return db.execute(
        select(TaskRun).where(TaskRun.dispatcher_run_id == dispatcher_run_id)
    ).scalar_one_or_none()


def start_run(
    db: Session,
    task_id: str,
    *,
    triggered_by: TriggerSource = TriggerSource.SCHEDULE,
    triggered_by_user: Optional[str] = None,
    dispatcher_run_id: Optional[str] = None,
    dispatcher_event_id: Optional[str] = None,
) -> TaskRun:
    task = _get_task(db, task_id)
    run = TaskRun(
        task_id=task.id,
        status=RunStatus.RUNNING.value,
        triggered_by=triggered_by.value,
        triggered_by_user=triggered_by_user,
        dispatcher_run_id=dispatcher_run_id,
        dispatcher_event_id=dispatcher_event_id,
        started_at=utcnow(),
        completed_at=None,
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    logger.info(
        "run started run_id=%s task_id=%s function_id=%s triggered_by=%s",
        run.id,
        task.id,
        task.function_id,
        run.triggered_by,
    )
    return run


def complete_run(
    db: Session,
    run_id: str,
    status: RunStatus,
    *,
    result: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
    stack_trace: Optional[str] = None,
) -> TaskRun:
    status = RunStatus(status)
    if not status.is_terminal:
        raise TaskValidationError(f"cannot complete a run with status {status.value}")

    run = db.get(TaskRun, run_id)
    if not run:
        raise NotFoundError("Execution not found")

    completed_at = utcnow()
    duration_ms = max(0, int((completed_at - run.started_at).total_seconds() * 1000))

    # guarded on status so two racing completion callbacks can't both win
    res = db.execute(
        update(TaskRun)
        .where(TaskRun.id == run_id, TaskRun.status == RunStatus.RUNNING.value)
        .values(
            status=status.value,
            completed_at=completed_at,
            duration_ms=duration_ms,
            result=result,
            error=error,
            stack_trace=stack_trace,
            updated_at=completed_at,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if res.rowcount == 0:
        raise ConflictError("Execution already completed")

    db.refresh(run)
    log = logger.info if status is RunStatus.SUCCEEDED else logger.warning
    log(
        "run completed run_id=%s task_id=%s status=%s duration_ms=%s",
        run.id,
        run.task_id,
        run.status,
        run.duration_ms,
    )
    return run


def list_runs(
    db: Session,
    task_id: str,
    *,
    limit: int = 20,
    offset: int = 0,
    status: Optional[RunStatus] = None,
) -> List[TaskRun]:
    q = select(TaskRun).where(TaskRun.task_id == task_id)
    if status is not None:
        q = q.where(TaskRun.status == RunStatus(status).value)
    q = (
        q.order_by(desc(TaskRun.started_at), desc(TaskRun.created_at))
        .offset(max(0, int(offset)))
        .limit(max(1, int(limit)))
    )
    return list(db.execute(q).scalars().all())


def list_recent_runs(db: Session, *, limit: int = 10) -> List[TaskRun]:
    return list(
        db.execute(
            select(TaskRun).order_by(desc(TaskRun.started_at)).limit(max(1, int(limit)))
        ).scalars().all()
    )


def get_stats(db: Session, task_id: str) -> TaskStats:
    rows = db.execute(
        select(TaskRun.status, func.count(), func.avg(TaskRun.duration_ms), func.max(TaskRun.started_at))
        .where(TaskRun.task_id == task_id)
        .group_by(TaskRun.status)
    ).all()

    stats = TaskStats()
    weighted_ms = 0.0
    timed_runs = 0
    for status, count, avg_ms, last_started in rows:
        count = int(count or 0)
        stats.total_runs += count
        if status == RunStatus.SUCCEEDED.value:
            stats.success_count += count
        elif status in FAILURE_STATUSES:
            stats.failure_count += count
        elif status == RunStatus.RUNNING.value:
            stats.running_count += count
        if avg_ms is not None and status != RunStatus.RUNNING.value:
            weighted_ms += float(avg_ms) * count
            timed_runs += count
        if last_started is not None and (stats.last_run_at is None or last_started > stats.last_run_at):
            stats.last_run_at = last_started

    finished = stats.success_count + stats.failure_count
    if finished:
        stats.success_rate = round(stats.success_count * 100.0 / finished, 1)
    if timed_runs:
        stats.avg_duration_ms = round(weighted_ms / timed_runs, 1)
    return stats


def trigger_manually(
    db: Session,
    task_id: str,
    user_id: Optional[str],
    dispatcher: JobDispatcher,
) -> TaskRun:
    task = _get_task(db, task_id)
    if not task.is_enabled:
        raise TaskDisabledError("Task is disabled")

    logger.info(
        "manually triggering task task_id=%s function_id=%s user_id=%s",
        task.id,
        task.function_id,
        user_id,
    )
    run = start_run(
        db,
        task.id,
        triggered_by=TriggerSource.MANUAL,
        triggered_by_user=user_id,
    )

    event_id = f"task/{task.function_id}/manual/{run.id}"
    event = DispatchEvent(
        name=f"{task.function_id}/manual",
        id=event_id,
        data={
            "taskId": task.id,
            "executionId": run.id,
            "triggeredBy": user_id,
            "manual": True,
        },
    )
    try:
        dispatcher.send(event)
    except DispatchError as exc:
        logger.exception("failed to dispatch manual trigger task_id=%s run_id=%s", task.id, run.id)
        complete_run(db, run.id, RunStatus.FAILED, error=f"dispatch failed: {exc}")
        raise UpstreamError(f"Failed to execute task: {exc}") from exc

    run.dispatcher_event_id = event_id
    db.commit()
    db.refresh(run)
    logger.info("task triggered run_id=%s event_id=%s", run.id, event_id)
    return run
