from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from src.api.deps import get_current_user, require_roles
from src.core.config import get_settings
from src.core.db import get_db
from src.core.errors import NotFoundError
from src.core.dispatcher_client import JobDispatcher, get_dispatcher
from src.core.security import ROLE_ADMIN, ROLE_MANAGER, CurrentUser
from src.models.scheduled_task import RunStatus, ScheduledTask, ScheduleType, TaskCategory, TaskRun
from src.schemas.scheduled_task import (
    CategoryCountsResponse,
    Pagination,
    ScheduledTaskDetailOut,
    ScheduledTaskOut,
    ScheduledTaskUpdate,
    SyncResponse,
    SyncResultOut,
    TaskDetailResponse,
    TaskExecuteRequest,
    TaskListResponse,
    TaskResponse,
    TaskRunListResponse,
    TaskRunOut,
    TaskRunResponse,
    TaskStatsOut,
)
from src.services import task_execution, task_query
from src.services.task_execution import TaskStats
from src.services.task_registry import sync_tasks_to_database
from src.tasks.registry import list_definitions

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


def _as_utc_aware(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        # DB stores naive UTC; tag it so clients can interpret correctly
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _task_out(t: ScheduledTask) -> ScheduledTaskOut:
    return ScheduledTaskOut(
        id=t.id,
        function_id=t.function_id,
        function_name=t.function_name,
        description=t.description,
        schedule_type=t.schedule_type,
        cron_schedule=t.cron_schedule,
        event_name=t.event_name,
        timezone=t.timezone,
        category=t.category,
        is_enabled=bool(t.is_enabled),
        retries=int(t.retries),
        concurrency_limit=int(t.concurrency_limit),
        timeout=int(t.timeout),
        metadata=t.task_metadata,
        code_version=t.code_version,
        last_synced_at=_as_utc_aware(t.last_synced_at),
        created_at=_as_utc_aware(t.created_at),
        updated_at=_as_utc_aware(t.updated_at),
    )


def _run_out(r: TaskRun) -> TaskRunOut:
    return TaskRunOut(
        id=r.id,
        task_id=r.task_id,
        status=r.status,
        triggered_by=r.triggered_by,
        triggered_by_user=r.triggered_by_user,
        dispatcher_run_id=r.dispatcher_run_id,
        dispatcher_event_id=r.dispatcher_event_id,
        started_at=_as_utc_aware(r.started_at),
        completed_at=_as_utc_aware(r.completed_at),
        duration_ms=r.duration_ms,
        result=r.result,
        error=r.error,
    )


def _stats_out(s: TaskStats) -> TaskStatsOut:
    return TaskStatsOut(
        total_runs=s.total_runs,
        success_count=s.success_count,
        failure_count=s.failure_count,
        running_count=s.running_count,
        success_rate=s.success_rate,
        avg_duration_ms=s.avg_duration_ms,
        last_run_at=_as_utc_aware(s.last_run_at),
    )


@router.get("", response_model=TaskListResponse)
def list_tasks(
    category: Optional[TaskCategory] = Query(default=None),
    is_enabled: Optional[bool] = Query(default=None, alias="isEnabled"),
    schedule_type: Optional[ScheduleType] = Query(default=None, alias="scheduleType"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    tasks = task_query.list_tasks(db, category=category, is_enabled=is_enabled, schedule_type=schedule_type)
    return TaskListResponse(data=[_task_out(t) for t in tasks], count=len(tasks))


def _sync(db: Session, current_user: CurrentUser) -> SyncResponse:
    settings = get_settings()
    res = sync_tasks_to_database(db, list_definitions(), code_version=settings.CODE_VERSION)
    logger.info(
        "tasks synced user_id=%s synced=%s created=%s updated=%s",
        current_user.id,
        res.synced,
        res.created,
        res.updated,
    )
    return SyncResponse(
        message=f"Synced {res.synced} tasks",
        data=SyncResultOut(**res.as_dict()),
    )


@router.post("/sync", response_model=SyncResponse)
def sync_tasks(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ROLE_ADMIN)),
):
    return _sync(db, current_user)


@router.get("/sync", response_model=SyncResponse)
def sync_tasks_get(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ROLE_ADMIN)),
):
    return _sync(db, current_user)


@router.get("/stats/categories", response_model=CategoryCountsResponse)
def task_counts_by_category(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return CategoryCountsResponse(data=task_query.count_by_category(db))


@router.get("/executions/recent", response_model=TaskRunListResponse)
def recent_executions(
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    runs = task_execution.list_recent_runs(db, limit=limit)
    return TaskRunListResponse(data=[_run_out(r) for r in runs])


@router.get("/{task_id}", response_model=TaskDetailResponse)
def get_task(
    task_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    detail = task_query.get_task_with_stats(db, task_id, recent_limit=get_settings().TASK_RECENT_RUNS_LIMIT)
    base = _task_out(detail.task)
    stats = _stats_out(detail.stats)
    last_run = detail.last_run
    return TaskDetailResponse(
        data=ScheduledTaskDetailOut(
            **base.model_dump(),
            total_runs=stats.total_runs,
            success_rate=stats.success_rate,
            avg_duration_ms=stats.avg_duration_ms,
            stats=stats,
            last_run=_run_out(last_run) if last_run else None,
            recent_runs=[_run_out(r) for r in detail.recent_runs],
            next_run_at=_as_utc_aware(detail.next_run_at),
        )
    )


@router.put("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: str,
    payload: ScheduledTaskUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(ROLE_ADMIN)),
):
    task = task_query.update_task(db, task_id, payload.model_dump(exclude_unset=True))
    logger.info("task updated task_id=%s user_id=%s", task_id, current_user.id)
    return TaskResponse(data=_task_out(task))


@router.post("/{task_id}/execute", response_model=TaskRunResponse)
def execute_task(
    task_id: str,
    payload: Optional[TaskExecuteRequest] = None,
    db: Session = Depends(get_db),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    current_user: CurrentUser = Depends(require_roles(ROLE_ADMIN, ROLE_MANAGER)),
):
    user_id = (payload.user_id if payload else None) or current_user.id
    run = task_execution.trigger_manually(db, task_id, user_id, dispatcher)
    return TaskRunResponse(data=_run_out(run), message="Task execution started")


@router.get("/{task_id}/executions", response_model=TaskRunListResponse)
def list_task_executions(
    task_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    status: Optional[RunStatus] = Query(default=None),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    task_query.get_task(db, task_id)
    runs = task_execution.list_runs(db, task_id, limit=limit, offset=offset, status=status)
    stats = task_execution.get_stats(db, task_id)
    return TaskRunListResponse(
        data=[_run_out(r) for r in runs],
        stats=_stats_out(stats),
        pagination=Pagination(limit=limit, offset=offset, count=len(runs)),
    )


@router.get("/{task_id}/executions/{execution_id}", response_model=TaskRunResponse)
def get_task_execution(
    task_id: str,
    execution_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    run = task_execution.get_run(db, execution_id)
    if run.task_id != task_id:
        raise NotFoundError("Execution not found")
    return TaskRunResponse(data=_run_out(run))
