from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScheduledTaskUpdate(ApiModel):
    """Operator-controlled fields; unknown keys (scheduleType, functionId, ...) are ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    is_enabled: Optional[bool] = None
    cron_schedule: Optional[str] = None
    retries: Optional[int] = Field(default=None, ge=0)
    concurrency_limit: Optional[int] = Field(default=None, ge=1)
    timeout: Optional[int] = Field(default=None, ge=1)  # ms
    metadata: Optional[Dict[str, Any]] = None


class TaskExecuteRequest(ApiModel):
    user_id: Optional[str] = None


class TaskRunOut(ApiModel):
    id: str
    task_id: str
    status: str
    triggered_by: str
    triggered_by_user: Optional[str] = None
    dispatcher_run_id: Optional[str] = None
    dispatcher_event_id: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class TaskStatsOut(ApiModel):
    total_runs: int
    success_count: int
    failure_count: int
    running_count: int
    success_rate: float
    avg_duration_ms: Optional[float] = None
    last_run_at: Optional[datetime] = None


class ScheduledTaskOut(ApiModel):
    id: str
    function_id: str
    function_name: str
    description: Optional[str] = None
    schedule_type: str
    cron_schedule: Optional[str] = None
    event_name: Optional[str] = None
    timezone: str
    category: str
    is_enabled: bool
    retries: int
    concurrency_limit: int
    timeout: int
    metadata: Optional[Dict[str, Any]] = None
    code_version: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ScheduledTaskDetailOut(ScheduledTaskOut):
    total_runs: int
    success_rate: float
    avg_duration_ms: Optional[float] = None
    stats: TaskStatsOut
    last_run: Optional[TaskRunOut] = None
    recent_runs: List[TaskRunOut] = Field(default_factory=list)
    next_run_at: Optional[datetime] = None


class SyncResultOut(ApiModel):
    synced: int
    created: int
    updated: int


class Pagination(ApiModel):
    limit: int
    offset: int
    count: int


class TaskListResponse(ApiModel):
    success: bool = True
    data: List[ScheduledTaskOut]
    count: int


class TaskResponse(ApiModel):
    success: bool = True
    data: ScheduledTaskOut


class TaskDetailResponse(ApiModel):
    success: bool = True
    data: ScheduledTaskDetailOut


class TaskRunResponse(ApiModel):
    success: bool = True
    data: TaskRunOut
    message: Optional[str] = None


class TaskRunListResponse(ApiModel):
    success: bool = True
    data: List[TaskRunOut]
    stats: Optional[TaskStatsOut] = None
    pagination: Optional[Pagination] = None


class SyncResponse(ApiModel):
    success: bool = True
    message: str
    data: SyncResultOut


class CategoryCountsResponse(ApiModel):
    success: bool = True
    data: Dict[str, int]


class DispatchStartRequest(ApiModel):
    task_id: Optional[str] = None
    function_id: Optional[str] = None
    run_id: Optional[str] = None
    event_id: Optional[str] = None
    triggered_by: str = "SCHEDULE"
    triggered_by_user: Optional[str] = None


class DispatchCompleteRequest(ApiModel):
    status: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    stack_trace: Optional[str] = None


class DispatchEventIn(ApiModel):
    id: Optional[str] = None
    name: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)


class DispatchInvokeRequest(ApiModel):
    run_id: Optional[str] = None
    event: DispatchEventIn = Field(default_factory=DispatchEventIn)
