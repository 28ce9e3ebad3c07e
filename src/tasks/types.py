from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import sessionmaker

from src.core.dispatcher_client import JobDispatcher
from src.models.scheduled_task import ScheduleType, TaskCategory


@dataclass(frozen=True)
class TaskSchedule:
    """When a task fires: a cron expression, an event name, or both."""

    cron: Optional[str] = None
    event: Optional[str] = None
    timezone: str = "UTC"
    # only seeds `is_enabled` when the row is first created
    enabled: bool = True

    @property
    def schedule_type(self) -> ScheduleType:
        if self.cron and self.event:
            return ScheduleType.HYBRID
        if self.cron:
            return ScheduleType.CRON
        return ScheduleType.EVENT


@dataclass
class TaskContext:
    task_id: str
    run_id: str
    event_name: str
    event_data: Dict[str, Any]
    session_factory: sessionmaker
    dispatcher: JobDispatcher
    logger: logging.Logger


TaskHandler = Callable[[TaskContext], Dict[str, Any]]


@dataclass(frozen=True)
class TaskDefinition:
    id: str
    name: str
    category: TaskCategory
    schedule: TaskSchedule
    description: Optional[str] = None
    timeout: int = 300  # seconds
    retries: int = 3
    concurrency_limit: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    handler: Optional[TaskHandler] = field(default=None, compare=False, hash=False, repr=False)
