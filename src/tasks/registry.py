"""
Catalogue of every task this service knows how to run.

Tasks are added here at build time; the sync service mirrors them into
`scheduled_tasks`, and the task runner looks handlers up by id.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from croniter import croniter

from src.tasks.cleanup_sessions import cleanup_sessions_task
from src.tasks.invoice_overdue import update_overdue_invoices_task
from src.tasks.quote_expiry import expire_quotes_task, quote_expiry_reminder_task
from src.tasks.types import TaskDefinition, TaskHandler


def _build_registry(*definitions: TaskDefinition) -> Dict[str, TaskDefinition]:
    out: Dict[str, TaskDefinition] = {}
    for d in definitions:
        if d.id in out:
            raise ValueError(f"duplicate task id: {d.id}")
        if d.schedule.cron and not croniter.is_valid(d.schedule.cron):
            raise ValueError(f"invalid cron expression for task {d.id}: {d.schedule.cron!r}")
        out[d.id] = d
    return out


TASKS: Dict[str, TaskDefinition] = _build_registry(
    cleanup_sessions_task,
    update_overdue_invoices_task,
    quote_expiry_reminder_task,
    expire_quotes_task,
)


def list_definitions() -> List[TaskDefinition]:
    return list(TASKS.values())


def get_task_by_id(task_id: str) -> Optional[TaskDefinition]:
    return TASKS.get(task_id)


def get_handler(task_id: str) -> Optional[TaskHandler]:
    d = TASKS.get(task_id)
    return d.handler if d else None
