"""
Mirror the in-code task registry into `scheduled_tasks`.

Each definition is upserted on its own commit, so a storage error part-way
through leaves the earlier rows synced. Re-running the sync finishes the job.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.models.base import utcnow
from src.models.scheduled_task import ScheduledTask
from src.tasks.types import TaskDefinition


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_RETRIES = 3
DEFAULT_CONCURRENCY_LIMIT = 1

# fields the definition owns; overwritten on every sync
DEFINITION_FIELDS = (
    "function_name",
    "description",
    "schedule_type",
    "cron_schedule",
    "event_name",
    "timezone",
    "category",
    "retries",
    "concurrency_limit",
    "timeout",
    "task_metadata",
    "code_version",
    "last_synced_at",
)


@dataclass
class SyncResult:
    synced: int = 0
    created: int = 0
    updated: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def merge_task_row(
    existing: Optional[ScheduledTask],
    definition: TaskDefinition,
    *,
    code_version: str,
    now: datetime,
) -> Dict[str, Any]:
    """
    Column values for the row that should exist after syncing `definition`.

    Definition-derived fields always come from the definition. `function_id`
    and `is_enabled` come from the existing row when there is one: operators
    own the enabled flag once the row exists.
    """
    schedule = definition.schedule
    row: Dict[str, Any] = {
        "function_name": definition.name,
        "description": definition.description,
        "schedule_type": schedule.schedule_type.value,
        "cron_schedule": schedule.cron or None,
        "event_name": schedule.event or None,
        "timezone": (schedule.timezone or "UTC").strip() or "UTC",
        "category": definition.category.value,
        "retries": definition.retries if definition.retries is not None else DEFAULT_RETRIES,
        "concurrency_limit": definition.concurrency_limit or DEFAULT_CONCURRENCY_LIMIT,
        "timeout": int(definition.timeout or DEFAULT_TIMEOUT_SECONDS) * 1000,
        "task_metadata": dict(definition.metadata) if definition.metadata else None,
        "code_version": code_version,
        "last_synced_at": now,
    }
    if existing is None:
        row["function_id"] = definition.id
        row["is_enabled"] = bool(schedule.enabled)
    else:
        row["function_id"] = existing.function_id
        row["is_enabled"] = bool(existing.is_enabled)
    return row


def find_by_function_id(db: Session, function_id: str) -> Optional[ScheduledTask]:
    return db.execute(
        select(ScheduledTask).where(ScheduledTask.function_id == function_id)
    ).scalar_one_or_none()


def upsert_task(db: Session, definition: TaskDefinition, *, code_version: str) -> bool:
    """Upsert one definition and commit. Returns True when a row was created."""
    existing = find_by_function_id(db, definition.id)
    row = merge_task_row(existing, definition, code_version=code_version, now=utcnow())
    if existing is None:
        db.add(ScheduledTask(**row))
    else:
        for key in DEFINITION_FIELDS:
            setattr(existing, key, row[key])
    db.commit()
    return existing is None


def sync_tasks_to_database(
    db: Session,
    definitions: Iterable[TaskDefinition],
    *,
    code_version: str,
) -> SyncResult:
    definitions = list(definitions)
    logger.info("starting task registry sync count=%s", len(definitions))

    res = SyncResult()
    try:
        for d in definitions:
            created = upsert_task(db, d, code_version=code_version)
            if created:
                res.created += 1
            else:
                res.updated += 1
            res.synced += 1
            logger.info(
                "task synced task_id=%s category=%s action=%s",
                d.id,
                d.category.value,
                "created" if created else "updated",
            )
    except Exception:
        db.rollback()
        logger.exception(
            "task registry sync failed synced=%s remaining=%s",
            res.synced,
            len(definitions) - res.synced,
        )
        raise

    logger.info(
        "task registry sync completed synced=%s created=%s updated=%s",
        res.synced,
        res.created,
        res.updated,
    )
    return res
