from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import update

from src.models.base import utcnow
from src.models.billing import Invoice
from src.models.scheduled_task import TaskCategory
from src.tasks.types import TaskContext, TaskDefinition, TaskSchedule


def mark_overdue_invoices(ctx: TaskContext) -> Dict[str, Any]:
    # an invoice due yesterday is overdue today; one due today is not
    now = utcnow()
    with ctx.session_factory() as db:
        res = db.execute(
            update(Invoice)
            .where(
                Invoice.status == "PENDING",
                Invoice.due_date < now.date(),
                Invoice.deleted_at.is_(None),
            )
            .values(status="OVERDUE", updated_at=now)
        )
        db.commit()
    updated = int(res.rowcount or 0)
    ctx.logger.info("overdue invoices marked count=%s", updated)
    return {"updated": updated}


update_overdue_invoices_task = TaskDefinition(
    id="update-overdue-invoices",
    name="Mark Overdue Invoices",
    description="Moves pending invoices past their due date to OVERDUE.",
    category=TaskCategory.FINANCE,
    schedule=TaskSchedule(cron="0 1 * * *"),
    handler=mark_overdue_invoices,
)
