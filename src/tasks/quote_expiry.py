from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Any, Dict, List

from sqlalchemy import select, update

from src.core.config import get_settings
from src.core.dispatcher_client import DispatchError, DispatchEvent
from src.models.base import utcnow
from src.models.billing import Quote
from src.models.scheduled_task import TaskCategory
from src.tasks.types import TaskContext, TaskDefinition, TaskSchedule

REMINDER_EVENT = "quote/reminder.requested"
EXPIRE_EVENT = "quotes/expire.requested"


def send_quote_expiry_reminders(ctx: TaskContext) -> Dict[str, Any]:
    days_ahead = max(0, int(get_settings().QUOTE_REMINDER_DAYS_AHEAD))
    target = utcnow().date() + timedelta(days=days_ahead)
    window_start = datetime.combine(target, time.min)
    window_end = datetime.combine(target, time.max)

    with ctx.session_factory() as db:
        quotes: List[Quote] = list(
            db.execute(
                select(Quote).where(
                    Quote.status == "SENT",
                    Quote.valid_until >= window_start,
                    Quote.valid_until <= window_end,
                    Quote.deleted_at.is_(None),
                )
            ).scalars().all()
        )
        rows = [(q.id, q.quote_number, q.customer_email, q.valid_until) for q in quotes]

    ctx.logger.info("expiring quotes found count=%s target=%s", len(rows), target.isoformat())

    queued = 0
    failed = 0
    for quote_id, quote_number, email, valid_until in rows:
        if not email:
            failed += 1
            ctx.logger.warning("quote has no customer email quote_id=%s", quote_id)
            continue
        try:
            ctx.dispatcher.send(
                DispatchEvent(
                    name=REMINDER_EVENT,
                    id=f"quote-reminder/{quote_id}/{target.isoformat()}",
                    data={
                        "quoteId": quote_id,
                        "quoteNumber": quote_number,
                        "recipient": email,
                        "subject": f"Reminder: Quote {quote_number} expiring soon",
                        "validUntil": valid_until.isoformat(),
                    },
                )
            )
            queued += 1
        except DispatchError:
            failed += 1
            ctx.logger.exception("failed to queue quote reminder quote_id=%s", quote_id)

    return {"found": len(rows), "queued": queued, "failed": failed}


def expire_stale_quotes(ctx: TaskContext) -> Dict[str, Any]:
    now = utcnow()
    with ctx.session_factory() as db:
        res = db.execute(
            update(Quote)
            .where(
                Quote.status == "SENT",
                Quote.valid_until < now,
                Quote.deleted_at.is_(None),
            )
            .values(status="EXPIRED", updated_at=now)
        )
        db.commit()
    expired = int(res.rowcount or 0)
    ctx.logger.info("stale quotes expired count=%s", expired)
    return {"expired": expired}


quote_expiry_reminder_task = TaskDefinition(
    id="quote-expiry-reminder",
    name="Send Quote Expiry Reminders",
    description="Queues reminder emails for sent quotes expiring in a few days.",
    category=TaskCategory.EMAIL,
    schedule=TaskSchedule(cron="0 9 * * *"),
    retries=3,
    metadata={"eventName": REMINDER_EVENT},
    handler=send_quote_expiry_reminders,
)

expire_quotes_task = TaskDefinition(
    id="expire-quotes",
    name="Expire Stale Quotes",
    description="Marks sent quotes past their validity date as EXPIRED.",
    category=TaskCategory.FINANCE,
    schedule=TaskSchedule(cron="30 0 * * *", event=EXPIRE_EVENT),
    handler=expire_stale_quotes,
)
