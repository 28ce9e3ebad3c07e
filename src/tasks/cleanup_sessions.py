from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import delete

from src.models.base import utcnow
from src.models.scheduled_task import TaskCategory
from src.models.session import UserSession
from src.tasks.types import TaskContext, TaskDefinition, TaskSchedule


def cleanup_expired_sessions(ctx: TaskContext) -> Dict[str, Any]:
    now = utcnow()
    with ctx.session_factory() as db:
        res = db.execute(delete(UserSession).where(UserSession.expires < now))
        db.commit()
    deleted = int(res.rowcount or 0)
    ctx.logger.info("expired sessions removed count=%s", deleted)
    return {"deleted": deleted}


cleanup_sessions_task = TaskDefinition(
    id="cleanup-sessions",
    name="Clean Up Expired Sessions",
    description="Deletes login sessions whose expiry has passed.",
    category=TaskCategory.CLEANUP,
    schedule=TaskSchedule(cron="0 0 * * *"),
    timeout=120,
    retries=2,
    handler=cleanup_expired_sessions,
)
