from src.models.base import Base
from src.models.billing import Invoice, Quote
from src.models.scheduled_task import ScheduledTask, TaskRun
from src.models.session import UserSession

__all__ = [
    "Base",
    "Invoice",
    "Quote",
    "ScheduledTask",
    "TaskRun",
    "UserSession",
]
