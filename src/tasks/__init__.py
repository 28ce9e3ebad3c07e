from src.tasks.registry import TASKS, get_handler, get_task_by_id, list_definitions
from src.tasks.types import TaskContext, TaskDefinition, TaskHandler, TaskSchedule

__all__ = [
    "TASKS",
    "TaskContext",
    "TaskDefinition",
    "TaskHandler",
    "TaskSchedule",
    "get_handler",
    "get_task_by_id",
    "list_definitions",
]
