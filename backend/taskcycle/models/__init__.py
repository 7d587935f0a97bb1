from taskcycle.models.task import Task
from taskcycle.models.recurring_completion import RecurringCompletion
from taskcycle.models.task_event import TaskEvent

__all__ = [
    "Task",
    "RecurringCompletion",
    "TaskEvent",
]
