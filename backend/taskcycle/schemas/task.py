from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from taskcycle.models.task import TaskPriority, TaskStatus
from taskcycle.services.recurrence import RecurrenceType


def _check_weekdays(value: list[int] | None) -> list[int] | None:
    if value is not None and any(day < 0 or day > 6 for day in value):
        raise ValueError("weekdays must be between 0 (Sunday) and 6 (Saturday)")
    return value


class TaskBase(BaseModel):
    name: str
    description: str | None = None
    note: str | None = None
    project_id: int | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.NOT_STARTED
    due_date: datetime | None = None
    parent_task_id: int | None = None
    # Recurring task fields
    recurrence_type: RecurrenceType = RecurrenceType.NONE
    recurrence_interval: int | None = Field(default=1, ge=1, description="Every N days/weeks/months")
    recurrence_end_date: datetime | None = None
    recurrence_weekday: int | None = Field(default=None, ge=0, le=6, description="0=Sunday, 6=Saturday")
    recurrence_weekdays: list[int] | None = Field(default=None, description="0=Sunday, 6=Saturday")
    recurrence_month_day: int | None = Field(default=None, ge=1, le=31)
    recurrence_week_of_month: int | None = Field(default=None, ge=1, le=5)
    completion_based: bool = False

    @field_validator("recurrence_weekdays")
    @classmethod
    def validate_weekdays(cls, value: list[int] | None) -> list[int] | None:
        return _check_weekdays(value)


class TaskCreate(TaskBase):
    pass


class TaskUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    note: str | None = None
    project_id: int | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    due_date: datetime | None = None
    parent_task_id: int | None = None
    # Recurring task fields
    recurrence_type: RecurrenceType | None = None
    recurrence_interval: int | None = Field(default=None, ge=1)
    recurrence_end_date: datetime | None = None
    recurrence_weekday: int | None = Field(default=None, ge=0, le=6)
    recurrence_weekdays: list[int] | None = None
    recurrence_month_day: int | None = Field(default=None, ge=1, le=31)
    recurrence_week_of_month: int | None = Field(default=None, ge=1, le=5)
    completion_based: bool | None = None
    # Instance edits may be written through to the template
    update_parent_recurrence: bool | None = None

    @field_validator("recurrence_weekdays")
    @classmethod
    def validate_weekdays(cls, value: list[int] | None) -> list[int] | None:
        return _check_weekdays(value)

    class Config:
        # Allow extra fields to be ignored (frontend might send read-only fields)
        extra = "ignore"


class TaskPublic(TaskBase):
    id: int
    completed_at: datetime | None = None
    recurring_parent_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    # Set on projected rows that are not stored
    is_virtual_occurrence: bool = False
    occurrence_index: int | None = None
    virtual_id: str | None = None

    class Config:
        from_attributes = True


class IterationPublic(BaseModel):
    date: str = Field(..., description="Occurrence date in the requested timezone")
    utc_date: datetime
