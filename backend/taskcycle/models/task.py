from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from taskcycle.db.base import Base


class TaskPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(str, PyEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    WAITING = "waiting"
    ARCHIVED = "archived"


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    note = Column(Text, nullable=True)
    # Projects live outside this service; only the reference is kept
    project_id = Column(Integer, nullable=True, index=True)
    priority = Column(
        SQLEnum(TaskPriority, values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
        default=TaskPriority.MEDIUM,
    )
    # Use String for SQLite compatibility - enum values are stored as lowercase strings
    status = Column(String(20), nullable=False, default=TaskStatus.NOT_STARTED.value)
    due_date = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Subtasks block deletion of their parent
    parent_task_id = Column(
        Integer, ForeignKey("tasks.id", ondelete="RESTRICT"), nullable=True
    )

    # Recurring task fields
    recurrence_type = Column(String(20), nullable=False, default="none")
    recurrence_interval = Column(Integer, nullable=True, default=1)
    recurrence_end_date = Column(DateTime, nullable=True, default=None)
    # 0=Sunday .. 6=Saturday
    recurrence_weekday = Column(Integer, nullable=True, default=None)
    # JSON list of weekdays, e.g. [1, 3, 5] for Mon/Wed/Fri
    recurrence_weekdays = Column(JSON, nullable=True, default=None)
    recurrence_month_day = Column(Integer, nullable=True, default=None)
    recurrence_week_of_month = Column(Integer, nullable=True, default=None)
    completion_based = Column(Boolean, nullable=False, default=False)
    recurring_parent_id = Column(
        Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True
    )

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    recurring_parent = relationship(
        "Task",
        remote_side=[id],
        foreign_keys=[recurring_parent_id],
        backref="recurring_instances",
    )

    @property
    def is_recurring_template(self) -> bool:
        """A template recurs and is not itself a generated instance."""
        return (
            self.recurrence_type is not None
            and self.recurrence_type != "none"
            and self.recurring_parent_id is None
        )
