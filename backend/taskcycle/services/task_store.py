"""SQLAlchemy-backed implementations of the engine's collaborators."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from taskcycle.core.timezones import to_naive_utc
from taskcycle.models.recurring_completion import RecurringCompletion
from taskcycle.models.task import Task, TaskStatus
from taskcycle.models.task_event import TaskEvent
from taskcycle.services.collaborators import CompletionLog, EventLog, TaskStore
from taskcycle.services.recurrence import RecurrenceType

logger = logging.getLogger(__name__)

READONLY_FIELDS = {"id", "created_at", "updated_at"}


def _to_storage(value: Any) -> Any:
    # Tasks are stored as naive UTC
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, TaskStatus):
        return value.value
    if isinstance(value, RecurrenceType):
        return value.value
    return value


def _to_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SqlTaskStore(TaskStore):
    def __init__(self, db: Session):
        self.db = db

    def get_task(self, task_id: int) -> Task | None:
        return self.db.get(Task, task_id)

    def list_tasks(self) -> list[Task]:
        return (
            self.db.query(Task)
            .order_by(Task.due_date.asc().nulls_last(), Task.id.asc())
            .all()
        )

    def create_task(self, fields: Mapping[str, Any]) -> Task:
        task = Task(**{key: _to_storage(value) for key, value in fields.items()})
        self.db.add(task)
        self.db.commit()
        self.db.refresh(task)
        return task

    def find_template_by_id(self, task_id: int) -> Task | None:
        return (
            self.db.query(Task)
            .filter(
                Task.id == task_id,
                Task.recurring_parent_id.is_(None),
                Task.recurrence_type != RecurrenceType.NONE.value,
            )
            .first()
        )

    def has_subtasks(self, task_id: int) -> bool:
        return (
            self.db.query(Task.id).filter(Task.parent_task_id == task_id).first()
            is not None
        )

    def find_children_of(self, template_id: int) -> list[Task]:
        return (
            self.db.query(Task)
            .filter(Task.recurring_parent_id == template_id)
            .order_by(Task.due_date.asc().nulls_last())
            .all()
        )

    def apply_patch(self, task_id: int, patch: Mapping[str, Any]) -> Task | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        columns = Task.__table__.columns
        for key, value in patch.items():
            if key in READONLY_FIELDS or key not in columns:
                continue
            setattr(task, key, _to_storage(value))
        self.db.commit()
        self.db.refresh(task)
        return task

    def delete_task(self, task_id: int) -> bool:
        task = self.get_task(task_id)
        if task is None:
            logger.debug(f"Task {task_id} already gone, nothing to delete")
            return False
        try:
            self.db.delete(task)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Task {task_id} has dependent records, not deleted: {e.orig}")
            return False
        return True

    def create_instance(self, template: Task, due_date: datetime) -> Task:
        instance = Task(
            name=template.name,
            description=template.description,
            note=template.note,
            project_id=template.project_id,
            priority=template.priority,
            status=TaskStatus.NOT_STARTED.value,
            due_date=to_naive_utc(due_date),
            recurrence_type=RecurrenceType.NONE.value,
            completion_based=False,
            recurring_parent_id=template.id,
        )
        self.db.add(instance)
        self.db.commit()
        self.db.refresh(instance)
        return instance


class SqlCompletionLog(CompletionLog):
    def __init__(self, db: Session):
        self.db = db

    def append_completion(
        self,
        task_id: int,
        completed_at: datetime,
        original_due_date: datetime,
        skipped: bool = False,
    ) -> None:
        self.db.add(
            RecurringCompletion(
                task_id=task_id,
                completed_at=to_naive_utc(completed_at),
                original_due_date=to_naive_utc(original_due_date),
                skipped=skipped,
            )
        )
        self.db.commit()


class SqlEventLog(EventLog):
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        event_type: str,
        task_id: int,
        old_value: Any,
        new_value: Any,
        metadata: Mapping[str, Any] | None = None,
        field_name: str | None = None,
    ) -> None:
        event = TaskEvent(
            task_id=task_id,
            event_type=event_type,
            field_name=field_name,
            old_value=_to_json(old_value),
            new_value=_to_json(new_value),
            event_metadata=dict(metadata) if metadata else None,
        )
        try:
            self.db.add(event)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
