from datetime import datetime, timezone
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from taskcycle.core.config import get_settings
from taskcycle.core.timezones import utc_now
from taskcycle.db.session import get_db
from taskcycle.models.task import Task, TaskStatus
from taskcycle.schemas.task import IterationPublic, TaskCreate, TaskPublic, TaskUpdate
from taskcycle.services import completion, instances, iterations, regeneration
from taskcycle.services.recurrence import (
    RECURRENCE_FIELDS,
    RecurrenceType,
    is_recurring_template,
)
from taskcycle.services.task_store import SqlCompletionLog, SqlEventLog, SqlTaskStore
from taskcycle.services.virtual_occurrences import (
    COMPLETED_FILTERS,
    expand_recurring_tasks,
    hide_templates_with_instances_today,
    task_to_dict,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DELETE_CONFLICT_DETAIL = "Task has dependent records and cannot be deleted"

DATETIME_FIELDS = ("due_date", "completed_at", "recurrence_end_date", "created_at", "updated_at")


def _get_task_or_404(store: SqlTaskStore, task_id: int) -> Task:
    task = store.get_task(task_id)
    if not task:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Task not found",
        )
    return task


def _serialize_task(task: Task | dict[str, Any]) -> TaskPublic:
    """Serialize a stored task or a virtual occurrence.

    Tasks are stored as naive UTC, so datetime fields are made timezone-aware.
    """
    task_dict = dict(task) if isinstance(task, dict) else task_to_dict(task)
    for key in DATETIME_FIELDS:
        value = task_dict.get(key)
        if isinstance(value, datetime) and value.tzinfo is None:
            task_dict[key] = value.replace(tzinfo=timezone.utc)
    return TaskPublic(**task_dict)


def _matches_status(task: Task, status_filter: str) -> bool:
    if status_filter in COMPLETED_FILTERS:
        return task.status == TaskStatus.DONE.value
    return task.status == status_filter


@router.get("/", response_model=list[TaskPublic])
def list_tasks(
    view: str = Query(default="all", alias="type", pattern="^(all|upcoming|today)$"),
    max_days: int | None = Query(default=None, ge=1),
    status_filter: str | None = Query(default=None, alias="status"),
    tz_name: str | None = Query(default=None, alias="timezone"),
    db: Session = Depends(get_db),
) -> list[TaskPublic]:
    """List tasks; the upcoming view projects recurring templates into virtual occurrences."""
    settings = get_settings()
    store = SqlTaskStore(db)

    tasks: list[Any] = store.list_tasks()
    if status_filter:
        tasks = [task for task in tasks if _matches_status(task, status_filter)]

    if view == "upcoming":
        days = max_days or settings.upcoming_max_days
        tasks = list(expand_recurring_tasks(tasks, days, status_filter))
    elif view == "today":
        tasks = hide_templates_with_instances_today(tasks, tz_name or settings.default_timezone)

    return [_serialize_task(task) for task in tasks]


@router.post("/", response_model=TaskPublic, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreate,
    db: Session = Depends(get_db),
) -> TaskPublic:
    store = SqlTaskStore(db)
    task_data = payload.model_dump()
    if task_data["status"] == TaskStatus.DONE.value:
        task_data["completed_at"] = utc_now()
    task = store.create_task(task_data)
    return _serialize_task(task)


@router.get("/{task_id}", response_model=TaskPublic)
def get_task(
    task_id: int,
    db: Session = Depends(get_db),
) -> TaskPublic:
    return _serialize_task(_get_task_or_404(SqlTaskStore(db), task_id))


def _sync_completed_at(task: Task, changes: dict[str, Any]) -> None:
    """Stamp completed_at when a task becomes done, clear it when it leaves done."""
    if "status" not in changes:
        return
    if changes["status"] == TaskStatus.DONE.value:
        if task.status != TaskStatus.DONE.value:
            changes["completed_at"] = utc_now()
    else:
        changes["completed_at"] = None


@router.patch("/{task_id}", response_model=TaskPublic)
def update_task(
    task_id: int,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
) -> TaskPublic:
    settings = get_settings()
    store = SqlTaskStore(db)
    task = _get_task_or_404(store, task_id)

    changes = payload.model_dump(exclude_unset=True)
    # The column is not nullable; null means "stop recurring"
    if "recurrence_type" in changes and changes["recurrence_type"] is None:
        changes["recurrence_type"] = RecurrenceType.NONE.value

    # Recurrence lives on the template, never on its instances
    regeneration.update_parent_recurrence(task, changes, store)
    changes.pop("update_parent_recurrence", None)
    if task.recurring_parent_id is not None:
        for field in RECURRENCE_FIELDS:
            changes.pop(field, None)

    had_instances = bool(store.find_children_of(task.id))
    regenerated = regeneration.handle_recurrence_update(task, changes, store)

    _sync_completed_at(task, changes)
    advancement = completion.calculate_recurrence_advancement(task, changes)

    task = store.apply_patch(task.id, changes)

    completion.record_recurring_completion(
        advancement, SqlCompletionLog(db), SqlEventLog(db)
    )

    if regenerated and had_instances and is_recurring_template(task):
        instances.generate_recurring_instances(
            store, task, days_ahead=settings.instance_horizon_days
        )

    return _serialize_task(task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: int,
    db: Session = Depends(get_db),
) -> None:
    store = SqlTaskStore(db)
    task = _get_task_or_404(store, task_id)
    # Subtasks block the delete; check before the cascade touches any instance
    if store.has_subtasks(task_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=DELETE_CONFLICT_DETAIL,
        )
    if is_recurring_template(task):
        regeneration.delete_template_cascade(task, store)
    if not store.delete_task(task_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=DELETE_CONFLICT_DETAIL,
        )


@router.get("/{task_id}/next-iterations", response_model=list[IterationPublic])
def get_next_iterations(
    task_id: int,
    start_from: datetime | None = None,
    tz_name: str | None = Query(default=None, alias="timezone"),
    db: Session = Depends(get_db),
) -> list[IterationPublic]:
    """Preview upcoming occurrence dates without changing the task"""
    task = _get_task_or_404(SqlTaskStore(db), task_id)
    preview = iterations.calculate_next_iterations(
        task, start_from, tz_name or get_settings().default_timezone
    )
    return [IterationPublic(date=item.date, utc_date=item.utc_date) for item in preview]


@router.post("/{task_id}/generate-instances", response_model=list[TaskPublic])
def generate_recurring_instances(
    task_id: int,
    days_ahead: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> list[TaskPublic]:
    """Manually generate recurring task instances for a template"""
    store = SqlTaskStore(db)
    template = _get_task_or_404(store, task_id)

    if not is_recurring_template(template):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Task is not a recurring template",
        )

    created = instances.generate_recurring_instances(
        store, template, days_ahead=days_ahead or get_settings().instance_horizon_days
    )
    return [_serialize_task(instance) for instance in created]
