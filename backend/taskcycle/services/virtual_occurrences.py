"""Projection of recurring templates into virtual, never-persisted occurrences."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Iterator

from taskcycle.core.timezones import (
    get_safe_timezone,
    normalize_to_utc,
    start_of_utc_day,
    utc_now,
)
from taskcycle.models.task import TaskStatus
from taskcycle.services.recurrence import (
    MAX_PREVIEW_ITERATIONS,
    RecurrenceConfig,
    calculate_next_due_date,
    catch_up,
    first_occurrence_from,
    is_past_end_date,
    is_recurring_template,
)

logger = logging.getLogger(__name__)

COMPLETED_FILTERS = {"completed", "done"}


def _is_done(task: Any) -> bool:
    status = getattr(task, "status", None)
    return status == TaskStatus.DONE or status == TaskStatus.DONE.value


def task_to_dict(task: Any) -> dict[str, Any]:
    """Shallow copy of a task's fields."""
    table = getattr(task, "__table__", None)
    if table is not None:
        return {column.key: getattr(task, column.key) for column in table.columns}
    task_dict = task.__dict__.copy()
    task_dict.pop("_sa_instance_state", None)
    return task_dict


def _search_start(task: Any, config: RecurrenceConfig, now: datetime) -> datetime:
    due_date = normalize_to_utc(getattr(task, "due_date", None))

    if _is_done(task):
        completed_at = normalize_to_utc(getattr(task, "completed_at", None))
        base_date = completed_at if config.completion_based and completed_at else (due_date or now)
        next_date = calculate_next_due_date(config, base_date)
        logger.debug(f"Task {task.id} is done, starting from next occurrence {next_date}")
        return next_date or now

    start_from = due_date or now
    if start_from < now:
        return catch_up(config, start_from, now)
    return start_from


def calculate_virtual_occurrences(
    task: Any,
    max_days: int,
    start_from: datetime,
    now: datetime | None = None,
) -> list[datetime]:
    """
    Occurrence dates of ``task`` inside the next ``max_days`` days.

    Args:
        task: Recurring template
        max_days: Window length in days, counted from the start of today (UTC)
        start_from: Search anchor; included when it matches the pattern
        now: Reference instant, defaults to the current time

    Returns:
        At most MAX_PREVIEW_ITERATIONS dates, none after the recurrence end date
    """
    config = RecurrenceConfig.from_task(task)
    today = start_of_utc_day(now or utc_now())
    horizon = today + timedelta(days=max_days)

    occurrences: list[datetime] = []
    current = first_occurrence_from(config, start_from)
    while current is not None and len(occurrences) < MAX_PREVIEW_ITERATIONS:
        if current >= horizon or is_past_end_date(config, current):
            break
        occurrences.append(current)
        current = calculate_next_due_date(config, current)
    return occurrences


def _virtual_copy(task: Any, due_date: datetime, index: int) -> dict[str, Any]:
    virtual_task = task_to_dict(task)
    virtual_task.update(
        due_date=due_date,
        is_virtual_occurrence=True,
        occurrence_index=index,
        virtual_id=f"{task.id}_occurrence_{index}",
    )
    return virtual_task


def expand_recurring_tasks(
    tasks: Iterable[Any],
    max_days: int = 7,
    status_filter: str | None = None,
    now: datetime | None = None,
) -> Iterator[Any]:
    """
    Replace recurring templates with their upcoming virtual occurrences.

    Non-template tasks pass through unchanged. A completed template is kept
    as-is when the listing is filtered to completed tasks.
    """
    today = start_of_utc_day(now or utc_now())

    for task in tasks:
        if not is_recurring_template(task):
            yield task
            continue

        if status_filter in COMPLETED_FILTERS and _is_done(task):
            yield task
            continue

        config = RecurrenceConfig.from_task(task)
        start_from = _search_start(task, config, today)
        occurrences = calculate_virtual_occurrences(task, max_days, start_from, now=today)
        logger.debug(f"Task {task.id}: {len(occurrences)} virtual occurrences from {start_from}")

        for index, due_date in enumerate(occurrences):
            yield _virtual_copy(task, due_date, index)


def hide_templates_with_instances_today(
    tasks: Iterable[Any],
    tz_name: str | None,
    now: datetime | None = None,
) -> list[Any]:
    """Drop templates that already have a generated instance due today (user's local day)."""
    tasks = list(tasks)
    user_tz = get_safe_timezone(tz_name)
    local_now = normalize_to_utc(now or utc_now()).astimezone(user_tz)
    day_start_local = datetime.combine(local_now.date(), datetime.min.time()).replace(tzinfo=user_tz)
    day_start = normalize_to_utc(day_start_local)
    day_end = normalize_to_utc(day_start_local + timedelta(days=1))

    parents_with_instances_today = set()
    for task in tasks:
        parent_id = getattr(task, "recurring_parent_id", None)
        due_date = normalize_to_utc(getattr(task, "due_date", None))
        if parent_id is not None and due_date is not None and day_start <= due_date < day_end:
            parents_with_instances_today.add(parent_id)

    return [
        task
        for task in tasks
        if not (is_recurring_template(task) and task.id in parents_with_instances_today)
    ]
