"""Advancing a recurring template when its current occurrence is completed."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, MutableMapping

from taskcycle.core.timezones import normalize_to_utc, utc_now
from taskcycle.models.task import TaskStatus
from taskcycle.services.collaborators import CompletionLog, EventLog
from taskcycle.services.recurrence import (
    RecurrenceConfig,
    RecurrenceType,
    calculate_next_due_date,
    resolve_final_value,
    should_generate_next_task,
)

logger = logging.getLogger(__name__)

RECURRING_OCCURRENCE_COMPLETED = "recurring_occurrence_completed"


@dataclass(frozen=True)
class RecurrenceAdvancement:
    task_id: int
    completed_at: datetime
    original_due_date: datetime
    next_due_date: datetime | None
    completion_based: bool
    advanced: bool


def should_advance_recurrence(task: Any, changes: MutableMapping[str, Any]) -> bool:
    """Only a template moving to done advances; generated instances never do."""
    if "status" not in changes:
        return False
    is_done = changes["status"] == TaskStatus.DONE.value
    recurrence_type = resolve_final_value(changes, task, "recurrence_type")
    has_recurrence = bool(recurrence_type) and recurrence_type != RecurrenceType.NONE.value
    is_not_child = getattr(task, "recurring_parent_id", None) is None
    return is_done and has_recurrence and is_not_child


def calculate_recurrence_advancement(
    task: Any,
    changes: MutableMapping[str, Any],
    now: datetime | None = None,
) -> RecurrenceAdvancement | None:
    """
    Work out the next occurrence for a template being marked done.

    When the template may advance, ``changes`` is mutated in place to reset
    the status, clear ``completed_at`` and move ``due_date`` forward. The
    caller persists ``changes`` together with the rest of the update.

    Args:
        task: Task row as it is before the update
        changes: Pending field changes; present keys override the row
        now: Completion instant, defaults to the current time

    Returns:
        The advancement details, or None when the update is not a
        completion of a recurring template
    """
    if not should_advance_recurrence(task, changes):
        return None

    completed_at = normalize_to_utc(now or utc_now())
    due_before_advance = resolve_final_value(changes, task, "due_date")
    original_due_date = normalize_to_utc(due_before_advance) if due_before_advance else completed_at

    config = RecurrenceConfig.from_task(task, changes)
    base_date = completed_at if config.completion_based else original_due_date
    next_due_date = calculate_next_due_date(config, base_date)

    advanced = should_generate_next_task(config, next_due_date)
    if advanced:
        changes["status"] = TaskStatus.NOT_STARTED.value
        changes["completed_at"] = None
        changes["due_date"] = next_due_date
    else:
        logger.info(f"Recurring task {task.id} completed without a next occurrence")

    return RecurrenceAdvancement(
        task_id=task.id,
        completed_at=completed_at,
        original_due_date=original_due_date,
        next_due_date=next_due_date,
        completion_based=config.completion_based,
        advanced=advanced,
    )


def record_recurring_completion(
    advancement: RecurrenceAdvancement | None,
    completion_log: CompletionLog,
    event_log: EventLog,
) -> None:
    """Append the completion entry, then log the event on a best-effort basis."""
    if advancement is None:
        return

    completion_log.append_completion(
        task_id=advancement.task_id,
        completed_at=advancement.completed_at,
        original_due_date=advancement.original_due_date,
        skipped=False,
    )

    next_due_date = advancement.next_due_date
    try:
        event_log.record(
            RECURRING_OCCURRENCE_COMPLETED,
            advancement.task_id,
            advancement.original_due_date,
            next_due_date,
            metadata={
                "action": RECURRING_OCCURRENCE_COMPLETED,
                "original_due_date": advancement.original_due_date.isoformat(),
                "next_due_date": next_due_date.isoformat() if next_due_date else None,
                "completion_based": advancement.completion_based,
            },
            field_name="recurrence",
        )
    except Exception:
        logger.exception(
            f"Error logging recurring occurrence completion event for task {advancement.task_id}"
        )
