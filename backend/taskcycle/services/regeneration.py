"""Keeping generated instances consistent with their template."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

from taskcycle.core.timezones import normalize_to_utc, utc_now
from taskcycle.services.collaborators import TaskStore
from taskcycle.services.recurrence import (
    RECURRENCE_FIELDS,
    RecurrenceType,
    resolve_final_value,
)

logger = logging.getLogger(__name__)

# Template fields copied onto every generated instance
TEMPLATE_FIELDS = ("name", "project_id", "priority", "note")

# Turns a past instance into a standalone, non-recurring task
DETACH_PATCH = {
    "recurring_parent_id": None,
    "recurrence_type": RecurrenceType.NONE.value,
    "recurrence_interval": None,
    "recurrence_end_date": None,
    "recurrence_weekday": None,
    "recurrence_weekdays": None,
    "recurrence_month_day": None,
    "recurrence_week_of_month": None,
    "completion_based": False,
}


@dataclass(frozen=True)
class CascadeResult:
    deleted: int
    detached: int
    skipped: int


def _values_differ(new_value: Any, old_value: Any) -> bool:
    if isinstance(new_value, datetime) or isinstance(old_value, datetime):
        return normalize_to_utc(new_value) != normalize_to_utc(old_value)
    if isinstance(new_value, (list, tuple)) and isinstance(old_value, (list, tuple)):
        return list(new_value) != list(old_value)
    return new_value != old_value


def _changed_fields(task: Any, changes: Mapping[str, Any], fields: Sequence[str]) -> list[str]:
    return [
        field
        for field in fields
        if field in changes and _values_differ(changes[field], getattr(task, field, None))
    ]


def _partition_children(
    children: Sequence[Any], now: datetime
) -> tuple[list[Any], list[Any]]:
    """Split instances into (future, past); undated instances count as future."""
    future, past = [], []
    for child in children:
        due_date = normalize_to_utc(child.due_date)
        if due_date is None or due_date > now:
            future.append(child)
        else:
            past.append(child)
    return future, past


def _delete_instances(store: TaskStore, instances: Sequence[Any]) -> tuple[int, int]:
    deleted = skipped = 0
    for instance in instances:
        if store.delete_task(instance.id):
            deleted += 1
        else:
            skipped += 1
            logger.warning(
                f"Skipping recurring instance deletion due to constraint: id={instance.id}"
            )
    return deleted, skipped


def handle_recurrence_update(
    task: Any,
    changes: Mapping[str, Any],
    store: TaskStore,
    now: datetime | None = None,
) -> bool:
    """
    Drop future instances of a template whose recurrence or shared fields change.

    Past and overdue instances are left alone. Returns True when regeneration
    happened, so the caller can materialize a fresh set of instances.
    """
    current_type = getattr(task, "recurrence_type", None) or RecurrenceType.NONE.value
    changed = _changed_fields(task, changes, RECURRENCE_FIELDS + TEMPLATE_FIELDS)
    if not changed or current_type == RecurrenceType.NONE.value:
        return False

    logger.debug(f"Template {task.id} changed fields {changed}, regenerating instances")

    children = store.find_children_of(task.id)
    if children:
        future, _past = _partition_children(children, normalize_to_utc(now or utc_now()))
        new_type = resolve_final_value(changes, task, "recurrence_type") or RecurrenceType.NONE.value
        if new_type != RecurrenceType.NONE.value:
            deleted, skipped = _delete_instances(store, future)
            logger.info(
                f"Template {task.id}: deleted {deleted} future instances, skipped {skipped}"
            )

    return True


def delete_template_cascade(
    template: Any,
    store: TaskStore,
    now: datetime | None = None,
) -> CascadeResult:
    """
    Prepare a template for deletion.

    Future instances are deleted; past instances are detached so their
    history survives the template.
    """
    children = store.find_children_of(template.id)
    if not children:
        return CascadeResult(deleted=0, detached=0, skipped=0)

    future, past = _partition_children(children, normalize_to_utc(now or utc_now()))
    deleted, skipped = _delete_instances(store, future)
    for instance in past:
        store.apply_patch(instance.id, DETACH_PATCH)

    logger.info(
        f"Template {template.id}: deleted {deleted} instances, detached {len(past)}, skipped {skipped}"
    )
    return CascadeResult(deleted=deleted, detached=len(past), skipped=skipped)


def update_parent_recurrence(
    task: Any,
    changes: Mapping[str, Any],
    store: TaskStore,
) -> Any | None:
    """Write recurrence fields edited on an instance through to its template."""
    if not changes.get("update_parent_recurrence") or task.recurring_parent_id is None:
        return None

    parent = store.find_template_by_id(task.recurring_parent_id)
    if parent is None:
        return None

    updates = {field: resolve_final_value(changes, parent, field) for field in RECURRENCE_FIELDS}
    return store.apply_patch(parent.id, updates)
