"""Materializing persisted instances of a recurring template."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Sequence

from taskcycle.core.timezones import normalize_to_utc, start_of_utc_day, utc_now
from taskcycle.services.collaborators import TaskStore
from taskcycle.services.recurrence import (
    MAX_CATCHUP_ITERATIONS,
    RecurrenceConfig,
    calculate_next_due_date,
    catch_up,
    first_occurrence_from,
    is_recurring_template,
)

logger = logging.getLogger(__name__)


def _instance_exists_for_date(existing_instances: Sequence[Any], due_date: datetime) -> bool:
    """Check if an instance already exists for the given calendar day."""
    due_day = due_date.date()
    return any(
        inst.due_date and normalize_to_utc(inst.due_date).date() == due_day
        for inst in existing_instances
    )


def generate_recurring_instances(
    store: TaskStore,
    template: Any,
    days_ahead: int = 14,
    now: datetime | None = None,
) -> list[Any]:
    """
    Generate recurring task instances for a template.

    Args:
        store: Task store used to read and create instances
        template: The recurring task template
        days_ahead: How many days ahead to generate
        now: Reference instant, defaults to the current time

    Returns:
        List of newly created task instances
    """
    if not is_recurring_template(template):
        return []

    config = RecurrenceConfig.from_task(template)
    today = start_of_utc_day(now or utc_now())
    target_date = today + timedelta(days=days_ahead)
    end_date = config.recurrence_end_date
    if end_date and target_date > end_date:
        target_date = end_date

    existing_instances = store.find_children_of(template.id)

    start_date = normalize_to_utc(template.due_date) or today
    if start_date < today:
        start_date = catch_up(config, start_date, today)

    new_instances = []
    current_due_date = first_occurrence_from(config, start_date)
    iterations = 0
    while (
        current_due_date
        and current_due_date <= target_date
        and iterations < MAX_CATCHUP_ITERATIONS
    ):
        iterations += 1
        if not _instance_exists_for_date(existing_instances, current_due_date):
            new_instances.append(store.create_instance(template, current_due_date))
        current_due_date = calculate_next_due_date(config, current_due_date)

    if new_instances:
        logger.info(f"Template {template.id}: generated {len(new_instances)} instances")
    return new_instances
