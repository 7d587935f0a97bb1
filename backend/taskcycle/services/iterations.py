"""Read-only preview of a task's upcoming occurrence dates."""
from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, NamedTuple

from taskcycle.core.timezones import get_safe_timezone, start_of_utc_day, utc_now
from taskcycle.services.recurrence import (
    MAX_PREVIEW_ITERATIONS,
    RecurrenceConfig,
    calculate_next_due_date,
    first_occurrence_from,
    is_past_end_date,
)


class Iteration(NamedTuple):
    # Calendar date in the user's timezone, for display
    date: str
    # Canonical instant, for comparisons
    utc_date: datetime


def _anchor(start_from: date | datetime | None, now: datetime | None) -> datetime:
    if start_from is None:
        return start_of_utc_day(now or utc_now())
    if not isinstance(start_from, datetime):
        start_from = datetime.combine(start_from, time.min, tzinfo=timezone.utc)
    return start_of_utc_day(start_from)


def calculate_next_iterations(
    task: Any,
    start_from: date | datetime | None = None,
    timezone_name: str | None = None,
    now: datetime | None = None,
) -> list[Iteration]:
    """
    Preview up to MAX_PREVIEW_ITERATIONS upcoming occurrences.

    The search starts at ``start_from`` (or today) truncated to a UTC day; that
    day is included when it matches the pattern. Nothing is persisted.
    """
    config = RecurrenceConfig.from_task(task)
    if not config.is_recurring:
        return []

    user_tz = get_safe_timezone(timezone_name)
    next_date = first_occurrence_from(config, _anchor(start_from, now))

    iterations: list[Iteration] = []
    while next_date is not None and len(iterations) < MAX_PREVIEW_ITERATIONS:
        if is_past_end_date(config, next_date):
            break
        iterations.append(
            Iteration(
                date=next_date.astimezone(user_tz).date().isoformat(),
                utc_date=next_date,
            )
        )
        next_date = calculate_next_due_date(config, next_date)

    return iterations
