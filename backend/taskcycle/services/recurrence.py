"""Recurrence arithmetic: next-date calculation and day matching.

Everything here is pure date arithmetic on timezone-aware UTC datetimes.
Weekdays use 0=Sunday .. 6=Saturday, the numbering stored in
``recurrence_weekday`` / ``recurrence_weekdays``.
"""
from __future__ import annotations

import calendar
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum as PyEnum
from typing import Any, Mapping, NamedTuple

from taskcycle.core.timezones import normalize_to_utc

logger = logging.getLogger(__name__)

# Short, user-facing sequences (previews, virtual occurrences)
MAX_PREVIEW_ITERATIONS = 6
# Catching a stale due date up to "now"
MAX_CATCHUP_ITERATIONS = 100
# Candidate months tried before a monthly pattern gives up (covers leap days)
MONTHLY_SCAN_LIMIT = 48


class RecurrenceType(str, PyEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    MONTHLY_WEEKDAY = "monthly_weekday"
    MONTHLY_LAST_DAY = "monthly_last_day"


RECURRENCE_FIELDS = (
    "recurrence_type",
    "recurrence_interval",
    "recurrence_end_date",
    "recurrence_weekday",
    "recurrence_weekdays",
    "recurrence_month_day",
    "recurrence_week_of_month",
    "completion_based",
)


def resolve_final_value(changes: Mapping[str, Any], task: Any, field: str) -> Any:
    """Value of ``field`` once ``changes`` is applied; absent keys keep the task's value."""
    if field in changes:
        return changes[field]
    return getattr(task, field, None)


def is_recurring_template(task: Any) -> bool:
    recurrence_type = getattr(task, "recurrence_type", None)
    return (
        recurrence_type is not None
        and _type_value(recurrence_type) != RecurrenceType.NONE.value
        and getattr(task, "recurring_parent_id", None) is None
    )


def utc_weekday(dt: datetime) -> int:
    """Weekday with Sunday as 0."""
    return (dt.weekday() + 1) % 7


def _type_value(value: Any) -> str:
    if isinstance(value, RecurrenceType):
        return value.value
    return str(value) if value is not None else RecurrenceType.NONE.value


def _parse_weekdays(raw: Any) -> tuple[int, ...] | None:
    """Accept a list or its JSON encoding; non-integer entries are dropped."""
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.debug(f"Unparseable recurrence_weekdays: {raw!r}")
            return None
    if not isinstance(raw, (list, tuple, set, frozenset)):
        return None
    return tuple(
        day for day in raw if isinstance(day, int) and not isinstance(day, bool)
    )


@dataclass(frozen=True)
class RecurrenceConfig:
    """The recurrence shape of a task, detached from any storage row."""

    recurrence_type: str = RecurrenceType.NONE.value
    recurrence_interval: int | None = 1
    recurrence_end_date: datetime | None = None
    recurrence_weekday: int | None = None
    recurrence_weekdays: tuple[int, ...] | None = None
    recurrence_month_day: int | None = None
    recurrence_week_of_month: int | None = None
    completion_based: bool = False

    @classmethod
    def from_task(
        cls, task: Any, changes: Mapping[str, Any] | None = None
    ) -> "RecurrenceConfig":
        """Build a config from a task row, letting pending ``changes`` win."""
        changes = changes or {}
        values = {field: resolve_final_value(changes, task, field) for field in RECURRENCE_FIELDS}
        return cls(
            recurrence_type=_type_value(values["recurrence_type"]),
            recurrence_interval=values["recurrence_interval"],
            recurrence_end_date=normalize_to_utc(values["recurrence_end_date"]),
            recurrence_weekday=values["recurrence_weekday"],
            recurrence_weekdays=_parse_weekdays(values["recurrence_weekdays"]),
            recurrence_month_day=values["recurrence_month_day"],
            recurrence_week_of_month=values["recurrence_week_of_month"],
            completion_based=bool(values["completion_based"]),
        )

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_type != RecurrenceType.NONE.value

    @property
    def interval(self) -> int | None:
        """Positive interval, defaulting to 1; ``None`` when malformed."""
        if self.recurrence_interval is None:
            return 1
        if not isinstance(self.recurrence_interval, int) or self.recurrence_interval < 1:
            return None
        return self.recurrence_interval

    @property
    def weekday(self) -> int | None:
        day = self.recurrence_weekday
        if isinstance(day, int) and not isinstance(day, bool) and 0 <= day <= 6:
            return day
        return None

    @property
    def weekdays(self) -> tuple[int, ...] | None:
        """Multi-day weekly set; an empty set counts as absent."""
        return self.recurrence_weekdays or None


class OccurrenceMatch(NamedTuple):
    matches: bool
    date: datetime | None


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _nth_weekday_of_month(year: int, month: int, weekday: int, week: int) -> int | None:
    """Day-of-month of the ``week``-th ``weekday``, or None if the month has no such day."""
    first_weekday = (calendar.weekday(year, month, 1) + 1) % 7
    day = 1 + (weekday - first_weekday) % 7 + (week - 1) * 7
    if day > _days_in_month(year, month):
        return None
    return day


def _week_of_month(dt: datetime) -> int:
    return (dt.day - 1) // 7 + 1


def _next_daily(config: RecurrenceConfig, from_date: datetime) -> datetime | None:
    interval = config.interval
    if interval is None:
        return None
    return from_date + timedelta(days=interval)


def _find_next_matching_weekday(from_date: datetime, weekdays: tuple[int, ...]) -> datetime:
    for days_ahead in range(1, 8):
        candidate = from_date + timedelta(days=days_ahead)
        if utc_weekday(candidate) in weekdays:
            return candidate
    return from_date + timedelta(days=7)


def _next_weekly(config: RecurrenceConfig, from_date: datetime) -> datetime | None:
    weekdays = config.weekdays
    if weekdays:
        return _find_next_matching_weekday(from_date, weekdays)

    target = config.weekday
    interval = config.interval
    if target is None or interval is None:
        return None

    days_until_target = (target - utc_weekday(from_date)) % 7
    if days_until_target == 0:
        return from_date + timedelta(days=interval * 7)
    return from_date + timedelta(days=days_until_target)


def _monthly_target_day(config: RecurrenceConfig, from_date: datetime) -> int | None:
    target = config.recurrence_month_day
    if target is None:
        return from_date.day
    if not isinstance(target, int) or not 1 <= target <= 31:
        return None
    return target


def _next_monthly(config: RecurrenceConfig, from_date: datetime) -> datetime | None:
    interval = config.interval
    target = _monthly_target_day(config, from_date)
    if interval is None or target is None:
        return None

    year, month = from_date.year, from_date.month
    if target > from_date.day and target <= _days_in_month(year, month):
        return from_date.replace(day=target)

    # Months without the target day are skipped, never clamped
    for _ in range(MONTHLY_SCAN_LIMIT):
        year, month = _add_months(year, month, interval)
        if target <= _days_in_month(year, month):
            return from_date.replace(year=year, month=month, day=target)
    return None


def _next_monthly_weekday(config: RecurrenceConfig, from_date: datetime) -> datetime | None:
    interval = config.interval
    weekday = config.weekday if config.weekday is not None else utc_weekday(from_date)
    week = config.recurrence_week_of_month
    if week is None:
        week = _week_of_month(from_date)
    if interval is None or not isinstance(week, int) or not 1 <= week <= 5:
        return None

    year, month = from_date.year, from_date.month
    day = _nth_weekday_of_month(year, month, weekday, week)
    if day is not None and day > from_date.day:
        return from_date.replace(day=day)

    for _ in range(MONTHLY_SCAN_LIMIT):
        year, month = _add_months(year, month, interval)
        day = _nth_weekday_of_month(year, month, weekday, week)
        if day is not None:
            return from_date.replace(year=year, month=month, day=day)
    return None


def _next_monthly_last_day(config: RecurrenceConfig, from_date: datetime) -> datetime | None:
    interval = config.interval
    if interval is None:
        return None
    last_day = _days_in_month(from_date.year, from_date.month)
    if from_date.day < last_day:
        return from_date.replace(day=last_day)
    year, month = _add_months(from_date.year, from_date.month, interval)
    return from_date.replace(year=year, month=month, day=_days_in_month(year, month))


_CALCULATORS = {
    RecurrenceType.DAILY.value: _next_daily,
    RecurrenceType.WEEKLY.value: _next_weekly,
    RecurrenceType.MONTHLY.value: _next_monthly,
    RecurrenceType.MONTHLY_WEEKDAY.value: _next_monthly_weekday,
    RecurrenceType.MONTHLY_LAST_DAY.value: _next_monthly_last_day,
}


def calculate_next_due_date(
    config: RecurrenceConfig,
    from_date: datetime | None,
) -> datetime | None:
    """
    Calculate the occurrence that follows ``from_date``.

    The time of day of ``from_date`` is preserved. The result is always
    strictly after ``from_date``.

    Args:
        config: Recurrence configuration
        from_date: Reference instant (naive values are read as UTC)

    Returns:
        Next occurrence in UTC, or None for non-recurring or degenerate
        configurations
    """
    if from_date is None:
        return None
    calculator = _CALCULATORS.get(config.recurrence_type)
    if calculator is None:
        return None
    return calculator(config, normalize_to_utc(from_date))


def should_generate_next_task(config: RecurrenceConfig, next_due_date: datetime | None) -> bool:
    """Whether an occurrence at ``next_due_date`` may still be produced."""
    if next_due_date is None or not config.is_recurring:
        return False
    end_date = config.recurrence_end_date
    if end_date and normalize_to_utc(next_due_date) > end_date:
        return False
    return True


def is_past_end_date(config: RecurrenceConfig, occurrence: datetime) -> bool:
    end_date = config.recurrence_end_date
    return bool(end_date and normalize_to_utc(occurrence) > end_date)


def matches_today(config: RecurrenceConfig, reference_day: datetime) -> OccurrenceMatch:
    """
    Check whether ``reference_day`` itself is an occurrence of the pattern.

    Monthly matching synthesises the concrete date, which is returned so that
    callers include exactly that value.
    """
    reference_day = normalize_to_utc(reference_day)
    recurrence_type = config.recurrence_type

    if recurrence_type == RecurrenceType.DAILY.value:
        return OccurrenceMatch(True, reference_day)

    if recurrence_type == RecurrenceType.WEEKLY.value:
        today_weekday = utc_weekday(reference_day)
        if config.weekdays:
            return OccurrenceMatch(today_weekday in config.weekdays, reference_day)
        if config.weekday is not None:
            return OccurrenceMatch(config.weekday == today_weekday, reference_day)
        return OccurrenceMatch(False, reference_day)

    if recurrence_type == RecurrenceType.MONTHLY.value:
        target = _monthly_target_day(config, reference_day)
        if (
            target is None
            or target != reference_day.day
            or target > _days_in_month(reference_day.year, reference_day.month)
        ):
            return OccurrenceMatch(False, None)
        return OccurrenceMatch(True, reference_day.replace(day=target))

    if recurrence_type == RecurrenceType.MONTHLY_WEEKDAY.value:
        week = config.recurrence_week_of_month
        matches = (
            config.weekday is not None
            and config.weekday == utc_weekday(reference_day)
            and (week is None or week == _week_of_month(reference_day))
        )
        return OccurrenceMatch(matches, reference_day if matches else None)

    if recurrence_type == RecurrenceType.MONTHLY_LAST_DAY.value:
        last_day = _days_in_month(reference_day.year, reference_day.month)
        matches = reference_day.day == last_day
        return OccurrenceMatch(matches, reference_day if matches else None)

    return OccurrenceMatch(False, None)


def first_occurrence_from(config: RecurrenceConfig, anchor: datetime) -> datetime | None:
    """The anchor itself when it matches the pattern, else the next occurrence after it."""
    match = matches_today(config, anchor)
    if match.matches:
        return match.date or normalize_to_utc(anchor)
    return calculate_next_due_date(config, anchor)


def catch_up(config: RecurrenceConfig, start_from: datetime, now: datetime) -> datetime:
    """Advance a stale date until it is no longer before ``now``, within the catch-up cap."""
    next_date: datetime | None = normalize_to_utc(start_from)
    iterations = 0
    while next_date and next_date < now and iterations < MAX_CATCHUP_ITERATIONS:
        next_date = calculate_next_due_date(config, next_date)
        iterations += 1
    return next_date or now
