"""Timezone helpers shared by the recurrence engine and the API layer.

Due dates are stored as naive UTC in the database; everything inside the
engine works on timezone-aware UTC datetimes. Conversion to a user's zone
only happens when rendering a preview.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def normalize_to_utc(dt: datetime | None) -> datetime | None:
    """Normalize datetime to UTC (naive values are taken to already be UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_naive_utc(dt: datetime | None) -> datetime | None:
    """Strip tzinfo after converting to UTC, for storage in naive DateTime columns."""
    if dt is None:
        return None
    return normalize_to_utc(dt).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def start_of_utc_day(dt: datetime) -> datetime:
    return normalize_to_utc(dt).replace(hour=0, minute=0, second=0, microsecond=0)


def get_safe_timezone(tz_name: str | None) -> ZoneInfo:
    """Resolve a timezone name, falling back to UTC for unknown identifiers."""
    if not tz_name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{tz_name}', falling back to UTC")
        return ZoneInfo("UTC")
