"""Datetime utilities with consistent UTC timezone handling.

Every timestamp that enters the analytics layer passes through these
helpers so comparisons between records never mix naive and aware values.
"""

import math
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union


def now_utc() -> datetime:
    """Return current datetime in UTC timezone."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime is timezone-aware, assuming UTC if naive.

    Args:
        dt: Datetime to check/convert, or None

    Returns:
        Timezone-aware datetime in UTC, or None if input was None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Naive datetime - assume UTC
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def min_utc() -> datetime:
    """Return datetime.min with UTC timezone for sorting fallbacks."""
    return datetime.min.replace(tzinfo=timezone.utc)


def utc_date(dt: datetime) -> date:
    """Calendar date of a timestamp in UTC."""
    return ensure_aware(dt).date()


def days_between(start: datetime, end: datetime) -> int:
    """Number of started days between two timestamps (ceiling), never negative."""
    seconds = (ensure_aware(end) - ensure_aware(start)).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / timedelta(days=1).total_seconds())


def parse_datetime(value: Union[str, datetime, date, None]) -> Optional[datetime]:
    """Parse an ISO string (or pass through a datetime) into an aware datetime.

    Plain dates become midnight UTC. A trailing ``Z`` is accepted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(text))


def to_iso_string(dt: Optional[datetime]) -> Optional[str]:
    """Convert datetime to ISO string with timezone info."""
    if dt is None:
        return None
    return ensure_aware(dt).isoformat()
