"""Rolling date-range filters for report queries."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from ..errors import InvalidRange
from ..utils.datetime import days_between, ensure_aware, now_utc

DEFAULT_RANGE_DAYS = 30


@dataclass(frozen=True)
class DateFilter:
    """Inclusive lower bound applied to record timestamps."""
    range_days: int
    cutoff: datetime
    now: datetime

    @property
    def days_in_range(self) -> int:
        """Started days between the cutoff and now, used to normalize rates."""
        return days_between(self.cutoff, self.now)


def parse_range(value: Union[int, str, None],
                allowed: Optional[Iterable[int]] = None,
                default: int = DEFAULT_RANGE_DAYS) -> int:
    """Turn a symbolic range ("7", "30", 90...) into a positive day count.

    Raises:
        InvalidRange: if the value is not an integer, is not positive, or is
            not one of ``allowed`` when an allowed set is given
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        days = default
    elif isinstance(value, bool):
        raise InvalidRange(f"Date range must be a number of days, got {value!r}", value=value)
    else:
        try:
            days = int(str(value).strip())
        except ValueError:
            raise InvalidRange(f"Date range must be a number of days, got {value!r}",
                               value=value) from None

    if days <= 0:
        raise InvalidRange(f"Date range must be positive, got {days}", value=value)

    if allowed is not None:
        allowed = sorted(allowed)
        if days not in allowed:
            choices = ", ".join(str(d) for d in allowed)
            raise InvalidRange(f"Date range must be one of {choices} days", value=value)

    return days


def build_filter(range_days: Optional[int] = None, now: Optional[datetime] = None) -> DateFilter:
    """Build the filter for ``now - range_days``; defaults to 30 days."""
    if range_days is None:
        range_days = DEFAULT_RANGE_DAYS
    if isinstance(range_days, bool) or not isinstance(range_days, int):
        raise InvalidRange(f"Date range must be an integer, got {range_days!r}", value=range_days)
    if range_days <= 0:
        raise InvalidRange(f"Date range must be positive, got {range_days}", value=range_days)

    now = ensure_aware(now) if now is not None else now_utc()
    return DateFilter(range_days=range_days, cutoff=now - timedelta(days=range_days), now=now)
