"""Business-timezone arithmetic.

The helpdesk runs on a fixed UTC offset (UTC+2 by default). Business days
start at local midnight; everything stored is UTC.
"""

from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any

import pytz
from dateutil import parser as dateutil_parser


def business_tz(offset_hours: float) -> tzinfo:
    """Fixed-offset timezone for the given hour offset."""
    return pytz.FixedOffset(int(round(offset_hours * 60)))


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a payload timestamp (ISO 8601 string or datetime) to UTC.

    Returns None for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(dateutil_parser.isoparse(str(value)))
    except (ValueError, OverflowError):
        return None


def to_business_time(dt: datetime, offset_hours: float) -> datetime:
    return ensure_utc(dt).astimezone(business_tz(offset_hours))


def business_date(dt: datetime, offset_hours: float) -> date:
    """Business-local calendar date of an instant."""
    return to_business_time(dt, offset_hours).date()


def day_bounds(day: date, offset_hours: float) -> tuple[datetime, datetime]:
    """UTC [start, end) of a business-local calendar day.

    Example:
        >>> day_bounds(date(2025, 3, 4), 2)
        (datetime(2025, 3, 3, 22, 0, tzinfo=UTC), datetime(2025, 3, 4, 22, 0, tzinfo=UTC))
    """
    local_midnight = datetime.combine(day, time(0, 0), tzinfo=business_tz(offset_hours))
    start = local_midnight.astimezone(UTC)
    return start, start + timedelta(days=1)


def business_day_bounds(now: datetime, offset_hours: float) -> tuple[datetime, datetime]:
    """UTC [start, end) of the business day containing ``now``."""
    return day_bounds(business_date(now, offset_hours), offset_hours)


def local_clock_to_utc(
    day: date, clock: time, offset_hours: float
) -> datetime:
    """UTC instant of a business-local wall-clock time on ``day``."""
    local = datetime.combine(
        day, clock.replace(tzinfo=None), tzinfo=business_tz(offset_hours)
    )
    return local.astimezone(UTC)


def is_weekend(day: date) -> bool:
    return day.isoweekday() >= 6


def resolve_target_date(
    now: datetime,
    offset_hours: float,
    window: tuple[time, time],
) -> date:
    """Pick the business date a daily badge cycle run should score.

    Inside the end-of-day window the current business day is scored,
    otherwise the previous one.

    Args:
        now: Invocation time
        offset_hours: Business timezone offset
        window: Business-local (start, end) clock times, inclusive

    Returns:
        Target business date
    """
    local_now = to_business_time(now, offset_hours)
    start, end = window
    clock = local_now.time().replace(tzinfo=None)
    if start <= clock <= end:
        return local_now.date()
    return local_now.date() - timedelta(days=1)
