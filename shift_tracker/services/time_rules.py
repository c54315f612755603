"""
Time rules and timezone helpers.
Calendar-day boundaries and wall-clock times are resolved in a configured
local timezone; every instant handed back to callers is UTC.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional
import pytz
from ..config import settings


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize an instant to timezone-aware UTC.
    Naive datetimes are taken to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def utc_to_local(utc_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert an instant to the local timezone.

    Args:
        utc_datetime: Instant (timezone-aware, or naive UTC)
        timezone_str: Timezone string (e.g., "America/Vancouver"); defaults to settings

    Returns:
        Local datetime (timezone-aware)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return ensure_utc(utc_datetime).astimezone(tz)


def combine_date_time(date_val: date, time_val: time, timezone_str: Optional[str] = None) -> datetime:
    """
    Combine a local date and wall-clock time into a UTC instant.

    Wall-clock times that do not exist on a DST transition day are
    normalized forward by the length of the gap.
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    local_dt = tz.normalize(tz.localize(datetime.combine(date_val, time_val)))
    return local_dt.astimezone(pytz.UTC)


def local_date(instant: datetime, timezone_str: Optional[str] = None) -> date:
    return utc_to_local(instant, timezone_str).date()


def local_midnight(date_val: date, timezone_str: Optional[str] = None) -> datetime:
    """UTC instant at which the local calendar day `date_val` begins."""
    return combine_date_time(date_val, time(0, 0), timezone_str)


def next_local_midnight(instant: datetime, timezone_str: Optional[str] = None) -> datetime:
    """First local midnight strictly after `instant`, as a UTC instant."""
    return local_midnight(local_date(instant, timezone_str) + timedelta(days=1), timezone_str)


def day_ordinal(origin: datetime, instant: datetime, timezone_str: Optional[str] = None) -> int:
    """1-based local calendar day of `instant`, counted from the day of `origin`."""
    return (local_date(instant, timezone_str) - local_date(origin, timezone_str)).days + 1


def parse_wall_clock(value) -> time:
    """Parse "HH:MM" (or pass through a `time`) into a wall-clock time."""
    if isinstance(value, time):
        return value
    hours, _, minutes = str(value).strip().partition(":")
    return time(int(hours), int(minutes or 0))


def format_time_range(start: datetime, end: datetime, timezone_str: Optional[str] = None) -> str:
    """Local "HH:MM - HH:MM" label used in segment notes."""
    fmt = "%H:%M"
    return f"{utc_to_local(start, timezone_str).strftime(fmt)} - {utc_to_local(end, timezone_str).strftime(fmt)}"
