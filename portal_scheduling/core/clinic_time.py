"""Clinic calendar helpers.

All calendar-day arithmetic happens in the clinic's reference timezone and is
converted to UTC instants only when talking to the store. Browsers and API
callers never decide where a day starts.
"""

import calendar
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from portal_scheduling.core.exceptions import InvalidRangeException

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current instant, timezone-aware UTC."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize an aware datetime to UTC.

    Raises:
        ValueError: If the datetime carries no timezone
    """
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError("datetime must include a timezone offset")
    return value.astimezone(UTC)


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """
    UTC instants of local midnight on ``day`` and on the following day.

    The pair is half-open and spans 23 or 25 hours on DST change days.

    Raises:
        InvalidRangeException: If either bound falls outside the datetime range
    """
    try:
        start = datetime.combine(day, time.min, tzinfo=tz).astimezone(UTC)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz).astimezone(UTC)
    except OverflowError as e:
        raise InvalidRangeException(f"Date out of supported range: {day.isoformat()}") from e
    return start, end


def date_range_bounds(start_day: date, end_day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC bounds covering ``start_day`` through ``end_day`` inclusive."""
    range_start, _ = day_bounds(start_day, tz)
    _, range_end = day_bounds(end_day, tz)
    return range_start, range_end


def local_date(instant: datetime, tz: ZoneInfo) -> date:
    """Calendar date of ``instant`` as seen from the clinic."""
    return ensure_utc(instant).astimezone(tz).date()


def clinic_today(clock: Clock, tz: ZoneInfo) -> date:
    """Today's date at the clinic."""
    return local_date(clock(), tz)


def is_past_date(day: date, today: date) -> bool:
    """True when ``day`` is strictly before ``today``."""
    return day < today


def month_days(year: int, month: int) -> list[date]:
    """Every date of the given month, in order."""
    _, last_day = calendar.monthrange(year, month)
    return [date(year, month, day) for day in range(1, last_day + 1)]
