"""
Time arithmetic helpers for slot computation.

All grid math is done on epoch milliseconds: an instant is on grid when its
epoch ms is a multiple of the grid length. Business-hours checks are
evaluated in the clinic timezone, never per user.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Tuple
from zoneinfo import ZoneInfo

from ..config import (
    BUSINESS_HOURS_END,
    BUSINESS_HOURS_START,
    BUSINESS_WEEKDAYS,
    GRID_MINUTES,
)

MS_PER_MINUTE = 60_000
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class BusinessHours:
    """Weekday/hour window in which appointments may start."""
    start_hour: int = BUSINESS_HOURS_START
    end_hour: int = BUSINESS_HOURS_END
    weekdays: Tuple[int, ...] = BUSINESS_WEEKDAYS


DEFAULT_BUSINESS_HOURS = BusinessHours()


def to_epoch_ms(instant: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    if instant.tzinfo is None:
        raise ValueError("naive datetime; attach a timezone first")
    return (instant - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)


def add_minutes(ms: int, minutes: int) -> int:
    return ms + minutes * MS_PER_MINUTE


def round_up_to_grid(ms: int, grid_minutes: int = GRID_MINUTES) -> int:
    """Smallest grid point that is >= ms."""
    g = grid_minutes * MS_PER_MINUTE
    return -(-ms // g) * g


def is_on_grid(ms: int, grid_minutes: int = GRID_MINUTES) -> bool:
    return ms % (grid_minutes * MS_PER_MINUTE) == 0


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Strict overlap: intervals that only touch at a boundary do not overlap."""
    return a_start < b_end and b_start < a_end


def is_within_business_hours(
    instant: datetime,
    tz_name: str,
    hours: BusinessHours = DEFAULT_BUSINESS_HOURS
) -> bool:
    """
    Check whether an instant falls on a business weekday and hour.

    Args:
        instant: Aware datetime in any zone
        tz_name: IANA timezone in which the business hours apply
        hours: Weekday/hour window

    Returns:
        True if start_hour <= local hour < end_hour on a business weekday
    """
    local = instant.astimezone(ZoneInfo(tz_name))
    return local.weekday() in hours.weekdays and hours.start_hour <= local.hour < hours.end_hour


def local_business_window(local_date: date, tz_name: str, hours: BusinessHours = DEFAULT_BUSINESS_HOURS) -> Tuple[datetime, datetime]:
    """Opening and closing instants (UTC) of the business day on a local date."""
    tz = ZoneInfo(tz_name)
    opening = datetime(local_date.year, local_date.month, local_date.day, hours.start_hour, tzinfo=tz)
    closing = datetime(local_date.year, local_date.month, local_date.day, hours.end_hour, tzinfo=tz)
    return opening.astimezone(timezone.utc), closing.astimezone(timezone.utc)


def to_iso(instant: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    return instant.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """
    Parse an ISO-8601 instant, accepting a trailing Z.

    Naive values are rejected since the engine cannot guess their zone.
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp {value!r} has no UTC offset")
    return parsed


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_dates(start: datetime, tz_name: str, days: int) -> Iterator[date]:
    """Yield `days` consecutive local calendar dates beginning with the local date of `start`."""
    first = start.astimezone(ZoneInfo(tz_name)).date()
    for offset in range(days):
        yield first + timedelta(days=offset)
