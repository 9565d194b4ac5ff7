"""
Availability Engine

Finds bookable appointment start times from:
- The 15-minute booking grid
- Clinic business hours (single timezone)
- Busy intervals fetched from the calendar provider
- A post-appointment buffer added after every busy interval

The engine is pure: identical inputs always yield identical output, and it
never talks to a provider itself. Callers fetch busy intervals first.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from ..config import APPOINTMENT_DURATION_MIN, BUFFER_MIN, GRID_MINUTES
from .clock import (
    DEFAULT_BUSINESS_HOURS,
    BusinessHours,
    add_minutes,
    from_epoch_ms,
    intervals_overlap,
    is_on_grid,
    is_within_business_hours,
    local_business_window,
    local_dates,
    round_up_to_grid,
    to_epoch_ms,
    to_iso,
)

logger = logging.getLogger(__name__)

OFF_GRID_REASON = "Start time must be on grid (every {grid} minutes)."
OUTSIDE_HOURS_REASON = (
    "Requested time is outside business hours ({start}:00-{end}:00 {tz}, Mon-Fri)."
)
CONFLICT_REASON = "Conflicts with existing appointment at {start}"


@dataclass(frozen=True)
class BusyInterval:
    """A time range the calendar provider reports as taken."""
    start: datetime
    end: datetime
    external_id: str = ""
    label: str = ""


@dataclass(frozen=True)
class TimeSlot:
    """A bookable start time; the duration is the engine-wide constant."""
    start: datetime


@dataclass(frozen=True)
class SlotDecision:
    ok: bool
    reason: Optional[str] = None


@dataclass
class DaySlots:
    """Available slots for one local calendar day."""
    date: date
    slots: List[TimeSlot] = field(default_factory=list)

    def to_dict(self, tz_name: str) -> Dict[str, Any]:
        tz = ZoneInfo(tz_name)
        return {
            "date": self.date.isoformat(),
            "dateDisplay": f"{self.date.strftime('%A, %b')} {self.date.day}",
            "slots": [
                {
                    "startISO": to_iso(slot.start),
                    "timeDisplay": _format_time(slot.start.astimezone(tz)),
                }
                for slot in self.slots
            ],
        }


def _format_time(local: datetime) -> str:
    hour = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    return f"{hour}:{local.minute:02d} {suffix}"


class AvailabilityEngine:
    """
    Validates proposed bookings and enumerates free slots.

    Args:
        tz_name: Clinic timezone string (e.g., 'America/Chicago')
        grid_minutes: Slot granularity
        duration_minutes: Default appointment length
        buffer_minutes: Cooldown added after each busy interval
        business_hours: Weekday/hour window for bookable starts
    """

    def __init__(
        self,
        tz_name: str = "America/Chicago",
        grid_minutes: int = GRID_MINUTES,
        duration_minutes: int = APPOINTMENT_DURATION_MIN,
        buffer_minutes: int = BUFFER_MIN,
        business_hours: BusinessHours = DEFAULT_BUSINESS_HOURS
    ):
        self.tz_name = tz_name
        self.grid_minutes = grid_minutes
        self.duration_minutes = duration_minutes
        self.buffer_minutes = buffer_minutes
        self.business_hours = business_hours

    def is_business_hours(self, instant: datetime) -> bool:
        return is_within_business_hours(instant, self.tz_name, self.business_hours)

    def is_slot_available(
        self,
        proposed_start: datetime,
        duration_minutes: Optional[int] = None,
        busy_intervals: Iterable[BusyInterval] = ()
    ) -> SlotDecision:
        """
        Check a proposed start against grid, business hours and busy intervals.

        Rules are applied in order and the first failing rule wins.

        Returns:
            SlotDecision with ok=False and a human-readable reason on failure
        """
        duration = duration_minutes or self.duration_minutes
        start_ms = to_epoch_ms(proposed_start)

        if not is_on_grid(start_ms, self.grid_minutes):
            return SlotDecision(ok=False, reason=OFF_GRID_REASON.format(grid=self.grid_minutes))

        if not self.is_business_hours(proposed_start):
            return SlotDecision(
                ok=False,
                reason=OUTSIDE_HOURS_REASON.format(
                    start=self.business_hours.start_hour,
                    end=self.business_hours.end_hour,
                    tz=self.tz_name,
                ),
            )

        end_ms = add_minutes(start_ms, duration)
        for busy in busy_intervals:
            blocked_start, blocked_end = self.effective_blocked_interval(busy)
            if intervals_overlap(start_ms, end_ms, blocked_start, blocked_end):
                return SlotDecision(ok=False, reason=CONFLICT_REASON.format(start=to_iso(busy.start)))

        return SlotDecision(ok=True)

    def effective_blocked_interval(self, busy: BusyInterval):
        """Busy interval in epoch ms, extended by the buffer after its end only."""
        return to_epoch_ms(busy.start), add_minutes(to_epoch_ms(busy.end), self.buffer_minutes)

    def generate_available_slots(
        self,
        window_start: datetime,
        window_end: datetime,
        duration_minutes: Optional[int] = None,
        busy_intervals: Sequence[BusyInterval] = ()
    ) -> List[TimeSlot]:
        """
        Walk the window on the grid and keep every start that passes
        is_slot_available. A slot is kept only if it ends by window_end.
        """
        duration = duration_minutes or self.duration_minutes
        end_ms = to_epoch_ms(window_end)
        t = round_up_to_grid(to_epoch_ms(window_start), self.grid_minutes)

        slots = []
        while add_minutes(t, duration) <= end_ms:
            candidate = from_epoch_ms(t)
            if self.is_slot_available(candidate, duration, busy_intervals).ok:
                slots.append(TimeSlot(start=candidate))
            t = add_minutes(t, self.grid_minutes)

        return slots

    def generate_slots_by_day(
        self,
        days: int,
        start_from: datetime,
        busy_intervals: Sequence[BusyInterval] = ()
    ) -> List[DaySlots]:
        """
        Group available slots by local business day.

        Non-business weekdays are skipped entirely and days without any free
        slot are omitted. Slots before start_from are never offered.

        Args:
            days: Number of calendar days to cover, starting with start_from's local date
            start_from: Earliest instant a slot may start
            busy_intervals: Busy intervals covering the whole span

        Returns:
            Ordered list of DaySlots
        """
        result = []
        for local_date in local_dates(start_from, self.tz_name, days):
            if local_date.weekday() not in self.business_hours.weekdays:
                continue

            opening, closing = local_business_window(local_date, self.tz_name, self.business_hours)
            slots = self.generate_available_slots(
                max(opening, start_from),
                closing,
                busy_intervals=busy_intervals,
            )
            if slots:
                result.append(DaySlots(date=local_date, slots=slots))

        logger.debug(f"Generated {sum(len(d.slots) for d in result)} slots over {days} days")
        return result

    def lookaround_window(self, proposed_start: datetime, days: int = 1):
        """Window of +/- `days` around a proposed start for fetching busy intervals."""
        return proposed_start - timedelta(days=days), proposed_start + timedelta(days=days)
