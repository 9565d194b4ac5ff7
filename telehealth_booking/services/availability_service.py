"""
Availability queries.

Fetches busy intervals for the requested span from the provisioned calendar
and lets the AvailabilityEngine enumerate free slots per business day.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from ..scheduling.availability import AvailabilityEngine
from ..scheduling.clock import utc_now

logger = logging.getLogger(__name__)


class AvailabilityService:
    def __init__(
        self,
        calendar_provisioner,
        engine: AvailabilityEngine,
        clock: Callable[[], datetime] = utc_now
    ):
        self.calendar_provisioner = calendar_provisioner
        self.engine = engine
        self.clock = clock

    async def get_availability(self, days: int = 7, start_from: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Free slots grouped by local day.

        Past instants are never offered, so start_from is raised to now.

        Raises:
            CalendarError, CredentialError: Busy intervals could not be read
        """
        now = self.clock()
        start = max(start_from, now) if start_from else now
        # One extra day covers the tail of the last local day in any offset
        end = start + timedelta(days=days + 1)

        calendar = await self.calendar_provisioner.provision()
        busy = await calendar.list_busy_intervals(start, end)

        slots_by_day = self.engine.generate_slots_by_day(days, start, busy)
        total = sum(len(day.slots) for day in slots_by_day)
        logger.info(f"[Availability] {total} slots over {days} days ({len(busy)} busy intervals)")

        return {
            "ok": True,
            "timezone": self.engine.tz_name,
            "durationMinutes": self.engine.duration_minutes,
            "days": days,
            "totalSlots": total,
            "slotsByDay": [day.to_dict(self.engine.tz_name) for day in slots_by_day],
        }
