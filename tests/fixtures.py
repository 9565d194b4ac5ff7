"""
Test fixtures for the telehealth booking engine

- MockDatabase: async in-memory stand-in for the Supabase query builder
- FakeCalendar / FakeProvisioner: in-memory calendar gateway
- FakeVideoGateway: scripted Zoom gateway
- StaticCredentials: credential manager returning a fixed token
"""

import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from telehealth_booking.calendar.google_calendar import CalendarEvent, NewEvent
from telehealth_booking.exceptions import CalendarError, VideoError
from telehealth_booking.scheduling.availability import BusyInterval
from telehealth_booking.video.zoom import Meeting

# Tuesday 2030-01-01 12:00 UTC; every booking in the tests is in the future
FIXED_NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

# Monday 2030-01-07 10:00 America/Chicago (CST, UTC-6)
MONDAY_10AM = datetime(2030, 1, 7, 16, 0, tzinfo=timezone.utc)
# Saturday 2030-01-05 10:00 America/Chicago
SATURDAY_10AM = datetime(2030, 1, 5, 16, 0, tzinfo=timezone.utc)

PATIENT_ID = "a1b2c3d4-0000-4000-8000-000000000001"
OTHER_PATIENT_ID = "e5f6a7b8-0000-4000-8000-000000000002"
PT_ID = "99999999-0000-4000-8000-000000000003"


def fixed_clock(now: datetime = FIXED_NOW) -> Callable[[], datetime]:
    return lambda: now


# =============================================================================
# Mock Database
# =============================================================================

class MockDatabase:
    """Mock Supabase client keeping rows per table in memory."""

    def __init__(self):
        self.data: Dict[str, List[dict]] = {}
        self.failing_operations = set()  # {(table, operation)}

    def table(self, table_name: str):
        return MockTable(table_name, self)

    def fail(self, table_name: str, operation: str):
        self.failing_operations.add((table_name, operation))

    def rows(self, table_name: str) -> List[dict]:
        return self.data.setdefault(table_name, [])


class MockTable:
    """Mock query builder; execute() is async like the real client."""

    def __init__(self, table_name: str, db: MockDatabase):
        self.table_name = table_name
        self.db = db
        self._filters = []
        self._order = None
        self._limit = None
        self._operation = None
        self._payload = None
        self._on_conflict = None

    def select(self, *columns):
        self._operation = 'select'
        return self

    def insert(self, data: dict):
        self._operation = 'insert'
        self._payload = data
        return self

    def update(self, data: dict):
        self._operation = 'update'
        self._payload = data
        return self

    def upsert(self, data: dict, on_conflict: Optional[str] = None):
        self._operation = 'upsert'
        self._payload = data
        self._on_conflict = on_conflict
        return self

    def delete(self):
        self._operation = 'delete'
        return self

    def eq(self, column: str, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def gte(self, column: str, value):
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) >= value)
        return self

    def order(self, column: str, desc: bool = False):
        self._order = (column, desc)
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def _matching(self) -> List[dict]:
        return [row for row in self.db.rows(self.table_name) if all(f(row) for f in self._filters)]

    async def execute(self):
        if (self.table_name, self._operation) in self.db.failing_operations:
            raise RuntimeError(f"{self.table_name} {self._operation} unavailable")

        rows = self.db.rows(self.table_name)

        if self._operation == 'insert':
            row = dict(self._payload)
            row.setdefault('id', str(uuid.uuid4()))
            rows.append(row)
            return MockResult(data=[copy.deepcopy(row)])

        if self._operation == 'upsert':
            key = self._on_conflict or 'id'
            for row in rows:
                if row.get(key) == self._payload.get(key):
                    row.update(self._payload)
                    return MockResult(data=[copy.deepcopy(row)])
            rows.append(dict(self._payload))
            return MockResult(data=[copy.deepcopy(self._payload)])

        if self._operation == 'update':
            matched = self._matching()
            for row in matched:
                row.update(self._payload)
            return MockResult(data=copy.deepcopy(matched))

        if self._operation == 'delete':
            matched = self._matching()
            self.db.data[self.table_name] = [row for row in rows if row not in matched]
            return MockResult(data=copy.deepcopy(matched))

        result = self._matching()
        if self._order:
            column, desc = self._order
            result = sorted(result, key=lambda row: row.get(column) or '', reverse=desc)
        if self._limit:
            result = result[:self._limit]
        return MockResult(data=copy.deepcopy(result))


class MockResult:
    """Mock query result."""

    def __init__(self, data=None, count=None):
        self.data = data
        self.count = count


class InMemoryConfigStore:
    def __init__(self, values: Optional[Dict[str, str]] = None):
        self.values = dict(values or {})
        self.writes = []

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def set(self, key: str, value: str) -> None:
        self.writes.append((key, value))
        self.values[key] = value


# =============================================================================
# Provider fakes
# =============================================================================

class StaticCredentials:
    """Credential manager stand-in that always returns the same token."""

    client_email = "booking@test-project.iam.gserviceaccount.com"

    def __init__(self, token: str = "test-token"):
        self.token = token
        self.invalidated = 0

    async def get_access_token(self) -> str:
        return self.token

    def invalidate(self) -> None:
        self.invalidated += 1


class FakeCalendar:
    """In-memory calendar with the GoogleCalendarClient interface."""

    calendar_id = "fake-calendar"

    def __init__(self):
        self.events: Dict[str, CalendarEvent] = {}
        self.created: List[NewEvent] = []
        self.updates: List[tuple] = []
        self.deleted: List[str] = []
        self.fail_create = False
        self.fail_delete = False
        self.fail_update = False
        self.after_create: Optional[Callable[[CalendarEvent], None]] = None
        self._sequence = 0

    def add_event(self, start: datetime, end: datetime, summary: str = "Busy", **kwargs) -> CalendarEvent:
        self._sequence += 1
        event = CalendarEvent(
            id=kwargs.pop("id", f"evt-{self._sequence}"),
            summary=summary,
            description=kwargs.pop("description", ""),
            start=start,
            end=end,
            html_link=kwargs.pop("html_link", f"https://calendar.google.com/event?eid=evt-{self._sequence}"),
            created=kwargs.pop("created", FIXED_NOW + timedelta(seconds=self._sequence)),
            **kwargs,
        )
        self.events[event.id] = event
        return event

    async def list_events_between(self, start, end, max_results=None) -> List[CalendarEvent]:
        return sorted(
            (e for e in self.events.values() if e.start < end and start < e.end),
            key=lambda e: e.start,
        )

    async def list_busy_intervals(self, start, end) -> List[BusyInterval]:
        events = await self.list_events_between(start, end)
        return [e.to_busy_interval() for e in events if e.blocks_time]

    async def create_event(self, params: NewEvent) -> CalendarEvent:
        if self.fail_create:
            raise CalendarError("Failed to create event", status=500, body="backend error")
        self.created.append(params)
        event = self.add_event(
            params.start,
            params.end,
            summary=params.summary,
            description=params.description or "",
            location=params.location,
        )
        if self.after_create:
            self.after_create(event)
        return event

    async def update_event(self, event_id, **fields) -> CalendarEvent:
        if self.fail_update:
            raise CalendarError("Failed to update event", status=500)
        self.updates.append((event_id, fields))
        return self.events[event_id]

    async def delete_event(self, event_id: str) -> bool:
        if self.fail_delete:
            raise CalendarError("Failed to delete event", status=503)
        self.deleted.append(event_id)
        return self.events.pop(event_id, None) is not None

    async def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        return self.events.get(event_id)


class FakeProvisioner:
    def __init__(self, calendar: Optional[FakeCalendar] = None, error: Optional[Exception] = None):
        self.calendar = calendar or FakeCalendar()
        self.error = error

    async def provision(self):
        if self.error:
            raise self.error
        return self.calendar


class FakeVideoGateway:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.created = []
        self.deleted = []

    async def create_meeting(self, topic, start, duration_minutes=30, agenda=None) -> Meeting:
        if self.fail:
            raise VideoError("Zoom is not configured")
        meeting = Meeting(id=f"8{len(self.created) + 1:09d}", join_url="https://zoom.us/j/8000000001", passcode="abc123")
        self.created.append((topic, start, duration_minutes))
        return meeting

    async def delete_meeting(self, meeting_id: str) -> bool:
        self.deleted.append(meeting_id)
        return True


def create_test_appointment(**kwargs):
    """Create a stored appointment row"""
    return {
        'id': kwargs.get('id', str(uuid.uuid4())),
        'user_id': kwargs.get('user_id', PATIENT_ID),
        'patient_name': kwargs.get('patient_name', 'Jane Doe'),
        'patient_email': kwargs.get('patient_email', 'jane@example.com'),
        'start_time': kwargs.get('start_time', '2030-01-07T16:00:00.000Z'),
        'end_time': kwargs.get('end_time', '2030-01-07T16:30:00.000Z'),
        'duration_minutes': 30,
        'google_event_id': kwargs.get('google_event_id'),
        'google_event_link': kwargs.get('google_event_link'),
        'zoom_meeting_id': kwargs.get('zoom_meeting_id'),
        'zoom_meeting_url': kwargs.get('zoom_meeting_url'),
        'zoom_meeting_passcode': kwargs.get('zoom_meeting_passcode'),
        'status': kwargs.get('status', 'pending'),
        'auto_confirmed': kwargs.get('auto_confirmed', False),
        'patient_notes': kwargs.get('patient_notes'),
    }
