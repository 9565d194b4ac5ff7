"""
Google Calendar gateway.

Two-phase resource:
- CalendarProvisioner.provision() guarantees a calendar the service account
  can use (reusing a remembered one, subscribing to a shared one, or creating
  and sharing a new one) and returns a ready GoogleCalendarClient.
- GoogleCalendarClient performs per-call event operations. It can only be
  obtained from a provisioner, so list/create/update/delete never run against
  an unverified calendar.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote
from zoneinfo import ZoneInfo

import httpx

from ..config import APPOINTMENT_DURATION_MIN, CALENDAR_ID_CONFIG_KEY
from ..exceptions import CalendarError, CalendarProvisioningError, StoreError
from ..scheduling.availability import BusyInterval
from ..scheduling.clock import parse_iso, utc_now
from ..services.credential_manager import CredentialManager
from ..services.external_timeouts import CALENDAR_TIMEOUT
from .event_tags import build_tagged_description, parse_event_tags

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
MAX_RESULTS_PER_PAGE = 250


@dataclass
class CalendarEvent:
    """Transient copy of a provider-owned calendar event."""
    id: str
    summary: str
    description: str
    start: datetime
    end: datetime
    location: Optional[str] = None
    html_link: Optional[str] = None
    created: Optional[datetime] = None
    status: str = "confirmed"
    transparency: str = "opaque"

    @property
    def tags(self) -> Dict[str, str]:
        return parse_event_tags(self.description)

    @property
    def blocks_time(self) -> bool:
        return self.status != "cancelled" and self.transparency != "transparent"

    def to_busy_interval(self) -> BusyInterval:
        return BusyInterval(start=self.start, end=self.end, external_id=self.id, label=self.summary)


@dataclass
class NewEvent:
    """Parameters for creating an event."""
    summary: str
    start: datetime
    end: Optional[datetime] = None
    description: Optional[str] = None
    location: Optional[str] = None
    patient_name: Optional[str] = None
    phone: Optional[str] = None
    user_id: Optional[str] = None


class _GoogleCalendarApi:
    """Authenticated request helper shared by the provisioner and the client."""

    def __init__(self, credentials: CredentialManager, http_client: httpx.AsyncClient, tz_name: str):
        self.credentials = credentials
        self.http_client = http_client
        self.tz_name = tz_name

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False
    ) -> Optional[Dict[str, Any]]:
        """
        Perform one Calendar API call.

        Returns:
            Parsed JSON body, {} for empty bodies, or None for a tolerated 404

        Raises:
            CredentialError: If no access token could be obtained
            CalendarError: For transport failures and non-2xx responses
        """
        token = await self.credentials.get_access_token()

        try:
            response = await self.http_client.request(
                method,
                f"{GOOGLE_CALENDAR_API}{path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
                timeout=CALENDAR_TIMEOUT,
            )
        except httpx.HTTPError as e:
            logger.error(f"[GoogleCalendar] {action} failed: {type(e).__name__}: {e}")
            raise CalendarError(f"Failed to {action}: {type(e).__name__}") from e

        if response.status_code == 404 and allow_not_found:
            return None

        if response.status_code == 401:
            # Token was revoked or expired early; force a fresh exchange next time
            self.credentials.invalidate()

        if not response.is_success:
            logger.error(f"[GoogleCalendar] {action} failed ({response.status_code}): {response.text}")
            raise CalendarError(f"Failed to {action}", status=response.status_code, body=response.text)

        if not response.content:
            return {}
        return response.json()

    def _event_time(self, instant: datetime) -> Dict[str, str]:
        return {"dateTime": instant.isoformat(), "timeZone": self.tz_name}

    def _parse_event_time(self, raw: Optional[Dict[str, str]]) -> datetime:
        raw = raw or {}
        if raw.get("dateTime"):
            return parse_iso(raw["dateTime"])
        if raw.get("date"):
            # All-day events span whole local days
            return datetime.combine(date.fromisoformat(raw["date"]), time(0), tzinfo=ZoneInfo(self.tz_name))
        raise CalendarError("Event has no start/end time")

    def _normalize_event(self, raw: Dict[str, Any]) -> CalendarEvent:
        created = raw.get("created")
        return CalendarEvent(
            id=raw["id"],
            summary=raw.get("summary") or "",
            description=raw.get("description") or "",
            start=self._parse_event_time(raw.get("start")),
            end=self._parse_event_time(raw.get("end")),
            location=raw.get("location"),
            html_link=raw.get("htmlLink"),
            created=parse_iso(created) if created else None,
            status=raw.get("status") or "confirmed",
            transparency=raw.get("transparency") or "opaque",
        )


class GoogleCalendarClient(_GoogleCalendarApi):
    """Event operations against one provisioned calendar."""

    def __init__(
        self,
        calendar_id: str,
        credentials: CredentialManager,
        http_client: httpx.AsyncClient,
        tz_name: str
    ):
        super().__init__(credentials, http_client, tz_name)
        self.calendar_id = calendar_id

    @property
    def _events_path(self) -> str:
        return f"/calendars/{quote(self.calendar_id, safe='')}/events"

    def _event_path(self, event_id: str) -> str:
        return f"{self._events_path}/{quote(event_id, safe='')}"

    async def list_events_between(
        self,
        start: datetime,
        end: datetime,
        max_results: Optional[int] = None
    ) -> List[CalendarEvent]:
        """
        List events overlapping [start, end), recurring events expanded.

        Follows pagination unless max_results caps the result size.
        """
        params = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": str(max_results or MAX_RESULTS_PER_PAGE),
        }

        events: List[CalendarEvent] = []
        while True:
            data = await self._request("GET", self._events_path, "list events", params=params)
            events.extend(self._normalize_event(item) for item in data.get("items", []))

            page_token = data.get("nextPageToken")
            if max_results or not page_token:
                break
            params["pageToken"] = page_token

        return events

    async def list_busy_intervals(self, start: datetime, end: datetime) -> List[BusyInterval]:
        events = await self.list_events_between(start, end)
        busy = [event.to_busy_interval() for event in events if event.blocks_time]
        logger.info(f"[GoogleCalendar] {len(busy)} busy interval(s) between {start.isoformat()} and {end.isoformat()}")
        return busy

    async def create_event(self, params: NewEvent) -> CalendarEvent:
        end = params.end or params.start + timedelta(minutes=APPOINTMENT_DURATION_MIN)
        body = {
            "summary": params.summary,
            "description": build_tagged_description(
                description=params.description,
                patient_name=params.patient_name,
                phone=params.phone,
                user_id=params.user_id,
            ),
            "start": self._event_time(params.start),
            "end": self._event_time(end),
        }
        if params.location:
            body["location"] = params.location

        data = await self._request("POST", self._events_path, "create event", json=body)
        return self._normalize_event(data)

    async def update_event(
        self,
        event_id: str,
        summary: Optional[str] = None,
        description: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        location: Optional[str] = None
    ) -> CalendarEvent:
        """Patch only the fields that are given."""
        patch: Dict[str, Any] = {}
        if summary:
            patch["summary"] = summary
        if description:
            patch["description"] = description
        if start:
            patch["start"] = self._event_time(start)
        if end:
            patch["end"] = self._event_time(end)
        if location:
            patch["location"] = location

        data = await self._request("PATCH", self._event_path(event_id), "update event", json=patch)
        return self._normalize_event(data)

    async def delete_event(self, event_id: str) -> bool:
        """
        Delete an event.

        Returns:
            False if the event was already gone, True otherwise
        """
        data = await self._request(
            "DELETE", self._event_path(event_id), "delete event", allow_not_found=True
        )
        if data is None:
            logger.info(f"[GoogleCalendar] Event {event_id} already absent")
            return False
        return True

    async def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        data = await self._request("GET", self._event_path(event_id), "get event", allow_not_found=True)
        if data is None:
            return None
        return self._normalize_event(data)


class CalendarProvisioner(_GoogleCalendarApi):
    """
    Self-provisioning bootstrap for the booking calendar.

    Steps (run at most once per process once successful):
    1. Prefer a calendar id remembered in the config store over the static one
    2. Probe it with a one-day, one-result event query
    3. If inaccessible, try subscribing to it, then create a new calendar
    4. Share a new calendar with the configured owner (best-effort)
    5. Remember the new id so later processes skip steps 2-4
    """

    def __init__(
        self,
        credentials: CredentialManager,
        http_client: httpx.AsyncClient,
        config_store,
        calendar_id: str = "",
        owner_email: str = "",
        tz_name: str = "America/Chicago",
        calendar_name: str = "Telehealth Appointments",
        clock: Callable[[], datetime] = utc_now
    ):
        super().__init__(credentials, http_client, tz_name)
        self.config_store = config_store
        self.configured_calendar_id = calendar_id
        self.owner_email = owner_email
        self.calendar_name = calendar_name
        self.clock = clock
        self._client: Optional[GoogleCalendarClient] = None
        self._lock = asyncio.Lock()

    @property
    def service_account_email(self) -> str:
        return getattr(self.credentials, "client_email", "") or "the service account"

    async def provision(self) -> GoogleCalendarClient:
        """
        Return a ready calendar client, bootstrapping on first use.

        Raises:
            CalendarProvisioningError: If no calendar is accessible and none can be created
        """
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is None:
                self._client = await self._bootstrap()
            return self._client

    async def _bootstrap(self) -> GoogleCalendarClient:
        calendar_id = self.configured_calendar_id
        stored_id = await self._read_stored_calendar_id()
        if stored_id and stored_id != calendar_id:
            logger.info(f"[GoogleCalendar] Using provisioned calendar {stored_id} instead of configured id")
            calendar_id = stored_id

        if calendar_id:
            client = self._client_for(calendar_id)
            if await self._can_read(client):
                logger.info(f"[GoogleCalendar] Access confirmed for calendar {calendar_id}")
                return client

            if await self._subscribe(calendar_id) and await self._can_read(client):
                logger.info(f"[GoogleCalendar] Subscribed to shared calendar {calendar_id}")
                return client

            logger.warning(f"[GoogleCalendar] Calendar {calendar_id} is not accessible to {self.service_account_email}")

        new_id = await self._create_calendar(calendar_id)
        await self._share_with_owner(new_id)
        await self._remember_calendar_id(new_id)
        return self._client_for(new_id)

    def _client_for(self, calendar_id: str) -> GoogleCalendarClient:
        return GoogleCalendarClient(calendar_id, self.credentials, self.http_client, self.tz_name)

    async def _read_stored_calendar_id(self) -> Optional[str]:
        try:
            return await self.config_store.get(CALENDAR_ID_CONFIG_KEY)
        except StoreError as e:
            logger.warning(f"[GoogleCalendar] Could not read stored calendar id: {e}")
            return None

    async def _can_read(self, client: GoogleCalendarClient) -> bool:
        now = self.clock()
        try:
            await client.list_events_between(now, now + timedelta(days=1), max_results=1)
            return True
        except CalendarError as e:
            logger.info(f"[GoogleCalendar] Probe of {client.calendar_id} failed: {e.status}")
            return False

    async def _subscribe(self, calendar_id: str) -> bool:
        """Add a calendar shared with the service account to its calendar list."""
        try:
            await self._request(
                "POST", "/users/me/calendarList", "subscribe to calendar", json={"id": calendar_id}
            )
            return True
        except CalendarError as e:
            if e.status == 404:
                logger.warning(
                    f"[GoogleCalendar] Calendar not found or not shared. "
                    f"The calendar owner must share it with: {self.service_account_email}"
                )
            return False

    async def _create_calendar(self, inaccessible_id: str) -> str:
        try:
            data = await self._request(
                "POST",
                "/calendars",
                "create calendar",
                json={"summary": self.calendar_name, "timeZone": self.tz_name},
            )
        except CalendarError as e:
            raise CalendarProvisioningError(
                f"Calendar {inaccessible_id or '(not configured)'} is not accessible and a new "
                f"calendar could not be created. Share the calendar with {self.service_account_email} "
                f"or grant the service account permission to create calendars",
                status=e.status,
                body=e.body,
            ) from e

        new_id = data["id"]
        logger.info(f"[GoogleCalendar] Created calendar {new_id}")
        return new_id

    async def _share_with_owner(self, calendar_id: str) -> None:
        if not self.owner_email:
            logger.warning(f"[GoogleCalendar] No owner email configured; calendar {calendar_id} is only visible to the service account")
            return

        try:
            await self._request(
                "POST",
                f"/calendars/{quote(calendar_id, safe='')}/acl",
                "share calendar",
                json={"role": "owner", "scope": {"type": "user", "value": self.owner_email}},
            )
            logger.info(f"[GoogleCalendar] Shared calendar {calendar_id} with {self.owner_email}")
        except CalendarError as e:
            logger.error(f"[GoogleCalendar] Could not share calendar {calendar_id}: {e}")

    async def _remember_calendar_id(self, calendar_id: str) -> None:
        try:
            await self.config_store.set(CALENDAR_ID_CONFIG_KEY, calendar_id)
        except StoreError as e:
            logger.error(f"[GoogleCalendar] Could not persist calendar id {calendar_id}: {e}")
