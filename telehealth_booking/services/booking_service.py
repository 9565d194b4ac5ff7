"""
Booking orchestrator.

Turns a booking request into an appointment backed by three independent
systems. Order is fixed: video meeting (best-effort), calendar event (fatal),
appointment row (fatal, compensated by deleting the calendar event).
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..calendar.google_calendar import CalendarEvent, GoogleCalendarClient, NewEvent
from ..exceptions import (
    BookingFailedError,
    CalendarError,
    CompensationFailure,
    CredentialError,
    SlotConflictError,
    StoreError,
    ValidationError,
    VideoError,
)
from ..scheduling.availability import CONFLICT_REASON, AvailabilityEngine
from ..scheduling.clock import intervals_overlap, to_epoch_ms, to_iso, utc_now
from ..video.zoom import Meeting
from .appointment_store import AppointmentStatus

logger = logging.getLogger(__name__)

EVENT_SUMMARY = "Telehealth Consult - {patient}"

MESSAGE_CONFIRMED_WITH_ZOOM = "Your appointment has been confirmed! A Zoom link has been created for your session."
MESSAGE_CONFIRMED_NO_ZOOM = (
    "Your appointment has been confirmed, but we could not create a Zoom link automatically. "
    "One will be provided before your session."
)
MESSAGE_PENDING_WITH_ZOOM = (
    "Your appointment is pending confirmation. A Zoom link is ready and will be available once confirmed."
)
MESSAGE_PENDING_NO_ZOOM = (
    "Your appointment is pending confirmation. You will receive a Zoom link once your appointment is confirmed."
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PHONE_DIGITS = 10
MAX_NOTES_LENGTH = 1000


@dataclass
class BookingRequest:
    start: datetime
    patient_name: str
    patient_email: Optional[str] = None
    patient_phone: Optional[str] = None
    notes: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class BookingResult:
    appointment: Dict[str, Any]
    zoom_created: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        row = self.appointment
        return {
            "ok": True,
            "appointment": {
                "id": row.get("id"),
                "startTime": row.get("start_time"),
                "endTime": row.get("end_time"),
                "status": row.get("status"),
                "autoConfirmed": row.get("auto_confirmed"),
                "googleEventLink": row.get("google_event_link"),
                "zoomMeetingUrl": row.get("zoom_meeting_url"),
                "zoomMeetingId": row.get("zoom_meeting_id"),
            },
            "zoomCreated": self.zoom_created,
            "message": self.message,
        }


def booking_message(auto_confirmed: bool, zoom_created: bool) -> str:
    """Caller-facing message derived from what actually happened."""
    if auto_confirmed:
        return MESSAGE_CONFIRMED_WITH_ZOOM if zoom_created else MESSAGE_CONFIRMED_NO_ZOOM
    return MESSAGE_PENDING_WITH_ZOOM if zoom_created else MESSAGE_PENDING_NO_ZOOM


def build_event_description(
    meeting_url: Optional[str] = None,
    passcode: Optional[str] = None,
    notes: Optional[str] = None
) -> str:
    lines: List[str] = []
    if meeting_url:
        lines.append(f"Join Zoom Meeting: {meeting_url}")
        if passcode:
            lines.append(f"Passcode: {passcode}")
    if notes:
        if lines:
            lines.append("")
        lines.append(f"Notes: {notes}")
    return "\n".join(lines)


def _short(user_id: Optional[str]) -> str:
    return user_id[:8] if user_id else "anonymous"


class BookingOrchestrator:
    """
    Books one appointment across video, calendar and store.

    Args:
        calendar_provisioner: Yields the ready calendar client
        video_gateway: Meeting creator; failures degrade the booking, never abort it
        appointment_store: Durable appointment records
        engine: Availability rules
        clock: Returns the current aware datetime
        recheck_before_commit: Re-read the calendar around event creation to
            catch concurrent bookings of the same slot
    """

    def __init__(
        self,
        calendar_provisioner,
        video_gateway,
        appointment_store,
        engine: AvailabilityEngine,
        clock: Callable[[], datetime] = utc_now,
        recheck_before_commit: bool = True
    ):
        self.calendar_provisioner = calendar_provisioner
        self.video_gateway = video_gateway
        self.appointment_store = appointment_store
        self.engine = engine
        self.clock = clock
        self.recheck_before_commit = recheck_before_commit

    def validate_request(self, request: BookingRequest) -> None:
        """
        Reject malformed booking requests before any provider is called.

        Raises:
            ValidationError: With a caller-facing message
        """
        if request.start.tzinfo is None:
            raise ValidationError("startISO must include a timezone offset")
        if request.start <= self.clock():
            raise ValidationError("Appointment time must be in the future")

        name = (request.patient_name or "").strip()
        if not 2 <= len(name) <= 100:
            raise ValidationError("Patient name must be between 2 and 100 characters")

        if request.patient_email and not EMAIL_PATTERN.match(request.patient_email):
            raise ValidationError("Invalid email address")

        if request.patient_phone:
            digits = re.sub(r"\D", "", request.patient_phone)
            if len(digits) < MIN_PHONE_DIGITS:
                raise ValidationError("Phone number must have at least 10 digits")

        if request.notes and len(request.notes) > MAX_NOTES_LENGTH:
            raise ValidationError(f"Notes must be at most {MAX_NOTES_LENGTH} characters")

    async def book(self, request: BookingRequest) -> BookingResult:
        """
        Run the booking saga.

        Raises:
            ValidationError: Malformed request
            SlotConflictError: Slot is off-grid, outside business hours, or taken
            CalendarError, CredentialError: Calendar event could not be created
            BookingFailedError: Store write failed (calendar event compensated)
        """
        self.validate_request(request)
        patient_name = request.patient_name.strip()
        start = request.start
        end = start + timedelta(minutes=self.engine.duration_minutes)

        logger.info(f"[Booking] Request from {_short(request.user_id)} for {to_iso(start)}")

        calendar = await self.calendar_provisioner.provision()

        # Steps 1-2: availability against a fresh read of the calendar
        await self._ensure_slot_free(calendar, start)

        # Step 3: business hours decide whether the appointment confirms itself
        auto_confirmed = self.engine.is_business_hours(start)
        status = AppointmentStatus.CONFIRMED if auto_confirmed else AppointmentStatus.PENDING

        # Step 4: video meeting, best-effort
        meeting = await self._try_create_meeting(patient_name, start)

        # Step 5: calendar event, fatal
        if self.recheck_before_commit:
            try:
                await self._ensure_slot_free(calendar, start)
            except SlotConflictError:
                await self._discard_meeting(meeting)
                raise

        event = await calendar.create_event(NewEvent(
            summary=EVENT_SUMMARY.format(patient=patient_name),
            start=start,
            end=end,
            description=build_event_description(
                meeting.join_url if meeting else None,
                meeting.passcode if meeting else None,
                request.notes,
            ),
            location=meeting.join_url if meeting else None,
            patient_name=patient_name,
            phone=request.patient_phone,
            user_id=request.user_id,
        ))
        logger.info(f"[Booking] Created calendar event {event.id}")

        if self.recheck_before_commit:
            await self._resolve_concurrent_booking(calendar, event, meeting)

        # Step 6: durable record
        row = {
            "user_id": request.user_id,
            "patient_name": patient_name,
            "patient_email": request.patient_email,
            "patient_phone": request.patient_phone,
            "start_time": to_iso(start),
            "end_time": to_iso(end),
            "duration_minutes": self.engine.duration_minutes,
            "google_event_id": event.id,
            "google_event_link": event.html_link,
            "zoom_meeting_id": meeting.id if meeting else None,
            "zoom_meeting_url": meeting.join_url if meeting else None,
            "zoom_meeting_passcode": meeting.passcode if meeting else None,
            "status": status.value,
            "auto_confirmed": auto_confirmed,
            "confirmed_at": to_iso(self.clock()) if auto_confirmed else None,
            "patient_notes": request.notes,
        }

        try:
            appointment = await self.appointment_store.insert(row)
        except StoreError as e:
            # Step 7: compensate, then report failure
            logger.error(f"[Booking] Store write failed, rolling back event {event.id}: {e}")
            await self._compensate(calendar, event.id)
            raise BookingFailedError() from e

        logger.info(
            f"[Booking] Appointment {appointment.get('id')} saved as {status.value} "
            f"(zoom={'yes' if meeting else 'no'})"
        )

        # Step 8: outcome message
        return BookingResult(
            appointment=appointment,
            zoom_created=meeting is not None,
            message=booking_message(auto_confirmed, meeting is not None),
        )

    async def _ensure_slot_free(self, calendar: GoogleCalendarClient, start: datetime) -> None:
        window_start, window_end = self.engine.lookaround_window(start)
        busy = await calendar.list_busy_intervals(window_start, window_end)

        decision = self.engine.is_slot_available(start, busy_intervals=busy)
        if not decision.ok:
            logger.info(f"[Booking] Slot {to_iso(start)} rejected: {decision.reason}")
            raise SlotConflictError(decision.reason)

    async def _try_create_meeting(self, patient_name: str, start: datetime) -> Optional[Meeting]:
        if self.video_gateway is None:
            logger.warning("[Booking] Video gateway not configured; continuing without a meeting")
            return None

        try:
            return await self.video_gateway.create_meeting(
                topic=EVENT_SUMMARY.format(patient=patient_name),
                start=start,
                duration_minutes=self.engine.duration_minutes,
            )
        except VideoError as e:
            logger.warning(f"[Booking] Zoom meeting creation failed (non-fatal): {e}")
            return None

    async def _discard_meeting(self, meeting: Optional[Meeting]) -> None:
        if meeting is None or self.video_gateway is None:
            return
        try:
            await self.video_gateway.delete_meeting(meeting.id)
        except VideoError as e:
            logger.warning(f"[Booking] Could not delete unused Zoom meeting {meeting.id}: {e}")

    def _is_blocked_by(self, ours: CalendarEvent, other: CalendarEvent) -> bool:
        """Same one-sided test as is_slot_available: the buffer follows the other event only."""
        blocked_start, blocked_end = self.engine.effective_blocked_interval(other.to_busy_interval())
        return intervals_overlap(to_epoch_ms(ours.start), to_epoch_ms(ours.end), blocked_start, blocked_end)

    @staticmethod
    def _created_before(other: CalendarEvent, ours: CalendarEvent) -> bool:
        # Missing stamps: fall back to id order so both racers agree
        if other.created is None or ours.created is None:
            return other.id < ours.id
        return (other.created, other.id) < (ours.created, ours.id)

    async def _resolve_concurrent_booking(
        self,
        calendar: GoogleCalendarClient,
        event: CalendarEvent,
        meeting: Optional[Meeting]
    ) -> None:
        """
        Back out if a concurrent booking created an overlapping event first.

        Of two racing bookings, the one whose event was created later (ties
        broken by event id) deletes its own event and reports a conflict.
        """
        window_start, window_end = self.engine.lookaround_window(event.start)
        try:
            events = await calendar.list_events_between(window_start, window_end)
        except (CalendarError, CredentialError) as e:
            logger.warning(f"[Booking] Could not verify event {event.id} after creation: {e}")
            return

        for other in events:
            if other.id == event.id or not other.blocks_time:
                continue
            if self._is_blocked_by(event, other) and self._created_before(other, event):
                logger.warning(f"[Booking] Event {event.id} lost a race with {other.id}; rolling back")
                await self._compensate(calendar, event.id)
                await self._discard_meeting(meeting)
                raise SlotConflictError(CONFLICT_REASON.format(start=to_iso(other.start)))

    async def _compensate(self, calendar: GoogleCalendarClient, event_id: str) -> None:
        """Delete the event exactly once; a failure leaves an orphan that is logged."""
        try:
            await calendar.delete_event(event_id)
            logger.info(f"[Booking] Compensated: deleted calendar event {event_id}")
        except (CalendarError, CredentialError) as e:
            failure = CompensationFailure(event_id, e)
            logger.error(f"[Booking] ORPHANED calendar event: {failure.message}")
