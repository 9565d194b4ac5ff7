"""
Appointment lifecycle.

States: pending, confirmed, cancelled, completed, no_show.

    confirm   pending            -> confirmed   (elevated)
    cancel    pending|confirmed  -> cancelled   (elevated or owner)
    complete  confirmed          -> completed   (elevated)
    no_show   confirmed          -> no_show     (elevated)
    add_zoom  any, no change                    (elevated)

The record update is authoritative. Calendar side effects run afterwards and
are best-effort: failures are logged and reported as calendar_synced=False.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from ..exceptions import (
    AuthorizationError,
    CalendarError,
    CredentialError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..scheduling.clock import to_iso, utc_now
from .appointment_store import DEFAULT_LIST_LIMIT, AppointmentStatus
from .booking_service import EVENT_SUMMARY, build_event_description

logger = logging.getLogger(__name__)

PENDING = AppointmentStatus.PENDING.value
CONFIRMED = AppointmentStatus.CONFIRMED.value


@dataclass(frozen=True)
class Transition:
    sources: Optional[FrozenSet[str]]  # None: allowed from any state, status unchanged
    target: Optional[str]
    message: str
    elevated_only_message: Optional[str] = None


TRANSITIONS: Dict[str, Transition] = {
    "confirm": Transition(
        frozenset({PENDING}), CONFIRMED, "Appointment confirmed",
        elevated_only_message="Only PT can confirm appointments",
    ),
    "cancel": Transition(frozenset({PENDING, CONFIRMED}), AppointmentStatus.CANCELLED.value, "Appointment cancelled"),
    "complete": Transition(
        frozenset({CONFIRMED}), AppointmentStatus.COMPLETED.value, "Appointment marked as completed",
        elevated_only_message="Only PT can complete appointments",
    ),
    "no_show": Transition(
        frozenset({CONFIRMED}), AppointmentStatus.NO_SHOW.value, "Appointment marked as no-show",
        elevated_only_message="Only PT can mark no-shows",
    ),
    "add_zoom": Transition(
        None, None, "Zoom details added",
        elevated_only_message="Only PT can add Zoom details",
    ),
}


@dataclass
class ActionRequest:
    action: str
    appointment_id: str
    reason: Optional[str] = None
    pt_notes: Optional[str] = None
    zoom_meeting_id: Optional[str] = None
    zoom_meeting_url: Optional[str] = None
    zoom_meeting_passcode: Optional[str] = None


@dataclass
class ActionResult:
    message: str
    appointment: Dict[str, Any]
    calendar_synced: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "message": self.message,
            "appointment": self.appointment,
            "calendarSynced": self.calendar_synced,
        }


class AppointmentLifecycle:
    """Applies lifecycle actions and lists appointments for a caller."""

    def __init__(
        self,
        appointment_store,
        calendar_provisioner,
        clock: Callable[[], datetime] = utc_now
    ):
        self.appointment_store = appointment_store
        self.calendar_provisioner = calendar_provisioner
        self.clock = clock

    async def list_appointments(
        self,
        caller,
        status: Optional[str] = None,
        upcoming: bool = False,
        limit: int = DEFAULT_LIST_LIMIT
    ) -> List[Dict[str, Any]]:
        """Elevated callers see every appointment; others only their own."""
        return await self.appointment_store.list(
            owner_id=None if caller.is_elevated else caller.user_id,
            status=status,
            upcoming_from=self.clock() if upcoming else None,
            limit=limit,
        )

    async def apply(self, caller, request: ActionRequest) -> ActionResult:
        """
        Apply one lifecycle action.

        Raises:
            ValidationError: Unknown action or missing action-specific field
            NotFoundError: Appointment does not exist
            AuthorizationError: Caller may not perform the action
            InvalidTransitionError: Action is not valid from the current status
        """
        transition = TRANSITIONS.get(request.action)
        if transition is None:
            raise ValidationError(f"Unknown action: {request.action}")

        appointment = await self.appointment_store.get(request.appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")

        is_owner = appointment.get("user_id") == caller.user_id
        if not caller.is_elevated and not is_owner:
            raise AuthorizationError("Not authorized to manage this appointment")
        if transition.elevated_only_message and not caller.is_elevated:
            raise AuthorizationError(transition.elevated_only_message)

        current = appointment.get("status")
        if transition.sources is not None and current not in transition.sources:
            raise InvalidTransitionError(request.action, current)

        if request.action == "add_zoom" and not request.zoom_meeting_url:
            raise ValidationError("Missing zoomMeetingUrl")

        fields = self._record_fields(caller, request, transition)
        # Status-changing writes only land while the row still has the status checked above
        updated = await self.appointment_store.update(
            request.appointment_id,
            fields,
            expected_status=current if transition.target else None,
        )
        if updated is None:
            latest = await self.appointment_store.get(request.appointment_id)
            if latest is None:
                raise NotFoundError("Appointment not found")
            logger.warning(
                f"[Lifecycle] {request.action} on {request.appointment_id} lost to a concurrent change "
                f"({current} -> {latest.get('status')})"
            )
            raise InvalidTransitionError(request.action, latest.get("status"))

        logger.info(
            f"[Lifecycle] {request.action} on {request.appointment_id} by {caller.user_id[:8]}: "
            f"{current} -> {updated.get('status')}"
        )

        synced = await self._sync_calendar(request, updated)
        return ActionResult(message=transition.message, appointment=updated, calendar_synced=synced)

    def _record_fields(self, caller, request: ActionRequest, transition: Transition) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if transition.target:
            fields["status"] = transition.target

        if request.action == "confirm":
            fields["confirmed_at"] = to_iso(self.clock())
            fields["confirmed_by"] = caller.user_id
        elif request.action == "cancel":
            fields["cancellation_reason"] = request.reason or (
                "Cancelled by PT" if caller.is_elevated else "Cancelled by patient"
            )
        elif request.action == "complete" and request.pt_notes is not None:
            fields["pt_notes"] = request.pt_notes

        if request.action in ("confirm", "add_zoom"):
            # Omitted meeting fields keep the values stored at booking time
            for column, value in (
                ("zoom_meeting_id", request.zoom_meeting_id),
                ("zoom_meeting_url", request.zoom_meeting_url),
                ("zoom_meeting_passcode", request.zoom_meeting_passcode),
            ):
                if value:
                    fields[column] = value
        return fields

    async def _sync_calendar(self, request: ActionRequest, appointment: Dict[str, Any]) -> bool:
        event_id = appointment.get("google_event_id")
        if not event_id or request.action not in ("confirm", "cancel", "add_zoom"):
            return True

        try:
            calendar = await self.calendar_provisioner.provision()
            if request.action == "cancel":
                await calendar.delete_event(event_id)
                return True

            meeting_url = appointment.get("zoom_meeting_url")
            summary = None
            if request.action == "confirm":
                summary = EVENT_SUMMARY.format(patient=appointment.get("patient_name")) + " (CONFIRMED)"
            await calendar.update_event(
                event_id,
                summary=summary,
                description=build_event_description(
                    meeting_url,
                    appointment.get("zoom_meeting_passcode"),
                    appointment.get("patient_notes"),
                ),
                location=meeting_url,
            )
            return True
        except (CalendarError, CredentialError) as e:
            logger.error(f"[Lifecycle] Calendar sync for {request.action} on event {event_id} failed: {e}")
            return False
