"""
Appointment management API

GET  /calendar/appointments   list (elevated roles see all, others their own)
POST /calendar/appointments   lifecycle action (confirm, cancel, complete, no_show, add_zoom)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..middleware.auth import CallerIdentity, require_caller
from ..models.scheduling import AppointmentActionRequest
from ..services.appointment_lifecycle import ActionRequest
from ..services.appointment_store import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT, AppointmentStatus
from ..startup import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["appointments"])


@router.get("/appointments")
async def list_appointments(
    status: Optional[AppointmentStatus] = None,
    upcoming: bool = False,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    caller: CallerIdentity = Depends(require_caller),
    services: Services = Depends(get_services)
):
    appointments = await services.lifecycle.list_appointments(
        caller,
        status=status.value if status else None,
        upcoming=upcoming,
        limit=limit,
    )
    return {"ok": True, "appointments": appointments, "count": len(appointments)}


@router.post("/appointments")
async def appointment_action(
    body: AppointmentActionRequest,
    caller: CallerIdentity = Depends(require_caller),
    services: Services = Depends(get_services)
):
    """Apply a lifecycle action to one appointment."""
    result = await services.lifecycle.apply(caller, ActionRequest(
        action=body.action.value,
        appointment_id=body.appointmentId,
        reason=body.reason,
        pt_notes=body.ptNotes,
        zoom_meeting_id=body.zoomMeetingId,
        zoom_meeting_url=body.zoomMeetingUrl,
        zoom_meeting_passcode=body.zoomMeetingPasscode,
    ))
    return result.to_dict()
