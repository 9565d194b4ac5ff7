"""
Availability API

GET  /calendar/availability?days=7&startFrom=...
POST /calendar/availability  {"days": 7, "startFromISO": "..."}
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse

from ..exceptions import CalendarError, CalendarProvisioningError, CredentialError
from ..models.scheduling import AvailabilityQuery
from ..startup import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["availability"])

CALENDAR_ACCESS_HINT = (
    "Calendar not accessible. Ensure the calendar is shared with the service account "
    "email in Google Calendar settings."
)


async def _availability(services: Services, query: AvailabilityQuery):
    try:
        return await services.availability.get_availability(query.days, query.startFrom)
    except (CalendarError, CredentialError) as e:
        logger.error(f"[Availability] Failed to fetch availability: {e}")
        body = {
            "ok": False,
            "error": {"type": e.error_type, "message": "Failed to fetch availability", "details": e.message},
        }
        if isinstance(e, CalendarProvisioningError) or getattr(e, "status", None) in (403, 404):
            body["hint"] = CALENDAR_ACCESS_HINT
        return JSONResponse(status_code=e.status_code, content=body)


@router.get("/availability")
async def get_availability(
    days: int = Query(7, ge=1, le=14),
    startFrom: Optional[str] = None,
    services: Services = Depends(get_services)
):
    """Bookable slots for the next `days` days, grouped by local day."""
    query = AvailabilityQuery(days=days, startFrom=startFrom)
    return await _availability(services, query)


@router.post("/availability")
async def post_availability(
    query: Optional[AvailabilityQuery] = Body(None),
    services: Services = Depends(get_services)
):
    return await _availability(services, query or AvailabilityQuery())
