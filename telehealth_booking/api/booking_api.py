"""
Booking API

POST /calendar/book
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from ..exceptions import RateLimitExceededError
from ..middleware.auth import CallerIdentity, get_current_caller
from ..models.scheduling import BookAppointmentRequest
from ..services.booking_service import BookingRequest
from ..startup import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["booking"])


def _rate_limit_identity(request: Request, caller: Optional[CallerIdentity]) -> str:
    if caller:
        return f"user:{caller.user_id}"
    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


@router.post("/book")
async def book_appointment(
    body: BookAppointmentRequest,
    request: Request,
    caller: Optional[CallerIdentity] = Depends(get_current_caller),
    services: Services = Depends(get_services)
):
    """
    Book a consultation.

    Returns the stored appointment plus whether a Zoom link was created and
    a message describing the outcome.
    """
    identity = _rate_limit_identity(request, caller)
    if not await services.rate_limiter.allow_request(identity):
        logger.warning(f"Rate limit exceeded for {identity[:13]}")
        raise RateLimitExceededError(services.rate_limiter.retry_after(identity))

    result = await services.booking.book(BookingRequest(
        start=body.startISO,
        patient_name=body.patientName,
        patient_email=body.patientEmail or (caller.email if caller else None),
        patient_phone=body.patientPhone,
        notes=body.notes,
        user_id=caller.user_id if caller else None,
    ))
    return result.to_dict()
