"""
Request models for the scheduling API.

Field names follow the camelCase JSON used by the mobile client.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from ..scheduling.clock import parse_iso


def _parse_instant(v: Optional[str]) -> Optional[datetime]:
    if v is None:
        return None
    try:
        return parse_iso(v)
    except ValueError:
        raise ValueError('Invalid datetime format. Use ISO format with a UTC offset.')


class AvailabilityQuery(BaseModel):
    days: int = Field(7, ge=1, le=14)
    startFrom: Optional[datetime] = Field(None, validation_alias=AliasChoices("startFrom", "startFromISO"))

    @field_validator('startFrom', mode='before')
    @classmethod
    def validate_start_from(cls, v):
        return _parse_instant(v) if isinstance(v, str) else v


class BookAppointmentRequest(BaseModel):
    startISO: datetime
    patientName: str
    patientEmail: Optional[str] = None
    patientPhone: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('startISO', mode='before')
    @classmethod
    def validate_start(cls, v):
        if not isinstance(v, str):
            raise ValueError('startISO must be an ISO-8601 string')
        return _parse_instant(v)


class AppointmentAction(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    COMPLETE = "complete"
    NO_SHOW = "no_show"
    ADD_ZOOM = "add_zoom"


class AppointmentActionRequest(BaseModel):
    action: AppointmentAction
    appointmentId: str = Field(..., min_length=1)
    reason: Optional[str] = None
    ptNotes: Optional[str] = None
    zoomMeetingId: Optional[str] = None
    zoomMeetingUrl: Optional[str] = None
    zoomMeetingPasscode: Optional[str] = None
