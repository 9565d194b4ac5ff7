"""
Custom exceptions for the telehealth booking engine.

Every error carries an HTTP-equivalent status code so the API layer can
render it without knowing which component raised it.
"""
from typing import Any, Dict, Optional


class SchedulingError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.error_type, "message": self.message}


class ValidationError(SchedulingError):
    """Raised when a request is malformed. Never retried."""

    status_code = 400
    error_type = "validation_error"


class AuthenticationError(SchedulingError):
    """Raised when a bearer token is missing or invalid."""

    status_code = 401
    error_type = "authentication_error"


class AuthorizationError(SchedulingError):
    """Raised when the caller's role does not allow the action."""

    status_code = 403
    error_type = "authorization_error"


class NotFoundError(SchedulingError):
    """Raised when a referenced record does not exist."""

    status_code = 404
    error_type = "not_found"


class SlotConflictError(SchedulingError):
    """Raised when the requested time cannot be booked."""

    status_code = 409
    error_type = "slot_conflict"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__("Slot not available")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class InvalidTransitionError(SchedulingError):
    """Raised when a lifecycle action is not valid from the current status."""

    status_code = 409
    error_type = "invalid_transition"

    def __init__(self, action: str, current_status: str):
        self.action = action
        self.current_status = current_status
        super().__init__(f"Cannot {action} an appointment that is {current_status}")


class RateLimitExceededError(SchedulingError):
    """Raised when a caller exceeds the request window."""

    status_code = 429
    error_type = "rate_limited"

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Try again in {retry_after} seconds.")


class CredentialError(SchedulingError):
    """Raised when a provider rejects the token exchange."""

    status_code = 502
    error_type = "credential_error"

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderError(SchedulingError):
    """Raised when an external provider call fails for a non-credential reason."""

    status_code = 502
    error_type = "provider_error"


class CalendarError(ProviderError):
    """Raised when the calendar API returns a non-2xx response."""

    error_type = "calendar_error"

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        self.status = status
        self.body = body
        if body:
            message = f"{message}: {body}"
        super().__init__(message)


class CalendarProvisioningError(CalendarError):
    """Raised when no usable calendar could be found or created."""

    error_type = "calendar_provisioning_error"


class VideoError(ProviderError):
    """Raised when a video meeting cannot be created."""

    error_type = "video_error"


class StoreError(ProviderError):
    """Raised when the appointment or config store call fails."""

    status_code = 500
    error_type = "store_error"


class BookingFailedError(ProviderError):
    """Raised when the booking saga aborts after external side effects."""

    status_code = 500
    error_type = "booking_failed"

    def __init__(self, message: str = "Failed to save appointment"):
        super().__init__(message)


class CompensationFailure(SchedulingError):
    """Raised when a rollback delete fails and leaves an orphaned calendar event."""

    error_type = "compensation_failure"

    def __init__(self, event_id: str, cause: Exception):
        self.event_id = event_id
        self.cause = cause
        super().__init__(f"Could not delete calendar event {event_id}: {cause}")
