"""
FastAPI application factory.

Creates and configures the FastAPI application with:
- CORS middleware for the mobile/web client
- JSON error rendering for the scheduling error taxonomy
- Availability, booking and appointment routers
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from .api import appointments_api, availability_api, booking_api
from .exceptions import RateLimitExceededError, SchedulingError
from .startup import lifespan

logger = logging.getLogger(__name__)


def configure_cors(app: FastAPI):
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )


def _validation_response(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": {"type": "validation_error", "message": message}},
    )


def _first_error_message(errors) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")


def configure_exception_handlers(app: FastAPI):
    """Render every SchedulingError as {"ok": false, "error": {...}} with its status code."""

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.error_type}: {exc.message}")

        headers = None
        if isinstance(exc, RateLimitExceededError):
            headers = {"Retry-After": str(exc.retry_after)}

        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": exc.to_dict()},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _validation_response(_first_error_message(exc.errors()))

    @app.exception_handler(PydanticValidationError)
    async def model_validation_handler(request: Request, exc: PydanticValidationError):
        return _validation_response(_first_error_message(exc.errors()))


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Telehealth Booking",
        description="""
Appointment scheduling and cross-provider orchestration.

## Features
- Slot availability from business hours and Google Calendar busy times
- Booking with Zoom meeting creation and calendar event rollback
- Appointment lifecycle (confirm, cancel, complete, no-show)

## Authentication
Appointment endpoints require a Supabase bearer token.
""",
        version="1.0.0",
        lifespan=lifespan,
        redirect_slashes=False,
    )

    configure_cors(app)
    configure_exception_handlers(app)

    app.include_router(availability_api.router)
    app.include_router(booking_api.router)
    app.include_router(appointments_api.router)

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "healthy"}

    return app
