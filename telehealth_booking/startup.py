"""
Application startup and shutdown lifecycle management.

Builds every collaborator once per process and stores them on app.state:
- settings
- services (stores, gateways, orchestrators, rate limiter)

Shared clients are closed on shutdown.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from fastapi import FastAPI, Request

from .calendar.google_calendar import CalendarProvisioner
from .config import Settings, get_settings, validate_settings
from .database import create_supabase_client
from .rate_limiter import InMemoryRateLimiter, RequestLimiter
from .scheduling.availability import AvailabilityEngine
from .services.appointment_lifecycle import AppointmentLifecycle
from .services.appointment_store import AppointmentStore, ConfigStore, ProfileStore
from .services.availability_service import AvailabilityService
from .services.booking_service import BookingOrchestrator
from .services.credential_manager import GoogleServiceAccountCredentials, ZoomCredentials
from .services.external_timeouts import DEFAULT_TIMEOUT
from .video.zoom import ZoomVideoGateway

logger = logging.getLogger(__name__)


@dataclass
class Services:
    appointment_store: AppointmentStore
    config_store: ConfigStore
    profile_store: ProfileStore
    calendar_provisioner: CalendarProvisioner
    video_gateway: ZoomVideoGateway
    availability: AvailabilityService
    booking: BookingOrchestrator
    lifecycle: AppointmentLifecycle
    rate_limiter: RequestLimiter


def build_services(settings: Settings, supabase_client, http_client: httpx.AsyncClient) -> Services:
    """Wire the engine's collaborators from settings and shared clients."""
    appointment_store = AppointmentStore(supabase_client)
    config_store = ConfigStore(supabase_client)
    engine = AvailabilityEngine(tz_name=settings.SCHEDULING_TIMEZONE)

    google_credentials = GoogleServiceAccountCredentials(settings.service_account_info, http_client)
    calendar_provisioner = CalendarProvisioner(
        google_credentials,
        http_client,
        config_store,
        calendar_id=settings.GCAL_CALENDAR_ID,
        owner_email=settings.GCAL_OWNER_EMAIL,
        tz_name=settings.SCHEDULING_TIMEZONE,
        calendar_name=settings.GCAL_CALENDAR_NAME,
    )

    zoom_credentials = None
    if settings.zoom_configured:
        zoom_credentials = ZoomCredentials(
            settings.ZOOM_ACCOUNT_ID,
            settings.ZOOM_CLIENT_ID,
            settings.ZOOM_CLIENT_SECRET,
            http_client,
        )
    video_gateway = ZoomVideoGateway(zoom_credentials, http_client, tz_name=settings.SCHEDULING_TIMEZONE)

    return Services(
        appointment_store=appointment_store,
        config_store=config_store,
        profile_store=ProfileStore(supabase_client),
        calendar_provisioner=calendar_provisioner,
        video_gateway=video_gateway,
        availability=AvailabilityService(calendar_provisioner, engine),
        booking=BookingOrchestrator(
            calendar_provisioner,
            video_gateway,
            appointment_store,
            engine,
            recheck_before_commit=settings.RECHECK_BEFORE_COMMIT,
        ),
        lifecycle=AppointmentLifecycle(appointment_store, calendar_provisioner),
        rate_limiter=InMemoryRateLimiter(
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    validate_settings(settings)

    http_client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
    supabase_client = await create_supabase_client(settings)

    app.state.settings = settings
    app.state.services = build_services(settings, supabase_client, http_client)
    logger.info(f"Scheduling engine ready (timezone {settings.SCHEDULING_TIMEZONE}, env {settings.ENVIRONMENT})")

    yield

    logger.info("Shutting down...")
    await http_client.aclose()
    logger.info("Shutdown complete")


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the collaborators built at startup."""
    return request.app.state.services
