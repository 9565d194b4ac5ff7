"""
Application Configuration
Centralized settings for the scheduling engine and its providers.

Uses Pydantic Settings so values come from the environment or a .env file.
"""
import json
import logging
from functools import lru_cache
from typing import Any, Dict, List

from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Scheduling constants (one clinic, one timezone)
GRID_MINUTES = 15
APPOINTMENT_DURATION_MIN = 30
BUFFER_MIN = 5
BUSINESS_HOURS_START = 9
BUSINESS_HOURS_END = 17
BUSINESS_WEEKDAYS = (0, 1, 2, 3, 4)  # Monday-Friday, datetime.weekday()

# Key under which a self-provisioned calendar id is remembered
CALENDAR_ID_CONFIG_KEY = "gcal_calendar_id"

# Tokens are refreshed this many seconds before the provider's expiry
TOKEN_SAFETY_MARGIN_SECONDS = 60

ELEVATED_ROLES = ("pt", "admin")


class Settings(BaseSettings):
    """Validated environment configuration."""

    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    SUPABASE_JWT_SECRET: str = ""

    GCAL_CALENDAR_ID: str = ""
    GOOGLE_SERVICE_ACCOUNT_JSON: str = ""
    GCAL_OWNER_EMAIL: str = ""
    GCAL_CALENDAR_NAME: str = "Telehealth Appointments"

    ZOOM_ACCOUNT_ID: str = ""
    ZOOM_CLIENT_ID: str = ""
    ZOOM_CLIENT_SECRET: str = ""

    SCHEDULING_TIMEZONE: str = "America/Chicago"
    RECHECK_BEFORE_COMMIT: bool = True

    RATE_LIMIT_MAX_REQUESTS: int = 20
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    @field_validator("RATE_LIMIT_MAX_REQUESTS", "RATE_LIMIT_WINDOW_SECONDS")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @property
    def service_account_info(self) -> Dict[str, Any]:
        """Parsed service-account JSON, or an empty dict when unset."""
        if not self.GOOGLE_SERVICE_ACCOUNT_JSON:
            return {}
        return json.loads(self.GOOGLE_SERVICE_ACCOUNT_JSON)

    @property
    def zoom_configured(self) -> bool:
        return bool(self.ZOOM_ACCOUNT_ID and self.ZOOM_CLIENT_ID and self.ZOOM_CLIENT_SECRET)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()


def validate_settings(settings: Settings) -> List[str]:
    """
    Log which provider credentials are missing.

    Never logs actual secret values, only variable names. Missing Zoom
    credentials are a warning because meeting creation is best-effort.

    Returns:
        Names of missing required variables
    """
    missing = [
        name for name in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "GOOGLE_SERVICE_ACCOUNT_JSON")
        if not getattr(settings, name)
    ]
    for name in missing:
        logger.error(f"Missing required environment variable: {name}")

    if not settings.GCAL_CALENDAR_ID:
        logger.warning("GCAL_CALENDAR_ID not set; a calendar will be provisioned on first use")
    if not settings.zoom_configured:
        logger.warning("Zoom credentials not set; bookings will be created without meeting links")
    if not settings.SUPABASE_JWT_SECRET:
        logger.warning("SUPABASE_JWT_SECRET not set; all callers are treated as anonymous")

    return missing
