"""
Timeout configuration for external service calls.

Centralized timeout settings for every provider the booking engine talks to.
Each call is bounded; nothing is retried automatically.

Usage:
    from telehealth_booking.services.external_timeouts import CALENDAR_TIMEOUT

    response = await client.get(url, timeout=CALENDAR_TIMEOUT)
"""
import httpx

# OAuth token endpoints (Google, Zoom) - small payloads, should be fast
AUTH_TIMEOUT = httpx.Timeout(10.0, connect=5.0)

# Calendar providers (Google) - generally responsive
CALENDAR_TIMEOUT = httpx.Timeout(20.0, connect=5.0)

# Video providers (Zoom) - best-effort
VIDEO_TIMEOUT = httpx.Timeout(10.0, connect=5.0)

# Supabase PostgREST calls, in seconds (used with asyncio.wait_for)
STORE_TIMEOUT_SECONDS = 10.0

# Default for the shared HTTP client
DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
