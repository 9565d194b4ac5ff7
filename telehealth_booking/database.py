"""
Supabase client module.

This is the only module that calls create_async_client; the stores receive
the client through their constructors.
"""
import logging

from supabase import AsyncClient, AsyncClientOptions, create_async_client

from .config import Settings

logger = logging.getLogger(__name__)


async def create_supabase_client(settings: Settings) -> AsyncClient:
    """
    Create an async Supabase client using the service-role key.

    Raises:
        ValueError: If SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is missing
    """
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    options = AsyncClientOptions(
        auto_refresh_token=False,  # For server/service-role usage
        persist_session=False,
    )

    client = await create_async_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_ROLE_KEY,
        options=options,
    )
    logger.info("Created async Supabase client")
    return client
