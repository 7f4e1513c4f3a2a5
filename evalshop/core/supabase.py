"""Supabase client construction and connectivity checks."""

import logging
from typing import Any

from supabase import Client, create_client

from evalshop.core.config import Settings

logger = logging.getLogger(__name__)


def create_supabase_client(settings: Settings) -> Client:
    """Create the Supabase client used for all store operations.

    Called once from the application lifespan; the instance is kept on
    ``app.state`` and handed to services through route dependencies.

    Uses the secret key, which bypasses RLS at the PostgREST level. Only
    server-side code should hold this client.

    Args:
        settings: Application settings with Supabase credentials.

    Returns:
        Client: Supabase client instance.
    """
    logger.info("Creating Supabase client for %s", settings.supabase_url)
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )


async def check_database_connection(client: Client) -> dict[str, Any]:
    """Check if database connection is healthy.

    Args:
        client: Supabase client to probe.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        client.table("purchases").select("id").limit(1).execute()
        return {"healthy": True}
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        return {"healthy": False, "error": str(e)}
