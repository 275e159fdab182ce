"""Supabase client initialization for the knowledge store."""

from urllib.parse import urlparse

import logfire
from supabase import create_client, Client

from knowledge_engine.config import Settings, get_settings


def get_supabase_client(settings: Settings | None = None) -> Client:
    """
    Create a Supabase client with the service role key.

    The repository reads and writes crawl, training and embedding rows for
    every tenant, so it always connects with the service key rather than an
    end-user session.

    Args:
        settings: Settings to read the project URL and key from (defaults to
            the process-wide settings)
    """
    settings = settings or get_settings()
    client = create_client(settings.supabase_url, settings.supabase_service_key)
    logfire.info(
        "Supabase client created",
        host=urlparse(settings.supabase_url).hostname,
    )
    return client
