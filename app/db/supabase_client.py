"""Supabase client initialization."""

from supabase import Client, ClientOptions, create_client

from app.core.config import Settings


def create_supabase(settings: Settings) -> Client:
    """
    Create a Supabase client for the pipeline context.

    Table and storage requests carry the persist timeout, which bounds page
    writes that run in worker threads.

    Args:
        settings: Application settings

    Returns:
        Supabase client configured with service role key

    Raises:
        RuntimeError: If client initialization fails
    """
    options = ClientOptions(
        postgrest_client_timeout=settings.PERSIST_TIMEOUT_SECONDS,
        storage_client_timeout=int(settings.PERSIST_TIMEOUT_SECONDS),
    )
    try:
        return create_client(
            settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, options=options
        )
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e
