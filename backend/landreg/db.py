"""
Supabase client configuration.
Only the service-role client is used: every bucket this service touches is
private and accessed server-side.
"""

from functools import lru_cache

from supabase import create_client, Client

from landreg import config


@lru_cache(maxsize=1)
def get_supabase_admin() -> Client:
    """
    Return the admin client, created on first use.

    Raises:
        ValueError: if SUPABASE_URL or SUPABASE_SERVICE_KEY is missing
    """
    if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_KEY:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment variables")

    # Admin client for service-level operations (bypasses RLS)
    return create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY)
