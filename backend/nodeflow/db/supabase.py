"""
Service-role Supabase client for the run store.

Ownership is enforced by the API layer, not by row level security.
"""

from functools import lru_cache

from supabase import Client, create_client

from nodeflow.config import supabase_credentials


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Build the client once per process.

    Raises:
        ValueError: SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is not set.
    """
    url, key = supabase_credentials()
    if not url:
        raise ValueError("SUPABASE_URL environment variable is required")
    if not key:
        raise ValueError("SUPABASE_SERVICE_ROLE_KEY environment variable is required")
    return create_client(url, key)
