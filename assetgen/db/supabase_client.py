"""Service-role Supabase client shared by the job store and asset storage."""

from typing import Optional

from supabase import create_client, Client
from assetgen.config import settings

_client: Optional[Client] = None


def get_supabase() -> Client:
    """Get or create the service-role client (tables and storage buckets)."""
    global _client
    if _client is None:
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set "
                "for the supabase job store and asset storage"
            )
        _client = create_client(
            settings.supabase_url,
            settings.supabase_service_role_key,
        )
    return _client


def set_supabase(client: Optional[Client]) -> None:
    """Replace the shared client (None forces a fresh one on next use)."""
    global _client
    _client = client
