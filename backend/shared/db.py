from supabase import create_client, Client

from shared.config import Settings
from shared.errors import ConfigurationError


def get_supabase_client(settings: Settings) -> Client:
    """Get initialized Supabase client."""
    url: str | None = settings.supabase_url
    key: str | None = settings.supabase_service_key

    if not url or not key:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

    return create_client(url, key)
