"""Service-role Supabase client singleton."""

from supabase import Client, create_client

from tripgen.config import Settings, settings as default_settings

_client: Client | None = None


def get_supabase(settings: Settings = default_settings) -> Client:
    """Get or create the Supabase client using the service role key.

    Falls back to the anon key when no service role key is configured.
    """
    global _client
    if _client is None:
        key = settings.supabase_service_role_key or settings.supabase_anon_key
        if not settings.supabase_url or not key:
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
            )
        _client = create_client(settings.supabase_url, key)
    return _client
