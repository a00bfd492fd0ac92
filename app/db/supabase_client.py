"""
Supabase client initialization module.

Provides a thread-safe singleton client used by the Supabase storage backend.
The service role key is preferred when present so the backend can read every
stored activity and document regardless of row level security.
"""

import threading
from typing import Optional

from supabase import Client, create_client

from app.config import Settings, get_settings

_client: Optional[Client] = None
_lock = threading.Lock()


def get_supabase_client(settings: Optional[Settings] = None) -> Client:
    """
    Return the shared Supabase client, creating it on first use.

    Raises:
        ValueError: If SUPABASE_URL is missing or the client cannot be created
    """
    global _client
    if _client is not None:
        return _client
    with _lock:
        if _client is not None:
            return _client
        settings = settings or get_settings()
        key = settings.supabase_service_role_key or settings.supabase_key
        if not settings.supabase_url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set when STORAGE_BACKEND=supabase")
        try:
            _client = create_client(settings.supabase_url, key)
            return _client
        except Exception as e:
            raise ValueError(f"Failed to create Supabase client: {str(e)}") from e


def reset_supabase_client() -> None:
    """Forget the cached client (used by tests)."""
    global _client
    with _lock:
        _client = None
