"""Supabase client singleton for database operations."""

from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from typing import Any

from supabase import Client, create_client

from storefront.core.config import get_settings


@lru_cache
def get_supabase_client() -> Client:
    """Get cached Supabase client singleton for database operations.

    Uses the secret key, which bypasses RLS at the PostgREST level. Only
    repositories should hold this client; authorization is checked in the
    API layer before any repository call.

    Returns:
        Client: Supabase client instance.
    """
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )


def to_json_value(value: Any) -> Any:
    """Convert Decimals and datetimes into values PostgREST accepts.

    Numeric columns take decimal strings so no precision is lost.
    """
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    return value


def is_unique_violation(error: Exception) -> bool:
    """Check whether a PostgREST error is a unique constraint violation."""
    return getattr(error, "code", None) == "23505" or "23505" in str(error)


async def check_database_connection() -> dict[str, Any]:
    """Check if database connection is healthy.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        client = get_supabase_client()
        client.table("orders").select("id").limit(1).execute()
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
