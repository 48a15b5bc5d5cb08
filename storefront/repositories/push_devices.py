"""Push device repository backed by Supabase."""

from datetime import datetime
from typing import Any

from supabase import Client

from storefront.core.supabase import get_supabase_client, to_json_value

PUSH_DEVICES_TABLE = "push_devices"

# Upper bound on rows pulled for a single broadcast
MAX_TOKENS_PER_QUERY = 5000


class PushDeviceRepository:
    """Persistence for registered push devices."""

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    async def upsert(self, token: str, data: dict[str, Any], now: datetime) -> dict[str, Any]:
        """Create or overwrite the device registered under a token."""
        row = {**data, "token": token, "last_seen_at": now}
        response = (
            self.client.table(PUSH_DEVICES_TABLE)
            .upsert(to_json_value(row), on_conflict="token")
            .execute()
        )
        return response.data[0] if response.data else row

    async def tokens_for_users(self, user_ids: list[str], opted_in_only: bool = False) -> list[str]:
        """Get tokens registered by the given users."""
        if not user_ids:
            return []
        query = self.client.table(PUSH_DEVICES_TABLE).select("token").in_("user_id", user_ids)
        if opted_in_only:
            query = query.eq("marketing_opt_in", True)
        response = query.limit(MAX_TOKENS_PER_QUERY).execute()
        return [row["token"] for row in response.data or [] if row.get("token")]

    async def tokens_for_segment(
        self,
        countries: list[str] | None = None,
        langs: list[str] | None = None,
        tags: list[str] | None = None,
        marketing: bool | None = None,
    ) -> list[str]:
        """Get tokens matching a country/language/tag segment."""
        query = self.client.table(PUSH_DEVICES_TABLE).select("token")
        if marketing is not None:
            query = query.eq("marketing_opt_in", marketing)
        if countries:
            query = query.in_("country", countries)
        if langs:
            query = query.in_("lang", langs)
        if tags:
            query = query.contains("tags", tags)
        response = query.limit(MAX_TOKENS_PER_QUERY).execute()
        return [row["token"] for row in response.data or [] if row.get("token")]
