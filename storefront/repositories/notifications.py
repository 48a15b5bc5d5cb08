"""Notification outbox repository backed by Supabase."""

from datetime import datetime
from typing import Any

from supabase import Client

from storefront.core.supabase import get_supabase_client, to_json_value

NOTIFICATIONS_TABLE = "order_notifications"


class NotificationRepository:
    """Persistence for the order notification outbox."""

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    async def create_once(
        self,
        order_id: int,
        kind: str,
        channels: list[str],
        now: datetime,
    ) -> dict[str, Any] | None:
        """Insert an outbox record unless one exists for (order_id, kind).

        Returns:
            dict | None: The new record, or None if it already existed.
        """
        row = {
            "order_id": order_id,
            "kind": kind,
            "status": "pending",
            "channels": channels,
            "delivered_channels": [],
            "attempts": 0,
            "next_attempt_at": now,
        }
        response = (
            self.client.table(NOTIFICATIONS_TABLE)
            .upsert(to_json_value(row), on_conflict="order_id,kind", ignore_duplicates=True)
            .execute()
        )
        return response.data[0] if response.data else None

    async def claim(self, record_id: int, attempts: int, now: datetime) -> dict[str, Any] | None:
        """Move a pending record to processing.

        The attempts counter doubles as a version number so two workers
        cannot claim the same attempt.
        """
        response = (
            self.client.table(NOTIFICATIONS_TABLE)
            .update({"status": "processing", "attempts": attempts + 1, "claimed_at": now.isoformat()})
            .eq("id", record_id)
            .eq("status", "pending")
            .eq("attempts", attempts)
            .execute()
        )
        return response.data[0] if response.data else None

    async def mark_sent(self, record_id: int, delivered: list[str], now: datetime) -> None:
        """Mark a record as fully delivered."""
        self.client.table(NOTIFICATIONS_TABLE).update(
            {"status": "sent", "delivered_channels": delivered, "sent_at": now.isoformat(), "last_error": None}
        ).eq("id", record_id).execute()

    async def schedule_retry(
        self,
        record_id: int,
        delivered: list[str],
        error: str,
        next_attempt_at: datetime,
    ) -> None:
        """Put a record back in the queue for a later attempt."""
        self.client.table(NOTIFICATIONS_TABLE).update(
            {
                "status": "pending",
                "delivered_channels": delivered,
                "last_error": error,
                "next_attempt_at": next_attempt_at.isoformat(),
            }
        ).eq("id", record_id).execute()

    async def mark_failed(self, record_id: int, delivered: list[str], error: str) -> None:
        """Give up on a record after the last attempt."""
        self.client.table(NOTIFICATIONS_TABLE).update(
            {"status": "failed", "delivered_channels": delivered, "last_error": error}
        ).eq("id", record_id).execute()

    async def fetch_due(self, now: datetime, limit: int = 50) -> list[dict[str, Any]]:
        """Get pending records whose next attempt time has passed."""
        response = (
            self.client.table(NOTIFICATIONS_TABLE)
            .select("*")
            .eq("status", "pending")
            .lte("next_attempt_at", now.isoformat())
            .order("next_attempt_at")
            .limit(limit)
            .execute()
        )
        return response.data or []

    async def release_stale(self, claimed_before: datetime) -> int:
        """Return records stuck in processing (worker died mid-send) to the queue."""
        response = (
            self.client.table(NOTIFICATIONS_TABLE)
            .update({"status": "pending"})
            .eq("status", "processing")
            .lt("claimed_at", claimed_before.isoformat())
            .execute()
        )
        return len(response.data) if response.data else 0
