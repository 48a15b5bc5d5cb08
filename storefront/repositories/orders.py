"""Order storage repository backed by Supabase."""

import logging
from datetime import datetime
from typing import Any

from supabase import Client

from storefront.core.supabase import get_supabase_client, to_json_value
from storefront.models.order import PAID_PAYMENT_STATUSES

logger = logging.getLogger(__name__)

ORDERS_TABLE = "orders"
USERS_TABLE = "users"


class OrderRepository:
    """Reads and writes order rows.

    Every state transition the payment gateway can race on goes through a
    conditional update so that the affected-row count tells the caller
    whether its write won.
    """

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    async def get_by_document_id(self, document_id: str) -> dict[str, Any] | None:
        """Get an order by its correlation id (CloudPayments InvoiceId)."""
        response = (
            self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("document_id", document_id)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_by_id(self, order_id: int) -> dict[str, Any] | None:
        """Get an order by its internal id."""
        response = (
            self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("id", order_id)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """Get all orders placed by a user, newest first."""
        response = (
            self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    async def insert(self, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a new order row.

        Raises:
            postgrest.APIError: On constraint violations (e.g. duplicate order_number).
        """
        response = self.client.table(ORDERS_TABLE).insert(to_json_value(data)).execute()
        return response.data[0]

    async def update(self, order_id: int, data: dict[str, Any]) -> dict[str, Any] | None:
        """Unconditionally update an order by internal id."""
        response = (
            self.client.table(ORDERS_TABLE)
            .update(to_json_value(data))
            .eq("id", order_id)
            .execute()
        )
        return response.data[0] if response.data else None

    async def update_if_unpaid(self, document_id: str, data: dict[str, Any]) -> dict[str, Any] | None:
        """Update an order only while its payment is not in a paid state.

        Equivalent to ``UPDATE orders SET ... WHERE document_id = ? AND
        payment_status NOT IN ('paid', 'paid_captured')``.

        Returns:
            dict | None: The updated row, or None if no row matched
            (unknown order, or another delivery already marked it paid).
        """
        response = (
            self.client.table(ORDERS_TABLE)
            .update(to_json_value(data))
            .eq("document_id", document_id)
            .not_.in_("payment_status", sorted(PAID_PAYMENT_STATUSES))
            .execute()
        )
        return response.data[0] if response.data else None

    async def mark_email_sent(self, order_id: int, sent_at: datetime) -> dict[str, Any] | None:
        """Stamp email_sent_at if it is still empty.

        Returns:
            dict | None: The updated row if this call set the stamp, None otherwise.
        """
        response = (
            self.client.table(ORDERS_TABLE)
            .update({"email_sent_at": sent_at.isoformat()})
            .eq("id", order_id)
            .is_("email_sent_at", "null")
            .execute()
        )
        return response.data[0] if response.data else None

    async def get_user_preferences(self, user_id: str) -> dict[str, Any] | None:
        """Get language/currency preferences from a user profile."""
        try:
            response = (
                self.client.table(USERS_TABLE)
                .select("language,currency")
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )
        except Exception as e:
            logger.warning("Failed to load preferences for user %s: %s", user_id, str(e))
            return None
        return response.data if response and response.data else None
