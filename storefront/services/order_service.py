"""Order write path: storage calls wrapped in lifecycle hooks."""

import logging
from typing import Any

from storefront.core.supabase import is_unique_violation
from storefront.repositories.orders import OrderRepository
from storefront.models.order import PAID_PAYMENT_STATUSES
from storefront.services.order_lifecycle import OrderLifecycle, OrderTransitionError

logger = logging.getLogger(__name__)

# Attempts at finding a free order number
MAX_CREATE_ATTEMPTS = 3


class OrderNotFoundError(LookupError):
    """Raised when an order reference does not resolve."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Order {document_id} not found")


class OrderService:
    """Service for creating, reading and updating orders."""

    def __init__(
        self,
        repository: OrderRepository | None = None,
        lifecycle: OrderLifecycle | None = None,
    ) -> None:
        self.repository = repository or OrderRepository()
        self.lifecycle = lifecycle or OrderLifecycle(repository=self.repository)

    async def create_order(self, draft: dict[str, Any], user_id: str | None = None) -> dict[str, Any]:
        """Create an order with a server-computed total.

        Args:
            draft: Order fields from the checkout payload.
            user_id: Authenticated user placing the order, if any.

        Returns:
            dict: The stored order after read-repair.

        Raises:
            postgrest.exceptions.APIError: If the insert fails for any reason
                other than a repeated order number collision.
        """
        data = await self.lifecycle.before_create(draft, user_id)

        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            try:
                created = await self.repository.insert(data)
                break
            except Exception as e:
                if not is_unique_violation(e) or attempt == MAX_CREATE_ATTEMPTS:
                    raise
                logger.warning(
                    "Order number %s collided (attempt %d), regenerating",
                    data["order_number"],
                    attempt,
                )
                data["order_number"] = self.lifecycle.new_order_number()

        logger.info(
            "Order %s created: document_id=%s total=%s %s",
            created.get("order_number"),
            created.get("document_id"),
            created.get("total"),
            created.get("currency"),
        )
        return await self.lifecycle.after_create(created)

    async def get_order(self, document_id: str) -> dict[str, Any]:
        """Get an order by its correlation id.

        Raises:
            OrderNotFoundError: If no order has this document_id.
        """
        order = await self.repository.get_by_document_id(document_id)
        if not order:
            raise OrderNotFoundError(document_id)
        return order

    async def list_orders_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """Get all orders for a user."""
        return await self.repository.list_for_user(user_id)

    async def update_order(self, document_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Apply an operator patch.

        Args:
            document_id: Order correlation id.
            patch: Fields to change; status labels may be localized.

        Returns:
            dict: The updated order.

        Raises:
            OrderNotFoundError: If the order does not exist.
            OrderTransitionError: If the patch breaks the status graph.
        """
        current = await self.get_order(document_id)
        data = self.lifecycle.before_update(patch, current)
        if not data:
            return current

        if "payment_status" in data and data["payment_status"] not in PAID_PAYMENT_STATUSES:
            # must not land on top of a concurrent paid callback
            updated = await self.repository.update_if_unpaid(document_id, data)
            if updated is None:
                raise OrderTransitionError("payment_status", "paid", data["payment_status"])
        else:
            updated = await self.repository.update(current["id"], data)
            if updated is None:
                raise OrderNotFoundError(document_id)

        logger.info("Order %s updated: %s", current.get("order_number"), sorted(data))
        return await self.lifecycle.after_update(updated, current)

    async def apply_payment_update(
        self,
        current: dict[str, Any],
        patch: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Write a gateway-driven payment change with compare-and-set.

        The write only lands while the order is not yet paid, so of several
        racing callbacks exactly one wins.

        Args:
            current: The order as read before the update.
            patch: Payment fields (payment_status, transaction_id, ...).

        Returns:
            dict | None: The updated order, or None if another write already
            moved the order into a paid state.
        """
        data = self.lifecycle.sync_payment_patch(patch, current)
        updated = await self.repository.update_if_unpaid(current["document_id"], data)
        if updated is None:
            logger.info("Payment update for %s lost the race or order already paid", current.get("document_id"))
            return None
        return await self.lifecycle.after_update(updated, current)
