"""Order lifecycle hooks: normalization, status sync and post-write effects."""

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from storefront.core.config import SUPPORTED_LANGUAGES, Settings, get_settings
from storefront.core.money import normalize_currency, parse_money
from storefront.models.order import (
    IMMUTABLE_ORDER_FIELDS,
    PAID_PAYMENT_STATUSES,
)
from storefront.repositories.orders import OrderRepository
from storefront.services.order_totals import calculate_total, line_quantity, totals_differ, trusted_total

if TYPE_CHECKING:
    from storefront.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Localized labels operators and imports use for order statuses
STATUS_SYNONYMS: dict[str, str] = {
    # paid
    "paid": "paid",
    "payed": "paid",
    "оплачен": "paid",
    "оплачено": "paid",
    "оплачён": "paid",
    "payé": "paid",
    "payée": "paid",
    "paye": "paid",
    "pagado": "paid",
    "pagada": "paid",
    # pending
    "pending": "pending",
    "awaiting": "pending",
    "new": "pending",
    "в обработке": "pending",
    "ожидает": "pending",
    "новый": "pending",
    "en attente": "pending",
    "pendiente": "pending",
    # shipped
    "shipped": "shipped",
    "sent": "shipped",
    "отгружен": "shipped",
    "отправлен": "shipped",
    "expédié": "shipped",
    "expedie": "shipped",
    "enviado": "shipped",
    # delivered
    "delivered": "delivered",
    "доставлен": "delivered",
    "livré": "delivered",
    "livre": "delivered",
    "entregado": "delivered",
    # cancelled
    "cancelled": "cancelled",
    "canceled": "cancelled",
    "отменен": "cancelled",
    "отменён": "cancelled",
    "annulé": "cancelled",
    "annule": "cancelled",
    "cancelado": "cancelled",
}

PAYMENT_STATUS_SYNONYMS: dict[str, str] = {
    "pending": "pending",
    "awaiting": "pending",
    "ожидает": "pending",
    "paid": "paid",
    "payed": "paid",
    "оплачен": "paid",
    "оплачено": "paid",
    "payé": "paid",
    "pagado": "paid",
    "paid_captured": "paid_captured",
    "captured": "paid_captured",
    "failed": "failed",
    "declined": "failed",
    "ошибка": "failed",
    "отклонен": "failed",
    "отклонён": "failed",
    "échoué": "failed",
    "fallido": "failed",
}

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"paid", "cancelled"}),
    "paid": frozenset({"shipped"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}

# Transitions that notify the customer's devices
PUSH_ON_STATUS = {"shipped": "order_shipped", "delivered": "order_delivered"}


class OrderTransitionError(ValueError):
    """Raised when a patch would move an order along a forbidden edge."""

    def __init__(self, field: str, current: str, target: str) -> None:
        self.field = field
        self.current = current
        self.target = target
        super().__init__(f"Cannot change {field} from '{current}' to '{target}'")


def _label(raw: Any) -> str:
    return " ".join(str(raw).split()).lower() if raw is not None else ""


def normalize_status(raw: Any) -> str | None:
    """Map a free-text order status label onto the closed enum.

    Returns:
        str | None: Canonical status, or None if the label is unknown.
    """
    return STATUS_SYNONYMS.get(_label(raw))


def normalize_payment_status(raw: Any) -> str | None:
    """Map a free-text payment status label onto the closed enum."""
    return PAYMENT_STATUS_SYNONYMS.get(_label(raw).replace("-", "_"))


def normalize_language(raw: Any) -> str | None:
    """Return a supported language code (``ru-RU`` -> ``ru``), or None."""
    label = _label(raw).replace("_", "-")
    code = label.split("-", 1)[0]
    return code if code in SUPPORTED_LANGUAGES else None


def normalize_email(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    email = raw.strip().lower()
    return email or None


def make_order_number(prefix: str = "TWIW", now: datetime | None = None) -> str:
    """Generate ``{PREFIX}-{YYYYMMDD}-{8 hex}``.

    Not unique by construction; the orders table carries a unique
    constraint and creation retries on collision.
    """
    now = now or datetime.now(timezone.utc)
    suffix = uuid.uuid4().hex[:8].upper()
    return f"{prefix}-{now:%Y%m%d}-{suffix}"


def is_blank_order_number(value: Any) -> bool:
    return value is None or str(value).strip() in ("", "-")


def can_transition(current: str, target: str) -> bool:
    """Check an order status edge. Same-state writes are always allowed."""
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def clean_line_items(items: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Normalize price and quantity of stored line items."""
    cleaned = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        quantity = line_quantity(item)
        cleaned.append(
            {
                **item,
                "price": parse_money(item.get("price")) or 0,
                "quantity": int(quantity) if quantity == quantity.to_integral_value() else quantity,
            }
        )
    return cleaned


class OrderLifecycle:
    """Hooks wrapped around every order write.

    ``before_*`` hooks shape the data that is written; ``after_*`` hooks
    repair the stored total and fire notifications. After-hooks never raise:
    the write has already happened.
    """

    def __init__(
        self,
        repository: OrderRepository | None = None,
        notifications: "NotificationService | None" = None,
        settings: Settings | None = None,
    ) -> None:
        self.repository = repository or OrderRepository()
        if notifications is None:
            from storefront.services.notification_service import NotificationService

            notifications = NotificationService(orders=self.repository)
        self.notifications = notifications
        self.settings = settings or get_settings()

    def new_order_number(self) -> str:
        return make_order_number(self.settings.order_number_prefix)

    async def before_create(self, draft: dict[str, Any], user_id: str | None = None) -> dict[str, Any]:
        """Prepare a new order row.

        Language and currency resolve from the payload, then the customer
        sub-object, then the user's profile, then the configured defaults.

        Args:
            draft: Order fields as submitted.
            user_id: Authenticated user placing the order, if any.

        Returns:
            dict: Row ready for insertion.
        """
        data = dict(draft)
        customer = data.get("customer") or {}

        language = normalize_language(data.get("language")) or normalize_language(customer.get("language"))
        currency = normalize_currency(data.get("currency")) or normalize_currency(customer.get("currency"))

        if (language is None or currency is None) and user_id:
            preferences = await self.repository.get_user_preferences(user_id) or {}
            language = language or normalize_language(preferences.get("language"))
            currency = currency or normalize_currency(preferences.get("currency"))

        data["language"] = language or self.settings.default_language
        data["currency"] = currency or self.settings.default_currency
        data["user_id"] = user_id
        data["customer_email"] = normalize_email(data.get("customer_email")) or normalize_email(
            customer.get("email")
        )

        # a new order always starts unpaid
        requested = data.get("order_status")
        status = normalize_status(requested)
        if requested is not None and status not in ("pending", None):
            logger.warning("Ignoring initial status %r on new order", requested)
        data["order_status"] = "pending"
        data["payment_status"] = "pending"

        if not data.get("document_id"):
            data["document_id"] = uuid.uuid4().hex
        if is_blank_order_number(data.get("order_number")):
            data["order_number"] = self.new_order_number()

        data["line_items"] = clean_line_items(data.get("line_items"))
        total = trusted_total(data["line_items"], data.pop("total", None), data["currency"])
        data["total"] = total if total is not None else 0
        return data

    def before_update(self, patch: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
        """Normalize an update patch against the stored order.

        When the patch carries ``payment_status`` it is authoritative and
        drives ``order_status``; otherwise ``order_status = paid`` drives
        ``payment_status``.

        Args:
            patch: Fields to write.
            current: The order as stored before the update.

        Returns:
            dict: The patch to persist.

        Raises:
            OrderTransitionError: If the patch breaks the status graph or
                would take the payment out of a paid state.
        """
        data = {}
        for key, value in patch.items():
            if key in IMMUTABLE_ORDER_FIELDS:
                logger.info("Dropping immutable field %s from order %s patch", key, current.get("document_id"))
                continue
            data[key] = value

        if "language" in data:
            language = normalize_language(data["language"])
            if language is None:
                logger.info("Dropping unsupported language %r", data.pop("language"))
            else:
                data["language"] = language

        if "currency" in data:
            currency = normalize_currency(data["currency"])
            if currency is None:
                logger.info("Dropping invalid currency %r", data.pop("currency"))
            else:
                data["currency"] = currency

        if "customer_email" in data:
            data["customer_email"] = normalize_email(data["customer_email"])

        target_status = None
        if "order_status" in data:
            raw = data.pop("order_status")
            target_status = normalize_status(raw)
            if target_status is None:
                logger.warning("Dropping unknown order status %r", raw)

        target_payment = None
        if "payment_status" in data:
            raw = data.pop("payment_status")
            target_payment = normalize_payment_status(raw)
            if target_payment is None:
                logger.warning("Dropping unknown payment status %r", raw)

        current_status = current.get("order_status") or "pending"
        current_payment = current.get("payment_status") or "pending"

        if current_payment in PAID_PAYMENT_STATUSES and target_payment is not None:
            if target_payment not in PAID_PAYMENT_STATUSES:
                raise OrderTransitionError("payment_status", current_payment, target_payment)

        if target_payment is not None:
            if target_payment in PAID_PAYMENT_STATUSES:
                if current_status == "pending" and target_status in (None, "pending", "paid", "cancelled"):
                    if target_status not in (None, "paid"):
                        logger.info("payment_status %s overrides order_status %s", target_payment, target_status)
                    target_status = "paid"
            elif target_status == "paid":
                logger.info("payment_status %s overrides order_status paid", target_payment)
                target_status = None
            data["payment_status"] = target_payment
        elif target_status == "paid" and current_payment != "paid_captured":
            data["payment_status"] = "paid"

        if target_status is not None:
            if not can_transition(current_status, target_status):
                raise OrderTransitionError("order_status", current_status, target_status)
            data["order_status"] = target_status

        if is_blank_order_number(current.get("order_number")):
            data["order_number"] = self.new_order_number()

        currency = data.get("currency") or current.get("currency")
        if "line_items" in data:
            data["line_items"] = clean_line_items(data["line_items"])
            data["total"] = calculate_total(data["line_items"], currency)
        elif "total" in data:
            if current.get("line_items"):
                logger.info("Ignoring client total for order %s with line items", current.get("document_id"))
                data.pop("total")
            else:
                total = trusted_total(None, data["total"], currency)
                if total is None:
                    data.pop("total")
                else:
                    data["total"] = total

        return data

    def sync_payment_patch(self, patch: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
        """Apply status sync to a gateway-driven payment patch.

        Unlike ``before_update`` this never raises: a paid callback for an
        order an operator already moved on is recorded without touching
        ``order_status``.
        """
        data = dict(patch)
        if data.get("payment_status") in PAID_PAYMENT_STATUSES:
            current_status = current.get("order_status") or "pending"
            if current_status in ("pending", "paid"):
                data["order_status"] = "paid"
            else:
                logger.warning(
                    "Order %s paid while in status %s; order_status left unchanged",
                    current.get("document_id"),
                    current_status,
                )
        if is_blank_order_number(current.get("order_number")):
            data["order_number"] = self.new_order_number()
        return data

    async def _repair_total(self, order: dict[str, Any]) -> dict[str, Any]:
        """Re-read the order and fix a stored total that drifted from its items."""
        try:
            fresh = await self.repository.get_by_id(order["id"]) or order
            items = fresh.get("line_items") or []
            if not items:
                return fresh

            currency = fresh.get("currency")
            computed = calculate_total(items, currency)
            if totals_differ(fresh.get("total"), computed, currency):
                logger.info(
                    "Order %s total repaired: %s -> %s",
                    fresh.get("order_number"),
                    fresh.get("total"),
                    computed,
                )
                repaired = await self.repository.update(fresh["id"], {"total": computed})
                fresh = repaired or {**fresh, "total": str(computed)}
            return fresh
        except Exception as e:
            logger.error("Total read-repair failed for order %s: %s", order.get("id"), str(e))
            return order

    async def after_create(self, created: dict[str, Any]) -> dict[str, Any]:
        """Repair the total and announce the new order to the customer's devices."""
        order = await self._repair_total(created)
        try:
            await self.notifications.notify(order, "order_created")
        except Exception as e:
            logger.error("order_created notification failed for %s: %s", order.get("order_number"), str(e))
        return order

    async def after_update(self, updated: dict[str, Any], previous: dict[str, Any] | None = None) -> dict[str, Any]:
        """Repair the total and fire notifications for status transitions.

        The paid notification is committed exactly once: the outbox row is
        unique per order and kind, and ``email_sent_at`` is stamped with a
        conditional write that only one caller can win.
        """
        order = await self._repair_total(updated)
        previous = previous or {}

        is_paid = order.get("payment_status") in PAID_PAYMENT_STATUSES or order.get("order_status") == "paid"
        if is_paid and not order.get("email_sent_at"):
            try:
                record = await self.notifications.enqueue(order, "order_paid")
                stamped = await self.repository.mark_email_sent(order["id"], datetime.now(timezone.utc))
                if stamped:
                    order = {**order, **stamped}
                if record is not None:
                    await self.notifications.deliver(record, order)
            except Exception as e:
                logger.error("order_paid notification failed for %s: %s", order.get("order_number"), str(e))
        elif is_paid:
            logger.info(
                "Paid notification already sent for %s at %s",
                order.get("order_number"),
                order.get("email_sent_at"),
            )

        status = order.get("order_status")
        if status in PUSH_ON_STATUS and previous.get("order_status") != status:
            try:
                await self.notifications.notify(order, PUSH_ON_STATUS[status])
            except Exception as e:
                logger.error("%s notification failed for %s: %s", PUSH_ON_STATUS[status], order.get("order_number"), str(e))

        return order
