"""CloudPayments adapter: payment init, gateway callbacks and status checks."""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from urllib.parse import parse_qs

from pydantic import ValidationError

from storefront.core.cloudpayments import (
    CloudPaymentsClient,
    CloudPaymentsError,
    get_cloudpayments_client,
    verify_signature,
)
from storefront.core.config import Settings, get_settings
from storefront.core.money import amounts_match, normalize_currency, parse_money, quantize_money
from storefront.models.order import PAID_PAYMENT_STATUSES
from storefront.schemas.cloudpayments import CloudPaymentsNotification
from storefront.services.order_service import OrderService
from storefront.services.order_totals import calculate_total

logger = logging.getLogger(__name__)

# CloudPayments result codes
CODE_OK = 0
CODE_NOT_FOUND = 10
CODE_ALREADY_PAID = 11
CODE_AMOUNT_MISMATCH = 12
CODE_INVALID_SIGNATURE = 13

# Gateway transaction statuses that mean the money is secured
SUCCESS_STATUSES = frozenset({"Completed", "Authorized"})

PAYMENT_DESCRIPTIONS = {
    "ru": "Оплата заказа №{number}",
    "en": "Payment for order #{number}",
    "fr": "Paiement de la commande n°{number}",
    "es": "Pago del pedido nº{number}",
}


class OrderAlreadyPaidError(Exception):
    """Raised when payment is requested for an order that is already paid."""


class InvalidOrderTotalError(ValueError):
    """Raised when an order has no positive total to charge."""


class PaymentConfigurationError(RuntimeError):
    """Raised when CloudPayments credentials are missing."""


@dataclass
class WebhookOutcome:
    """Result of handling one gateway callback.

    ``code`` is advisory and only logged; the gateway is always answered
    with code 0.
    """

    code: int
    action: str
    document_id: str | None = None


def parse_notification(body: bytes, content_type: str | None) -> CloudPaymentsNotification | None:
    """Parse a callback body (form-encoded or JSON).

    Returns:
        CloudPaymentsNotification | None: The payload, or None if it cannot
        be parsed.
    """
    try:
        if content_type and "json" in content_type.lower():
            data = json.loads(body or b"{}")
            if not isinstance(data, dict):
                raise ValueError("JSON payload is not an object")
        else:
            fields = parse_qs(body.decode("utf-8"), keep_blank_values=True)
            data = {key: values[-1] for key, values in fields.items()}
        return CloudPaymentsNotification.model_validate(data)
    except (ValueError, UnicodeDecodeError, ValidationError) as e:
        logger.warning("Unparseable CloudPayments payload (%s): %s", content_type, str(e))
        return None


class PaymentService:
    """Business logic for CloudPayments payments."""

    def __init__(
        self,
        orders: OrderService | None = None,
        gateway: CloudPaymentsClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.orders = orders or OrderService()
        self.gateway = gateway or get_cloudpayments_client()
        self.settings = settings or get_settings()

    @property
    def repository(self):
        return self.orders.repository

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """Verify the Content-HMAC of a callback against the API secret."""
        return verify_signature(raw_body, signature, self.settings.cloudpayments_api_secret)

    def _currency(self, order: dict[str, Any]) -> str:
        return normalize_currency(order.get("currency")) or self.settings.default_currency

    async def _ensure_total(self, order: dict[str, Any]) -> Decimal | None:
        """Return a positive total, recomputing from items when the stored one is zero."""
        currency = self._currency(order)
        total = parse_money(order.get("total"))
        if total:
            return quantize_money(total, currency)

        computed = calculate_total(order.get("line_items") or [], currency)
        if computed <= 0:
            return None

        logger.info("Order %s had total %r, recomputed %s", order.get("order_number"), order.get("total"), computed)
        await self.repository.update(order["id"], {"total": computed})
        return computed

    async def init_payment(self, document_id: str) -> dict[str, Any]:
        """Prepare the widget parameters for charging an order.

        Args:
            document_id: Order correlation id.

        Returns:
            dict: public_id, invoice_id, amount, currency, description, account_id.

        Raises:
            OrderNotFoundError: If the order does not exist.
            OrderAlreadyPaidError: If the order is already paid.
            InvalidOrderTotalError: If the order has nothing to charge.
            PaymentConfigurationError: If the public id is not configured.
        """
        order = await self.orders.get_order(document_id)
        if order.get("payment_status") in PAID_PAYMENT_STATUSES:
            raise OrderAlreadyPaidError(f"Order {order.get('order_number')} is already paid")

        total = await self._ensure_total(order)
        if total is None or total <= 0:
            raise InvalidOrderTotalError(f"Order {order.get('order_number')} has no positive total")

        if not self.settings.cloudpayments_public_id:
            raise PaymentConfigurationError("CLOUDPAYMENTS_PUBLIC_ID is not configured")

        updated = await self.repository.update_if_unpaid(document_id, {"payment_status": "pending"})
        if updated is None:
            raise OrderAlreadyPaidError(f"Order {order.get('order_number')} is already paid")

        language = order.get("language") or self.settings.default_language
        template = PAYMENT_DESCRIPTIONS.get(language, PAYMENT_DESCRIPTIONS["en"])
        currency = self._currency(order)

        logger.info("Payment init for %s: %s %s", order.get("order_number"), total, currency)
        return {
            "public_id": self.settings.cloudpayments_public_id,
            "invoice_id": document_id,
            "amount": total,
            "currency": currency,
            "description": template.format(number=order.get("order_number")),
            "account_id": order.get("customer_email") or order.get("user_id"),
        }

    async def _load(self, notification: CloudPaymentsNotification, event: str) -> dict[str, Any] | None:
        logger.info(
            "CloudPayments %s: invoice=%s transaction=%s amount=%s %s status=%s",
            event,
            notification.invoice_id,
            notification.transaction_id,
            notification.amount,
            notification.currency,
            notification.status,
        )
        if not notification.invoice_id:
            return None
        return await self.repository.get_by_document_id(notification.invoice_id)

    def _amount_check(
        self,
        order: dict[str, Any],
        amount: Decimal | None,
        currency: str | None,
    ) -> tuple[bool, Decimal | None]:
        """Compare a gateway amount with the order.

        Returns:
            tuple: (matches, total to persist). The total is only set when
            the order had no usable total and the gateway amount is adopted.
        """
        order_currency = self._currency(order)
        if currency and currency != order_currency:
            logger.warning(
                "Currency mismatch for %s: gateway %s, order %s",
                order.get("document_id"),
                currency,
                order_currency,
            )
            return False, None

        if amount is None:
            return True, None

        repaired = None
        expected = parse_money(order.get("total"))
        if not expected:
            expected = calculate_total(order.get("line_items") or [], order_currency)
            if expected <= 0:
                logger.info("Order %s has no total, adopting gateway amount %s", order.get("document_id"), amount)
                return True, quantize_money(amount, order_currency)
            # a zero stored total is repaired together with the transition
            repaired = expected

        if amounts_match(expected, amount, order_currency):
            return True, repaired

        logger.warning(
            "Amount mismatch for %s: gateway %s, order %s %s",
            order.get("document_id"),
            amount,
            expected,
            order_currency,
        )
        return False, None

    async def _mark_paid(
        self,
        order: dict[str, Any],
        transaction_id: str | None,
        total: Decimal | None,
        event: str,
    ) -> WebhookOutcome:
        patch: dict[str, Any] = {"payment_status": "paid"}
        if transaction_id:
            patch["transaction_id"] = transaction_id
        if total is not None:
            patch["total"] = total

        updated = await self.orders.apply_payment_update(order, patch)
        if updated is None:
            return WebhookOutcome(CODE_ALREADY_PAID, "already_paid", order["document_id"])

        logger.info("Order %s marked paid by %s (transaction %s)", order.get("order_number"), event, transaction_id)
        return WebhookOutcome(CODE_OK, "paid", order["document_id"])

    async def handle_check(self, notification: CloudPaymentsNotification) -> WebhookOutcome:
        """Validate a pending charge before the gateway authorizes it. Never mutates."""
        order = await self._load(notification, "check")
        if order is None:
            return WebhookOutcome(CODE_NOT_FOUND, "not_found", notification.invoice_id)
        if order.get("payment_status") in PAID_PAYMENT_STATUSES:
            return WebhookOutcome(CODE_ALREADY_PAID, "already_paid", order["document_id"])

        matches, _ = self._amount_check(order, notification.amount, notification.currency)
        if not matches:
            return WebhookOutcome(CODE_AMOUNT_MISMATCH, "mismatch", order["document_id"])
        return WebhookOutcome(CODE_OK, "accepted", order["document_id"])

    async def _handle_success(self, notification: CloudPaymentsNotification, event: str) -> WebhookOutcome:
        order = await self._load(notification, event)
        if order is None:
            return WebhookOutcome(CODE_NOT_FOUND, "not_found", notification.invoice_id)
        if order.get("payment_status") in PAID_PAYMENT_STATUSES:
            return WebhookOutcome(CODE_ALREADY_PAID, "already_paid", order["document_id"])

        if event == "pay" and notification.status not in SUCCESS_STATUSES:
            logger.info("Pay callback for %s with status %s ignored", order["document_id"], notification.status)
            return WebhookOutcome(CODE_OK, "ignored", order["document_id"])

        matches, total = self._amount_check(order, notification.amount, notification.currency)
        if not matches:
            return WebhookOutcome(CODE_AMOUNT_MISMATCH, "mismatch", order["document_id"])

        return await self._mark_paid(order, notification.transaction_id, total, event)

    async def handle_pay(self, notification: CloudPaymentsNotification) -> WebhookOutcome:
        """Handle the pay callback. Only Completed/Authorized transactions mark the order paid."""
        return await self._handle_success(notification, "pay")

    async def handle_confirm(self, notification: CloudPaymentsNotification) -> WebhookOutcome:
        """Handle the confirm callback of a two-stage payment."""
        return await self._handle_success(notification, "confirm")

    async def handle_fail(self, notification: CloudPaymentsNotification) -> WebhookOutcome:
        """Record a declined payment unless the order is already paid."""
        order = await self._load(notification, "fail")
        if order is None:
            return WebhookOutcome(CODE_NOT_FOUND, "not_found", notification.invoice_id)
        if order.get("payment_status") in PAID_PAYMENT_STATUSES:
            return WebhookOutcome(CODE_ALREADY_PAID, "already_paid", order["document_id"])

        patch: dict[str, Any] = {"payment_status": "failed"}
        if notification.transaction_id:
            patch["transaction_id"] = notification.transaction_id

        updated = await self.orders.apply_payment_update(order, patch)
        if updated is None:
            return WebhookOutcome(CODE_ALREADY_PAID, "already_paid", order["document_id"])

        logger.info(
            "Order %s payment failed: %s (code %s)",
            order.get("order_number"),
            notification.reason,
            notification.reason_code,
        )
        return WebhookOutcome(CODE_OK, "failed", order["document_id"])

    @staticmethod
    def status_payload(order: dict[str, Any]) -> dict[str, Any]:
        return {
            "invoice_id": order["document_id"],
            "order_number": order.get("order_number"),
            "payment_status": order.get("payment_status") or "pending",
            "order_status": order.get("order_status") or "pending",
            "paid": order.get("payment_status") in PAID_PAYMENT_STATUSES,
            "transaction_id": order.get("transaction_id"),
            "total": parse_money(order.get("total")),
            "currency": order.get("currency"),
        }

    async def get_status(self, document_id: str) -> dict[str, Any]:
        """Read-only payment status for polling.

        Raises:
            OrderNotFoundError: If the order does not exist.
        """
        order = await self.orders.get_order(document_id)
        return self.status_payload(order)

    async def verify_payment(self, document_id: str) -> dict[str, Any]:
        """Ask CloudPayments about an invoice and apply a missed paid callback.

        Upstream failures degrade to the stored status with ``verified`` False.

        Raises:
            OrderNotFoundError: If the order does not exist.
        """
        order = await self.orders.get_order(document_id)

        try:
            model = await self.gateway.find_payment(document_id)
        except CloudPaymentsError as e:
            logger.warning("Payment verification for %s degraded: %s", document_id, str(e))
            return {**self.status_payload(order), "verified": False, "gateway_status": None}

        gateway_status = model.get("Status") if model else None
        if (
            model
            and gateway_status in SUCCESS_STATUSES
            and order.get("payment_status") not in PAID_PAYMENT_STATUSES
        ):
            amount = parse_money(model.get("Amount"))
            currency = normalize_currency(model.get("Currency"))
            matches, total = self._amount_check(order, amount, currency)
            if matches:
                transaction_id = model.get("TransactionId")
                await self._mark_paid(order, str(transaction_id) if transaction_id else None, total, "verify")
                order = await self.orders.get_order(document_id)

        return {**self.status_payload(order), "verified": True, "gateway_status": gateway_status}
