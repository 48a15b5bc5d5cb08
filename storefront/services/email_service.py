"""Email service using Resend for transactional emails."""

import logging
from typing import Any

import resend

from storefront.core.config import Settings, get_settings
from storefront.services.order_email_templates import (
    BrandContext,
    receipt_subject,
    render_ops_summary,
    render_receipt_html,
    render_receipt_text,
)
from storefront.services.order_lifecycle import normalize_language

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending order emails via Resend.

    Every send returns a result dict (``success`` plus ``email_id`` or
    ``error``) and never raises.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize email service with Resend API key."""
        self.settings = settings or get_settings()
        resend.api_key = self.settings.resend_api_key
        self.from_email = self.settings.email_from_address
        self.brand = BrandContext(
            name=self.settings.brand_name,
            site_url=self.settings.site_url,
            logo_url=self.settings.brand_logo_url,
            support_email=self.settings.order_public_contact,
        )

    def _send(self, params: dict[str, Any], recipient: str, label: str) -> dict[str, Any]:
        if not self.settings.resend_api_key:
            logger.warning("RESEND_API_KEY not set, %s email to %s not sent", label, recipient)
            return {"success": False, "error": "email is not configured"}

        try:
            response = resend.Emails.send(params)
            logger.info("%s email sent to %s, id: %s", label, recipient, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send %s email to %s: %s", label, recipient, str(e))
            return {"success": False, "error": str(e)}

    async def send_order_receipt(self, order: dict[str, Any]) -> dict[str, Any]:
        """Send the localized HTML receipt to the customer.

        Args:
            order: Paid order row.

        Returns:
            dict: Send result. ``skipped`` is set when the order has no
            customer email.
        """
        to_email = order.get("customer_email")
        if not to_email:
            logger.warning("Receipt skipped: no customer email for %s", order.get("order_number"))
            return {"success": True, "skipped": True}

        language = normalize_language(order.get("language")) or self.settings.default_language
        params: dict[str, Any] = {
            "from": self.from_email,
            "to": [to_email],
            "subject": receipt_subject(order, language, self.brand.name),
            "html": render_receipt_html(order, language, self.brand),
            "text": render_receipt_text(order, language),
            "headers": {"X-Template-Version": self.settings.email_template_version},
        }
        if self.settings.email_reply_to:
            params["reply_to"] = self.settings.email_reply_to

        return self._send(params, to_email, "Receipt")

    async def send_ops_summary(self, order: dict[str, Any]) -> dict[str, Any]:
        """Send the plain-text paid order summary to the operations mailbox."""
        to_email = self.settings.order_notify_email
        if not to_email:
            logger.warning("Ops summary skipped: ORDER_NOTIFY_EMAIL not set")
            return {"success": True, "skipped": True}

        subject, body = render_ops_summary(order)
        params = {
            "from": self.from_email,
            "to": [to_email],
            "subject": subject,
            "text": body,
        }
        return self._send(params, to_email, "Ops summary")

    async def send_order_paid_emails(self, order: dict[str, Any]) -> dict[str, dict[str, Any]]:
        """Send both paid-order emails independently.

        Returns:
            dict: Results keyed by ``customer`` and ``ops``.
        """
        return {
            "customer": await self.send_order_receipt(order),
            "ops": await self.send_ops_summary(order),
        }
