"""Unit tests for order emails and their templates."""

from typing import Any
from unittest.mock import patch

import pytest

from storefront.services.email_service import EmailService
from storefront.services.order_email_templates import (
    BrandContext,
    format_address,
    format_money,
    receipt_subject,
    render_ops_summary,
    render_receipt_html,
    render_receipt_text,
)

BRAND = BrandContext(
    name="TWIW",
    site_url="https://twiw.store",
    logo_url="https://twiw.store/logo.png",
    support_email="support@twiw.store",
)


@pytest.fixture
def paid_order() -> dict[str, Any]:
    return {
        "order_number": "TWIW-20261019-0A1B2C3D",
        "customer_email": "buyer@example.com",
        "language": "ru",
        "currency": "RUB",
        "total": "2500.00",
        "transaction_id": "504",
        "delivery_method": "СДЭК",
        "city": "Москва",
        "street": "Тверская",
        "building": "7",
        "line_items": [
            {"title": "Hoodie", "price": "1000", "quantity": 2, "size": "M"},
            {"title": "Cap", "price": "500", "quantity": 1},
        ],
    }


class TestFormatting:
    """Tests for locale-aware money and address formatting."""

    @pytest.mark.parametrize(
        ("amount", "currency", "language", "expected"),
        [
            ("2500", "RUB", "ru", "2\u00a0500,00\u00a0₽"),
            (19.9, "USD", "en", "$19.90"),
            ("1234.5", "EUR", "fr", "1\u202f234,50\u00a0€"),
            ("1234.5", "EUR", "es", "1.234,50\u00a0€"),
            ("1000", "JPY", "en", "¥1,000"),
            ("10", "CHF", "en", "10.00 CHF"),
            (None, "RUB", "ru", "0,00\u00a0₽"),
        ],
    )
    def test_format_money(self, amount: Any, currency: str, language: str, expected: str) -> None:
        assert format_money(amount, currency, language) == expected

    def test_format_address(self, paid_order: dict) -> None:
        assert format_address(paid_order, "ru") == "Москва, Тверская, д.7"
        assert format_address({}, "en") == ""


class TestTemplates:
    """Tests for receipt and summary rendering."""

    def test_subject_is_localized(self, paid_order: dict) -> None:
        assert receipt_subject(paid_order, "ru", "TWIW") == "TWIW: заказ №TWIW-20261019-0A1B2C3D оплачен"
        assert receipt_subject(paid_order, "de", "TWIW") == "TWIW: order #TWIW-20261019-0A1B2C3D paid"

    def test_receipt_html_contains_order_details(self, paid_order: dict) -> None:
        html = render_receipt_html(paid_order, "ru", BRAND)

        assert '<html lang="ru">' in html
        assert "Спасибо за заказ!" in html
        assert "2\u00a0500,00\u00a0₽" in html
        assert "2\u00a0000,00\u00a0₽" in html
        assert "СДЭК • Москва, Тверская, д.7" in html
        assert "mailto:support@twiw.store" in html

    def test_receipt_html_escapes_user_values(self, paid_order: dict) -> None:
        """Test that item titles cannot inject markup."""
        paid_order["line_items"] = [{"title": "<script>alert(1)</script>", "price": 1, "quantity": 1}]

        html = render_receipt_html(paid_order, "en", BRAND)

        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    def test_receipt_text(self, paid_order: dict) -> None:
        assert render_receipt_text(paid_order, "en") == "Thank you for your purchase! Total: ₽2,500.00."

    def test_ops_summary(self, paid_order: dict) -> None:
        subject, body = render_ops_summary(paid_order)

        assert subject == "Новый оплаченный заказ TWIW-20261019-0A1B2C3D"
        assert "Сумма: 2\u00a0500,00\u00a0₽" in body
        assert "Клиент: buyer@example.com" in body
        assert "Транзакция: 504" in body
        assert "• Hoodie × 2 = 2\u00a0000,00\u00a0₽" in body

    def test_ops_summary_line_quantities(self, paid_order: dict) -> None:
        """Test that line totals follow the same quantity rule as the order total."""
        paid_order["line_items"] = [
            {"title": "Cap", "price": "500"},
            {"title": "Fabric", "price": "200", "quantity": "1.5"},
            {"title": "Gift", "price": "300", "quantity": 0},
        ]

        _, body = render_ops_summary(paid_order)

        assert "• Cap × 1 = 500,00\u00a0₽" in body
        assert "• Fabric × 1.5 = 300,00\u00a0₽" in body
        assert "• Gift × 0 = 0,00\u00a0₽" in body


class TestEmailService:
    """Tests for EmailService."""

    @pytest.mark.asyncio
    async def test_sends_receipt(self, settings: Any, paid_order: dict) -> None:
        settings.email_reply_to = "help@twiw.store"
        service = EmailService(settings)

        with patch("storefront.services.email_service.resend.Emails.send", return_value={"id": "email-1"}) as send:
            result = await service.send_order_receipt(paid_order)

        assert result == {"success": True, "email_id": "email-1"}
        params = send.call_args.args[0]
        assert params["to"] == ["buyer@example.com"]
        assert params["subject"] == "TWIW: заказ №TWIW-20261019-0A1B2C3D оплачен"
        assert params["reply_to"] == "help@twiw.store"
        assert params["headers"] == {"X-Template-Version": "1"}

    @pytest.mark.asyncio
    async def test_receipt_language_falls_back_to_default(self, settings: Any, paid_order: dict) -> None:
        paid_order["language"] = "klingon"
        service = EmailService(settings)

        with patch("storefront.services.email_service.resend.Emails.send", return_value={"id": "email-1"}) as send:
            await service.send_order_receipt(paid_order)

        assert "оплачен" in send.call_args.args[0]["subject"]

    @pytest.mark.asyncio
    async def test_receipt_skipped_without_address(self, settings: Any, paid_order: dict) -> None:
        paid_order["customer_email"] = None
        service = EmailService(settings)

        with patch("storefront.services.email_service.resend.Emails.send") as send:
            result = await service.send_order_receipt(paid_order)

        assert result == {"success": True, "skipped": True}
        send.assert_not_called()

    @pytest.mark.asyncio
    async def test_ops_summary_goes_to_ops_mailbox(self, settings: Any, paid_order: dict) -> None:
        service = EmailService(settings)

        with patch("storefront.services.email_service.resend.Emails.send", return_value={"id": "email-2"}) as send:
            result = await service.send_ops_summary(paid_order)

        assert result["success"] is True
        params = send.call_args.args[0]
        assert params["to"] == ["orders@twiw.store"]
        assert params["subject"] == "Новый оплаченный заказ TWIW-20261019-0A1B2C3D"
        assert "html" not in params

    @pytest.mark.asyncio
    async def test_provider_error_is_returned(self, settings: Any, paid_order: dict) -> None:
        """Test that Resend failures are reported instead of raised."""
        service = EmailService(settings)

        with patch("storefront.services.email_service.resend.Emails.send", side_effect=Exception("rate limited")):
            result = await service.send_order_receipt(paid_order)

        assert result == {"success": False, "error": "rate limited"}

    @pytest.mark.asyncio
    async def test_unconfigured_key(self, settings: Any, paid_order: dict) -> None:
        settings.resend_api_key = ""
        service = EmailService(settings)

        with patch("storefront.services.email_service.resend.Emails.send") as send:
            results = await service.send_order_paid_emails(paid_order)

        assert results["customer"]["success"] is False
        assert results["ops"]["success"] is False
        send.assert_not_called()
