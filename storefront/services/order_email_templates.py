"""Localized order receipt rendering.

Four locales are supported (ru, en, fr, es); unknown codes render in
English. All user-controlled values are HTML-escaped.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from html import escape
from typing import Any

from storefront.core.money import minor_units, parse_money, quantize_money
from storefront.services.order_totals import line_quantity, line_total

TRANSLATIONS: dict[str, dict[str, str]] = {
    "ru": {
        "thanks": "Спасибо за заказ!",
        "intro": "Мы приняли оплату и начали сборку. Ниже детали вашего заказа.",
        "items": "Состав заказа",
        "qty": "Количество",
        "total": "Итого",
        "delivery": "Доставка",
        "questions": "Вопросы по заказу?",
        "item": "Товар",
        "building": "д.",
        "apartment": "кв.",
        "courier": "курьер",
        "text_thanks": "Спасибо за покупку! Сумма: {total}.",
    },
    "en": {
        "thanks": "Thank you for your order!",
        "intro": "We received your payment and started preparing your order. Details below.",
        "items": "Order items",
        "qty": "Qty",
        "total": "Total",
        "delivery": "Delivery",
        "questions": "Questions about your order?",
        "item": "Item",
        "building": "bldg.",
        "apartment": "apt.",
        "courier": "courier",
        "text_thanks": "Thank you for your purchase! Total: {total}.",
    },
    "fr": {
        "thanks": "Merci pour votre commande !",
        "intro": "Nous avons reçu votre paiement et préparons votre commande. Détails ci-dessous.",
        "items": "Articles de la commande",
        "qty": "Qté",
        "total": "Total",
        "delivery": "Livraison",
        "questions": "Des questions sur votre commande ?",
        "item": "Article",
        "building": "bât.",
        "apartment": "app.",
        "courier": "coursier",
        "text_thanks": "Merci pour votre achat ! Montant : {total}.",
    },
    "es": {
        "thanks": "¡Gracias por tu pedido!",
        "intro": "Hemos recibido tu pago y empezamos a preparar tu pedido. Detalles abajo.",
        "items": "Artículos del pedido",
        "qty": "Cant.",
        "total": "Total",
        "delivery": "Entrega",
        "questions": "¿Preguntas sobre tu pedido?",
        "item": "Artículo",
        "building": "edif.",
        "apartment": "apto.",
        "courier": "mensajero",
        "text_thanks": "¡Gracias por tu compra! Total: {total}.",
    },
}

SUBJECTS: dict[str, str] = {
    "ru": "{brand}: заказ №{number} оплачен",
    "en": "{brand}: order #{number} paid",
    "fr": "{brand} : commande n°{number} payée",
    "es": "{brand}: pedido nº{number} pagado",
}

CURRENCY_SYMBOLS: dict[str, str] = {
    "RUB": "₽",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "KZT": "₸",
    "UAH": "₴",
    "JPY": "¥",
}

# (group separator, decimal separator, symbol goes first)
NUMBER_FORMATS: dict[str, tuple[str, str, bool]] = {
    "ru": (" ", ",", False),
    "en": (",", ".", True),
    "fr": (" ", ",", False),
    "es": (".", ",", False),
}


@dataclass
class BrandContext:
    """Brand and contact details shown in receipts."""

    name: str
    site_url: str
    logo_url: str
    support_email: str


def format_money(amount: Any, currency: str | None, language: str) -> str:
    """Format an amount the way the customer's locale writes prices.

    ``2500 RUB`` in ru renders as ``2 500,00 ₽``; ``19.9 USD`` in en as ``$19.90``.
    """
    code = (currency or "").upper()
    value = quantize_money(parse_money(amount) or Decimal(0), code)
    group, decimal_sep, symbol_first = NUMBER_FORMATS.get(language, NUMBER_FORMATS["en"])

    places = minor_units(code)
    whole, _, fraction = f"{value:.{places}f}".partition(".")
    whole = f"{int(whole):,}".replace(",", group)
    number = f"{whole}{decimal_sep}{fraction}" if fraction else whole

    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol is None:
        return f"{number} {code}".strip()
    if symbol_first:
        return f"{symbol}{number}"
    return f"{number} {symbol}"


def _t(language: str) -> dict[str, str]:
    return TRANSLATIONS.get(language, TRANSLATIONS["en"])


def _quantity_text(item: dict[str, Any]) -> str:
    return f"{line_quantity(item).normalize():f}"


def format_address(order: dict[str, Any], language: str) -> str:
    t = _t(language)
    parts = [
        order.get("country"),
        order.get("city"),
        order.get("street"),
        f"{t['building']}{order['building']}" if order.get("building") else None,
        f"{t['apartment']}{order['apartment']}" if order.get("apartment") else None,
        order.get("zip"),
    ]
    return ", ".join(str(part) for part in parts if part)


def receipt_subject(order: dict[str, Any], language: str, brand: str) -> str:
    template = SUBJECTS.get(language, SUBJECTS["en"])
    return template.format(brand=brand, number=order.get("order_number") or "")


def _render_items(order: dict[str, Any], language: str) -> str:
    t = _t(language)
    currency = order.get("currency")
    rows = []
    for item in order.get("line_items") or []:
        name = escape(str(item.get("title") or item.get("sku") or t["item"]))
        quantity = _quantity_text(item)
        variant = " • ".join(escape(str(v)) for v in (item.get("size"), item.get("color")) if v)
        image = item.get("image_url")
        image_html = (
            f'<img src="{escape(str(image), quote=True)}" width="64" height="64" '
            f'style="border-radius:8px; object-fit:cover" alt="">'
            if image
            else ""
        )
        variant_html = f'<div style="font-size:12px; color:#6B7280">{variant}</div>' if variant else ""
        rows.append(
            f"""
      <tr>
        <td style="padding:12px 0; display:flex; gap:12px; align-items:center;">
          {image_html}
          <div>
            <div style="font-weight:600; font-size:14px; color:#111827">{name}</div>
            {variant_html}
            <div style="font-size:12px; color:#6B7280">{t['qty']}: {escape(quantity)}</div>
          </div>
        </td>
        <td style="padding:12px 0; text-align:right; font-weight:600; color:#111827;">{escape(format_money(line_total(item), currency, language))}</td>
      </tr>"""
        )
    if not rows:
        return '<tr><td style="padding:12px 0; color:#6B7280">-</td><td></td></tr>'
    return "".join(rows)


def render_receipt_html(order: dict[str, Any], language: str, brand: BrandContext) -> str:
    """Render the customer receipt for a paid order.

    Args:
        order: Stored order row.
        language: Resolved receipt language.
        brand: Brand/contact details.

    Returns:
        str: Complete HTML document.
    """
    t = _t(language)
    number = escape(str(order.get("order_number") or ""))
    address = format_address(order, language)
    delivery = escape(str(order.get("delivery_method") or t["courier"]))
    if address:
        delivery = f"{delivery} • {escape(address)}"
    total = escape(format_money(order.get("total"), order.get("currency"), language))
    logo = escape(brand.logo_url, quote=True)
    site = escape(brand.site_url, quote=True)
    support = escape(brand.support_email, quote=True)
    brand_name = escape(brand.name)
    year = datetime.now(timezone.utc).year

    return f"""<!doctype html>
<html lang="{language}"><head><meta charset="utf-8"><title>Order {number}</title></head>
<body style="margin:0; background:#F9FAFB; font-family:ui-sans-serif,-apple-system,Segoe UI,Roboto,Helvetica,Arial;">
  <table role="presentation" cellpadding="0" cellspacing="0" width="100%">
    <tr><td align="center" style="padding:32px 16px;">
      <table role="presentation" cellpadding="0" cellspacing="0" width="100%" style="max-width:640px; background:#FFFFFF; border-radius:16px; overflow:hidden; box-shadow:0 4px 24px rgba(0,0,0,0.06)">
        <tr><td style="padding:24px 28px; border-bottom:1px solid #F3F4F6;">
          <table width="100%"><tr>
            <td><img src="{logo}" alt="{brand_name}" height="32" style="display:block"></td>
            <td align="right" style="font-size:12px; color:#6B7280;">№ {number}</td>
          </tr></table>
        </td></tr>
        <tr><td style="padding:24px 28px;">
          <h1 style="margin:0 0 8px; font-size:20px; color:#111827;">{t['thanks']}</h1>
          <p style="margin:0; color:#374151; font-size:14px;">{t['intro']}</p>
        </td></tr>
        <tr><td style="padding:0 28px 8px; font-weight:600; font-size:14px; color:#111827;">{t['items']}</td></tr>
        <tr><td style="padding:0 28px 8px;">
          <table role="presentation" width="100%" cellpadding="0" cellspacing="0">{_render_items(order, language)}</table>
        </td></tr>
        <tr><td style="padding:16px 28px;">
          <table width="100%" cellpadding="0" cellspacing="0">
            <tr><td style="color:#6B7280; font-size:14px;">{t['total']}</td>
                <td align="right" style="font-weight:700; color:#111827; font-size:16px;">{total}</td>
            </tr>
          </table>
        </td></tr>
        <tr><td style="padding:8px 28px 20px;">
          <div style="background:#F9FAFB; border:1px solid #E5E7EB; border-radius:12px; padding:12px 14px;">
            <div style="font-weight:600; color:#111827; font-size:14px; margin-bottom:4px;">{t['delivery']}</div>
            <div style="color:#374151; font-size:14px;">{delivery}</div>
          </div>
        </td></tr>
        <tr><td style="padding:0 28px 24px; color:#6B7280; font-size:12px;">
          {t['questions']} <a href="mailto:{support}" style="color:#111827; text-decoration:none;">{support}</a>
          • <a href="{site}" style="color:#111827; text-decoration:none;">{site}</a>.
        </td></tr>
      </table>
      <div style="padding:16px; color:#9CA3AF; font-size:11px;">© {year} {brand_name}</div>
    </td></tr>
  </table>
</body></html>"""


def render_receipt_text(order: dict[str, Any], language: str) -> str:
    total = format_money(order.get("total"), order.get("currency"), language)
    return _t(language)["text_thanks"].format(total=total)


def render_ops_summary(order: dict[str, Any]) -> tuple[str, str]:
    """Plain-text summary for the operations mailbox.

    Always rendered in Russian with amounts in the order's locale.

    Returns:
        tuple: (subject, body).
    """
    language = order.get("language") or "ru"
    currency = order.get("currency")
    lines = [
        f"• {item.get('title') or item.get('sku') or 'Товар'} × {_quantity_text(item)} = "
        f"{format_money(line_total(item), currency, language)}"
        for item in order.get("line_items") or []
    ]
    address = format_address(order, language)
    body = "\n".join(
        [
            f"Заказ: {order.get('order_number')}",
            f"Сумма: {format_money(order.get('total'), currency, language)}",
            f"Клиент: {order.get('customer_email') or '-'}",
            f"Доставка: {order.get('delivery_method') or '-'}{f' ({address})' if address else ''}",
            f"Транзакция: {order.get('transaction_id') or '-'}",
            *lines,
        ]
    )
    subject = f"Новый оплаченный заказ {order.get('order_number')}"
    return subject, body
