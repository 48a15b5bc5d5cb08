"""Localized push texts for order events."""

FALLBACK_LANGUAGE = "en"

ORDER_PUSH_TEMPLATES: dict[str, dict[str, dict[str, str]]] = {
    "order_created": {
        "ru": {"title": "Заказ принят", "body": "Ваш заказ №{number} оформлен. Мы уже собираем его."},
        "en": {"title": "Order received", "body": "Your order #{number} has been placed."},
        "fr": {"title": "Commande reçue", "body": "Votre commande n°{number} a été passée."},
        "es": {"title": "Pedido recibido", "body": "Tu pedido #{number} ha sido realizado."},
    },
    "order_paid": {
        "ru": {"title": "Оплата подтверждена", "body": "Оплата заказа №{number} прошла успешно."},
        "en": {"title": "Payment confirmed", "body": "Order #{number} payment confirmed."},
        "fr": {"title": "Paiement confirmé", "body": "Paiement de la commande n°{number} confirmé."},
        "es": {"title": "Pago confirmado", "body": "Pago del pedido #{number} confirmado."},
    },
    "order_shipped": {
        "ru": {"title": "Заказ отправлен", "body": "Заказ №{number} передан службе доставки."},
        "en": {"title": "Order shipped", "body": "Order #{number} has been shipped."},
        "fr": {"title": "Commande expédiée", "body": "La commande n°{number} a été expédiée."},
        "es": {"title": "Pedido enviado", "body": "El pedido #{number} ha sido enviado."},
    },
    "order_delivered": {
        "ru": {"title": "Заказ доставлен", "body": "Заказ №{number} доставлен. Спасибо, что с {brand}."},
        "en": {"title": "Delivered", "body": "Order #{number} has been delivered."},
        "fr": {"title": "Livré", "body": "La commande n°{number} a été livrée."},
        "es": {"title": "Entregado", "body": "El pedido #{number} ha sido entregado."},
    },
}


def order_message(kind: str, language: str | None, order_number: str | None, brand: str = "TWIW") -> dict[str, str]:
    """Title and body for an order push.

    Unknown languages fall back to English.

    Raises:
        KeyError: If the kind has no template.
    """
    templates = ORDER_PUSH_TEMPLATES[kind]
    template = templates.get((language or "").lower()) or templates[FALLBACK_LANGUAGE]
    return {
        "title": template["title"],
        "body": template["body"].format(number=order_number or "", brand=brand),
    }
