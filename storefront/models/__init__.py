"""Database model type definitions."""

from storefront.models.order import Order, OrderLineItem, OrderStatus, PaymentStatus
from storefront.models.push import OrderNotification, PushDevice

__all__ = [
    "Order",
    "OrderLineItem",
    "OrderStatus",
    "PaymentStatus",
    "PushDevice",
    "OrderNotification",
]
