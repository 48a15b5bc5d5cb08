"""Order model type definitions for database operations."""

from datetime import datetime
from typing import Literal, TypedDict

# Order status enum values matching database enum
OrderStatus = Literal["pending", "paid", "shipped", "delivered", "cancelled"]

# Payment status is tracked separately; "failed" never becomes an order status
PaymentStatus = Literal["pending", "paid", "paid_captured", "failed"]

Language = Literal["ru", "en", "fr", "es"]

ORDER_STATUSES: tuple[str, ...] = ("pending", "paid", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES: tuple[str, ...] = ("pending", "paid", "paid_captured", "failed")
PAID_PAYMENT_STATUSES = frozenset({"paid", "paid_captured"})
TERMINAL_ORDER_STATUSES = frozenset({"delivered", "cancelled"})

# Fields the storage layer owns; never accepted from a patch
IMMUTABLE_ORDER_FIELDS = frozenset({"id", "document_id", "order_number", "created_at"})


class OrderLineItem(TypedDict, total=False):
    """Structure for a single line item in an order.

    Stored as part of the line_items JSONB array. Line items have no
    lifecycle of their own.
    """

    product_id: str | None
    product_slug: str | None
    sku: str | None
    external_code: str | None
    barcode: str | None
    title: str | None
    price: str
    quantity: int | str
    size: str | None
    color: str | None
    image_url: str | None


class OrderCustomer(TypedDict, total=False):
    """Customer sub-object captured at checkout."""

    name: str | None
    email: str | None
    phone: str | None
    language: str | None
    currency: str | None


class Order(TypedDict):
    """Order table row representation.

    Maps directly to the database schema.
    """

    id: int
    document_id: str
    order_number: str
    user_id: str | None
    customer: OrderCustomer | None
    customer_email: str | None
    line_items: list[OrderLineItem]
    total: str
    currency: str
    language: Language
    order_status: OrderStatus
    payment_status: PaymentStatus
    transaction_id: str | None
    email_sent_at: datetime | None
    delivery_method: str | None
    country: str | None
    city: str | None
    street: str | None
    building: str | None
    apartment: str | None
    zip: str | None
    comment: str | None
    created_at: datetime
    updated_at: datetime


class OrderUpdate(TypedDict, total=False):
    """Data that can be written to an existing order."""

    order_status: OrderStatus
    payment_status: PaymentStatus
    transaction_id: str | None
    total: str
    line_items: list[OrderLineItem]
    language: Language
    currency: str
    email_sent_at: str
