"""Order Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.core.money import parse_money, parse_quantity
from storefront.schemas.common import MoneyOut, QuantityOut


def _parse_price(value: Any) -> Decimal:
    amount = parse_money(value)
    if amount is None:
        raise ValueError("must be a non-negative amount")
    return amount


class LineItemInput(BaseModel):
    """Line item as submitted by the storefront apps."""

    model_config = ConfigDict(extra="forbid")

    product_id: str | None = Field(default=None, description="Catalog product id")
    product_slug: str | None = Field(default=None, description="Catalog product slug")
    sku: str | None = Field(default=None, description="Stock keeping unit")
    external_code: str | None = Field(default=None, description="External (ERP) code")
    barcode: str | None = Field(default=None, description="Barcode")
    title: str | None = Field(default=None, description="Display name")
    price: Decimal = Field(description="Unit price; locale-formatted strings are accepted")
    quantity: int = Field(default=1, ge=1, description="Quantity ordered")
    size: str | None = Field(default=None, description="Size variant")
    color: str | None = Field(default=None, description="Color variant")
    image_url: str | None = Field(default=None, description="Product image URL")

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, value: Any) -> Decimal:
        return _parse_price(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def parse_quantity_value(cls, value: Any) -> int:
        quantity = parse_quantity(value)
        if quantity is None or quantity != quantity.to_integral_value():
            raise ValueError("must be a whole number")
        return int(quantity)


class CustomerInput(BaseModel):
    """Customer details captured at checkout."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    language: str | None = None
    currency: str | None = None


class OrderCreate(BaseModel):
    """Schema for creating an order via POST /orders.

    Any total sent by the client is advisory; the server recomputes it from
    the line items.
    """

    model_config = ConfigDict(extra="forbid")

    line_items: list[LineItemInput] = Field(default_factory=list, description="Ordered items")
    total: Decimal | None = Field(default=None, description="Client-side total (advisory)")
    currency: str | None = Field(default=None, description="ISO currency code")
    language: str | None = Field(default=None, description="Order language (ru/en/fr/es)")
    customer: CustomerInput | None = Field(default=None, description="Customer details")
    customer_email: str | None = Field(default=None, description="Receipt email address")
    delivery_method: str | None = None
    country: str | None = None
    city: str | None = None
    street: str | None = None
    building: str | None = None
    apartment: str | None = None
    zip: str | None = None
    comment: str | None = None

    @field_validator("total", mode="before")
    @classmethod
    def parse_total(cls, value: Any) -> Decimal | None:
        if value is None or value == "":
            return None
        return _parse_price(value)


class OrderUpdate(BaseModel):
    """Schema for operator updates via PATCH /orders/{document_id}.

    Status fields accept free-text labels ("оплачен", "shipped", ...); they
    are normalized by the order lifecycle.
    """

    model_config = ConfigDict(extra="forbid")

    order_status: str | None = None
    payment_status: str | None = None
    transaction_id: str | None = None
    line_items: list[LineItemInput] | None = None
    language: str | None = None
    currency: str | None = None
    customer_email: str | None = None
    delivery_method: str | None = None
    country: str | None = None
    city: str | None = None
    street: str | None = None
    building: str | None = None
    apartment: str | None = None
    zip: str | None = None
    comment: str | None = None


class OrderLineItemSchema(BaseModel):
    """Schema for a stored line item."""

    model_config = ConfigDict(from_attributes=True)

    product_id: str | None = None
    product_slug: str | None = None
    sku: str | None = None
    external_code: str | None = None
    barcode: str | None = None
    title: str | None = None
    price: MoneyOut = Field(default=Decimal(0), description="Unit price")
    quantity: QuantityOut = Field(default=Decimal(1), description="Quantity ordered")
    size: str | None = None
    color: str | None = None
    image_url: str | None = None


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    document_id: str = Field(description="Order correlation id (payment invoice id)")
    order_number: str = Field(description="Human-readable order number")
    order_status: str = Field(description="Fulfilment status")
    payment_status: str = Field(description="Payment status")
    line_items: list[OrderLineItemSchema] = Field(default_factory=list, description="Order line items")
    total: MoneyOut = Field(description="Server-computed total")
    currency: str = Field(description="Currency code")
    language: str = Field(description="Order language")
    customer_email: str | None = Field(default=None, description="Customer email")
    transaction_id: str | None = Field(default=None, description="Gateway transaction id")
    delivery_method: str | None = None
    country: str | None = None
    city: str | None = None
    street: str | None = None
    building: str | None = None
    apartment: str | None = None
    zip: str | None = None
    comment: str | None = None
    email_sent_at: datetime | None = Field(default=None, description="Payment receipt timestamp")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")


class OrderListResponse(BaseModel):
    """Schema for order list API responses."""

    model_config = ConfigDict(from_attributes=True)

    items: list[OrderResponse] = Field(description="List of orders")
