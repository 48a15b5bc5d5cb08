"""CloudPayments Pydantic schemas for payment init and gateway callbacks."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from storefront.core.money import normalize_currency, parse_money
from storefront.schemas.common import MoneyOut


class PaymentInitRequest(BaseModel):
    """Request schema for POST /cloudpayments/pay from the storefront apps."""

    model_config = ConfigDict(extra="forbid")

    document_id: str = Field(..., min_length=1, description="Order correlation id")


class PaymentInitResponse(BaseModel):
    """Parameters the widget needs to open a CloudPayments charge."""

    model_config = ConfigDict(from_attributes=True)

    public_id: str = Field(description="CloudPayments public id")
    invoice_id: str = Field(description="Invoice id (order document_id)")
    amount: MoneyOut = Field(description="Amount to charge")
    currency: str = Field(description="Currency code")
    description: str = Field(description="Payment description shown to the customer")
    account_id: str | None = Field(default=None, description="Customer account (email or user id)")


class CloudPaymentsNotification(BaseModel):
    """Gateway callback payload (check/pay/confirm/fail).

    CloudPayments posts form fields in PascalCase; unknown fields are
    ignored. Empty strings are treated as absent.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    invoice_id: str | None = Field(default=None, alias="InvoiceId")
    amount: Decimal | None = Field(default=None, alias="Amount")
    currency: str | None = Field(default=None, alias="Currency")
    transaction_id: str | None = Field(default=None, alias="TransactionId")
    status: str | None = Field(default=None, alias="Status")
    account_id: str | None = Field(default=None, alias="AccountId")
    email: str | None = Field(default=None, alias="Email")
    reason: str | None = Field(default=None, alias="Reason")
    reason_code: str | None = Field(default=None, alias="ReasonCode")
    test_mode: str | None = Field(default=None, alias="TestMode")

    @model_validator(mode="before")
    @classmethod
    def drop_empty_values(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value not in ("", None)}
        return data

    @field_validator("invoice_id", "transaction_id", "reason_code", "account_id", mode="before")
    @classmethod
    def coerce_identifier(cls, value: Any) -> Any:
        # the gateway sends numeric ids as numbers in JSON payloads
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value))
        return value

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, value: Any) -> Decimal | None:
        amount = parse_money(value)
        if amount is None:
            raise ValueError("Amount must be a non-negative number")
        return amount

    @field_validator("currency", mode="before")
    @classmethod
    def parse_currency(cls, value: Any) -> str | None:
        currency = normalize_currency(value)
        if currency is None:
            raise ValueError("Currency must be a 3-letter ISO code")
        return currency


class WebhookAck(BaseModel):
    """CloudPayments acknowledgement envelope.

    Code 0 accepts the callback. Any other code makes the gateway decline
    (check) or retry (pay/confirm/fail).
    """

    code: int = Field(default=0, description="CloudPayments result code")


class PaymentStatusResponse(BaseModel):
    """Read-only payment status for client polling."""

    model_config = ConfigDict(from_attributes=True)

    invoice_id: str = Field(description="Order document_id")
    order_number: str | None = Field(default=None, description="Human-readable order number")
    payment_status: str = Field(description="Payment status")
    order_status: str = Field(description="Fulfilment status")
    paid: bool = Field(description="Whether the order is in a paid state")
    transaction_id: str | None = Field(default=None, description="Gateway transaction id")
    total: MoneyOut | None = Field(default=None, description="Order total")
    currency: str | None = Field(default=None, description="Currency code")


class VerifyRequest(BaseModel):
    """Request schema for POST /cloudpayments/verify."""

    model_config = ConfigDict(extra="forbid")

    document_id: str = Field(..., min_length=1, description="Order correlation id")


class VerifyResponse(PaymentStatusResponse):
    """Payment status after asking the gateway directly."""

    verified: bool = Field(description="Whether the gateway answered")
    gateway_status: str | None = Field(default=None, description="Status reported by CloudPayments")
