"""CloudPayments API routes: widget init, gateway callbacks and status polling."""

import logging
from typing import Annotated

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from storefront.api.deps import OptionalUser, PaymentServiceDep
from storefront.api.middleware.error_handler import (
    BadRequestError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
)
from storefront.api.middleware.raw_body import get_raw_body
from storefront.core.cloudpayments import SIGNATURE_HEADER
from storefront.schemas.cloudpayments import (
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentStatusResponse,
    VerifyRequest,
    VerifyResponse,
    WebhookAck,
)
from storefront.services.order_service import OrderNotFoundError
from storefront.services.payment_service import (
    CODE_INVALID_SIGNATURE,
    InvalidOrderTotalError,
    OrderAlreadyPaidError,
    PaymentConfigurationError,
    PaymentService,
    parse_notification,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cloudpayments", tags=["cloudpayments"])

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def _handle_callback(request: Request, service: PaymentService, event: str) -> JSONResponse | WebhookAck:
    """Verify, parse and dispatch one gateway callback.

    Only a failed signature check answers with a non-zero code. Everything
    else, including unknown orders and internal failures, is acknowledged
    with code 0 so the gateway stops retrying; the outcome is logged.
    """
    raw_body = await get_raw_body(request)
    signature = request.headers.get(SIGNATURE_HEADER)

    if not service.verify_signature(raw_body, signature):
        logger.warning(
            "Rejected CloudPayments %s callback: %s",
            event,
            "missing signature" if not signature else "invalid signature",
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"code": CODE_INVALID_SIGNATURE},
        )

    notification = parse_notification(raw_body, request.headers.get("content-type"))
    if notification is None:
        return WebhookAck()

    handlers = {
        "check": service.handle_check,
        "pay": service.handle_pay,
        "confirm": service.handle_confirm,
        "fail": service.handle_fail,
    }

    try:
        outcome = await handlers[event](notification)
    except Exception:
        logger.exception("CloudPayments %s callback for %s failed", event, notification.invoice_id)
        return WebhookAck()

    logger.info(
        "CloudPayments %s for %s: %s (code %d)",
        event,
        outcome.document_id,
        outcome.action,
        outcome.code,
    )
    return WebhookAck()


def _is_gateway_callback(request: Request) -> bool:
    content_type = (request.headers.get("content-type") or "").lower()
    return SIGNATURE_HEADER in request.headers or content_type.startswith(FORM_CONTENT_TYPES)


async def _init_payment(request: Request, user: OptionalUser, service: PaymentService) -> PaymentInitResponse:
    """Build widget parameters for an order.

    Raises:
        BadRequestError: If the body is malformed or the order has no total.
        NotFoundError: If the order does not exist.
        ConflictError: If the order is already paid.
        ConfigurationError: If CloudPayments is not configured.
    """
    raw_body = await get_raw_body(request)
    try:
        data = PaymentInitRequest.model_validate_json(raw_body or b"{}")
    except PydanticValidationError as e:
        raise BadRequestError(
            message="document_id is required",
            details=[{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in e.errors()],
        ) from e

    logger.info("Payment init for %s (user=%s)", data.document_id, user.user_id if user else None)

    try:
        result = await service.init_payment(data.document_id)
    except OrderNotFoundError as e:
        raise NotFoundError(message=str(e)) from e
    except OrderAlreadyPaidError as e:
        raise ConflictError(message=str(e)) from e
    except InvalidOrderTotalError as e:
        raise BadRequestError(message=str(e)) from e
    except PaymentConfigurationError as e:
        raise ConfigurationError(message=str(e)) from e

    return PaymentInitResponse(**result)


@router.post(
    "/check",
    response_model=WebhookAck,
    summary="CloudPayments check callback",
    description="Validates a charge before authorization. Requires a valid Content-HMAC signature.",
)
async def check_callback(request: Request, service: PaymentServiceDep):
    return await _handle_callback(request, service, "check")


@router.post(
    "/pay",
    response_model=None,
    summary="Payment init or CloudPayments pay callback",
    description=(
        "With a JSON body {document_id} returns the widget parameters for the order. "
        "Signed form posts from the gateway are handled as the pay callback."
    ),
)
async def pay(request: Request, user: OptionalUser, service: PaymentServiceDep):
    """Serve both the client init call and the gateway pay callback.

    The gateway always signs its posts and defaults to form encoding, so a
    Content-HMAC header or a form body routes to the callback handler.
    """
    if _is_gateway_callback(request):
        return await _handle_callback(request, service, "pay")
    return await _init_payment(request, user, service)


@router.post(
    "/confirm",
    response_model=WebhookAck,
    summary="CloudPayments confirm callback",
    description="Marks a two-stage payment as paid. Requires a valid Content-HMAC signature.",
)
async def confirm_callback(request: Request, service: PaymentServiceDep):
    return await _handle_callback(request, service, "confirm")


@router.post(
    "/fail",
    response_model=WebhookAck,
    summary="CloudPayments fail callback",
    description="Records a declined payment. Requires a valid Content-HMAC signature.",
)
async def fail_callback(request: Request, service: PaymentServiceDep):
    return await _handle_callback(request, service, "fail")


@router.get(
    "/status",
    response_model=PaymentStatusResponse,
    summary="Payment status",
    description="Read-only payment status for client polling.",
)
async def payment_status(
    service: PaymentServiceDep,
    invoice_id: Annotated[str | None, Query(description="Order document_id")] = None,
) -> PaymentStatusResponse:
    """Get the stored payment status of an order.

    Raises:
        BadRequestError: If invoice_id is missing.
        NotFoundError: If the order does not exist.
    """
    if not invoice_id:
        raise BadRequestError(message="invoice_id is required")

    try:
        result = await service.get_status(invoice_id)
    except OrderNotFoundError as e:
        raise NotFoundError(message=str(e)) from e

    return PaymentStatusResponse(**result)


@router.post(
    "/verify",
    response_model=VerifyResponse,
    summary="Verify payment with CloudPayments",
    description="Asks the gateway about the invoice and applies a missed paid transition.",
)
async def verify_payment(data: VerifyRequest, service: PaymentServiceDep) -> VerifyResponse:
    """Reconcile an order with the gateway.

    Raises:
        NotFoundError: If the order does not exist.
    """
    try:
        result = await service.verify_payment(data.document_id)
    except OrderNotFoundError as e:
        raise NotFoundError(message=str(e)) from e

    return VerifyResponse(**result)
