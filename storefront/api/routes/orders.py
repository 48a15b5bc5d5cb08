"""Order API routes."""

import logging

from fastapi import APIRouter, status

from storefront.api.deps import AdminKey, CurrentUser, OptionalUser, OrderServiceDep, RequireAdmin, is_admin_key
from storefront.api.middleware.error_handler import ConflictError, NotFoundError
from storefront.schemas.order import OrderCreate, OrderListResponse, OrderResponse, OrderUpdate
from storefront.services.order_lifecycle import OrderTransitionError
from storefront.services.order_service import OrderNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create order",
    description="Creates a pending order. The total is computed on the server from the line items.",
)
async def create_order(
    data: OrderCreate,
    user: OptionalUser,
    service: OrderServiceDep,
) -> OrderResponse:
    """Create an order from the checkout payload.

    Args:
        data: Order creation payload.
        user: Authenticated user, if a token was sent.
        service: Order service.

    Returns:
        OrderResponse: The stored order.
    """
    draft = data.model_dump(exclude_none=True)
    order = await service.create_order(draft, user_id=user.user_id if user else None)
    return OrderResponse.model_validate(order)


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List my orders",
    description="Returns the orders placed by the authenticated user, newest first.",
)
async def list_orders(user: CurrentUser, service: OrderServiceDep) -> OrderListResponse:
    orders = await service.list_orders_for_user(user.user_id)
    return OrderListResponse(items=[OrderResponse.model_validate(order) for order in orders])


@router.get(
    "/{document_id}",
    response_model=OrderResponse,
    summary="Get order",
    description="Returns one order. Visible to its owner or to an operator holding the admin key.",
)
async def get_order(
    document_id: str,
    user: OptionalUser,
    admin_key: AdminKey,
    service: OrderServiceDep,
) -> OrderResponse:
    """Get an order by document_id.

    Orders that exist but belong to someone else answer 404 as well, so
    document ids cannot be probed.

    Raises:
        NotFoundError: If the order does not exist or is not visible to the caller.
    """
    try:
        order = await service.get_order(document_id)
    except OrderNotFoundError as e:
        raise NotFoundError(message=str(e)) from e

    if not is_admin_key(admin_key):
        owner = order.get("user_id")
        if user is None or owner is None or str(owner) != user.user_id:
            raise NotFoundError(message=f"Order {document_id} not found")

    return OrderResponse.model_validate(order)


@router.patch(
    "/{document_id}",
    response_model=OrderResponse,
    summary="Update order",
    description="Operator update of statuses, items or delivery data. Requires X-Admin-Key.",
)
async def update_order(
    document_id: str,
    data: OrderUpdate,
    _: RequireAdmin,
    service: OrderServiceDep,
) -> OrderResponse:
    """Apply an operator patch.

    Raises:
        NotFoundError: If the order does not exist.
        ConflictError: If the patch breaks the status transition rules.
    """
    patch = data.model_dump(exclude_unset=True)
    try:
        order = await service.update_order(document_id, patch)
    except OrderNotFoundError as e:
        raise NotFoundError(message=str(e)) from e
    except OrderTransitionError as e:
        raise ConflictError(
            message=str(e),
            details=[{"loc": [e.field], "msg": str(e), "type": "invalid_transition"}],
        ) from e

    return OrderResponse.model_validate(order)
