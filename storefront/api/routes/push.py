"""Push notification API routes."""

from fastapi import APIRouter, status

from storefront.api.deps import PushServiceDep, RequireAdmin
from storefront.api.middleware.error_handler import BadRequestError
from storefront.schemas.push import DeviceRegister, PromoRequest, PushResult, PushSendRequest, PushTestRequest
from storefront.services.push_service import is_expo_push_token

router = APIRouter(prefix="/push", tags=["push"])


@router.post(
    "/register",
    status_code=status.HTTP_200_OK,
    summary="Register device",
    description="Creates or refreshes a device registration keyed by its Expo push token.",
)
async def register_device(data: DeviceRegister, service: PushServiceDep) -> dict[str, str]:
    """Register an Expo push token.

    Raises:
        BadRequestError: If the token is not an Expo push token.
    """
    if not is_expo_push_token(data.token):
        raise BadRequestError(message="Invalid Expo push token")

    await service.register_device(data.model_dump())
    return {"status": "registered", "token": data.token}


@router.post(
    "/send",
    response_model=PushResult,
    summary="Send push",
    description="Sends a notification to explicit tokens, users or a segment. Requires X-Admin-Key.",
)
async def send_push(data: PushSendRequest, _: RequireAdmin, service: PushServiceDep) -> PushResult:
    result = await service.send_to_target(
        data.target.model_dump(exclude_none=True),
        data.payload.model_dump(exclude_none=True),
    )
    return PushResult(**result)


@router.post(
    "/promo",
    response_model=PushResult,
    summary="Send promo push",
    description="Marketing push to opted-in devices, optionally filtered by country, language and tags.",
)
async def send_promo(data: PromoRequest, _: RequireAdmin, service: PushServiceDep) -> PushResult:
    result = await service.send_promo(data.model_dump())
    return PushResult(**result)


@router.post(
    "/test",
    response_model=PushResult,
    summary="Send test push",
    description="Sends a test notification to a single token. Requires X-Admin-Key.",
)
async def send_test_push(data: PushTestRequest, _: RequireAdmin, service: PushServiceDep) -> PushResult:
    """Send a test push to one device.

    Raises:
        BadRequestError: If the token is not an Expo push token.
    """
    if not is_expo_push_token(data.token):
        raise BadRequestError(message="Invalid Expo push token")

    result = await service.send_test(data.token, data.title, data.body)
    return PushResult(**result)
