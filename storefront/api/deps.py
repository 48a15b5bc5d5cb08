"""FastAPI dependency injection functions."""

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from storefront.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt
from storefront.core.config import get_settings
from storefront.schemas.auth import UserContext
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService
from storefront.services.push_service import PushService

ADMIN_KEY_HEADER = "X-Admin-Key"


async def get_current_user(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> UserContext:
    """Extract and validate the current user from the Authorization header.

    This dependency requires a valid JWT token in the Authorization header.
    Use this for endpoints that require authentication.

    Args:
        authorization: The Authorization header value (Bearer token).

    Returns:
        UserContext: The authenticated user's context.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired.
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Extract the token from "Bearer <token>" format
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = parts[1]

    try:
        payload = decode_jwt(token)
        return payload.to_user_context()

    except AuthError as e:
        if e.code == AuthErrorCode.TOKEN_EXPIRED:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e

        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_optional_user(
    authorization: Annotated[str | None, Header()] = None,
) -> UserContext | None:
    """Extract the current user if an Authorization header is present.

    Returns None if no token is provided. A token that is present but
    invalid is still rejected with 401.

    Args:
        authorization: Optional Authorization header value.

    Returns:
        UserContext | None: The user context if authenticated, None otherwise.
    """
    if not authorization:
        return None
    return await get_current_user(authorization)


def is_admin_key(candidate: str | None) -> bool:
    """Constant-time check of an operator key against ADMIN_API_KEY."""
    expected = get_settings().admin_api_key
    if not expected or not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


async def require_admin(
    x_admin_key: Annotated[str | None, Header(alias=ADMIN_KEY_HEADER)] = None,
) -> None:
    """Guard operator endpoints with the X-Admin-Key header.

    Raises:
        HTTPException: 500 if no admin key is configured, 403 if the key is
            missing or wrong.
    """
    if not get_settings().admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ADMIN_API_KEY is not configured",
        )
    if not is_admin_key(x_admin_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin key",
        )


async def get_admin_key(
    x_admin_key: Annotated[str | None, Header(alias=ADMIN_KEY_HEADER)] = None,
) -> str | None:
    """Raw X-Admin-Key header for routes that accept either a user or an operator."""
    return x_admin_key


# Service providers, overridable in tests through app.dependency_overrides


def get_order_service() -> OrderService:
    return OrderService()


def get_payment_service() -> PaymentService:
    return PaymentService()


def get_push_service() -> PushService:
    return PushService()


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[UserContext, Depends(get_current_user)]
OptionalUser = Annotated[UserContext | None, Depends(get_optional_user)]
AdminKey = Annotated[str | None, Depends(get_admin_key)]
RequireAdmin = Annotated[None, Depends(require_admin)]

OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
PushServiceDep = Annotated[PushService, Depends(get_push_service)]
