"""Authentication schemas for JWT tokens and user context."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class UserContext(BaseModel):
    """Authenticated user context extracted from JWT token.

    This model represents the authenticated user for the current request.
    It is populated by the auth middleware from the validated JWT.
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: str = Field(description="Unique identifier for the user (from JWT sub/id claim)")
    email: str | None = Field(default=None, description="User's email address if available")
    role: str | None = Field(default=None, description="User's role (e.g., 'user', 'admin')")


class TokenPayload(BaseModel):
    """JWT token payload structure for storefront user tokens.

    Tokens issued by the storefront carry the user id either in ``sub`` or
    in a numeric ``id`` claim.
    """

    model_config = ConfigDict(from_attributes=True)

    sub: str = Field(description="Subject - the user's id")
    email: str | None = Field(default=None, description="User's email address")
    role: str | None = Field(default=None, description="User's role")
    exp: int = Field(description="Expiration timestamp (Unix epoch)")
    iat: int | None = Field(default=None, description="Issued at timestamp (Unix epoch)")

    @property
    def expiration_datetime(self) -> datetime:
        """Get expiration as datetime object."""
        return datetime.fromtimestamp(self.exp)

    def to_user_context(self) -> UserContext:
        """Convert token payload to UserContext.

        Returns:
            UserContext: User context derived from token claims.
        """
        return UserContext(
            user_id=self.sub,
            email=self.email,
            role=self.role,
        )
