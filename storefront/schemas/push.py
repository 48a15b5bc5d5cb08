"""Push notification Pydantic schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DeviceRegister(BaseModel):
    """Request schema for POST /push/register."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(..., min_length=1, description="Expo push token")
    platform: str | None = Field(default=None, description="ios / android / web")
    user_id: str | None = Field(default=None, description="Storefront user id")
    lang: str | None = Field(default=None, description="Device language")
    country: str | None = Field(default=None, description="Country code")
    tags: list[str] = Field(default_factory=list, description="Audience tags")
    marketing_opt_in: bool = Field(default=True, description="Marketing pushes allowed")

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("lang", "country", mode="after")
    @classmethod
    def lower_code(cls, value: str | None) -> str | None:
        return value.strip().lower() if value else None


class PushSegment(BaseModel):
    """Audience segment filter."""

    model_config = ConfigDict(extra="forbid")

    countries: list[str] = Field(default_factory=list)
    langs: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    marketing: bool | None = Field(default=None, description="Filter on marketing opt-in")


class PushTarget(BaseModel):
    """Who receives a push: explicit tokens, users, or a segment."""

    model_config = ConfigDict(extra="forbid")

    tokens: list[str] = Field(default_factory=list)
    user_ids: list[str] = Field(default_factory=list)
    segment: PushSegment | None = None

    @field_validator("user_ids", mode="before")
    @classmethod
    def coerce_user_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(item) for item in value]
        return value

    @model_validator(mode="after")
    def require_audience(self) -> "PushTarget":
        if not self.tokens and not self.user_ids and self.segment is None:
            raise ValueError("target must name tokens, user_ids or a segment")
        return self


class PushPayload(BaseModel):
    """Notification content."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    sound: str | None = "default"
    badge: int | None = None
    channel_id: str | None = None
    ttl: int | None = Field(default=None, ge=0, description="Seconds the gateway keeps the message")
    priority: str | None = Field(default=None, pattern="^(default|normal|high)$")


class PushSendRequest(BaseModel):
    """Request schema for POST /push/send."""

    model_config = ConfigDict(extra="forbid")

    target: PushTarget
    payload: PushPayload


class PromoRequest(BaseModel):
    """Request schema for POST /push/promo.

    Promo pushes only reach devices that opted into marketing.
    """

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    tokens: list[str] = Field(default_factory=list)
    user_ids: list[str] = Field(default_factory=list)
    countries: list[str] = Field(default_factory=list)
    langs: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    ttl: int = Field(default=7 * 24 * 3600, ge=0, description="Seconds the gateway keeps the message")
    priority: str = Field(default="high", pattern="^(default|normal|high)$")

    @field_validator("user_ids", mode="before")
    @classmethod
    def coerce_user_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(item) for item in value]
        return value


class PushTestRequest(BaseModel):
    """Request schema for POST /push/test."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(..., min_length=1)
    title: str = "Test"
    body: str = "Push delivery works"


class PushResult(BaseModel):
    """Delivery summary for a push request."""

    model_config = ConfigDict(from_attributes=True)

    requested: int = Field(description="Tokens resolved for the target")
    sent: int = Field(description="Messages accepted by the push gateway")
    failed: int = Field(description="Messages in failed batches or rejected tickets")
