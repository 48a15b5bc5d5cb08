"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_LANGUAGES = ("ru", "en", "fr", "es")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="storefront-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:8081",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Auth
    jwt_secret: str = Field(default="", description="HS256 secret used to sign storefront user tokens")
    admin_api_key: str = Field(default="", description="Key expected in X-Admin-Key for operator endpoints")

    # CloudPayments
    cloudpayments_public_id: str = Field(default="", description="CloudPayments public id (widget)")
    cloudpayments_api_secret: str = Field(default="", description="CloudPayments API secret (HMAC and API auth)")
    cloudpayments_api_url: str = Field(
        default="https://api.cloudpayments.ru",
        description="CloudPayments REST API base URL",
    )

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="TWIW <noreply@twiw.store>",
        description="From address for transactional emails",
    )
    email_reply_to: str = Field(default="", description="Reply-To address for customer emails")
    order_notify_email: str = Field(default="", description="Internal mailbox for paid order summaries")
    order_public_contact: str = Field(default="support@twiw.store", description="Support contact shown to customers")
    email_template_version: str = Field(default="1", description="Receipt template version tag")

    # Brand
    brand_name: str = Field(default="TWIW", description="Brand name used in emails and pushes")
    site_url: str = Field(default="https://twiw.store", description="Public storefront URL")
    brand_logo_url: str = Field(
        default="https://via.placeholder.com/120x32?text=TWIW",
        description="Logo URL for email receipts",
    )

    # Orders
    default_language: str = Field(default="ru", description="Fallback order language")
    default_currency: str = Field(default="RUB", description="Fallback order currency")
    order_number_prefix: str = Field(default="TWIW", description="Prefix of generated order numbers")

    # Push (Expo)
    expo_push_url: str = Field(
        default="https://exp.host/--/api/v2/push/send",
        description="Expo push gateway endpoint",
    )
    expo_access_token: str = Field(default="", description="Optional Expo access token")
    push_batch_size: int = Field(default=100, ge=1, le=100, description="Messages per push gateway call")

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=10.0, gt=0, description="Timeout for outbound API calls")

    # Request handling
    raw_body_limit_bytes: int = Field(default=2 * 1024 * 1024, description="Max webhook body size")

    # Notification outbox
    notification_worker_enabled: bool = Field(default=True, description="Run the outbox worker in-process")
    notification_poll_interval_seconds: int = Field(default=30, description="Outbox poll interval")
    notification_max_attempts: int = Field(default=6, description="Delivery attempts before giving up")
    notification_backoff_base_seconds: int = Field(default=30, description="First retry delay")
    notification_backoff_max_seconds: int = Field(default=3600, description="Retry delay cap")

    @field_validator("default_language")
    @classmethod
    def validate_default_language(cls, value: str) -> str:
        """Ensure the fallback language is one of the supported locales."""
        value = value.strip().lower()
        if value not in SUPPORTED_LANGUAGES:
            raise ValueError(f"default_language must be one of {', '.join(SUPPORTED_LANGUAGES)}")
        return value

    @field_validator("default_currency")
    @classmethod
    def validate_default_currency(cls, value: str) -> str:
        """Ensure the fallback currency looks like an ISO 4217 code."""
        value = value.strip().upper()
        if len(value) != 3 or not value.isalpha():
            raise ValueError("default_currency must be a 3-letter ISO code")
        return value

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
