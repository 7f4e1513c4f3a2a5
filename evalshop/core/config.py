"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


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
    app_name: str = Field(default="evalshop-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Payment gateways
    paytiko_merchant_secret: str = Field(default="", description="Paytiko merchant secret used to sign callbacks")
    confirmo_callback_password: str = Field(default="", description="Confirmo callback password used to sign callbacks")
    bridgerpay_webhook_secret: str = Field(default="", description="BridgerPay HMAC webhook secret")

    # Pricing and orders
    default_currency: str = Field(default="USD", description="Currency tag applied to new purchases")
    price_drift_tolerance: int = Field(
        default=1,
        description="Maximum allowed difference between root prices and their metadata mirrors",
    )
    order_number_start: int = Field(default=100000, description="First order number ever issued")
    order_number_max_attempts: int = Field(default=10, description="Attempts before falling back to a time-based order number")
    order_number_fallback_base: int = Field(default=9000000, description="Base of the time-based fallback order number")

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=30.0, description="Total timeout for downstream calls")
    http_connect_timeout_seconds: float = Field(default=5.0, description="Connect timeout for downstream calls")
    http_max_connections: int = Field(default=20, description="Connection pool size for downstream calls")

    # Request limits
    max_request_body_size: int = Field(default=1_048_576, description="Maximum request body size in bytes")

    # Commerce mirror (WooCommerce-compatible order sync)
    commerce_mirror_url: str = Field(default="", description="Order sync webhook URL")
    commerce_mirror_api_key: str = Field(default="", description="Order sync API key")

    # Affiliate ledger
    affiliate_api_url: str = Field(default="", description="Affiliate ledger REST base URL")
    affiliate_public_key: str = Field(default="", description="Affiliate ledger public key")
    affiliate_token: str = Field(default="", description="Affiliate ledger token")

    # Klaviyo
    klaviyo_api_key: str = Field(default="", description="Klaviyo private API key")
    klaviyo_api_url: str = Field(default="https://a.klaviyo.com/api", description="Klaviyo API base URL")
    klaviyo_revision: str = Field(default="2024-07-15", description="Klaviyo API revision header")

    # Hyros
    hyros_api_key: str = Field(default="", description="Hyros API key")
    hyros_api_url: str = Field(default="https://api.hyros.com/v1/api/v1.0", description="Hyros API base URL")

    @model_validator(mode="after")
    def normalize_currency(self) -> "Settings":
        """Store the default currency as an uppercase tag."""
        self.default_currency = self.default_currency.strip().upper()
        return self

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
