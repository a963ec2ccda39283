"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # PayMongo Configuration
    paymongo_secret_key: str = Field(..., description="PayMongo secret API key (sk_test_...)")
    paymongo_public_key: Optional[str] = Field(default=None, description="PayMongo public key")
    paymongo_webhook_secret: Optional[str] = Field(
        default=None, description="PayMongo webhook signing secret (verification skipped if unset)"
    )
    paymongo_webhook_tolerance_seconds: int = Field(
        default=300, gt=0, description="Maximum age of a signed webhook delivery"
    )
    paymongo_api_base_url: str = Field(
        default="https://api.paymongo.com/v1", description="PayMongo API base URL"
    )
    paymongo_timeout_seconds: float = Field(default=30.0, gt=0, description="PayMongo request timeout")
    statement_descriptor: str = Field(
        default="Nexistry Academy", description="Statement descriptor shown to the customer"
    )

    # Checkout Configuration
    default_currency: str = Field(default="PHP", description="Catalog currency")
    tax_rate: Optional[str] = Field(
        default="0.10",
        description="Tax rate applied at checkout (malformed values degrade to no tax)",
    )
    frontend_success_url: str = Field(
        default="https://nxacademy.nexistrydigitalsolutions.com/success?session_id={CHECKOUT_SESSION_ID}",
        description="Redirect after a successful checkout",
    )
    frontend_failure_url: str = Field(
        default="https://nxacademy.nexistrydigitalsolutions.com/failed",
        description="Redirect after a failed checkout",
    )
    frontend_cancel_url: str = Field(
        default="https://nxacademy.nexistrydigitalsolutions.com/cancelled",
        description="Redirect after a cancelled checkout",
    )

    # LeadConnector Notifications
    leadconnector_webhook_url: Optional[str] = Field(
        default=None, alias="LEADCONNECTOR_WEBHOOK", description="LeadConnector inbound webhook URL"
    )
    disable_leadconnector_webhook: bool = Field(
        default=False, description="Disable LeadConnector notifications"
    )
    notification_timeout_seconds: float = Field(default=10.0, gt=0, description="Notification timeout")
    notification_retry_delay_seconds: float = Field(
        default=5.0, ge=0, description="Delay before the single notification retry"
    )

    # GoHighLevel CRM
    ghl_private_key: Optional[str] = Field(default=None, description="GHL private integration key")
    ghl_location_id: Optional[str] = Field(default=None, description="GHL location ID")
    ghl_business_name: str = Field(default="Nexistry Academy", description="Invoice business name")
    ghl_api_base_url: str = Field(
        default="https://services.leadconnectorhq.com", description="GHL API base URL"
    )
    ghl_api_version: str = Field(default="2021-07-28", description="GHL API version header")
    ghl_timeout_seconds: float = Field(default=15.0, gt=0, description="GHL request timeout")

    # Application Configuration
    app_name: str = Field(default="paymongo-relay", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=3000, description="API port")
    api_workers: int = Field(default=1, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000", description="CORS allowed origins (comma-separated)"
    )
    api_key: Optional[str] = Field(default=None, description="API key for administrative routes")
    api_key_header: str = Field(default="X-API-Key", description="API key header name")

    # Rate Limiting
    redis_url: Optional[str] = Field(
        default=None, description="Redis URL for shared rate limits and webhook dedup"
    )
    rate_limit_max_requests: int = Field(default=100, gt=0, description="Requests per IP per window")
    rate_limit_window_seconds: int = Field(default=900, gt=0, description="IP rate limit window")
    checkout_rate_limit_max_requests: int = Field(
        default=10, gt=0, description="Checkout requests per customer per window"
    )
    checkout_rate_limit_window_seconds: int = Field(
        default=60, gt=0, description="Checkout rate limit window"
    )
    rate_limit_max_tracked_keys: int = Field(
        default=10000, gt=0, description="Identifiers tracked by the in-memory limiter"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("paymongo_secret_key")
    @classmethod
    def validate_paymongo_key(cls, v: str) -> str:
        """Validate that the PayMongo secret key has a known prefix."""
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid PayMongo secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using PayMongo test mode."""
        return self.paymongo_secret_key.startswith("sk_test_")

    @property
    def ghl_enabled(self) -> bool:
        """Check if GHL CRM sync is configured."""
        return bool(self.ghl_private_key and self.ghl_location_id)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
