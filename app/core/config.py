"""
app/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (CRM credentials, relay endpoint, timeouts)
- Validates configuration on startup
- Environment-specific settings
"""

from pydantic import Field, field_validator, ValidationInfo
from pydantic_settings import BaseSettings
from typing import Optional, Literal, List


SUPPORTED_AUTH_STRATEGIES = ("bearer", "x-api-key", "query")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # Leadteh CRM
    LEADTEH_API_KEY: str = Field(
        default="",
        description="Leadteh API token used for contact upserts"
    )
    LEADTEH_BOT_ID: int = Field(
        default=0,
        description="Leadteh bot identifier the contacts belong to"
    )
    LEADTEH_WEBHOOK_URL: str = Field(
        default="",
        description="Leadteh inner_webhook URL receiving attribution variables"
    )
    LEADTEH_API_BASE_URL: str = Field(
        default="https://app.leadteh.ru/api/v1",
        description="Leadteh REST API base URL"
    )
    LEADTEH_AUTH_ORDER: List[str] = Field(
        default=["bearer", "x-api-key"],
        description="Authentication strategies tried in order on 401"
    )
    CRM_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for every CRM request in seconds"
    )

    # Telegram
    TELEGRAM_BOT_TOKEN: Optional[str] = Field(
        default=None,
        description="Bot token; when set, initData signatures are verified"
    )
    INIT_DATA_MAX_AGE_SECONDS: int = Field(
        default=0,
        description="Reject initData older than this (0 disables the check)"
    )

    # Delivery client (Mini App side)
    BRIDGE_ENDPOINT_URL: str = Field(
        default="http://localhost:8000/api/bridge-webhook",
        description="Relay endpoint the delivery controller posts to"
    )
    BRIDGE_TIMEOUT_MS: int = Field(default=10000, description="Per-attempt timeout")
    BRIDGE_MAX_RETRIES: int = Field(default=2, description="Automatic retries after the first attempt")
    BRIDGE_RETRY_DELAY_MS: int = Field(default=1000, description="Wait before each automatic retry")
    BRIDGE_CLOSE_DELAY_MS: int = Field(default=500, description="Wait before the terminal action")
    BRIDGE_DEEP_LINK: Optional[str] = Field(
        default=None,
        description="Deep link opened on success instead of closing the Mini App"
    )

    # Application
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    API_PREFIX: str = Field(
        default="/api",
        description="API route prefix"
    )
    CORS_ORIGINS: list = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    @field_validator("LEADTEH_AUTH_ORDER")
    @classmethod
    def validate_auth_order(cls, v: List[str]) -> List[str]:
        """Normalize strategy names and reject unknown ones."""
        normalized = [name.strip().lower() for name in v if name.strip()]
        unknown = [name for name in normalized if name not in SUPPORTED_AUTH_STRATEGIES]
        if unknown:
            raise ValueError(f"Unknown auth strategies: {', '.join(unknown)}")
        if not normalized:
            raise ValueError("LEADTEH_AUTH_ORDER must name at least one strategy")
        return normalized

    @field_validator("LEADTEH_API_KEY")
    @classmethod
    def validate_api_key(cls, v: str, info: ValidationInfo) -> str:
        """Ensure the CRM key is set in production."""
        if info.data.get("ENVIRONMENT") == "production" and not v:
            raise ValueError("LEADTEH_API_KEY is required in production environment")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def verify_init_data(self) -> bool:
        return bool(self.TELEGRAM_BOT_TOKEN)

    class Config:
        env_file = ".env"
        case_sensitive = True
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
settings = Settings()


def validate_settings(current: Optional[Settings] = None):
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    current = current or settings
    errors = []

    if not current.LEADTEH_API_BASE_URL:
        errors.append("LEADTEH_API_BASE_URL is required")

    if current.CRM_TIMEOUT_SECONDS <= 0:
        errors.append("CRM_TIMEOUT_SECONDS must be positive")

    # Production-specific validations
    if current.is_production:
        if not current.LEADTEH_API_KEY:
            errors.append("LEADTEH_API_KEY is required in production")
        if not current.LEADTEH_BOT_ID:
            errors.append("LEADTEH_BOT_ID is required in production")
        if not current.LEADTEH_WEBHOOK_URL:
            errors.append("LEADTEH_WEBHOOK_URL is required in production")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
