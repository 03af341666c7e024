"""Configuration management for Courier."""

import logging
import warnings
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Courier configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the COURIER_ prefix. For example:
        COURIER_DATABASE_URL=postgresql+asyncpg://courier@localhost/courier
        COURIER_RETRY_BATCH_SIZE=50

    Security Notes:
        - In production (COURIER_ENV=production), the operator API requires
          a bearer token by default and COURIER_ADMIN_TOKEN must be set
        - Disabling auth in production logs a warning
    """

    model_config = SettingsConfigDict(
        env_prefix="COURIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./courier.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(
        default=False,
        description="Log emitted SQL statements",
    )

    # Delivery
    delivery_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single outbound POST",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        description="Outbound calls in flight per dispatch or retry run",
    )
    response_body_limit: int = Field(
        default=1000,
        ge=0,
        description="Characters of response body kept on a delivery record",
    )

    # Retry scheduling
    retry_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum due records processed per retry run",
    )
    claim_timeout_seconds: int = Field(
        default=300,
        ge=1,
        description="After this long an in-flight claim is considered abandoned",
    )
    default_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="max_retries for subscribers registered without one",
    )
    default_retry_delay_seconds: int = Field(
        default=60,
        ge=1,
        description="retry_delay_seconds for subscribers registered without one",
    )

    # Circuit breaker
    circuit_breaker_threshold: int = Field(
        default=10,
        ge=1,
        description="Consecutive failures before a subscriber is paused",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # Operator API authentication
    auth_enabled: bool | None = Field(
        default=None,
        description=(
            "Require a bearer token on operator endpoints. "
            "If not set, defaults to True in production, False otherwise."
        ),
    )
    admin_token: str | None = Field(
        default=None,
        description="Bearer token accepted by operator endpoints",
    )

    @model_validator(mode="after")
    def validate_claim_timeout(self) -> "Settings":
        """A claim must outlive the delivery it protects.

        Otherwise a slow but healthy attempt could be reclaimed and sent
        twice by another worker.
        """
        if self.claim_timeout_seconds <= self.delivery_timeout_seconds:
            raise ValueError(
                f"claim_timeout_seconds ({self.claim_timeout_seconds}) must be greater than "
                f"delivery_timeout_seconds ({self.delivery_timeout_seconds})"
            )
        return self

    @model_validator(mode="after")
    def validate_security_settings(self) -> "Settings":
        """Resolve auth defaults and enforce production requirements."""
        is_production = self.env == "production"

        if self.auth_enabled is None:
            object.__setattr__(self, "auth_enabled", is_production)

        if is_production:
            if self.auth_enabled and self.admin_token is None:
                raise ValueError(
                    "COURIER_ADMIN_TOKEN must be set in production. "
                    'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
                )
            if not self.auth_enabled:
                warnings.warn(
                    "Operator API authentication is disabled in production. "
                    "Set COURIER_AUTH_ENABLED=true to enable.",
                    UserWarning,
                    stacklevel=2,
                )
                logger.warning("Operator API authentication disabled in production")
        elif self.auth_enabled and self.admin_token is None:
            raise ValueError("COURIER_ADMIN_TOKEN must be set when auth is enabled")

        return self

    @property
    def is_auth_enabled(self) -> bool:
        """Get resolved auth_enabled value (always bool, never None)."""
        if self.auth_enabled is None:
            return self.env == "production"
        return self.auth_enabled


# Default settings instance
settings = Settings()
