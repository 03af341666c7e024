"""Subscriber model: a registered external endpoint for webhook events."""

from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utcnow
from .events import EventType

if TYPE_CHECKING:
    from courier.webhooks.executor import DeliveryTarget

# Consecutive failures that open the circuit for a subscriber
CIRCUIT_BREAKER_THRESHOLD = 10


class Subscriber(BaseModel):
    """Configuration and health state for a webhook subscriber.

    The target URL is kept as a plain string: a malformed target is a
    per-delivery ConfigurationError, not a reason to refuse loading the row.

    Attributes:
        id: Unique identifier for this subscriber.
        name: Human-readable name.
        description: Optional description.
        url: Endpoint receiving POSTed envelopes.
        secret: Shared secret for HMAC-SHA256 signatures (unsigned if None).
        events: Event types this subscriber receives.
        headers: Custom headers merged beneath the reserved webhook headers.
        active: Inactive subscribers are excluded from dispatch and retry.
        paused: Set once consecutive failures reach the circuit threshold.
        failure_count: Consecutive failed attempts since the last success.
        max_retries: Retries allowed per delivery after the initial attempt.
        retry_delay_seconds: Base delay for linear retry backoff.
        last_success_at: When the last attempt succeeded.
        last_failure_at: When the last attempt failed.
        owner_id: User who registered the subscriber (optional).
        organization_id: Owning organization (optional).
        created_at: When the subscriber was registered.
        updated_at: When the subscriber was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("sub"))
    name: str = Field(description="Human-readable name")
    description: str | None = Field(default=None, description="Optional description")
    url: str = Field(description="Endpoint receiving webhook POSTs")
    secret: str | None = Field(default=None, description="Shared secret for signatures")
    events: list[EventType] = Field(
        default_factory=list,
        description="Event types to deliver",
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Custom request headers",
    )
    active: bool = Field(default=True, description="Whether the subscriber is active")
    paused: bool = Field(default=False, description="Whether the circuit is open")
    failure_count: int = Field(default=0, ge=0, description="Consecutive failures")
    max_retries: int = Field(default=3, ge=0, le=10, description="Maximum retries")
    retry_delay_seconds: int = Field(
        default=60, ge=1, description="Base retry delay (grows linearly)"
    )
    last_success_at: datetime | None = Field(default=None)
    last_failure_at: datetime | None = Field(default=None)
    owner_id: str | None = Field(default=None, description="Registering user (optional)")
    organization_id: str | None = Field(default=None, description="Organization (optional)")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_eligible(self) -> bool:
        """Whether the subscriber can receive dispatches and retries."""
        return self.active and not self.paused

    def subscribes_to(self, event: str) -> bool:
        """Check if this subscriber should receive the given event."""
        return self.is_eligible and event in self.events

    def to_target(self) -> "DeliveryTarget":
        """Connection info handed to the delivery executor."""
        from courier.webhooks.executor import DeliveryTarget

        return DeliveryTarget(url=self.url, secret=self.secret, headers=dict(self.headers))


__all__ = ["CIRCUIT_BREAKER_THRESHOLD", "Subscriber"]
