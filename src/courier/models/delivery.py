"""Delivery models: the transmitted envelope, attempt outcomes and records.

A DeliveryRecord is created once per (subscriber, event occurrence) and is
updated in place by every attempt. Each attempt is also appended to the
DeliveryAttempt history so earlier status codes and bodies are not lost.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utcnow

# in_flight marks a record claimed by a retry worker
DeliveryStatus = Literal["pending", "in_flight", "success", "failed"]

# Diagnostic classification of a failed attempt
ErrorKind = Literal["configuration", "transport", "application"]

# Default for the characters of response body an executor keeps
RESPONSE_BODY_LIMIT = 1000


class Envelope(BaseModel):
    """JSON body POSTed to subscribers.

    Serialized once at dispatch time; the bytes are stored on the delivery
    record and resent verbatim on retry.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    delivery_id: str = Field(alias="deliveryId")
    event: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)

    def to_bytes(self) -> bytes:
        """Serialize to the exact bytes transmitted and signed."""
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, payload: bytes) -> "Envelope":
        """Parse a stored envelope."""
        return cls.model_validate_json(payload)


class DeliveryOutcome(BaseModel):
    """Normalized result of one HTTP delivery attempt."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    success: bool
    status_code: int | None = None
    response_body: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    latency_ms: int = Field(default=0, ge=0)
    attempted_at: datetime = Field(default_factory=utcnow)


class DeliveryAttempt(BaseModel):
    """One entry in a delivery's append-only attempt history.

    Attributes:
        attempt_number: 1 for the initial attempt, n+1 for the n-th retry.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("att"))
    delivery_id: str
    attempt_number: int = Field(ge=1)
    success: bool
    status_code: int | None = None
    response_body: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    latency_ms: int = Field(default=0, ge=0)
    attempted_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_outcome(
        cls, delivery_id: str, attempt_number: int, outcome: DeliveryOutcome
    ) -> "DeliveryAttempt":
        """Build a history entry from an executor outcome."""
        return cls(
            delivery_id=delivery_id,
            attempt_number=attempt_number,
            success=outcome.success,
            status_code=outcome.status_code,
            response_body=outcome.response_body,
            error=outcome.error,
            error_kind=outcome.error_kind,
            latency_ms=outcome.latency_ms,
            attempted_at=outcome.attempted_at,
        )


class DeliveryRecord(BaseModel):
    """Persisted state of one event's delivery to one subscriber.

    Attributes:
        id: Unique identifier, also sent as the envelope deliveryId.
        subscriber_id: Owning subscriber.
        event: Event name.
        payload: Frozen envelope bytes.
        status: pending, in_flight, success or failed.
        status_code: Last HTTP status code, if a response was received.
        response_body: Last response body (truncated).
        error: Last error message.
        error_kind: Classification of the last failure.
        sent_at: When the last attempt was sent.
        latency_ms: Measured latency of the last attempt.
        retry_count: Retries performed (the initial attempt is not counted).
        next_retry_at: When the record becomes due; None when terminal.
        claim_token: Token of the retry worker holding the claim.
        claimed_at: When a retry worker claimed the record.
        created_at: When the record was created.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    subscriber_id: str
    event: str
    payload: bytes
    status: DeliveryStatus = "pending"
    status_code: int | None = None
    response_body: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    sent_at: datetime | None = None
    latency_ms: int | None = None
    retry_count: int = Field(default=0, ge=0)
    next_retry_at: datetime | None = None
    claim_token: str | None = None
    claimed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        """Succeeded, or failed with no retry scheduled."""
        if self.status == "success":
            return True
        return self.status == "failed" and self.next_retry_at is None

    def apply_outcome(
        self, outcome: DeliveryOutcome, next_retry_at: datetime | None
    ) -> "DeliveryRecord":
        """Overwrite the latest-attempt fields with an executor outcome.

        The response body is stored as given; the executor has already
        truncated it to its configured limit.
        """
        self.status = "success" if outcome.success else "failed"
        self.status_code = outcome.status_code
        self.response_body = outcome.response_body
        self.error = outcome.error
        self.error_kind = outcome.error_kind
        self.sent_at = outcome.attempted_at
        self.latency_ms = outcome.latency_ms
        self.next_retry_at = None if outcome.success else next_retry_at
        self.claim_token = None
        self.claimed_at = None
        return self


__all__ = [
    "RESPONSE_BODY_LIMIT",
    "DeliveryAttempt",
    "DeliveryOutcome",
    "DeliveryRecord",
    "DeliveryStatus",
    "Envelope",
    "ErrorKind",
]
