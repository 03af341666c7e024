"""Pydantic schemas for operator API responses."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from courier.models import DeliveryAttempt, DeliveryRecord, DeliveryStatus, ErrorKind, Subscriber


class HealthResponse(BaseModel):
    """Service health status."""

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "unhealthy"]
    version: str
    storage_connected: bool


class EventCatalogResponse(BaseModel):
    """Events that can be subscribed to."""

    model_config = ConfigDict(extra="forbid")

    version: int = Field(description="Catalog version")
    events: list[str] = Field(description="Event names")


class DeliveryResponse(BaseModel):
    """One row of the delivery log.

    Attributes:
        payload: The envelope exactly as transmitted.
        terminal: True once no further automatic attempts will happen.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    subscriber_id: str
    event: str
    payload: str
    status: DeliveryStatus
    status_code: int | None
    response_body: str | None
    error: str | None
    error_kind: ErrorKind | None
    sent_at: datetime | None
    latency_ms: int | None
    retry_count: int
    next_retry_at: datetime | None
    created_at: datetime
    terminal: bool

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> DeliveryResponse:
        return cls(
            id=record.id,
            subscriber_id=record.subscriber_id,
            event=record.event,
            payload=record.payload.decode("utf-8", errors="replace"),
            status=record.status,
            status_code=record.status_code,
            response_body=record.response_body,
            error=record.error,
            error_kind=record.error_kind,
            sent_at=record.sent_at,
            latency_ms=record.latency_ms,
            retry_count=record.retry_count,
            next_retry_at=record.next_retry_at,
            created_at=record.created_at,
            terminal=record.is_terminal,
        )


class DeliveryListResponse(BaseModel):
    """Delivery log page."""

    model_config = ConfigDict(extra="forbid")

    deliveries: list[DeliveryResponse]
    count: int


class DeliveryDetailResponse(BaseModel):
    """A delivery with its full attempt history."""

    model_config = ConfigDict(extra="forbid")

    delivery: DeliveryResponse
    attempts: list[DeliveryAttempt]


class SubscriberStatusResponse(BaseModel):
    """Health state of a subscriber. The secret is never returned."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    url: str
    events: list[str]
    active: bool
    paused: bool
    failure_count: int
    signed: bool
    last_success_at: datetime | None
    last_failure_at: datetime | None

    @classmethod
    def from_subscriber(cls, subscriber: Subscriber) -> SubscriberStatusResponse:
        return cls(
            id=subscriber.id,
            name=subscriber.name,
            url=subscriber.url,
            events=list(subscriber.events),
            active=subscriber.active,
            paused=subscriber.paused,
            failure_count=subscriber.failure_count,
            signed=subscriber.secret is not None,
            last_success_at=subscriber.last_success_at,
            last_failure_at=subscriber.last_failure_at,
        )
