"""Core Courier service layer.

Wires storage, the delivery executor, the health tracker, the dispatcher
and the retry scheduler into one object with a small interface.

Example:
    ```python
    from courier.service import CourierService

    async with CourierService.create() as courier:
        await courier.register_subscriber(
            name="Billing sync",
            url="https://billing.example.com/hooks",
            events=["deal.won"],
            secret="s3cret",
        )
        delivery_ids = await courier.dispatch("deal.won", {"id": "d1"})

        # Called periodically by cron or the operator API
        summary = await courier.process_retries()
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
import pydantic

from courier.config import Settings
from courier.exceptions import ConfigurationError, NotFoundError, ValidationError
from courier.logging import get_logger
from courier.models import (
    DeliveryAttempt,
    DeliveryRecord,
    DeliveryStatus,
    Subscriber,
    utcnow,
)
from courier.storage import CourierStorage
from courier.webhooks import (
    DeliveryExecutor,
    RetryRunSummary,
    RetryScheduler,
    SubscriberHealthTracker,
    WebhookDispatcher,
)
from courier.webhooks.executor import validate_target_url

logger = get_logger(__name__)


@dataclass
class CourierService:
    """High-level webhook delivery service.

    Attributes:
        storage: Storage backend.
        settings: Configuration settings.
        http_client: Shared HTTP client. Created on initialize() if None.
        clock: Source of "now"; injectable for tests.
    """

    storage: CourierStorage
    settings: Settings
    http_client: httpx.AsyncClient | None = field(default=None)
    clock: Callable[[], datetime] = field(default=utcnow)

    executor: DeliveryExecutor = field(init=False, repr=False)
    health: SubscriberHealthTracker = field(init=False, repr=False)
    dispatcher: WebhookDispatcher = field(init=False, repr=False)
    scheduler: RetryScheduler = field(init=False, repr=False)
    _owns_client: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        """Build the engine components from settings."""
        self._build_components()

    def _build_components(self) -> None:
        self.executor = DeliveryExecutor(
            timeout_seconds=self.settings.delivery_timeout_seconds,
            client=self.http_client,
            response_body_limit=self.settings.response_body_limit,
            clock=self.clock,
        )
        self.health = SubscriberHealthTracker(
            self.storage, threshold=self.settings.circuit_breaker_threshold
        )
        self.dispatcher = WebhookDispatcher(
            self.storage,
            executor=self.executor,
            health=self.health,
            max_concurrent=self.settings.max_concurrent_deliveries,
            clock=self.clock,
        )
        self.scheduler = RetryScheduler(
            self.storage,
            executor=self.executor,
            health=self.health,
            batch_size=self.settings.retry_batch_size,
            max_concurrent=self.settings.max_concurrent_deliveries,
            claim_timeout_seconds=self.settings.claim_timeout_seconds,
            clock=self.clock,
        )

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> CourierService:
        """Create a CourierService with default dependencies.

        Args:
            settings: Optional settings. Uses environment if None.
            http_client: Optional shared HTTP client.
            clock: Source of "now".
        """
        if settings is None:
            settings = Settings()

        return cls(
            storage=CourierStorage(url=settings.database_url, echo=settings.database_echo),
            settings=settings,
            http_client=http_client,
            clock=clock,
        )

    async def initialize(self) -> None:
        """Initialize storage and the shared HTTP client."""
        await self.storage.initialize()
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(
                timeout=self.settings.delivery_timeout_seconds,
                limits=httpx.Limits(max_connections=self.settings.max_concurrent_deliveries * 2),
            )
            self._owns_client = True
            self._build_components()

    async def close(self) -> None:
        """Wait for background dispatches, then release resources."""
        await self.dispatcher.drain()
        if self._owns_client and self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
            self._owns_client = False
        await self.storage.close()

    async def __aenter__(self) -> CourierService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def dispatch(self, event: str, data: Mapping[str, Any]) -> list[str]:
        """Deliver an event to its subscribers, waiting for first attempts.

        Returns:
            IDs of the delivery records created.
        """
        return await self.dispatcher.dispatch(event, data)

    def dispatch_in_background(
        self, event: str, data: Mapping[str, Any]
    ) -> asyncio.Task[list[str]]:
        """Fire-and-forget dispatch; the producer never waits on delivery."""
        return self.dispatcher.schedule(event, data)

    async def process_retries(self) -> RetryRunSummary:
        """Run one retry scan."""
        return await self.scheduler.run_once()

    async def register_subscriber(
        self,
        name: str,
        url: str,
        events: list[str],
        secret: str | None = None,
        headers: Mapping[str, str] | None = None,
        max_retries: int | None = None,
        retry_delay_seconds: int | None = None,
        **fields: Any,
    ) -> Subscriber:
        """Register a subscriber, validating URL and event names.

        Raises:
            ValidationError: If the URL, an event name or a field is invalid.
        """
        try:
            validate_target_url(url)
        except ConfigurationError as e:
            raise ValidationError("url", e.message) from e

        try:
            subscriber = Subscriber(
                name=name,
                url=url,
                events=events,  # type: ignore[arg-type]
                secret=secret,
                headers=dict(headers or {}),
                max_retries=(
                    self.settings.default_max_retries if max_retries is None else max_retries
                ),
                retry_delay_seconds=(
                    self.settings.default_retry_delay_seconds
                    if retry_delay_seconds is None
                    else retry_delay_seconds
                ),
                **fields,
            )
        except pydantic.ValidationError as e:
            error = e.errors()[0]
            field_name = ".".join(str(part) for part in error["loc"]) or "subscriber"
            raise ValidationError(field_name, error["msg"]) from e

        await self.storage.store_subscriber(subscriber)
        logger.info("Subscriber registered", subscriber_id=subscriber.id, events=events)
        return subscriber

    async def get_subscriber(self, subscriber_id: str) -> Subscriber:
        """Get a subscriber.

        Raises:
            NotFoundError: If it does not exist.
        """
        subscriber = await self.storage.get_subscriber(subscriber_id)
        if subscriber is None:
            raise NotFoundError("subscriber", subscriber_id)
        return subscriber

    async def resume_subscriber(self, subscriber_id: str) -> Subscriber:
        """Clear a subscriber's pause so dispatch and retries resume.

        Raises:
            NotFoundError: If it does not exist.
        """
        subscriber = await self.health.resume(subscriber_id)
        if subscriber is None:
            raise NotFoundError("subscriber", subscriber_id)
        return subscriber

    async def list_deliveries(
        self,
        subscriber_id: str | None = None,
        status: DeliveryStatus | None = None,
        event: str | None = None,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        """Delivery log, newest first."""
        return await self.storage.list_deliveries(
            subscriber_id=subscriber_id, status=status, event=event, limit=limit
        )

    async def get_delivery(self, delivery_id: str) -> tuple[DeliveryRecord, list[DeliveryAttempt]]:
        """Get a delivery record with its attempt history.

        Raises:
            NotFoundError: If it does not exist.
        """
        record = await self.storage.get_delivery(delivery_id)
        if record is None:
            raise NotFoundError("delivery", delivery_id)
        attempts = await self.storage.get_attempts(delivery_id)
        return record, attempts


__all__ = ["CourierService"]
