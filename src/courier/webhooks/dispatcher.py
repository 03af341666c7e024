"""Fan-out of domain events to subscribed webhook endpoints.

For each eligible subscriber the dispatcher creates a pending delivery
record holding the frozen envelope, makes the first attempt, writes the
outcome back and reports it to the health tracker. Subscribers are
handled concurrently under a semaphore, and a failure for one never
reaches another or the producer.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from courier.exceptions import ValidationError
from courier.logging import delivery_context, get_logger
from courier.models import (
    DeliveryAttempt,
    DeliveryRecord,
    generate_id,
    is_known_event,
    utcnow,
)

from .executor import DeliveryExecutor
from .health import SubscriberHealthTracker

if TYPE_CHECKING:
    from courier.models import Subscriber
    from courier.storage import CourierStorage

logger = get_logger(__name__)


class WebhookDispatcher:
    """Dispatches events to every active, unpaused subscriber of the event.

    Example:
        ```python
        dispatcher = WebhookDispatcher(storage)

        # Wait for first attempts to finish
        delivery_ids = await dispatcher.dispatch("deal.won", {"id": "d1"})

        # Fire and forget
        dispatcher.schedule("contact.created", {"id": "c1"})
        await dispatcher.drain()  # on shutdown
        ```
    """

    def __init__(
        self,
        storage: CourierStorage,
        executor: DeliveryExecutor | None = None,
        health: SubscriberHealthTracker | None = None,
        max_concurrent: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            storage: Storage for subscribers and delivery records.
            executor: Executor performing HTTP attempts.
            health: Tracker receiving attempt outcomes.
            max_concurrent: Maximum concurrent outbound attempts.
            clock: Source of "now" for retry scheduling.
        """
        self._storage = storage
        self._executor = executor or DeliveryExecutor(clock=clock)
        self._health = health or SubscriberHealthTracker(storage)
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._clock = clock
        self._background: set[asyncio.Task[list[str]]] = set()

    async def dispatch(self, event: str, data: Mapping[str, Any]) -> list[str]:
        """Deliver an event to all subscribers of it.

        Args:
            event: Event name from the catalog.
            data: JSON-serializable domain payload.

        Returns:
            IDs of the delivery records created, one per subscriber.

        Raises:
            ValidationError: If the event is not in the catalog.
        """
        if not is_known_event(event):
            raise ValidationError("event", f"unknown event {event!r}")

        subscribers = await self._storage.get_subscribers_for_event(event)
        if not subscribers:
            logger.debug("No subscribers for event", event_name=event)
            return []

        results = await asyncio.gather(
            *(self._deliver_to_subscriber(sub, event, data) for sub in subscribers),
            return_exceptions=True,
        )

        delivery_ids: list[str] = []
        for subscriber, result in zip(subscribers, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Webhook dispatch failed",
                    subscriber_id=subscriber.id,
                    event_name=event,
                    error=str(result),
                    exc_info=result,
                )
            else:
                delivery_ids.append(result)

        logger.info(
            "Event dispatched",
            event_name=event,
            subscribers=len(subscribers),
            deliveries=len(delivery_ids),
        )
        return delivery_ids

    def schedule(self, event: str, data: Mapping[str, Any]) -> asyncio.Task[list[str]]:
        """Dispatch in the background without waiting for attempts.

        A failure before any record is created (the subscriber lookup,
        for instance) is logged when the task finishes.

        Raises:
            ValidationError: If the event is not in the catalog.
        """
        if not is_known_event(event):
            raise ValidationError("event", f"unknown event {event!r}")

        task = asyncio.create_task(self.dispatch(event, dict(data)))
        self._background.add(task)
        task.add_done_callback(functools.partial(self._background_done, event))
        return task

    async def drain(self) -> None:
        """Wait for all background dispatches to finish."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _background_done(self, event: str, task: asyncio.Task[list[str]]) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("Background dispatch cancelled", event_name=event)
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background dispatch failed",
                event_name=event,
                error=str(error),
                exc_info=error,
            )

    async def _deliver_to_subscriber(
        self,
        subscriber: Subscriber,
        event: str,
        data: Mapping[str, Any],
    ) -> str:
        """Create the record, make the first attempt and persist its outcome.

        Returns:
            Delivery ID.
        """
        delivery_id = generate_id("dlv")
        with delivery_context(delivery_id=delivery_id, subscriber_id=subscriber.id):
            async with self._semaphore:
                now = self._clock()
                record = DeliveryRecord(
                    id=delivery_id,
                    subscriber_id=subscriber.id,
                    event=event,
                    payload=self._executor.build_envelope(
                        event, data, delivery_id=delivery_id, timestamp=now
                    ),
                    created_at=now,
                )
                await self._storage.create_delivery(record)

                outcome = await self._executor.send(
                    subscriber.to_target(), event, record.id, record.payload
                )

            next_retry_at = None
            if not outcome.success and subscriber.max_retries > 0:
                next_retry_at = self._clock() + timedelta(seconds=subscriber.retry_delay_seconds)

            record.apply_outcome(outcome, next_retry_at)
            await self._storage.save_attempt(
                record, DeliveryAttempt.from_outcome(record.id, 1, outcome)
            )
            await self._health.record(subscriber.id, outcome)

            if not outcome.success:
                logger.info(
                    "Webhook scheduled for retry" if next_retry_at else "Webhook failed",
                    event_name=event,
                    next_retry_at=next_retry_at.isoformat() if next_retry_at else None,
                )

        return record.id


async def dispatch_webhook_event(
    storage: CourierStorage,
    event: str,
    data: Mapping[str, Any] | None = None,
    **fields: Any,
) -> list[str]:
    """Convenience function to dispatch an event with a default dispatcher.

    Args:
        storage: Initialized CourierStorage.
        event: Event name from the catalog.
        data: Domain payload; keyword fields are merged into it.

    Returns:
        List of delivery IDs created.
    """
    payload = {**(data or {}), **fields}
    dispatcher = WebhookDispatcher(storage)
    return await dispatcher.dispatch(event, payload)


__all__ = ["WebhookDispatcher", "dispatch_webhook_event"]
