"""Subscriber health tracking and circuit breaking.

Every attempt outcome, initial or retried, is reported here. A success
resets the subscriber's consecutive-failure counter; a failure increments
it, and the failure that brings it to the threshold pauses the subscriber.
A paused subscriber receives no dispatches or retries until an operator
resumes it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from courier.exceptions import CircuitOpen
from courier.logging import get_logger
from courier.models import CIRCUIT_BREAKER_THRESHOLD

if TYPE_CHECKING:
    from courier.models import DeliveryOutcome, Subscriber
    from courier.storage import CourierStorage

logger = get_logger(__name__)


class SubscriberHealthTracker:
    """Applies attempt outcomes to subscriber health state."""

    def __init__(
        self,
        storage: CourierStorage,
        threshold: int = CIRCUIT_BREAKER_THRESHOLD,
    ) -> None:
        """Initialize the tracker.

        Args:
            storage: Storage holding subscriber rows.
            threshold: Consecutive failures that open the circuit.
        """
        self._storage = storage
        self._threshold = threshold

    @property
    def threshold(self) -> int:
        return self._threshold

    async def record(self, subscriber_id: str, outcome: DeliveryOutcome) -> Subscriber | None:
        """Apply one attempt outcome. Returns the updated subscriber."""
        if outcome.success:
            return await self.record_success(subscriber_id, outcome)
        return await self.record_failure(subscriber_id, outcome)

    async def record_success(
        self, subscriber_id: str, outcome: DeliveryOutcome
    ) -> Subscriber | None:
        """Reset the failure counter and stamp last_success_at."""
        return await self._storage.record_subscriber_success(
            subscriber_id, at=outcome.attempted_at
        )

    async def record_failure(
        self, subscriber_id: str, outcome: DeliveryOutcome
    ) -> Subscriber | None:
        """Increment the failure counter, opening the circuit at the threshold."""
        subscriber = await self._storage.record_subscriber_failure(
            subscriber_id, at=outcome.attempted_at, threshold=self._threshold
        )
        if subscriber is None:
            return None

        # Exactly one increment lands on the threshold
        if subscriber.paused and subscriber.failure_count == self._threshold:
            circuit = CircuitOpen(subscriber.id, subscriber.failure_count)
            logger.warning(
                "Subscriber paused",
                subscriber_id=subscriber.id,
                url=subscriber.url,
                failure_count=subscriber.failure_count,
                code=circuit.code,
            )
        return subscriber

    async def resume(self, subscriber_id: str) -> Subscriber | None:
        """Close the circuit: clear the pause flag and reset the counter."""
        subscriber = await self._storage.resume_subscriber(subscriber_id)
        if subscriber is not None:
            logger.info("Subscriber resumed", subscriber_id=subscriber_id)
        return subscriber


__all__ = ["SubscriberHealthTracker"]
