"""Periodic re-delivery of failed webhook attempts with linear backoff.

An external trigger (cron, the operator API) calls ``run_once``. Each run
selects up to ``batch_size`` due records and, for every one whose
subscriber is still active and unpaused, either marks it exhausted or
claims it, resends the stored envelope and schedules the next retry.

Backoff is linear: after the k-th retry fails the record becomes due
again ``retry_delay_seconds * k`` later.

Several schedulers may run at once (overlapping cron ticks, replicas);
the conditional claim in storage guarantees a due record is resent by
at most one of them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

from courier.exceptions import CircuitOpen, ExhaustedRetries
from courier.logging import delivery_context, get_logger
from courier.models import DeliveryAttempt, utcnow

from .executor import DeliveryExecutor
from .health import SubscriberHealthTracker

if TYPE_CHECKING:
    from courier.models import DeliveryRecord, Subscriber
    from courier.storage import CourierStorage

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_CLAIM_TIMEOUT_SECONDS = 300

RetryResult = Literal["succeeded", "failed", "exhausted", "skipped", "conflict"]


def linear_backoff(base_delay_seconds: int, retry_number: int) -> timedelta:
    """Delay before the attempt following retry number ``retry_number``.

    Examples:
        linear_backoff(60, 1) -> 60s
        linear_backoff(60, 3) -> 180s
    """
    return timedelta(seconds=base_delay_seconds * retry_number)


class RetryRunSummary(BaseModel):
    """Counts from one scheduler run.

    Attributes:
        scanned: Due records selected.
        retried: Records resent to the subscriber.
        succeeded: Retries that got a 2xx.
        failed: Retries that failed again.
        exhausted: Records made terminal, before or after a final retry.
        skipped: Records left untouched because the subscriber is
            inactive, paused or gone.
        conflicts: Records claimed or changed by another worker.
        errors: Records whose processing raised unexpectedly.
    """

    model_config = ConfigDict(extra="forbid")

    scanned: int = Field(default=0, ge=0)
    retried: int = Field(default=0, ge=0)
    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    exhausted: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    conflicts: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)

    def add(self, result: RetryResult, resent: bool) -> None:
        if resent:
            self.retried += 1
        if result == "succeeded":
            self.succeeded += 1
        elif result == "failed":
            self.failed += 1
        elif result == "exhausted":
            self.exhausted += 1
            if resent:
                self.failed += 1
        elif result == "skipped":
            self.skipped += 1
        else:
            self.conflicts += 1


class RetryScheduler:
    """Re-attempts due failed deliveries.

    Example:
        ```python
        scheduler = RetryScheduler(storage)
        summary = await scheduler.run_once()
        print(summary.retried, summary.exhausted)
        ```
    """

    def __init__(
        self,
        storage: CourierStorage,
        executor: DeliveryExecutor | None = None,
        health: SubscriberHealthTracker | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrent: int = 10,
        claim_timeout_seconds: int = DEFAULT_CLAIM_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the scheduler.

        Args:
            storage: Storage for subscribers and delivery records.
            executor: Executor performing HTTP attempts.
            health: Tracker receiving attempt outcomes.
            batch_size: Maximum records per run.
            max_concurrent: Maximum concurrent outbound attempts.
            claim_timeout_seconds: Age after which an in-flight claim is
                treated as abandoned and the record becomes due again.
            clock: Source of "now".
        """
        self._storage = storage
        self._executor = executor or DeliveryExecutor(clock=clock)
        self._health = health or SubscriberHealthTracker(storage)
        self._batch_size = batch_size
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._claim_timeout = timedelta(seconds=claim_timeout_seconds)
        self._clock = clock

    async def run_once(self) -> RetryRunSummary:
        """Process one batch of due deliveries.

        Returns:
            Counts of what happened to each selected record.
        """
        now = self._clock()
        stale_before = now - self._claim_timeout

        records = await self._storage.get_due_deliveries(
            now=now, stale_before=stale_before, limit=self._batch_size
        )
        summary = RetryRunSummary(scanned=len(records))
        if not records:
            return summary

        subscribers = await self._storage.get_subscribers(r.subscriber_id for r in records)

        results = await asyncio.gather(
            *(
                self._process(record, subscribers.get(record.subscriber_id), now, stale_before)
                for record in records
            ),
            return_exceptions=True,
        )

        for record, result in zip(records, results, strict=True):
            if isinstance(result, BaseException):
                summary.errors += 1
                logger.error(
                    "Webhook retry failed",
                    delivery_id=record.id,
                    subscriber_id=record.subscriber_id,
                    error=str(result),
                    exc_info=result,
                )
            else:
                outcome, resent = result
                summary.add(outcome, resent)

        logger.info("Retry run finished", **summary.model_dump())
        return summary

    async def _process(
        self,
        record: DeliveryRecord,
        subscriber: Subscriber | None,
        now: datetime,
        stale_before: datetime,
    ) -> tuple[RetryResult, bool]:
        """Handle one due record.

        Returns:
            The result and whether an HTTP attempt was made.
        """
        with delivery_context(delivery_id=record.id, subscriber_id=record.subscriber_id):
            if subscriber is None or not subscriber.is_eligible:
                self._log_skip(record, subscriber)
                return "skipped", False

            if record.retry_count >= subscriber.max_retries:
                if await self._storage.expire_delivery(record.id, stale_before):
                    self._log_exhausted(record.id, record.retry_count)
                    return "exhausted", False
                return "conflict", False

            async with self._semaphore:
                token = await self._storage.claim_delivery(
                    record.id, record.retry_count, now, stale_before
                )
                if token is None:
                    logger.debug("Delivery claimed by another worker")
                    return "conflict", False

                outcome = await self._executor.send(
                    subscriber.to_target(), record.event, record.id, record.payload
                )

            retry_number = record.retry_count + 1
            exhausted = not outcome.success and retry_number >= subscriber.max_retries
            next_retry_at = None
            if not outcome.success and not exhausted:
                next_retry_at = self._clock() + linear_backoff(
                    subscriber.retry_delay_seconds, retry_number
                )

            record.retry_count = retry_number
            record.apply_outcome(outcome, next_retry_at)
            attempt = DeliveryAttempt.from_outcome(record.id, retry_number + 1, outcome)
            saved = await self._storage.save_attempt(record, attempt, claim_token=token)

            # The attempt happened either way; health reflects the endpoint
            await self._health.record(subscriber.id, outcome)

            if not saved:
                logger.warning("Delivery claim lost before result was saved")
                return "conflict", True
            if outcome.success:
                return "succeeded", True
            if exhausted:
                self._log_exhausted(record.id, retry_number)
                return "exhausted", True

            logger.info(
                "Webhook retry scheduled",
                retry_count=retry_number,
                next_retry_at=next_retry_at.isoformat() if next_retry_at else None,
            )
            return "failed", True

    @staticmethod
    def _log_skip(record: DeliveryRecord, subscriber: Subscriber | None) -> None:
        if subscriber is None:
            logger.debug("Skipping retry: subscriber not found")
        elif subscriber.paused:
            circuit = CircuitOpen(subscriber.id, subscriber.failure_count)
            logger.debug("Skipping retry: circuit open", code=circuit.code)
        else:
            logger.debug("Skipping retry: subscriber inactive")

    @staticmethod
    def _log_exhausted(delivery_id: str, retry_count: int) -> None:
        exhausted = ExhaustedRetries(delivery_id, retry_count)
        logger.warning(exhausted.message, code=exhausted.code, retry_count=retry_count)


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CLAIM_TIMEOUT_SECONDS",
    "RetryRunSummary",
    "RetryScheduler",
    "linear_backoff",
]
