"""Tests for periodic retry of failed deliveries."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest

from courier.models import DeliveryRecord
from courier.storage import CourierStorage
from courier.webhooks import (
    DeliveryExecutor,
    RetryRunSummary,
    RetryScheduler,
    SubscriberHealthTracker,
    WebhookDispatcher,
    linear_backoff,
)
from courier.webhooks.executor import DELIVERY_HEADER
from courier.webhooks.signing import SIGNATURE_HEADER, verify

from conftest import FakeClock, RecordingTransport, make_subscriber


def make_scheduler(
    storage: CourierStorage, client: httpx.AsyncClient, clock: FakeClock, **kwargs: object
) -> RetryScheduler:
    return RetryScheduler(
        storage,
        executor=DeliveryExecutor(client=client, clock=clock),
        health=SubscriberHealthTracker(storage),
        clock=clock,
        **kwargs,  # type: ignore[arg-type]
    )


def make_dispatcher(
    storage: CourierStorage, client: httpx.AsyncClient, clock: FakeClock
) -> WebhookDispatcher:
    return WebhookDispatcher(
        storage,
        executor=DeliveryExecutor(client=client, clock=clock),
        health=SubscriberHealthTracker(storage),
        clock=clock,
    )


async def store_due_record(
    storage: CourierStorage, subscriber_id: str, clock: FakeClock, retry_count: int = 0
) -> DeliveryRecord:
    record = DeliveryRecord(
        subscriber_id=subscriber_id,
        event="deal.won",
        payload=b'{"deliveryId":"x","event":"deal.won","data":{}}',
        status="failed",
        status_code=500,
        retry_count=retry_count,
        next_retry_at=clock.now,
    )
    await storage.create_delivery(record)
    return record


class TestLinearBackoff:
    """Tests for linear_backoff()."""

    @pytest.mark.parametrize(("retry_number", "seconds"), [(1, 60), (2, 120), (3, 180)])
    def test_grows_linearly(self, retry_number: int, seconds: int) -> None:
        assert linear_backoff(60, retry_number) == timedelta(seconds=seconds)


class TestRetryRunSummary:
    """Tests for summary accounting."""

    def test_exhausted_after_resend_counts_as_failed(self) -> None:
        summary = RetryRunSummary()
        summary.add("exhausted", resent=True)
        summary.add("exhausted", resent=False)
        summary.add("succeeded", resent=True)
        summary.add("conflict", resent=False)
        summary.add("skipped", resent=False)

        assert summary.retried == 2
        assert summary.exhausted == 2
        assert summary.failed == 1
        assert summary.succeeded == 1
        assert summary.conflicts == 1
        assert summary.skipped == 1


class TestRetryScheduler:
    """Tests for RetryScheduler against in-memory storage."""

    @pytest.mark.asyncio
    async def test_backoff_progression_until_exhausted(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        """maxRetries=3, delay 60s: retries at +60, +120, +240, then terminal."""
        subscriber = make_subscriber(max_retries=3, retry_delay_seconds=60)
        await storage.store_subscriber(subscriber)
        start = clock.now
        transport = RecordingTransport(lambda r: httpx.Response(500, text="down"))

        async with transport.client() as client:
            [delivery_id] = await make_dispatcher(storage, client, clock).dispatch(
                "deal.won", {"id": "d1"}
            )
            scheduler = make_scheduler(storage, client, clock)

            record = await storage.get_delivery(delivery_id)
            assert record is not None
            assert (record.retry_count, record.next_retry_at) == (0, start + timedelta(seconds=60))

            # Not yet due
            clock.advance(59)
            assert (await scheduler.run_once()).scanned == 0

            clock.advance(1)
            summary = await scheduler.run_once()
            assert (summary.retried, summary.failed) == (1, 1)
            record = await storage.get_delivery(delivery_id)
            assert record is not None
            assert record.retry_count == 1
            assert record.next_retry_at == start + timedelta(seconds=120)

            clock.advance(60)
            await scheduler.run_once()
            record = await storage.get_delivery(delivery_id)
            assert record is not None
            assert record.retry_count == 2
            assert record.next_retry_at == start + timedelta(seconds=240)

            clock.advance(120)
            summary = await scheduler.run_once()
            assert summary.exhausted == 1
            record = await storage.get_delivery(delivery_id)
            assert record is not None
            assert record.retry_count == 3
            assert record.next_retry_at is None
            assert record.status == "failed"
            assert record.is_terminal

            clock.advance(10_000)
            assert (await scheduler.run_once()).scanned == 0

        assert len(transport.requests) == 4
        attempts = await storage.get_attempts(delivery_id)
        assert [a.attempt_number for a in attempts] == [1, 2, 3, 4]
        assert all(a.status_code == 500 for a in attempts)

    @pytest.mark.asyncio
    async def test_retry_resends_frozen_envelope(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        """The retry body and delivery ID should be identical to the first attempt."""
        await storage.store_subscriber(make_subscriber(secret="s3cret"))
        responses = iter([httpx.Response(500), httpx.Response(200, text="ok")])
        transport = RecordingTransport(lambda r: next(responses))

        async with transport.client() as client:
            [delivery_id] = await make_dispatcher(storage, client, clock).dispatch(
                "deal.won", {"id": "d1"}
            )
            clock.advance(60)
            summary = await make_scheduler(storage, client, clock).run_once()

        assert summary.succeeded == 1
        first, retry = transport.requests
        assert retry.content == first.content
        assert retry.headers[DELIVERY_HEADER] == first.headers[DELIVERY_HEADER] == delivery_id
        assert verify(retry.content, retry.headers[SIGNATURE_HEADER], "s3cret")

        record = await storage.get_delivery(delivery_id)
        assert record is not None
        assert record.status == "success"
        assert record.retry_count == 1
        assert record.next_retry_at is None

    @pytest.mark.asyncio
    async def test_paused_subscriber_records_untouched(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        """Due records of paused or inactive subscribers are skipped as-is."""
        paused = make_subscriber(paused=True, failure_count=10)
        inactive = make_subscriber(active=False)
        await storage.store_subscriber(paused)
        await storage.store_subscriber(inactive)
        paused_record = await store_due_record(storage, paused.id, clock, retry_count=1)
        inactive_record = await store_due_record(storage, inactive.id, clock)
        transport = RecordingTransport()

        async with transport.client() as client:
            summary = await make_scheduler(storage, client, clock).run_once()

        assert summary.scanned == 2
        assert summary.skipped == 2
        assert transport.requests == []
        for original in (paused_record, inactive_record):
            stored = await storage.get_delivery(original.id)
            assert stored is not None
            assert stored.retry_count == original.retry_count
            assert stored.next_retry_at == original.next_retry_at
            assert stored.status == "failed"

    @pytest.mark.asyncio
    async def test_resumed_subscriber_gets_pending_retries(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        subscriber = make_subscriber(paused=True, failure_count=10)
        await storage.store_subscriber(subscriber)
        await store_due_record(storage, subscriber.id, clock)
        await storage.resume_subscriber(subscriber.id)
        transport = RecordingTransport()

        async with transport.client() as client:
            summary = await make_scheduler(storage, client, clock).run_once()

        assert summary.succeeded == 1
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_retry_count_at_limit_expires_without_post(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        """A due record already at max_retries is made terminal, not resent."""
        subscriber = make_subscriber(max_retries=1)
        await storage.store_subscriber(subscriber)
        record = await store_due_record(storage, subscriber.id, clock, retry_count=2)
        transport = RecordingTransport()

        async with transport.client() as client:
            summary = await make_scheduler(storage, client, clock).run_once()

        assert summary.exhausted == 1
        assert summary.retried == 0
        assert transport.requests == []
        stored = await storage.get_delivery(record.id)
        assert stored is not None
        assert stored.next_retry_at is None
        assert stored.retry_count == 2

    @pytest.mark.asyncio
    async def test_retry_failures_count_toward_circuit(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        subscriber = make_subscriber(failure_count=9)
        await storage.store_subscriber(subscriber)
        await store_due_record(storage, subscriber.id, clock)
        transport = RecordingTransport(lambda r: httpx.Response(500))

        async with transport.client() as client:
            await make_scheduler(storage, client, clock).run_once()

        stored = await storage.get_subscriber(subscriber.id)
        assert stored is not None
        assert stored.failure_count == 10
        assert stored.paused is True

    @pytest.mark.asyncio
    async def test_concurrent_runs_send_once(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        """Two overlapping scans must not both resend the same record."""
        subscriber = make_subscriber()
        await storage.store_subscriber(subscriber)
        await store_due_record(storage, subscriber.id, clock)
        transport = RecordingTransport()

        async with transport.client() as client:
            first, second = await asyncio.gather(
                make_scheduler(storage, client, clock).run_once(),
                make_scheduler(storage, client, clock).run_once(),
            )

        assert len(transport.requests) == 1
        assert first.retried + second.retried == 1

    @pytest.mark.asyncio
    async def test_claim_conflict_is_skipped(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        """A record claimed after selection is reported as a conflict."""
        subscriber = make_subscriber()
        await storage.store_subscriber(subscriber)
        record = await store_due_record(storage, subscriber.id, clock)
        transport = RecordingTransport()
        original_get_due = storage.get_due_deliveries

        async def get_due_then_steal(**kwargs: object) -> list[DeliveryRecord]:
            records = await original_get_due(**kwargs)  # type: ignore[arg-type]
            await storage.claim_delivery(
                record.id, 0, clock.now, clock.now - timedelta(seconds=300)
            )
            return records

        storage.get_due_deliveries = get_due_then_steal  # type: ignore[method-assign]

        async with transport.client() as client:
            summary = await make_scheduler(storage, client, clock).run_once()

        assert summary.conflicts == 1
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_retry_done_elsewhere_is_not_resent(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        """A worker with a fast clock must not repeat a retry another worker made."""
        subscriber = make_subscriber(max_retries=5)
        await storage.store_subscriber(subscriber)
        record = await store_due_record(storage, subscriber.id, clock, retry_count=1)
        transport = RecordingTransport(lambda request: httpx.Response(500, text="down"))
        fast_clock = FakeClock(clock.now + timedelta(seconds=1000))
        original_get_due = storage.get_due_deliveries
        stolen = False

        async with transport.client() as client:
            other_worker = make_scheduler(storage, client, clock)

            async def get_due_then_retry_elsewhere(**kwargs: object) -> list[DeliveryRecord]:
                nonlocal stolen
                records = await original_get_due(**kwargs)  # type: ignore[arg-type]
                if not stolen:
                    stolen = True
                    assert (await other_worker.run_once()).retried == 1
                return records

            storage.get_due_deliveries = get_due_then_retry_elsewhere  # type: ignore[method-assign]
            summary = await make_scheduler(storage, client, fast_clock).run_once()

        assert summary.conflicts == 1
        assert summary.retried == 0
        assert len(transport.requests) == 1
        stored = await storage.get_delivery(record.id)
        assert stored is not None
        assert stored.retry_count == 2
        assert stored.next_retry_at == clock.now + timedelta(seconds=120)
        attempts = await storage.get_attempts(record.id)
        assert [a.attempt_number for a in attempts] == [3]

    @pytest.mark.asyncio
    async def test_stale_claim_is_reclaimed(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        """An in-flight record whose worker died becomes due after the timeout."""
        subscriber = make_subscriber()
        await storage.store_subscriber(subscriber)
        record = await store_due_record(storage, subscriber.id, clock)
        token = await storage.claim_delivery(
            record.id, 0, clock.now, clock.now - timedelta(seconds=300)
        )
        assert token is not None
        transport = RecordingTransport()

        async with transport.client() as client:
            scheduler = make_scheduler(storage, client, clock, claim_timeout_seconds=300)

            clock.advance(299)
            assert (await scheduler.run_once()).scanned == 0

            clock.advance(2)
            summary = await scheduler.run_once()

        assert summary.succeeded == 1
        stored = await storage.get_delivery(record.id)
        assert stored is not None
        assert stored.status == "success"
        assert stored.retry_count == 1
        assert stored.claim_token is None

    @pytest.mark.asyncio
    async def test_batch_size_limits_run(
        self, storage: CourierStorage, clock: FakeClock
    ) -> None:
        subscriber = make_subscriber()
        await storage.store_subscriber(subscriber)
        for _ in range(5):
            await store_due_record(storage, subscriber.id, clock)
        transport = RecordingTransport()

        async with transport.client() as client:
            scheduler = make_scheduler(storage, client, clock, batch_size=2)
            summary = await scheduler.run_once()
            assert summary.scanned == 2

            summary = await scheduler.run_once()
            assert summary.scanned == 2

        assert len(transport.requests) == 4
