#!/usr/bin/env python3
"""Quickstart demo - dispatch, signature verification and retry.

Demonstrates:
- register_subscriber(): signed and unsigned endpoints
- dispatch(): fan-out of one event, first attempts awaited
- verify(): what a receiver does with X-Webhook-Signature
- process_retries(): linear backoff after a failed attempt

The subscriber endpoints are simulated in-process with httpx.MockTransport,
and time is advanced with a manual clock, so no server or waiting is needed.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx

from courier import verify
from courier.config import Settings
from courier.service import CourierService

SECRET = "demo-shared-secret"


class ManualClock:
    def __init__(self) -> None:
        self.now = datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now


def receiver(request: httpx.Request) -> httpx.Response:
    """Simulated subscribers. The flaky one fails its first attempt."""
    signature = request.headers.get("X-Webhook-Signature")
    signed = "unsigned"
    if signature is not None:
        signed = f"valid={verify(request.content, signature, SECRET)}"
    print(f"  <- {request.url.host}: {request.headers['X-Webhook-Event']} ({signed})")

    if request.url.host == "flaky.example.com":
        receiver.flaky_calls += 1  # type: ignore[attr-defined]
        if receiver.flaky_calls == 1:  # type: ignore[attr-defined]
            return httpx.Response(503, text="warming up")
    return httpx.Response(200, text="ok")


receiver.flaky_calls = 0  # type: ignore[attr-defined]


async def main() -> None:
    clock = ManualClock()
    settings = Settings(database_url="sqlite+aiosqlite:///:memory:", log_level="WARNING")

    async with httpx.AsyncClient(transport=httpx.MockTransport(receiver)) as client:
        async with CourierService.create(settings, http_client=client, clock=clock) as courier:
            await courier.register_subscriber(
                name="Billing",
                url="https://billing.example.com/hooks",
                events=["deal.won"],
                secret=SECRET,
            )
            await courier.register_subscriber(
                name="Analytics",
                url="https://flaky.example.com/hooks",
                events=["deal.won", "deal.lost"],
                secret=SECRET,
                retry_delay_seconds=60,
            )
            await courier.register_subscriber(
                name="Chat notifier",
                url="https://chat.example.com/hooks",
                events=["deal.won"],
            )

            print("Dispatching deal.won")
            delivery_ids = await courier.dispatch("deal.won", {"id": "d1", "amount": 12000})

            for delivery_id in delivery_ids:
                record, _ = await courier.get_delivery(delivery_id)
                print(f"  {delivery_id}: {record.status} (next retry: {record.next_retry_at})")

            print("\nOne minute later, the retry scan runs")
            clock.now += timedelta(seconds=60)
            summary = await courier.process_retries()
            print(f"  retried={summary.retried} succeeded={summary.succeeded}")

            failed = await courier.list_deliveries(status="failed")
            print(f"  failed deliveries remaining: {len(failed)}")


if __name__ == "__main__":
    asyncio.run(main())
