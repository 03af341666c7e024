"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
import sys
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

from courier.models import Subscriber
from courier.storage import CourierStorage

# Add tests directory to path so test modules can import helpers from here
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

MEMORY_DB_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Controllable source of "now" for retry scheduling tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class RecordingTransport:
    """httpx transport that records requests and answers from a handler.

    The handler receives the request and returns an httpx.Response or
    raises an httpx exception. By default every request gets a 200.
    """

    def __init__(
        self, handler: Callable[[httpx.Request], httpx.Response] | None = None
    ) -> None:
        self.requests: list[httpx.Request] = []
        self.handler = handler or (lambda request: httpx.Response(200, text="ok"))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]


def make_subscriber(**overrides: Any) -> Subscriber:
    """Build a subscriber with sensible defaults."""
    fields: dict[str, Any] = {
        "name": "Test subscriber",
        "url": "https://hooks.example.com/webhook",
        "secret": "test-secret",
        "events": ["deal.won"],
        "max_retries": 3,
        "retry_delay_seconds": 60,
    }
    fields.update(overrides)
    return Subscriber(**fields)


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at 2024-01-01T12:00Z."""
    return FakeClock()


@pytest.fixture
def transport() -> RecordingTransport:
    """Transport answering 200 to every request."""
    return RecordingTransport()


@pytest_asyncio.fixture
async def storage() -> AsyncIterator[CourierStorage]:
    """Initialized in-memory storage."""
    store = CourierStorage(url=MEMORY_DB_URL)
    await store.initialize()
    yield store
    await store.close()
