"""SQL storage client for Courier.

This module provides the CourierStorage class that combines subscriber
and delivery operations through mixins.

Example:
    ```python
    from courier.storage import CourierStorage

    async with CourierStorage("sqlite+aiosqlite:///./courier.db") as storage:
        await storage.store_subscriber(subscriber)
        due = await storage.get_due_deliveries(now, stale_before=now)
    ```
"""

from __future__ import annotations

from .base import StorageBase
from .deliveries import DeliveryMixin
from .subscribers import SubscriberMixin


class CourierStorage(SubscriberMixin, DeliveryMixin, StorageBase):
    """Async SQL storage for subscribers, delivery records and attempts.

    Works with any SQLAlchemy async driver; SQLite (aiosqlite) for
    development and tests, PostgreSQL (asyncpg) for deployments running
    several dispatch or retry workers.
    """


__all__ = ["CourierStorage"]
