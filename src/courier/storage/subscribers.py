"""Subscriber storage operations for Courier.

Health counters are updated with single UPDATE statements so concurrent
workers never lose an increment or a reset.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, select, update

from courier.models import utcnow

from .retry import db_retry
from .tables import SubscriberRow

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from courier.models import Subscriber

# Fields an operator or management layer may change through update_subscriber
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "url",
        "secret",
        "events",
        "headers",
        "active",
        "max_retries",
        "retry_delay_seconds",
    }
)


class SubscriberMixin:
    """Mixin providing subscriber operations for CourierStorage.

    This mixin expects the following from the base class:
    - _transaction() -> async context manager yielding AsyncSession
    - _subscriber_from_row(row) -> Subscriber
    """

    _transaction: Any
    _subscriber_from_row: Any

    async def store_subscriber(self, subscriber: Subscriber) -> str:
        """Insert or replace a subscriber.

        Returns:
            The subscriber ID.
        """
        async with self._transaction() as session:
            await session.merge(
                SubscriberRow(**subscriber.model_dump(mode="python"))
            )
        return subscriber.id

    @db_retry
    async def get_subscriber(self, subscriber_id: str) -> Subscriber | None:
        """Get a subscriber by ID."""
        async with self._transaction() as session:
            row = await session.get(SubscriberRow, subscriber_id)
            if row is None:
                return None
            subscriber: Subscriber = self._subscriber_from_row(row)
            return subscriber

    @db_retry
    async def get_subscribers(self, subscriber_ids: Iterable[str]) -> dict[str, Subscriber]:
        """Load several subscribers at once, keyed by ID."""
        ids = list(set(subscriber_ids))
        if not ids:
            return {}
        async with self._transaction() as session:
            result = await session.scalars(
                select(SubscriberRow).where(SubscriberRow.id.in_(ids))
            )
            return {row.id: self._subscriber_from_row(row) for row in result}

    @db_retry
    async def list_subscribers(
        self,
        eligible_only: bool = False,
        owner_id: str | None = None,
        limit: int = 1000,
    ) -> list[Subscriber]:
        """List subscribers.

        Args:
            eligible_only: Only active, unpaused subscribers.
            owner_id: Optional owner filter.
            limit: Maximum subscribers to return.
        """
        stmt = select(SubscriberRow).order_by(SubscriberRow.created_at).limit(limit)
        if eligible_only:
            stmt = stmt.where(SubscriberRow.active.is_(True), SubscriberRow.paused.is_(False))
        if owner_id is not None:
            stmt = stmt.where(SubscriberRow.owner_id == owner_id)

        async with self._transaction() as session:
            result = await session.scalars(stmt)
            return [self._subscriber_from_row(row) for row in result]

    @db_retry
    async def get_subscribers_for_event(self, event: str) -> list[Subscriber]:
        """Get every active, unpaused subscriber of an event.

        Unbounded: dispatch must reach every eligible subscriber. The event
        list is a JSON column, so membership is checked after filtering on
        the indexed flags.
        """
        stmt = (
            select(SubscriberRow)
            .where(SubscriberRow.active.is_(True), SubscriberRow.paused.is_(False))
            .order_by(SubscriberRow.created_at)
        )
        async with self._transaction() as session:
            result = await session.scalars(stmt)
            subscribers = [self._subscriber_from_row(row) for row in result]
        return [sub for sub in subscribers if sub.subscribes_to(event)]

    async def update_subscriber(
        self,
        subscriber_id: str,
        **updates: Any,
    ) -> Subscriber | None:
        """Update configuration fields of a subscriber.

        Health fields (paused, failure_count, timestamps) are owned by the
        health tracker and resume_subscriber and cannot be set here.

        Raises:
            ValueError: If an unknown or protected field is passed.
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update subscriber fields: {', '.join(sorted(unknown))}")

        async with self._transaction() as session:
            row = await session.get(SubscriberRow, subscriber_id)
            if row is None:
                return None
            for key, value in updates.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            await session.flush()
            subscriber: Subscriber = self._subscriber_from_row(row)
            return subscriber

    async def record_subscriber_success(
        self, subscriber_id: str, at: datetime
    ) -> Subscriber | None:
        """Reset the consecutive-failure counter after a successful attempt."""
        stmt = (
            update(SubscriberRow)
            .where(SubscriberRow.id == subscriber_id)
            .values(failure_count=0, last_success_at=at, updated_at=at)
        )
        async with self._transaction() as session:
            return await self._execute_and_reload(session, stmt, subscriber_id)

    async def record_subscriber_failure(
        self, subscriber_id: str, at: datetime, threshold: int
    ) -> Subscriber | None:
        """Increment the failure counter, pausing once it reaches threshold."""
        stmt = (
            update(SubscriberRow)
            .where(SubscriberRow.id == subscriber_id)
            .values(
                failure_count=SubscriberRow.failure_count + 1,
                last_failure_at=at,
                paused=case(
                    (SubscriberRow.failure_count + 1 >= threshold, True),
                    else_=SubscriberRow.paused,
                ),
                updated_at=at,
            )
        )
        async with self._transaction() as session:
            return await self._execute_and_reload(session, stmt, subscriber_id)

    async def resume_subscriber(self, subscriber_id: str) -> Subscriber | None:
        """Clear the pause flag and failure counter (operator action)."""
        now = utcnow()
        stmt = (
            update(SubscriberRow)
            .where(SubscriberRow.id == subscriber_id)
            .values(paused=False, failure_count=0, updated_at=now)
        )
        async with self._transaction() as session:
            return await self._execute_and_reload(session, stmt, subscriber_id)

    async def delete_subscriber(self, subscriber_id: str) -> bool:
        """Delete a subscriber.

        Returns:
            True if deleted, False if not found.
        """
        async with self._transaction() as session:
            row = await session.get(SubscriberRow, subscriber_id)
            if row is None:
                return False
            await session.delete(row)
            return True

    async def _execute_and_reload(
        self, session: AsyncSession, stmt: Any, subscriber_id: str
    ) -> Subscriber | None:
        result = await session.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount == 0:
            return None
        row = await session.scalar(
            select(SubscriberRow)
            .where(SubscriberRow.id == subscriber_id)
            .execution_options(populate_existing=True)
        )
        if row is None:
            return None
        subscriber: Subscriber = self._subscriber_from_row(row)
        return subscriber
