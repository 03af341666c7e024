"""Delivery record storage operations for Courier.

One record exists per (subscriber, event occurrence) and is updated in
place by every attempt; each attempt is also appended to the attempt
history table in the same transaction.

Retry workers coordinate only through this table: a record is claimed
with a conditional ``-> in_flight`` UPDATE, and the result is
written back only while the claim token still matches.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, or_, select, update

from courier.models import generate_id

from .retry import db_retry
from .tables import AttemptRow, DeliveryRow

if TYPE_CHECKING:
    from courier.models import DeliveryAttempt, DeliveryRecord, DeliveryStatus


class DeliveryMixin:
    """Mixin providing delivery record operations for CourierStorage.

    This mixin expects the following from the base class:
    - _transaction() -> async context manager yielding AsyncSession
    - _delivery_from_row(row) -> DeliveryRecord
    - _attempt_from_row(row) -> DeliveryAttempt
    """

    _transaction: Any
    _delivery_from_row: Any
    _attempt_from_row: Any

    async def create_delivery(self, record: DeliveryRecord) -> str:
        """Insert a new delivery record.

        Returns:
            The delivery ID.
        """
        async with self._transaction() as session:
            session.add(DeliveryRow(**record.model_dump(mode="python")))
        return record.id

    async def save_attempt(
        self,
        record: DeliveryRecord,
        attempt: DeliveryAttempt,
        claim_token: str | None = None,
    ) -> bool:
        """Write an attempt's outcome onto its record and append it to history.

        Args:
            record: Record carrying the updated latest-attempt fields.
            attempt: History entry for this attempt.
            claim_token: When set, the write only applies while the record
                is still in flight under this claim.

        Returns:
            False if the claim was lost and nothing was written.
        """
        conditions = [DeliveryRow.id == record.id]
        if claim_token is not None:
            conditions.append(DeliveryRow.status == "in_flight")
            conditions.append(DeliveryRow.claim_token == claim_token)

        stmt = (
            update(DeliveryRow)
            .where(*conditions)
            .values(
                status=record.status,
                status_code=record.status_code,
                response_body=record.response_body,
                error=record.error,
                error_kind=record.error_kind,
                sent_at=record.sent_at,
                latency_ms=record.latency_ms,
                retry_count=record.retry_count,
                next_retry_at=record.next_retry_at,
                claim_token=None,
                claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )

        async with self._transaction() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                return False
            session.add(AttemptRow(**attempt.model_dump(mode="python")))
        return True

    @db_retry
    async def get_delivery(self, delivery_id: str) -> DeliveryRecord | None:
        """Get a delivery record by ID."""
        async with self._transaction() as session:
            row = await session.get(DeliveryRow, delivery_id)
            if row is None:
                return None
            record: DeliveryRecord = self._delivery_from_row(row)
            return record

    @db_retry
    async def list_deliveries(
        self,
        subscriber_id: str | None = None,
        status: DeliveryStatus | None = None,
        event: str | None = None,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        """List delivery records, newest first.

        Args:
            subscriber_id: Optional subscriber filter.
            status: Optional status filter.
            event: Optional event name filter.
            limit: Maximum records to return.
        """
        stmt = select(DeliveryRow).order_by(DeliveryRow.created_at.desc()).limit(limit)
        if subscriber_id is not None:
            stmt = stmt.where(DeliveryRow.subscriber_id == subscriber_id)
        if status is not None:
            stmt = stmt.where(DeliveryRow.status == status)
        if event is not None:
            stmt = stmt.where(DeliveryRow.event == event)

        async with self._transaction() as session:
            result = await session.scalars(stmt)
            return [self._delivery_from_row(row) for row in result]

    @db_retry
    async def get_attempts(self, delivery_id: str) -> list[DeliveryAttempt]:
        """Get the attempt history of a delivery, oldest first."""
        stmt = (
            select(AttemptRow)
            .where(AttemptRow.delivery_id == delivery_id)
            .order_by(AttemptRow.attempt_number)
        )
        async with self._transaction() as session:
            result = await session.scalars(stmt)
            return [self._attempt_from_row(row) for row in result]

    @db_retry
    async def get_due_deliveries(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        """Get records ready for a retry attempt.

        Due records are failed ones whose next_retry_at has passed, plus
        abandoned ones: in-flight records claimed before stale_before and
        pending records created before it (the worker holding them is
        presumed dead).

        Args:
            now: Current time.
            stale_before: Claims older than this are abandoned.
            limit: Maximum records to return.

        Returns:
            Records ordered by next_retry_at, oldest first.
        """
        stmt = (
            select(DeliveryRow)
            .where(self._due_condition(now, stale_before))
            .order_by(DeliveryRow.next_retry_at)
            .limit(limit)
        )
        async with self._transaction() as session:
            result = await session.scalars(stmt)
            return [self._delivery_from_row(row) for row in result]

    async def claim_delivery(
        self,
        delivery_id: str,
        retry_count: int,
        now: datetime,
        stale_before: datetime,
    ) -> str | None:
        """Atomically move a due record to in_flight.

        Args:
            delivery_id: Record to claim.
            retry_count: The retry_count the caller observed. If another
                worker has retried the record since, the claim fails.
            now: Current time.
            stale_before: Claims older than this are abandoned.

        Returns:
            A claim token, or None if another worker got there first or the
            record is no longer due.
        """
        token = generate_id("clm")
        stmt = (
            update(DeliveryRow)
            .where(
                DeliveryRow.id == delivery_id,
                DeliveryRow.retry_count == retry_count,
                self._due_condition(now, stale_before),
            )
            .values(status="in_flight", claim_token=token, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            claimed = result.rowcount == 1
        return token if claimed else None

    async def expire_delivery(self, delivery_id: str, stale_before: datetime) -> bool:
        """Make a record terminal by clearing next_retry_at.

        Returns:
            False if the record was concurrently claimed or already terminal.
        """
        stmt = (
            update(DeliveryRow)
            .where(
                DeliveryRow.id == delivery_id,
                or_(
                    and_(DeliveryRow.status == "failed", DeliveryRow.next_retry_at.is_not(None)),
                    self._abandoned_condition(stale_before),
                ),
            )
            .values(status="failed", next_retry_at=None, claim_token=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            expired = result.rowcount == 1
        return bool(expired)

    @staticmethod
    def _due_condition(now: datetime, stale_before: datetime) -> Any:
        return or_(
            and_(
                DeliveryRow.status == "failed",
                DeliveryRow.next_retry_at.is_not(None),
                DeliveryRow.next_retry_at <= now,
            ),
            DeliveryMixin._abandoned_condition(stale_before),
        )

    @staticmethod
    def _abandoned_condition(stale_before: datetime) -> Any:
        # Claimed by a retry worker, or created by a dispatcher, that died
        return or_(
            and_(DeliveryRow.status == "in_flight", DeliveryRow.claimed_at < stale_before),
            and_(DeliveryRow.status == "pending", DeliveryRow.created_at < stale_before),
        )
