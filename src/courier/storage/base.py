"""Base storage class and helpers.

Contains engine lifecycle, session handling and row/model conversion.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from courier.config import settings
from courier.exceptions import StorageError
from courier.models import DeliveryAttempt, DeliveryRecord, Subscriber

from .tables import AttemptRow, Base, DeliveryRow, SubscriberRow


class StorageBase:
    """Base class for Courier storage with initialization and helpers.

    Provides:
    - Engine creation, schema creation and disposal
    - Transactional sessions with error translation
    - Row <-> model conversion
    """

    def __init__(
        self,
        url: str | None = None,
        echo: bool | None = None,
    ) -> None:
        """Initialize storage.

        Args:
            url: SQLAlchemy async URL. Defaults to settings.database_url.
            echo: Log SQL statements. Defaults to settings.database_echo.
        """
        self._url = url or settings.database_url
        self._echo = settings.database_echo if echo is None else echo
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None
        # SQLite allows a single writer; transactions are serialized in-process
        self._sqlite_lock: asyncio.Lock | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get the engine, raising if not initialized."""
        if self._engine is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._engine

    @property
    def is_sqlite(self) -> bool:
        return self._url.startswith("sqlite")

    async def initialize(self) -> None:
        """Create the engine and ensure tables exist."""
        kwargs: dict[str, Any] = {"echo": self._echo}
        if self.is_sqlite and ":memory:" in self._url:
            # In-memory SQLite lives on one connection
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        elif not self.is_sqlite:
            kwargs["pool_pre_ping"] = True

        self._engine = create_async_engine(self._url, **kwargs)
        self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)
        if self.is_sqlite:
            self._sqlite_lock = asyncio.Lock()

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine and its connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None

    async def __aenter__(self) -> StorageBase:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a session inside a transaction, committing on success.

        Raises:
            StorageError: Wrapping any SQLAlchemy failure.
        """
        if self._sessionmaker is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")

        lock = self._sqlite_lock
        if lock is not None:
            await lock.acquire()
        try:
            async with self._sessionmaker() as session, session.begin():
                yield session
        except OperationalError as e:
            raise StorageError(f"Database unavailable: {e}", transient=True) from e
        except DBAPIError as e:
            raise StorageError(
                f"Database error: {e}", transient=bool(e.connection_invalidated)
            ) from e
        except SQLAlchemyError as e:
            raise StorageError(f"Database error: {e}") from e
        finally:
            if lock is not None:
                lock.release()

    @staticmethod
    def _subscriber_from_row(row: SubscriberRow) -> Subscriber:
        return Subscriber(
            id=row.id,
            name=row.name,
            description=row.description,
            url=row.url,
            secret=row.secret,
            events=list(row.events or []),
            headers=dict(row.headers or {}),
            active=row.active,
            paused=row.paused,
            failure_count=row.failure_count,
            max_retries=row.max_retries,
            retry_delay_seconds=row.retry_delay_seconds,
            last_success_at=row.last_success_at,
            last_failure_at=row.last_failure_at,
            owner_id=row.owner_id,
            organization_id=row.organization_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _delivery_from_row(row: DeliveryRow) -> DeliveryRecord:
        return DeliveryRecord(
            id=row.id,
            subscriber_id=row.subscriber_id,
            event=row.event,
            payload=row.payload,
            status=row.status,  # type: ignore[arg-type]
            status_code=row.status_code,
            response_body=row.response_body,
            error=row.error,
            error_kind=row.error_kind,  # type: ignore[arg-type]
            sent_at=row.sent_at,
            latency_ms=row.latency_ms,
            retry_count=row.retry_count,
            next_retry_at=row.next_retry_at,
            claim_token=row.claim_token,
            claimed_at=row.claimed_at,
            created_at=row.created_at,
        )

    @staticmethod
    def _attempt_from_row(row: AttemptRow) -> DeliveryAttempt:
        return DeliveryAttempt(
            id=row.id,
            delivery_id=row.delivery_id,
            attempt_number=row.attempt_number,
            success=row.success,
            status_code=row.status_code,
            response_body=row.response_body,
            error=row.error,
            error_kind=row.error_kind,  # type: ignore[arg-type]
            latency_ms=row.latency_ms,
            attempted_at=row.attempted_at,
        )
