"""Retry policy for idempotent storage reads.

Transient database errors (dropped connections, SQLite lock contention)
are retried with exponential backoff. Writes that change counters or
claim records are never decorated, since replaying them is not safe.
"""

from __future__ import annotations

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from courier.exceptions import StorageError
from courier.logging import get_logger

logger = get_logger(__name__)

MAX_ATTEMPTS = 3


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, StorageError) and exc.transient


def _warn_before_sleep(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(
        "Storage read failed, retrying",
        operation=getattr(state.fn, "__name__", "unknown"),
        attempt=state.attempt_number,
        max_attempts=MAX_ATTEMPTS,
        sleep_seconds=round(state.next_action.sleep, 3) if state.next_action else None,
        error=str(error) if error else None,
    )


db_retry = retry(
    stop=stop_after_attempt(MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception(_is_transient),
    before_sleep=_warn_before_sleep,
    reraise=True,
)
