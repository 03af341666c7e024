"""Single-attempt webhook delivery over HTTP.

The executor builds and signs the envelope, POSTs it once with a bounded
timeout, and turns whatever happens into a DeliveryOutcome. It never
raises past its boundary and never touches storage; persistence and
subscriber health are the caller's job.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from courier.exceptions import (
    ApplicationError,
    ConfigurationError,
    DeliveryError,
    TransportError,
)
from courier.logging import get_logger
from courier.models import (
    RESPONSE_BODY_LIMIT,
    DeliveryOutcome,
    Envelope,
    generate_id,
    utcnow,
)

from .signing import SIGNATURE_HEADER, sign

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

EVENT_HEADER = "X-Webhook-Event"
DELIVERY_HEADER = "X-Webhook-Delivery"

# Set by the engine; subscriber headers with these names are dropped
RESERVED_HEADERS = frozenset(
    name.lower() for name in ("Content-Type", EVENT_HEADER, DELIVERY_HEADER, SIGNATURE_HEADER)
)


class DeliveryTarget(BaseModel):
    """Connection info for one subscriber endpoint."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    url: str
    secret: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)


def validate_target_url(raw: str) -> httpx.URL:
    """Parse a subscriber URL, rejecting anything that is not absolute http(s).

    Raises:
        ConfigurationError: If the URL is malformed.
    """
    try:
        url = httpx.URL(raw)
    except (httpx.InvalidURL, TypeError) as e:
        raise ConfigurationError(f"Invalid subscriber URL {raw!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"Invalid subscriber URL {raw!r}: expected absolute http(s) URL")
    return url


class DeliveryExecutor:
    """Performs one bounded-timeout POST and normalizes the result.

    Example:
        ```python
        executor = DeliveryExecutor()
        outcome = await executor.deliver(subscriber.to_target(), "deal.won", {"id": "d1"})
        if not outcome.success:
            print(outcome.error_kind, outcome.error)
        ```
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
        response_body_limit: int = RESPONSE_BODY_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the executor.

        Args:
            timeout_seconds: Timeout applied to every POST.
            client: Shared HTTP client. A short-lived client is created per
                attempt when omitted.
            response_body_limit: Characters of response body kept.
            clock: Source of attempt timestamps.
        """
        self._timeout = timeout_seconds
        self._client = client
        self._body_limit = response_body_limit
        self._clock = clock

    def build_envelope(
        self,
        event: str,
        data: Mapping[str, Any],
        delivery_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> bytes:
        """Serialize the envelope exactly as it will be transmitted."""
        envelope = Envelope(
            delivery_id=delivery_id or generate_id("dlv"),
            event=event,
            timestamp=timestamp or self._clock(),
            data=dict(data),
        )
        return envelope.to_bytes()

    def build_headers(
        self,
        target: DeliveryTarget,
        event: str,
        delivery_id: str,
        body: bytes,
    ) -> dict[str, str]:
        """Merge custom headers beneath the reserved webhook headers.

        Reserved names are matched case-insensitively, so a subscriber
        cannot override or forge them.
        """
        headers = {
            name: value
            for name, value in target.headers.items()
            if name.lower() not in RESERVED_HEADERS
        }
        headers["Content-Type"] = "application/json"
        headers[EVENT_HEADER] = event
        headers[DELIVERY_HEADER] = delivery_id
        if target.secret:
            headers[SIGNATURE_HEADER] = sign(body, target.secret)
        return headers

    async def deliver(
        self,
        target: DeliveryTarget,
        event: str,
        data: Mapping[str, Any],
    ) -> DeliveryOutcome:
        """Build a fresh envelope and send it once."""
        delivery_id = generate_id("dlv")
        body = self.build_envelope(event, data, delivery_id=delivery_id)
        return await self.send(target, event, delivery_id, body)

    async def send(
        self,
        target: DeliveryTarget,
        event: str,
        delivery_id: str,
        body: bytes,
    ) -> DeliveryOutcome:
        """POST pre-serialized envelope bytes to the target once.

        Returns:
            Success for 2xx responses; failure for anything else, with
            error_kind set to configuration, transport or application.
        """
        attempted_at = self._clock()
        started = time.monotonic()

        try:
            response = await self._post(target, event, delivery_id, body)
        except DeliveryError as e:
            return self._failure(e, attempted_at, started)
        except Exception as e:
            logger.exception("Unexpected webhook delivery error", delivery_id=delivery_id)
            return self._failure(
                TransportError(f"Unexpected error: {e}"), attempted_at, started
            )

        latency_ms = _elapsed_ms(started)
        response_body = self._truncate(response.text)

        if 200 <= response.status_code < 300:
            logger.info(
                "Webhook delivered",
                delivery_id=delivery_id,
                event_name=event,
                status_code=response.status_code,
                latency_ms=latency_ms,
            )
            return DeliveryOutcome(
                success=True,
                status_code=response.status_code,
                response_body=response_body,
                latency_ms=latency_ms,
                attempted_at=attempted_at,
            )

        error = ApplicationError(
            f"HTTP {response.status_code}: {response.reason_phrase}",
            status_code=response.status_code,
            response_body=response_body,
        )
        return self._failure(error, attempted_at, started, latency_ms=latency_ms)

    async def _post(
        self,
        target: DeliveryTarget,
        event: str,
        delivery_id: str,
        body: bytes,
    ) -> httpx.Response:
        url = validate_target_url(target.url)
        headers = self.build_headers(target, event, delivery_id, body)

        try:
            if self._client is not None:
                return await self._client.post(
                    url, content=body, headers=headers, timeout=self._timeout
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.post(url, content=body, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out after {self._timeout:g}s") from e
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Invalid subscriber URL {target.url!r}: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__) from e

    def _failure(
        self,
        error: DeliveryError,
        attempted_at: datetime,
        started: float,
        latency_ms: int | None = None,
    ) -> DeliveryOutcome:
        if latency_ms is None:
            latency_ms = _elapsed_ms(started)
        logger.warning(
            "Webhook attempt failed",
            error=error.message,
            error_kind=error.kind,
            status_code=error.status_code,
            latency_ms=latency_ms,
        )
        return DeliveryOutcome(
            success=False,
            status_code=error.status_code,
            response_body=error.response_body,
            error=error.message,
            error_kind=error.kind,  # type: ignore[arg-type]
            latency_ms=latency_ms,
            attempted_at=attempted_at,
        )

    def _truncate(self, text: str | None) -> str | None:
        if not text:
            return None
        return text[: self._body_limit]


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


__all__ = [
    "DELIVERY_HEADER",
    "DEFAULT_TIMEOUT_SECONDS",
    "EVENT_HEADER",
    "RESERVED_HEADERS",
    "DeliveryExecutor",
    "DeliveryTarget",
    "validate_target_url",
]
