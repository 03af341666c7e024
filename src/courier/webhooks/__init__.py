"""Webhook delivery engine for Courier.

Provides HMAC-signed delivery of CRM domain events with a per-subscriber
circuit breaker and linear-backoff retries.

Example:
    ```python
    from courier.webhooks import RetryScheduler, WebhookDispatcher

    dispatcher = WebhookDispatcher(storage)
    await dispatcher.dispatch("deal.won", {"id": "d1"})

    # From a cron job or the operator API
    summary = await RetryScheduler(storage).run_once()
    ```
"""

from .dispatcher import WebhookDispatcher, dispatch_webhook_event
from .executor import DeliveryExecutor, DeliveryTarget
from .health import SubscriberHealthTracker
from .retry import RetryRunSummary, RetryScheduler, linear_backoff
from .signing import sign, verify

__all__ = [
    "DeliveryExecutor",
    "DeliveryTarget",
    "RetryRunSummary",
    "RetryScheduler",
    "SubscriberHealthTracker",
    "WebhookDispatcher",
    "dispatch_webhook_event",
    "linear_backoff",
    "sign",
    "verify",
]
