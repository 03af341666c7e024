"""Courier: outbound webhook delivery.

Delivers domain events to registered HTTP subscribers with HMAC
signing, a persisted delivery log, linear-backoff retries and a
per-subscriber circuit breaker.

Quick Start:
    from courier.service import CourierService

    async with CourierService.create() as courier:
        await courier.register_subscriber(
            name="CRM mirror",
            url="https://mirror.example.com/webhooks",
            events=["deal.won", "deal.lost"],
            secret="shared-secret",
        )

        # Fan out to every active subscriber of the event
        delivery_ids = await courier.dispatch("deal.won", {"id": "d1"})

        # Run from cron: re-attempt failed deliveries that are due
        summary = await courier.process_retries()

Receivers verify the X-Webhook-Signature header with courier.verify().
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    ApplicationError,
    AuthenticationError,
    CircuitOpen,
    ConfigurationError,
    CourierError,
    DeliveryError,
    ExhaustedRetries,
    NotFoundError,
    StorageError,
    TransportError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    ALL_EVENT_TYPES,
    EVENT_CATALOG_VERSION,
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryRecord,
    Envelope,
    EventType,
    Subscriber,
)

# Signing
from .webhooks.signing import sign, verify

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "CourierError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "AuthenticationError",
    "DeliveryError",
    "ConfigurationError",
    "TransportError",
    "ApplicationError",
    "ExhaustedRetries",
    "CircuitOpen",
    # Logging
    "configure_logging",
    "get_logger",
    "logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "ALL_EVENT_TYPES",
    "EVENT_CATALOG_VERSION",
    "EventType",
    "Subscriber",
    "Envelope",
    "DeliveryOutcome",
    "DeliveryRecord",
    "DeliveryAttempt",
    # Signing
    "sign",
    "verify",
]
