"""Models for the Courier webhook delivery engine.

Subscriber:
    - Subscriber: registered endpoint with health state

Delivery:
    - Envelope: JSON body transmitted to subscribers
    - DeliveryOutcome: normalized result of one HTTP attempt
    - DeliveryRecord: evolving per-(subscriber, event) delivery state
    - DeliveryAttempt: append-only attempt history entry

Catalog:
    - EventType, ALL_EVENT_TYPES, EVENT_CATALOG_VERSION
"""

from .base import generate_id, utcnow
from .delivery import (
    RESPONSE_BODY_LIMIT,
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryRecord,
    DeliveryStatus,
    Envelope,
    ErrorKind,
)
from .events import ALL_EVENT_TYPES, EVENT_CATALOG_VERSION, EventType, is_known_event
from .subscriber import CIRCUIT_BREAKER_THRESHOLD, Subscriber

__all__ = [
    # Helpers
    "generate_id",
    "utcnow",
    # Catalog
    "ALL_EVENT_TYPES",
    "EVENT_CATALOG_VERSION",
    "EventType",
    "is_known_event",
    # Subscriber
    "CIRCUIT_BREAKER_THRESHOLD",
    "Subscriber",
    # Delivery
    "RESPONSE_BODY_LIMIT",
    "DeliveryAttempt",
    "DeliveryOutcome",
    "DeliveryRecord",
    "DeliveryStatus",
    "Envelope",
    "ErrorKind",
]
