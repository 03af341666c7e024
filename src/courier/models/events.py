"""Closed catalog of domain events that can be delivered to subscribers.

The catalog is versioned: adding or renaming an event bumps
EVENT_CATALOG_VERSION so subscribers can detect catalog changes.
"""

from typing import Literal, get_args

EVENT_CATALOG_VERSION = 1

EventType = Literal[
    "contact.created",
    "contact.updated",
    "contact.deleted",
    "company.created",
    "company.updated",
    "company.deleted",
    "deal.created",
    "deal.updated",
    "deal.deleted",
    "deal.stage_changed",
    "deal.won",
    "deal.lost",
    "quote.created",
    "quote.updated",
    "quote.sent",
    "quote.accepted",
    "quote.declined",
    "task.created",
    "task.updated",
    "task.completed",
    "document.uploaded",
    "document.deleted",
]

ALL_EVENT_TYPES: list[EventType] = list(get_args(EventType))


def is_known_event(name: str) -> bool:
    """Check whether an event name belongs to the catalog."""
    return name in ALL_EVENT_TYPES


__all__ = [
    "ALL_EVENT_TYPES",
    "EVENT_CATALOG_VERSION",
    "EventType",
    "is_known_event",
]
