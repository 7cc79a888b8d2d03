"""Domain event base class and type registry."""

from orderflow.events.base import DomainEvent
from orderflow.events.registry import (
    DuplicateEventTypeError,
    EventRegistry,
    EventTypeNotFoundError,
    default_registry,
    get_event_class,
    register_event,
)

__all__ = [
    "DomainEvent",
    "DuplicateEventTypeError",
    "EventRegistry",
    "EventTypeNotFoundError",
    "default_registry",
    "get_event_class",
    "register_event",
]
