"""
Lookup from stored ``event_type`` names back to event classes.

Each event module decorates its classes with ``@register_event``; the
SQLite store asks ``default_registry`` for the class when it reads a row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from orderflow.events.base import DomainEvent

logger = logging.getLogger(__name__)

TEvent = TypeVar("TEvent", bound="DomainEvent")


class EventTypeNotFoundError(KeyError):
    """A stored event names a type no module registered."""

    def __init__(self, event_type: str, known: list[str]) -> None:
        self.event_type = event_type
        self.known = known
        super().__init__(
            f"Unknown event type '{event_type}' (registered: {', '.join(known) or 'none'})"
        )


class DuplicateEventTypeError(ValueError):
    """Two different classes claim the same type name."""

    def __init__(
        self, event_type: str, existing: type[DomainEvent], new: type[DomainEvent]
    ) -> None:
        self.event_type = event_type
        super().__init__(
            f"'{event_type}' is registered to {existing.__qualname__}, "
            f"cannot register {new.__qualname__} under it"
        )


class EventRegistry:
    """
    Name to class mapping.

    Registration happens at import time, so the mapping is effectively
    read-only once the application runs. Tests that need throwaway event
    types build their own instance.
    """

    def __init__(self) -> None:
        self._classes: dict[str, type[DomainEvent]] = {}

    def register(self, event_class: type[TEvent], event_type: str | None = None) -> type[TEvent]:
        name = event_type or event_class.__name__
        existing = self._classes.get(name)
        if existing is not None and existing is not event_class:
            raise DuplicateEventTypeError(name, existing, event_class)
        self._classes[name] = event_class
        logger.debug("Registered event type %s", name)
        return event_class

    def get(self, event_type: str) -> type[DomainEvent]:
        try:
            return self._classes[event_type]
        except KeyError:
            raise EventTypeNotFoundError(event_type, self.list_types()) from None

    def list_types(self) -> list[str]:
        return sorted(self._classes)

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._classes

    def __iter__(self) -> Iterator[str]:
        return iter(self.list_types())

    def __len__(self) -> int:
        return len(self._classes)


default_registry = EventRegistry()


def register_event(event_class: type[TEvent]) -> type[TEvent]:
    """Class decorator adding an event to ``default_registry``."""
    return default_registry.register(event_class)


def get_event_class(event_type: str) -> type[DomainEvent]:
    return default_registry.get(event_type)
