"""Event bus interface.

The bus carries committed domain events from the repositories to read
models (order directory, seller sales) and to the notification
dispatcher. Producers never depend on subscribers succeeding.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from orderflow.events.base import DomainEvent

# Type alias for simple function-based handlers
EventHandlerFunc = Callable[[DomainEvent], Awaitable[None] | None]


class EventBus(ABC):
    """
    Abstract event bus for publishing and subscribing to domain events.

    Example:
        >>> bus = InMemoryEventBus()
        >>> bus.subscribe(OrderPlaced, directory)
        >>> await bus.publish([OrderPlaced(...)])
    """

    @abstractmethod
    async def publish(
        self,
        events: list[DomainEvent],
        background: bool = False,
    ) -> None:
        """
        Publish events to all registered subscribers.

        Events are processed in order; every handler of one event runs
        before the next event is dispatched. Handler errors are logged and
        never raised to the publisher.

        Args:
            events: List of events to publish
            background: If True, dispatch in a background task without blocking
        """
        pass

    @abstractmethod
    def subscribe(self, event_type: type[DomainEvent], handler: Any) -> None:
        """
        Subscribe a handler to a specific event type.

        Args:
            event_type: The event class to subscribe to
            handler: Object with handle() method or callable
        """
        pass

    @abstractmethod
    def unsubscribe(self, event_type: type[DomainEvent], handler: Any) -> bool:
        """Remove a handler; True if it was subscribed."""
        pass

    @abstractmethod
    def subscribe_to_all_events(self, handler: Any) -> None:
        """Subscribe a handler to every published event."""
        pass

    def subscribe_all(self, subscriber: Any) -> None:
        """
        Subscribe an object to every event type it declares.

        The subscriber must provide ``subscribed_to() -> list[type[DomainEvent]]``
        and a ``handle(event)`` method.
        """
        for event_type in subscriber.subscribed_to():
            self.subscribe(event_type, subscriber)


__all__ = [
    "EventBus",
    "EventHandlerFunc",
]
