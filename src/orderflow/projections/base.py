"""
Base class for in-process read models.

A projection declares its handlers with ``@handles`` and is subscribed
to the event bus with ``bus.subscribe_all(projection)``. Events are
applied at most once per event id.

A projection bound to an event store does not apply what the bus hands
it. It treats each delivery as a signal and reads the store from the
last position it has seen, so writes made by other processes sharing
the store are applied too, and everything is applied in append order.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any
from uuid import UUID

from orderflow.events.base import DomainEvent
from orderflow.handlers.decorators import discover_handlers
from orderflow.stores.interface import EventStore

logger = logging.getLogger(__name__)


class DeclarativeProjection(ABC):
    """
    Projection that routes events to ``@handles`` methods.

    Example:
        >>> class SellerSalesProjection(DeclarativeProjection):
        ...     @handles(OrderDelivered)
        ...     async def _on_delivered(self, event: OrderDelivered) -> None:
        ...         ...
    """

    # Aggregate types this projection reads from the store
    source_aggregate_types: tuple[str, ...] = ()

    def __init__(self, event_store: EventStore | None = None) -> None:
        self._handlers: dict[type[DomainEvent], Any] = discover_handlers(self)
        self._event_store = event_store
        self._seen: set[UUID] = set()
        self._position = 0
        self._lock = asyncio.Lock()

    @property
    def position(self) -> int:
        """Global position of the last store event read."""
        return self._position

    def subscribed_to(self) -> list[type[DomainEvent]]:
        return list(self._handlers)

    async def handle(self, event: DomainEvent) -> None:
        if self._event_store is not None:
            await self.catch_up()
        else:
            await self._apply(event)

    async def _apply(self, event: DomainEvent) -> bool:
        handler = self._handlers.get(type(event))
        if handler is None or event.event_id in self._seen:
            return False
        await handler(event)
        self._seen.add(event.event_id)
        return True

    async def catch_up(self) -> int:
        """
        Apply events appended to the bound store since the last read.

        Returns:
            Number of events applied (0 for a projection without a store)
        """
        if self._event_store is None:
            return 0
        applied = 0
        async with self._lock:
            stored = await self._event_store.read_all(self._position, self.source_aggregate_types)
            for item in stored:
                if await self._apply(item.event):
                    applied += 1
                self._position = item.global_position
        return applied

    async def rebuild(self, event_store: EventStore | None = None) -> int:
        """
        Reset and replay the store, binding the projection to ``event_store`` if given.

        Returns:
            Number of events applied
        """
        if event_store is not None:
            self._event_store = event_store
        if self._event_store is None:
            raise RuntimeError(f"{type(self).__name__} has no event store to rebuild from")

        async with self._lock:
            self._seen.clear()
            self._position = 0
            await self._clear()
        applied = await self.catch_up()
        logger.info(
            "Rebuilt %s from %d event(s)",
            type(self).__name__,
            applied,
            extra={"projection": type(self).__name__, "events": applied},
        )
        return applied

    @abstractmethod
    async def _clear(self) -> None:
        """Drop all read-model data."""
