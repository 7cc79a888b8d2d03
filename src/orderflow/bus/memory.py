"""In-process event bus.

Repositories publish to it once their appends commit. The order directory
and seller sales read models subscribe synchronously so lookups made right
after a command see its effects; the notification dispatcher subscribes
too but does its slow work in its own tasks.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any

from orderflow.bus.interface import EventBus
from orderflow.events.base import DomainEvent
from orderflow.handlers.adapter import HandlerAdapter
from orderflow.observability import Tracer, create_tracer
from orderflow.observability.attributes import (
    ATTR_AGGREGATE_ID,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
)

logger = logging.getLogger(__name__)


class InMemoryEventBus(EventBus):
    """
    Dispatches each event to its typed subscribers and the wildcard ones.

    All handlers of an event run concurrently; one failing handler is
    logged and counted, the others still run, and the publisher never sees
    the error. ``publish(..., background=True)`` returns at once and the
    dispatch is awaited by ``shutdown``.
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._typed: dict[type[DomainEvent], list[HandlerAdapter]] = defaultdict(list)
        self._wildcard: list[HandlerAdapter] = []
        self._pending: set[asyncio.Task[None]] = set()
        self._stats = {
            "events_published": 0,
            "handlers_invoked": 0,
            "handler_errors": 0,
            "background_tasks_created": 0,
            "background_tasks_completed": 0,
        }
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, event_type: type[DomainEvent], handler: Any) -> None:
        adapter = HandlerAdapter(handler)
        self._typed[event_type].append(adapter)
        logger.debug("Subscribed %s to %s", adapter.name, event_type.__name__)

    def unsubscribe(self, event_type: type[DomainEvent], handler: Any) -> bool:
        adapters = self._typed.get(event_type, [])
        for index, adapter in enumerate(adapters):
            if adapter == handler:
                del adapters[index]
                return True
        return False

    def subscribe_to_all_events(self, handler: Any) -> None:
        adapter = HandlerAdapter(handler)
        self._wildcard.append(adapter)
        logger.debug("Subscribed %s to every event", adapter.name)

    def get_subscriber_count(self, event_type: type[DomainEvent] | None = None) -> int:
        """Typed subscriptions for ``event_type``, or across all types."""
        if event_type is not None:
            return len(self._typed.get(event_type, []))
        return sum(len(adapters) for adapters in self._typed.values())

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(self, events: list[DomainEvent], background: bool = False) -> None:
        if not events:
            return
        if not background:
            await self._publish_in_order(events)
            return

        task = asyncio.create_task(self._publish_in_order(events))
        self._pending.add(task)
        self._stats["background_tasks_created"] += 1
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        self._stats["background_tasks_completed"] += 1
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background publishing failed", exc_info=task.exception())

    async def _publish_in_order(self, events: list[DomainEvent]) -> None:
        for event in events:
            await self._dispatch(event)
            self._stats["events_published"] += 1

    async def _dispatch(self, event: DomainEvent) -> None:
        handlers = [*self._typed.get(type(event), []), *self._wildcard]
        if not handlers:
            return

        with self._tracer.span(
            "orderflow.event_bus.dispatch",
            {
                ATTR_EVENT_TYPE: event.event_type,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_AGGREGATE_ID: str(event.aggregate_id),
                ATTR_HANDLER_COUNT: len(handlers),
            },
        ):
            await asyncio.gather(*(self._run_handler(adapter, event) for adapter in handlers))

    async def _run_handler(self, adapter: HandlerAdapter, event: DomainEvent) -> None:
        with self._tracer.span(
            "orderflow.event_bus.handle",
            {ATTR_EVENT_TYPE: event.event_type, ATTR_HANDLER_NAME: adapter.name},
        ) as span:
            try:
                await adapter.handle(event)
            except Exception as e:
                self._stats["handler_errors"] += 1
                if span:
                    span.set_attribute(ATTR_HANDLER_SUCCESS, False)
                    span.record_exception(e)
                logger.error(
                    "Handler %s failed on %s %s",
                    adapter.name,
                    event.event_type,
                    event.event_id,
                    exc_info=True,
                    extra={
                        "handler": adapter.name,
                        "event_type": event.event_type,
                        "event_id": str(event.event_id),
                        "aggregate_id": str(event.aggregate_id),
                    },
                )
                return
            self._stats["handlers_invoked"] += 1
            if span:
                span.set_attribute(ATTR_HANDLER_SUCCESS, True)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, int]:
        return dict(self._stats)

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Wait up to ``timeout`` seconds for background dispatches, then cancel the rest."""
        if not self._pending:
            return
        logger.info("Waiting for %d background publish task(s)", len(self._pending))
        _, unfinished = await asyncio.wait(list(self._pending), timeout=timeout)
        for task in unfinished:
            task.cancel()
        if unfinished:
            logger.warning(
                "Cancelled %d background publish task(s) at shutdown",
                len(unfinished),
                extra={"remaining_tasks": len(unfinished)},
            )


__all__ = ["InMemoryEventBus"]
