"""
Event store kept in process memory.

Backs the test suite and single-process runs. Nothing survives a restart,
and the version check only serializes coroutines that share this object.
"""

import asyncio
from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from orderflow.events.base import DomainEvent
from orderflow.observability import Tracer, create_tracer
from orderflow.observability.attributes import (
    ATTR_AGGREGATE_ID,
    ATTR_AGGREGATE_TYPE,
    ATTR_EVENT_COUNT,
    ATTR_EXPECTED_VERSION,
)
from orderflow.stores.interface import (
    AppendResult,
    EventStore,
    EventStream,
    StoredEvent,
    check_expected_version,
)


class InMemoryEventStore(EventStore):
    """
    Streams in dicts, guarded by one ``asyncio.Lock``.

        store = InMemoryEventStore()
        ledgers = AggregateRepository(store, InventoryLedger, "InventoryLedger")
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._streams: dict[tuple[UUID, str], list[DomainEvent]] = {}
        self._log: list[DomainEvent] = []
        self._ids: set[UUID] = set()
        self._lock = asyncio.Lock()

    async def append_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str,
        events: list[DomainEvent],
        expected_version: int,
    ) -> AppendResult:
        if not events:
            return AppendResult(expected_version)

        attributes = {
            ATTR_AGGREGATE_ID: str(aggregate_id),
            ATTR_AGGREGATE_TYPE: aggregate_type,
            ATTR_EVENT_COUNT: len(events),
            ATTR_EXPECTED_VERSION: expected_version,
        }
        with self._tracer.span("orderflow.event_store.append_events", attributes):
            async with self._lock:
                stream = self._streams.setdefault((aggregate_id, aggregate_type), [])
                check_expected_version(aggregate_id, expected_version, len(stream))
                for event in events:
                    if event.event_id not in self._ids:
                        self._ids.add(event.event_id)
                        stream.append(event)
                        self._log.append(event)
                return AppendResult(len(stream), len(self._log))

    async def get_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str | None = None,
        from_version: int = 0,
    ) -> EventStream:
        async with self._lock:
            if aggregate_type is None:
                events = [e for e in self._log if e.aggregate_id == aggregate_id]
                aggregate_type = events[0].aggregate_type if events else None
            else:
                events = list(self._streams.get((aggregate_id, aggregate_type), []))

        return EventStream(
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type or "Unknown",
            events=events[from_version:],
            version=len(events),
        )

    async def get_events_by_type(
        self,
        aggregate_type: str,
        from_timestamp: datetime | None = None,
    ) -> list[DomainEvent]:
        async with self._lock:
            events = [e for e in self._log if e.aggregate_type == aggregate_type]
        if from_timestamp is not None:
            events = [e for e in events if e.occurred_at > from_timestamp]
        return events

    async def read_all(
        self,
        after_position: int = 0,
        aggregate_types: Sequence[str] = (),
    ) -> list[StoredEvent]:
        async with self._lock:
            tail = self._log[after_position:]
        return [
            StoredEvent(event, position)
            for position, event in enumerate(tail, start=after_position + 1)
            if not aggregate_types or event.aggregate_type in aggregate_types
        ]

    async def event_exists(self, event_id: UUID) -> bool:
        return event_id in self._ids

    async def get_global_position(self) -> int:
        return len(self._log)
