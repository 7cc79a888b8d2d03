"""Event store implementations."""

from orderflow.stores.in_memory import InMemoryEventStore
from orderflow.stores.interface import (
    AppendResult,
    EventPublisher,
    EventStore,
    EventStream,
    ExpectedVersion,
    StoredEvent,
)
from orderflow.stores.sqlite import SQLiteEventStore

__all__ = [
    "AppendResult",
    "EventPublisher",
    "EventStore",
    "EventStream",
    "ExpectedVersion",
    "InMemoryEventStore",
    "SQLiteEventStore",
    "StoredEvent",
]
