"""
What every orderflow event store provides.

Streams are keyed by aggregate id and versioned from 1. ``append_events``
is a compare-and-swap on the stream version: it is what keeps concurrent
reservations against one product's ledger from overselling, whether the
writers share a process or only a database file.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol
from uuid import UUID

from orderflow.events.base import DomainEvent
from orderflow.exceptions import OptimisticLockError


@dataclass(frozen=True)
class EventStream:
    """One aggregate's events, oldest first, and the stream's full length."""

    aggregate_id: UUID
    aggregate_type: str
    events: list[DomainEvent] = field(default_factory=list)
    version: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.events


@dataclass(frozen=True)
class StoredEvent:
    """An event with its position in the store-wide append order (1-based)."""

    event: DomainEvent
    global_position: int


@dataclass(frozen=True)
class AppendResult:
    """Stream version and global position after a committed append."""

    new_version: int
    global_position: int = 0


class ExpectedVersion:
    """Special ``expected_version`` values besides an exact stream version."""

    ANY = -1
    NO_STREAM = 0
    STREAM_EXISTS = -2


def check_expected_version(aggregate_id: UUID, expected_version: int, current_version: int) -> None:
    """Raise ``OptimisticLockError`` unless the stream is where the writer expects it."""
    if expected_version == ExpectedVersion.ANY:
        return
    if expected_version == ExpectedVersion.STREAM_EXISTS:
        stale = current_version == 0
    else:
        stale = current_version != expected_version
    if stale:
        raise OptimisticLockError(aggregate_id, expected_version, current_version)


class EventStore(ABC):
    """
    Append-only storage of aggregate streams.

    ``InMemoryEventStore`` backs tests and single-process runs;
    ``SQLiteEventStore`` persists to a file several processes can share.
    """

    @abstractmethod
    async def append_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str,
        events: list[DomainEvent],
        expected_version: int,
    ) -> AppendResult:
        """
        Append ``events`` atomically if the stream is at ``expected_version``.

        Events whose id is already stored are skipped, so replaying an
        append is harmless.

        Raises:
            OptimisticLockError: The stream moved since the caller read it
        """

    @abstractmethod
    async def get_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str | None = None,
        from_version: int = 0,
    ) -> EventStream:
        """Events of one stream with version greater than ``from_version``."""

    @abstractmethod
    async def get_events_by_type(
        self,
        aggregate_type: str,
        from_timestamp: datetime | None = None,
    ) -> list[DomainEvent]:
        """Every event of one aggregate type in append order, for rebuilding read models."""

    @abstractmethod
    async def read_all(
        self,
        after_position: int = 0,
        aggregate_types: Sequence[str] = (),
    ) -> list[StoredEvent]:
        """
        Events appended after ``after_position``, in append order.

        An empty ``aggregate_types`` reads every type. Read models use this
        to follow writes made by other processes sharing the store.
        """

    @abstractmethod
    async def event_exists(self, event_id: UUID) -> bool: ...

    @abstractmethod
    async def get_global_position(self) -> int:
        """Position of the latest appended event, 0 for an empty store."""


class EventPublisher(Protocol):
    async def publish(self, events: list[DomainEvent]) -> None: ...
