"""
Event-sourced aggregate roots.

An aggregate is rebuilt by replaying its events and changes only by
raising new ones. Commands check their invariants first and raise before
producing anything, so a rejected command leaves the aggregate as it was.
New events must carry the next version; a gap or a repeat is a bug in the
command and raises ``EventVersionError``.
"""

from abc import ABC, abstractmethod
from typing import Generic
from uuid import UUID

from orderflow.events.base import DomainEvent
from orderflow.exceptions import EventVersionError, UnhandledEventError
from orderflow.handlers.decorators import get_handled_event_type
from orderflow.types import TState


class AggregateRoot(Generic[TState], ABC):
    """
    Identity, version and pending events of one aggregate.

    Subclasses provide ``_apply`` to fold an event into ``_state`` and
    ``_get_initial_state`` for the state before the first event.
    """

    aggregate_type: str = "Unknown"

    def __init__(self, aggregate_id: UUID) -> None:
        self._aggregate_id = aggregate_id
        self._version = 0
        self._pending: list[DomainEvent] = []
        self._state: TState | None = None

    @property
    def aggregate_id(self) -> UUID:
        return self._aggregate_id

    @property
    def version(self) -> int:
        return self._version

    @property
    def state(self) -> TState | None:
        return self._state

    @property
    def uncommitted_events(self) -> list[DomainEvent]:
        """Events raised since the last save (a copy)."""
        return list(self._pending)

    def get_next_version(self) -> int:
        return self._version + 1

    def load_from_history(self, events: list[DomainEvent]) -> None:
        for event in events:
            self._version = event.aggregate_version
            self._apply(event)

    def mark_events_as_committed(self) -> None:
        self._pending.clear()

    def _raise_event(self, event: DomainEvent) -> None:
        expected = self.get_next_version()
        if event.aggregate_version != expected:
            raise EventVersionError(
                expected_version=expected,
                actual_version=event.aggregate_version,
                event_id=event.event_id,
                aggregate_id=self._aggregate_id,
            )
        self._apply(event)
        self._version = expected
        self._pending.append(event)

    def _require_state(self) -> TState:
        if self._state is None:
            raise RuntimeError(
                f"{self.aggregate_type} {self._aggregate_id} has no events; create it first"
            )
        return self._state

    @abstractmethod
    def _apply(self, event: DomainEvent) -> None: ...

    @abstractmethod
    def _get_initial_state(self) -> TState: ...

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self._aggregate_id}, version={self._version}, "
            f"uncommitted={len(self._pending)})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AggregateRoot):
            return NotImplemented
        return self._aggregate_id == other._aggregate_id

    def __hash__(self) -> int:
        return hash(self._aggregate_id)


class DeclarativeAggregate(AggregateRoot[TState], ABC):
    """
    Aggregate whose ``_apply`` routes to methods marked ``@handles(EventType)``.

    An event type without a handler raises ``UnhandledEventError``: every
    event an aggregate stores must also be replayable by it.

        class InventoryLedger(DeclarativeAggregate[LedgerState]):
            @handles(StockReceived)
            def _on_received(self, event: StockReceived) -> None:
                ...
    """

    _event_handlers: dict[type[DomainEvent], str] = {}

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        cls._event_handlers = {}
        for name, member in _class_members(cls).items():
            event_type = get_handled_event_type(member) if callable(member) else None
            if event_type is not None:
                cls._event_handlers[event_type] = name

    def _apply(self, event: DomainEvent) -> None:
        method_name = self._event_handlers.get(type(event))
        if method_name is None:
            raise UnhandledEventError(
                event_type=type(event).__name__,
                event_id=event.event_id,
                handler_class=type(self).__name__,
                available_handlers=sorted(t.__name__ for t in self._event_handlers),
            )
        getattr(self, method_name)(event)


def _class_members(cls: type) -> dict[str, object]:
    """Class attributes by name, subclasses overriding their bases."""
    merged: dict[str, object] = {}
    for klass in reversed(cls.__mro__):
        merged.update(vars(klass))
    return merged


__all__ = ["AggregateRoot", "DeclarativeAggregate"]
