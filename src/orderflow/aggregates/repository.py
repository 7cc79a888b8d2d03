"""
Loading aggregates from their streams and saving what they raised.

A save appends with the version the aggregate was loaded at, so two
writers that read the same version cannot both win: the second gets
``OptimisticLockError`` and has to reload.
"""

import logging
from typing import Any, Generic, TypeVar
from uuid import UUID

from orderflow.aggregates.base import AggregateRoot
from orderflow.exceptions import AggregateNotFoundError
from orderflow.observability import Tracer, create_tracer
from orderflow.observability.attributes import (
    ATTR_AGGREGATE_ID,
    ATTR_AGGREGATE_TYPE,
    ATTR_EVENT_COUNT,
    ATTR_VERSION,
)
from orderflow.stores.interface import EventPublisher, EventStore

logger = logging.getLogger(__name__)

TAggregate = TypeVar("TAggregate", bound="AggregateRoot[Any]")


class AggregateRepository(Generic[TAggregate]):
    """
    Store access for one aggregate type.

    Events reach ``event_publisher`` only after their append committed;
    subscribers never observe a change that a conflict rolled back.
    """

    def __init__(
        self,
        event_store: EventStore,
        aggregate_factory: type[TAggregate],
        aggregate_type: str,
        event_publisher: EventPublisher | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = event_store
        self._factory = aggregate_factory
        self._aggregate_type = aggregate_type
        self._publisher = event_publisher
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    def create_new(self, aggregate_id: UUID) -> TAggregate:
        return self._factory(aggregate_id)

    async def load(self, aggregate_id: UUID) -> TAggregate:
        """
        Replay the aggregate's stream.

        Raises:
            AggregateNotFoundError: The stream is empty
        """
        attributes = {
            ATTR_AGGREGATE_ID: str(aggregate_id),
            ATTR_AGGREGATE_TYPE: self._aggregate_type,
        }
        with self._tracer.span("orderflow.repository.load", attributes):
            stream = await self._store.get_events(aggregate_id, self._aggregate_type)
            if stream.is_empty:
                raise AggregateNotFoundError(aggregate_id, self._aggregate_type)
            aggregate = self._factory(aggregate_id)
            aggregate.load_from_history(stream.events)
        logger.debug(
            "Loaded %s %s at version %d", self._aggregate_type, aggregate_id, aggregate.version
        )
        return aggregate

    async def exists(self, aggregate_id: UUID) -> bool:
        stream = await self._store.get_events(aggregate_id, self._aggregate_type)
        return not stream.is_empty

    async def load_or_create(self, aggregate_id: UUID) -> TAggregate:
        try:
            return await self.load(aggregate_id)
        except AggregateNotFoundError:
            return self.create_new(aggregate_id)

    async def save(self, aggregate: TAggregate) -> None:
        """
        Append the aggregate's new events, then publish them.

        Raises:
            OptimisticLockError: Someone appended to the stream since it was loaded
        """
        pending = aggregate.uncommitted_events
        if not pending:
            return

        attributes = {
            ATTR_AGGREGATE_ID: str(aggregate.aggregate_id),
            ATTR_AGGREGATE_TYPE: self._aggregate_type,
            ATTR_EVENT_COUNT: len(pending),
            ATTR_VERSION: aggregate.version,
        }
        with self._tracer.span("orderflow.repository.save", attributes):
            await self._store.append_events(
                aggregate_id=aggregate.aggregate_id,
                aggregate_type=self._aggregate_type,
                events=pending,
                expected_version=aggregate.version - len(pending),
            )
            aggregate.mark_events_as_committed()
        if self._publisher is not None:
            await self._publisher.publish(pending)


__all__ = ["AggregateRepository", "TAggregate"]
