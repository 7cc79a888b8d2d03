"""Loading and updating orders with optimistic-concurrency retries."""

import logging
from collections.abc import Callable
from typing import TypeVar
from uuid import UUID

from orderflow.aggregates.repository import AggregateRepository
from orderflow.exceptions import OptimisticLockError
from orderflow.observability import Tracer
from orderflow.orders.aggregate import OrderAggregate
from orderflow.orders.events import ORDER_AGGREGATE_TYPE
from orderflow.retry import RetryConfig, RetryError, retry_async
from orderflow.stores.interface import EventPublisher, EventStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderRepository(AggregateRepository[OrderAggregate]):
    """
    Repository for order aggregates.

    ``update`` runs a command against the latest version of an order and
    saves it; if another writer (a webhook racing the buyer callback, the
    expiry sweep racing a cancel) appended first, the order is reloaded
    and the command decided again.
    """

    def __init__(
        self,
        event_store: EventStore,
        event_publisher: EventPublisher | None = None,
        *,
        retry_config: RetryConfig | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        super().__init__(
            event_store=event_store,
            aggregate_factory=OrderAggregate,
            aggregate_type=ORDER_AGGREGATE_TYPE,
            event_publisher=event_publisher,
            tracer=tracer,
            enable_tracing=enable_tracing,
        )
        self._retry_config = retry_config or RetryConfig(
            max_retries=5, initial_delay=0.01, max_delay=0.2
        )

    async def update(
        self,
        order_id: UUID,
        command: Callable[[OrderAggregate], T],
    ) -> tuple[OrderAggregate, T]:
        """
        Apply ``command`` to the order and persist the events it produced.

        Returns:
            The saved aggregate and whatever the command returned

        Raises:
            AggregateNotFoundError: If the order does not exist
            OptimisticLockError: If the order kept changing under every retry
        """

        async def attempt() -> tuple[OrderAggregate, T]:
            order = await self.load(order_id)
            result = command(order)
            await self.save(order)
            return order, result

        try:
            return await retry_async(
                attempt,
                config=self._retry_config,
                retryable_exceptions=(OptimisticLockError,),
                operation_name=f"order update {order_id}",
            )
        except RetryError as e:
            raise e.last_error from e
