"""
Reservation Manager: the only writer of inventory ledgers.

Each ledger mutation is load, decide, append-with-expected-version. When
another writer appended first the append raises OptimisticLockError; the
manager reloads and decides again, so two reservations of the same
product can never both succeed against the same ``available`` count.
This works across processes because the check lives in the event store.

A batch reservation is all-or-nothing: if any product is short, the
holds already taken for that batch are released before the error
propagates.
"""

import logging
from collections.abc import Callable, Iterable
from typing import TypeVar

from pydantic import BaseModel, ConfigDict

from orderflow.aggregates.repository import AggregateRepository
from orderflow.exceptions import InsufficientStock, OptimisticLockError, ReservationConflict
from orderflow.inventory.events import LEDGER_AGGREGATE_TYPE
from orderflow.inventory.ledger import InventoryLedger, StockLevels, ledger_id_for
from orderflow.observability import Tracer, create_tracer
from orderflow.observability.attributes import (
    ATTR_LINE_COUNT,
    ATTR_PRODUCT_ID,
    ATTR_RESERVATION_ID,
)
from orderflow.retry import RetryConfig, RetryError, retry_async
from orderflow.stores.interface import EventPublisher, EventStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Reservation(BaseModel):
    """
    Inventory held for one order.

    Attributes:
        reservation_id: The order number the units are held for
        quantities: Units held per product id
    """

    model_config = ConfigDict(frozen=True)

    reservation_id: str
    quantities: dict[str, int]

    @property
    def total_units(self) -> int:
        return sum(self.quantities.values())


class ReservationManager:
    """
    Moves units between available, reserved and sold.

    Example:
        >>> manager = ReservationManager(InMemoryEventStore())
        >>> await manager.receive("P1", 5)
        >>> reservation = await manager.reserve("ORD20260101AB12CD", [("P1", 2)])
        >>> await manager.release(reservation)
    """

    def __init__(
        self,
        event_store: EventStore,
        *,
        event_publisher: EventPublisher | None = None,
        retry_config: RetryConfig | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._repository: AggregateRepository[InventoryLedger] = AggregateRepository(
            event_store=event_store,
            aggregate_factory=InventoryLedger,
            aggregate_type=LEDGER_AGGREGATE_TYPE,
            event_publisher=event_publisher,
            tracer=self._tracer,
        )
        self._retry_config = retry_config or RetryConfig(
            max_retries=20, initial_delay=0.005, max_delay=0.1
        )

    async def levels(self, product_id: str) -> StockLevels:
        """Current counters of a product (all zero if it has no ledger yet)."""
        ledger = await self._repository.load_or_create(ledger_id_for(product_id))
        levels = ledger.levels
        return levels.model_copy(update={"product_id": product_id})

    async def receive(
        self, product_id: str, quantity: int, actor_id: str | None = None
    ) -> StockLevels:
        """Add units to a product's stock."""
        await self._mutate(
            product_id, lambda ledger: ledger.receive(product_id, quantity, actor_id)
        )
        return await self.levels(product_id)

    async def write_off(
        self,
        product_id: str,
        quantity: int,
        reason: str = "",
        actor_id: str | None = None,
    ) -> StockLevels:
        """Remove available units from a product's stock."""
        await self._mutate(
            product_id,
            lambda ledger: ledger.write_off(product_id, quantity, reason, actor_id),
        )
        return await self.levels(product_id)

    async def reserve(
        self,
        reservation_id: str,
        lines: Iterable[tuple[str, int]],
    ) -> Reservation:
        """
        Reserve every line or none of them.

        Lines for the same product are merged into one hold.

        Args:
            reservation_id: Identifier of the hold (the order number)
            lines: ``(product_id, quantity)`` pairs in order-line order

        Raises:
            InsufficientStock: For the first product that is short, with
                ``line_index`` pointing at its first line
            ReservationConflict: If a ledger kept changing under every retry
        """
        quantities: dict[str, int] = {}
        first_line: dict[str, int] = {}
        for index, (product_id, quantity) in enumerate(lines):
            if quantity <= 0:
                raise ValueError(f"line {index} quantity must be positive, got {quantity}")
            quantities[product_id] = quantities.get(product_id, 0) + quantity
            first_line.setdefault(product_id, index)

        with self._tracer.span(
            "orderflow.reservations.reserve",
            {ATTR_RESERVATION_ID: reservation_id, ATTR_LINE_COUNT: len(quantities)},
        ):
            reserved: dict[str, int] = {}
            try:
                for product_id, quantity in quantities.items():
                    await self._mutate(
                        product_id,
                        lambda ledger, p=product_id, q=quantity: ledger.reserve(
                            p, reservation_id, q
                        ),
                    )
                    reserved[product_id] = quantity
            except InsufficientStock as e:
                e.line_index = first_line.get(e.product_id)
                await self._rollback(reservation_id, reserved)
                raise
            except Exception:
                await self._rollback(reservation_id, reserved)
                raise

        logger.info(
            "Reserved %d unit(s) across %d product(s) for %s",
            sum(quantities.values()),
            len(quantities),
            reservation_id,
            extra={"reservation_id": reservation_id, "quantities": quantities},
        )
        return Reservation(reservation_id=reservation_id, quantities=quantities)

    async def release(self, reservation: Reservation) -> int:
        """
        Return every hold of a reservation to available stock.

        Idempotent: holds that are already released are skipped.

        Returns:
            Number of units actually released by this call
        """
        with self._tracer.span(
            "orderflow.reservations.release",
            {ATTR_RESERVATION_ID: reservation.reservation_id},
        ):
            released = 0
            for product_id in reservation.quantities:
                released += await self._mutate(
                    product_id,
                    lambda ledger: ledger.release(reservation.reservation_id),
                )

        logger.info(
            "Released %d unit(s) for %s",
            released,
            reservation.reservation_id,
            extra={"reservation_id": reservation.reservation_id, "units": released},
        )
        return released

    async def finalize(self, reservation: Reservation) -> int:
        """
        Move every hold of a reservation into sold.

        Idempotent for holds that are already finalized.

        Raises:
            LedgerInvariantError: If a hold was released instead
        """
        with self._tracer.span(
            "orderflow.reservations.finalize",
            {ATTR_RESERVATION_ID: reservation.reservation_id},
        ):
            finalized = 0
            for product_id in reservation.quantities:
                finalized += await self._mutate(
                    product_id,
                    lambda ledger: ledger.finalize(reservation.reservation_id),
                )
        return finalized

    async def _rollback(self, reservation_id: str, reserved: dict[str, int]) -> None:
        if not reserved:
            return
        logger.info(
            "Rolling back partial reservation %s",
            reservation_id,
            extra={"reservation_id": reservation_id, "products": list(reserved)},
        )
        for product_id in reserved:
            try:
                await self._mutate(product_id, lambda ledger: ledger.release(reservation_id))
            except Exception:
                logger.error(
                    "Failed to roll back hold %s on product %s",
                    reservation_id,
                    product_id,
                    exc_info=True,
                    extra={"reservation_id": reservation_id, "product_id": product_id},
                )

    async def _mutate(self, product_id: str, command: Callable[[InventoryLedger], T]) -> T:
        """Load the ledger, run a command, append; reload and retry on a lost race."""
        ledger_id = ledger_id_for(product_id)

        async def attempt() -> T:
            ledger = await self._repository.load_or_create(ledger_id)
            result = command(ledger)
            await self._repository.save(ledger)
            return result

        with self._tracer.span("orderflow.reservations.mutate", {ATTR_PRODUCT_ID: product_id}):
            try:
                return await retry_async(
                    attempt,
                    config=self._retry_config,
                    retryable_exceptions=(OptimisticLockError,),
                    operation_name=f"ledger update for {product_id}",
                )
            except RetryError as e:
                raise ReservationConflict(product_id, e.attempts) from e.last_error
