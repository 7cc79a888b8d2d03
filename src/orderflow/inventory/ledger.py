"""
The per-product inventory ledger aggregate.

Counts obey ``available >= 0``, ``reserved >= 0`` and
``available + reserved <= total`` after every event. Each reservation is
a named hold, which is what makes release and finalize idempotent per
reservation: once a hold is closed, repeating the command finds nothing
to move.
"""

import logging
from typing import Literal
from uuid import NAMESPACE_URL, UUID, uuid5

from pydantic import BaseModel, Field

from orderflow.aggregates.base import DeclarativeAggregate
from orderflow.exceptions import InsufficientStock, LedgerInvariantError
from orderflow.handlers.decorators import handles
from orderflow.inventory.events import (
    LEDGER_AGGREGATE_TYPE,
    StockFinalized,
    StockReceived,
    StockReleased,
    StockReserved,
    StockWrittenOff,
)

logger = logging.getLogger(__name__)

_LEDGER_NAMESPACE = uuid5(NAMESPACE_URL, "orderflow:inventory-ledger")

HoldOutcome = Literal["released", "finalized"]


def ledger_id_for(product_id: str) -> UUID:
    """Deterministic aggregate id of a product's ledger."""
    return uuid5(_LEDGER_NAMESPACE, product_id)


class StockLevels(BaseModel):
    """Snapshot of a product's counters."""

    product_id: str
    total: int = 0
    available: int = 0
    reserved: int = 0
    sold: int = 0


class LedgerState(StockLevels):
    holds: dict[str, int] = Field(default_factory=dict)
    closed_holds: dict[str, HoldOutcome] = Field(default_factory=dict)

    def levels(self) -> StockLevels:
        return StockLevels(
            product_id=self.product_id,
            total=self.total,
            available=self.available,
            reserved=self.reserved,
            sold=self.sold,
        )


class InventoryLedger(DeclarativeAggregate[LedgerState]):
    """
    Inventory counters of one product.

    Commands validate against the current state and raise before any
    event is produced; they never clamp.
    """

    aggregate_type = LEDGER_AGGREGATE_TYPE

    def _get_initial_state(self) -> LedgerState:
        return LedgerState(product_id="")

    @property
    def levels(self) -> StockLevels:
        if self._state is None:
            return StockLevels(product_id="")
        return self._state.levels()

    def hold(self, reservation_id: str) -> int:
        """Units currently held for a reservation (0 if none)."""
        if self._state is None:
            return 0
        return self._state.holds.get(reservation_id, 0)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def receive(self, product_id: str, quantity: int, actor_id: str | None = None) -> None:
        if quantity <= 0:
            raise LedgerInvariantError(
                product_id, f"received quantity must be positive, got {quantity}"
            )
        self._raise_event(
            StockReceived(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                product_id=product_id,
                quantity=quantity,
                actor_id=actor_id,
            )
        )

    def write_off(
        self, product_id: str, quantity: int, reason: str = "", actor_id: str | None = None
    ) -> None:
        state = self._state or self._get_initial_state()
        if quantity <= 0:
            raise LedgerInvariantError(
                product_id, f"write-off quantity must be positive, got {quantity}"
            )
        if quantity > state.available:
            raise LedgerInvariantError(
                product_id,
                f"cannot write off {quantity} units, only {state.available} available",
            )
        self._raise_event(
            StockWrittenOff(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                product_id=product_id,
                quantity=quantity,
                reason=reason,
                actor_id=actor_id,
            )
        )

    def reserve(self, product_id: str, reservation_id: str, quantity: int) -> bool:
        """
        Hold ``quantity`` units for a reservation.

        Returns False when the same hold already exists (a retried request).

        Raises:
            InsufficientStock: If fewer than ``quantity`` units are available
            LedgerInvariantError: If the reservation id was already used differently
        """
        state = self._state or self._get_initial_state()
        if quantity <= 0:
            raise LedgerInvariantError(
                product_id, f"reserved quantity must be positive, got {quantity}"
            )

        existing = state.holds.get(reservation_id)
        if existing is not None:
            if existing == quantity:
                return False
            raise LedgerInvariantError(
                product_id,
                f"reservation {reservation_id} already holds {existing} units, not {quantity}",
            )
        if reservation_id in state.closed_holds:
            raise LedgerInvariantError(
                product_id,
                f"reservation {reservation_id} was already {state.closed_holds[reservation_id]}",
            )

        if state.available < quantity:
            raise InsufficientStock(product_id, requested=quantity, available=state.available)

        self._raise_event(
            StockReserved(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                product_id=product_id,
                reservation_id=reservation_id,
                quantity=quantity,
            )
        )
        return True

    def release(self, reservation_id: str) -> int:
        """
        Return a hold to available stock.

        Returns the number of units released; 0 when there is no open hold
        (already released, finalized, or never made).
        """
        state = self._state
        if state is None or reservation_id not in state.holds:
            if state is not None and state.closed_holds.get(reservation_id) == "finalized":
                logger.warning(
                    "Ignoring release of finalized reservation %s on product %s",
                    reservation_id,
                    state.product_id,
                    extra={"reservation_id": reservation_id, "product_id": state.product_id},
                )
            return 0

        quantity = state.holds[reservation_id]
        self._raise_event(
            StockReleased(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                product_id=state.product_id,
                reservation_id=reservation_id,
                quantity=quantity,
            )
        )
        return quantity

    def finalize(self, reservation_id: str) -> int:
        """
        Move a hold into sold.

        Returns the number of units finalized; 0 if it was already finalized.

        Raises:
            LedgerInvariantError: If the hold was released or never existed
        """
        state = self._state
        if state is not None and state.closed_holds.get(reservation_id) == "finalized":
            return 0
        if state is None or reservation_id not in state.holds:
            product_id = state.product_id if state else "unknown"
            outcome = state.closed_holds.get(reservation_id) if state else None
            raise LedgerInvariantError(
                product_id,
                f"no open hold for reservation {reservation_id}"
                + (f" (it was {outcome})" if outcome else ""),
            )

        quantity = state.holds[reservation_id]
        self._raise_event(
            StockFinalized(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                product_id=state.product_id,
                reservation_id=reservation_id,
                quantity=quantity,
            )
        )
        return quantity

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def _update(self, **changes: object) -> None:
        state = self._state or self._get_initial_state()
        updated = state.model_copy(update=changes)
        _check_counts(updated)
        self._state = updated

    @handles(StockReceived)
    def _on_stock_received(self, event: StockReceived) -> None:
        state = self._state or self._get_initial_state()
        self._update(
            product_id=event.product_id,
            total=state.total + event.quantity,
            available=state.available + event.quantity,
        )

    @handles(StockWrittenOff)
    def _on_stock_written_off(self, event: StockWrittenOff) -> None:
        state = self._require_state()
        self._update(
            total=state.total - event.quantity,
            available=state.available - event.quantity,
        )

    @handles(StockReserved)
    def _on_stock_reserved(self, event: StockReserved) -> None:
        state = self._state or self._get_initial_state()
        self._update(
            product_id=event.product_id,
            available=state.available - event.quantity,
            reserved=state.reserved + event.quantity,
            holds={**state.holds, event.reservation_id: event.quantity},
        )

    @handles(StockReleased)
    def _on_stock_released(self, event: StockReleased) -> None:
        state = self._require_state()
        holds = dict(state.holds)
        holds.pop(event.reservation_id, None)
        self._update(
            available=state.available + event.quantity,
            reserved=state.reserved - event.quantity,
            holds=holds,
            closed_holds={**state.closed_holds, event.reservation_id: "released"},
        )

    @handles(StockFinalized)
    def _on_stock_finalized(self, event: StockFinalized) -> None:
        state = self._require_state()
        holds = dict(state.holds)
        holds.pop(event.reservation_id, None)
        self._update(
            reserved=state.reserved - event.quantity,
            sold=state.sold + event.quantity,
            holds=holds,
            closed_holds={**state.closed_holds, event.reservation_id: "finalized"},
        )


def _check_counts(state: LedgerState) -> None:
    if state.available < 0 or state.reserved < 0:
        raise LedgerInvariantError(
            state.product_id,
            f"negative counts (available={state.available}, reserved={state.reserved})",
        )
    if state.available + state.reserved > state.total:
        raise LedgerInvariantError(
            state.product_id,
            f"available ({state.available}) + reserved ({state.reserved}) "
            f"exceeds total ({state.total})",
        )
