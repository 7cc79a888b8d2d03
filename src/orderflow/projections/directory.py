"""
Order directory: the lookup and listing read model.

Maps order numbers and gateway order references to order ids and keeps
a summary row per order for customer and seller listings, status
statistics and the expiry sweep.
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from orderflow.handlers.decorators import handles
from orderflow.orders.events import (
    ORDER_AGGREGATE_TYPE,
    OrderCancelled,
    OrderConfirmed,
    OrderDelivered,
    OrderPlaced,
    OrderProcessingStarted,
    OrderReturned,
    OrderShipped,
    PaymentFailed,
    PaymentIntentOpened,
    PaymentSettled,
    RefundStatusChanged,
    ReservationFinalized,
    ReservationReleased,
    StatusTransitioned,
)
from orderflow.orders.models import (
    LineItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    ReservationState,
)
from orderflow.projections.base import DeclarativeProjection
from orderflow.stores.interface import EventStore

T = TypeVar("T")


class OrderSummary(BaseModel):
    order_id: UUID
    order_number: str
    customer_id: str
    items: list[LineItem]
    seller_ids: list[str]
    status: OrderStatus
    total: Decimal
    currency: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    refund_status: RefundStatus = RefundStatus.NOT_REQUIRED
    gateway_order_refs: list[str] = Field(default_factory=list)
    reservation_state: ReservationState = ReservationState.HELD
    placed_at: datetime
    updated_at: datetime
    failed_at: datetime | None = None


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class StatusStats(BaseModel):
    count: int = 0
    total_amount: Decimal = Decimal("0")


class OrderDirectory(DeclarativeProjection):
    """
    In-memory order index over the order streams.

    Subscribe it synchronously (``bus.subscribe_all(directory)``) so a
    lookup issued right after a command sees that command's events, and
    call ``catch_up`` before reading when other processes share the store.
    """

    source_aggregate_types = (ORDER_AGGREGATE_TYPE,)

    def __init__(self, event_store: EventStore | None = None) -> None:
        super().__init__(event_store)
        self._orders: dict[UUID, OrderSummary] = {}
        self._by_number: dict[str, UUID] = {}
        self._by_gateway_ref: dict[str, UUID] = {}

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, order_id: UUID) -> OrderSummary | None:
        return self._orders.get(order_id)

    def find_by_number(self, order_number: str) -> UUID | None:
        return self._by_number.get(order_number)

    def find_by_gateway_ref(self, gateway_order_ref: str) -> UUID | None:
        return self._by_gateway_ref.get(gateway_order_ref)

    def __len__(self) -> int:
        return len(self._orders)

    def customer_orders(
        self,
        customer_id: str,
        status: OrderStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[OrderSummary]:
        rows = [
            row
            for row in self._orders.values()
            if row.customer_id == customer_id and (status is None or row.status is status)
        ]
        return _paginate(rows, page, limit)

    def seller_orders(
        self,
        seller_id: str,
        status: OrderStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[OrderSummary]:
        """Orders containing the seller's products, with other sellers' lines removed."""
        rows = [
            row.model_copy(
                update={"items": [item for item in row.items if item.seller_id == seller_id]}
            )
            for row in self._orders.values()
            if seller_id in row.seller_ids and (status is None or row.status is status)
        ]
        return _paginate(rows, page, limit)

    def stats(self) -> dict[OrderStatus, StatusStats]:
        """Order count and total amount per status."""
        result = {status: StatusStats() for status in OrderStatus}
        for row in self._orders.values():
            bucket = result[row.status]
            bucket.count += 1
            bucket.total_amount += row.total
        return result

    def unfinalized_orders(self) -> list[UUID]:
        """Delivered or returned orders whose hold was never converted to sold."""
        return [
            row.order_id
            for row in self._orders.values()
            if row.reservation_state is ReservationState.HELD
            and row.status in (OrderStatus.DELIVERED, OrderStatus.RETURNED)
        ]

    def stale_orders(
        self,
        now: datetime,
        pending_expiry: timedelta,
        failure_grace: timedelta,
    ) -> list[UUID]:
        """
        Orders whose stock hold should be given back.

        Pending orders not paid within ``pending_expiry``, pending orders
        whose payment failed more than ``failure_grace`` ago, and
        cancelled orders whose hold was never released.
        """
        stale: list[UUID] = []
        for row in self._orders.values():
            if row.reservation_state is not ReservationState.HELD:
                continue
            if row.status is OrderStatus.CANCELLED:
                stale.append(row.order_id)
            elif (
                row.status is OrderStatus.PENDING
                and row.payment_status is not PaymentStatus.COMPLETED
            ):
                expired = row.placed_at + pending_expiry <= now
                failed = row.failed_at is not None and row.failed_at + failure_grace <= now
                if expired or failed:
                    stale.append(row.order_id)
        return stale

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def _set(self, order_id: UUID, **changes: object) -> None:
        row = self._orders.get(order_id)
        if row is not None:
            self._orders[order_id] = row.model_copy(update=changes)

    def _transitioned(self, event: StatusTransitioned, **changes: object) -> None:
        self._set(
            event.aggregate_id,
            status=event.target_status,
            updated_at=event.occurred_at,
            **changes,
        )

    @handles(OrderPlaced)
    async def _on_placed(self, event: OrderPlaced) -> None:
        self._orders[event.aggregate_id] = OrderSummary(
            order_id=event.aggregate_id,
            order_number=event.order_number,
            customer_id=event.customer_id,
            items=event.items,
            seller_ids=list(dict.fromkeys(item.seller_id for item in event.items)),
            status=event.initial_status,
            total=event.pricing.total,
            currency=event.currency,
            payment_method=event.payment_method,
            placed_at=event.occurred_at,
            updated_at=event.occurred_at,
        )
        self._by_number[event.order_number] = event.aggregate_id

    @handles(PaymentIntentOpened)
    async def _on_payment_intent_opened(self, event: PaymentIntentOpened) -> None:
        self._by_gateway_ref[event.gateway_order_ref] = event.aggregate_id
        row = self._orders.get(event.aggregate_id)
        if row is not None:
            self._set(
                event.aggregate_id,
                gateway_order_refs=[*row.gateway_order_refs, event.gateway_order_ref],
                payment_status=PaymentStatus.PENDING,
                failed_at=None,
            )

    @handles(PaymentSettled)
    async def _on_payment_settled(self, event: PaymentSettled) -> None:
        self._set(event.aggregate_id, payment_status=PaymentStatus.COMPLETED, failed_at=None)

    @handles(PaymentFailed)
    async def _on_payment_failed(self, event: PaymentFailed) -> None:
        self._set(
            event.aggregate_id,
            payment_status=PaymentStatus.FAILED,
            failed_at=event.occurred_at,
        )

    @handles(OrderConfirmed)
    async def _on_confirmed(self, event: OrderConfirmed) -> None:
        self._transitioned(event)

    @handles(OrderProcessingStarted)
    async def _on_processing(self, event: OrderProcessingStarted) -> None:
        self._transitioned(event)

    @handles(OrderShipped)
    async def _on_shipped(self, event: OrderShipped) -> None:
        self._transitioned(event)

    @handles(OrderDelivered)
    async def _on_delivered(self, event: OrderDelivered) -> None:
        row = self._orders.get(event.aggregate_id)
        if row is not None and row.payment_method is PaymentMethod.COD:
            self._transitioned(event, payment_status=PaymentStatus.COMPLETED)
        else:
            self._transitioned(event)

    @handles(OrderCancelled)
    async def _on_cancelled(self, event: OrderCancelled) -> None:
        self._transitioned(event, refund_status=event.refund_status)

    @handles(OrderReturned)
    async def _on_returned(self, event: OrderReturned) -> None:
        row = self._orders.get(event.aggregate_id)
        paid = row is not None and row.payment_status is PaymentStatus.COMPLETED
        refund = RefundStatus.PENDING if paid else RefundStatus.NOT_REQUIRED
        self._transitioned(event, refund_status=refund)

    @handles(RefundStatusChanged)
    async def _on_refund_status_changed(self, event: RefundStatusChanged) -> None:
        changes: dict[str, object] = {"refund_status": event.refund_status}
        if event.refund_status is RefundStatus.COMPLETED:
            changes["payment_status"] = PaymentStatus.REFUNDED
        self._set(event.aggregate_id, **changes)

    @handles(ReservationReleased)
    async def _on_reservation_released(self, event: ReservationReleased) -> None:
        self._set(event.aggregate_id, reservation_state=ReservationState.RELEASED)

    @handles(ReservationFinalized)
    async def _on_reservation_finalized(self, event: ReservationFinalized) -> None:
        self._set(event.aggregate_id, reservation_state=ReservationState.FINALIZED)

    async def _clear(self) -> None:
        self._orders.clear()
        self._by_number.clear()
        self._by_gateway_ref.clear()


def _paginate(rows: list[OrderSummary], page: int, limit: int) -> Page[OrderSummary]:
    if page < 1 or limit < 1:
        raise ValueError(f"page and limit must be >= 1, got page={page}, limit={limit}")
    rows.sort(key=lambda row: row.placed_at, reverse=True)
    start = (page - 1) * limit
    return Page(items=rows[start : start + limit], total=len(rows), page=page, limit=limit)
