"""Seller sales figures accrued from delivered orders."""

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel

from orderflow.handlers.decorators import handles
from orderflow.orders.events import (
    ORDER_AGGREGATE_TYPE,
    OrderDelivered,
    OrderPlaced,
    OrderReturned,
)
from orderflow.orders.models import LineItem
from orderflow.projections.base import DeclarativeProjection
from orderflow.stores.interface import EventStore


class SellerSales(BaseModel):
    seller_id: str
    orders: int = 0
    units: int = 0
    revenue: Decimal = Decimal("0")


class SellerSalesProjection(DeclarativeProjection):
    """
    Revenue per seller: ``unit_price * quantity`` of each delivered line.

    Returned orders are taken back out.
    """

    source_aggregate_types = (ORDER_AGGREGATE_TYPE,)

    def __init__(self, event_store: EventStore | None = None) -> None:
        super().__init__(event_store)
        self._order_items: dict[UUID, list[LineItem]] = {}
        self._sales: dict[str, SellerSales] = {}

    def for_seller(self, seller_id: str) -> SellerSales:
        return self._sales.get(seller_id) or SellerSales(seller_id=seller_id)

    def _accrue(self, order_id: UUID, sign: int) -> None:
        by_seller: dict[str, list[LineItem]] = {}
        for item in self._order_items.get(order_id, []):
            by_seller.setdefault(item.seller_id, []).append(item)

        for seller_id, items in by_seller.items():
            sales = self.for_seller(seller_id)
            self._sales[seller_id] = sales.model_copy(
                update={
                    "orders": sales.orders + sign,
                    "units": sales.units + sign * sum(item.quantity for item in items),
                    "revenue": sales.revenue + sign * sum(
                        (item.line_total for item in items), Decimal("0")
                    ),
                }
            )

    @handles(OrderPlaced)
    async def _on_placed(self, event: OrderPlaced) -> None:
        self._order_items[event.aggregate_id] = event.items

    @handles(OrderDelivered)
    async def _on_delivered(self, event: OrderDelivered) -> None:
        self._accrue(event.aggregate_id, 1)

    @handles(OrderReturned)
    async def _on_returned(self, event: OrderReturned) -> None:
        self._accrue(event.aggregate_id, -1)

    async def _clear(self) -> None:
        self._order_items.clear()
        self._sales.clear()
