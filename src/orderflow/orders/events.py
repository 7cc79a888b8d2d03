"""Events recorded on an order stream."""

from datetime import datetime
from typing import ClassVar, Literal

from pydantic import Field

from orderflow.events.base import DomainEvent
from orderflow.events.registry import register_event
from orderflow.inventory.reservations import Reservation
from orderflow.orders.models import (
    LineItem,
    OrderStatus,
    PaymentMethod,
    PostalAddress,
    PriceBreakdown,
    RefundStatus,
    TrackingInfo,
)

ORDER_AGGREGATE_TYPE = "Order"


class OrderEvent(DomainEvent):
    aggregate_type: str = ORDER_AGGREGATE_TYPE


class StatusTransitioned(OrderEvent):
    """
    Base of events that move the order to a new status.

    Each one appends exactly one status history entry.
    """

    target_status: ClassVar[OrderStatus]

    comment: str = ""


@register_event
class OrderPlaced(OrderEvent):
    """
    Order accepted with its stock reserved and its prices fixed.

    ``initial_status`` is pending for online payment, confirmed for cash
    on delivery.
    """

    order_number: str
    customer_id: str
    items: list[LineItem] = Field(min_length=1)
    shipping_address: PostalAddress
    billing_address: PostalAddress
    pricing: PriceBreakdown
    currency: str = "INR"
    payment_method: PaymentMethod
    reservation: Reservation
    initial_status: OrderStatus = OrderStatus.PENDING
    customer_notes: str = ""
    comment: str = ""


@register_event
class PaymentIntentOpened(OrderEvent):
    """A gateway order was created for this order's total."""

    gateway_order_ref: str
    amount_minor: int = Field(gt=0)
    currency: str


@register_event
class PaymentSettled(OrderEvent):
    """A verified payment was captured."""

    gateway_order_ref: str
    gateway_payment_ref: str
    paid_at: datetime
    source: Literal["callback", "webhook"] = "callback"


@register_event
class PaymentFailed(OrderEvent):
    """A payment attempt failed or could not be verified."""

    gateway_order_ref: str | None = None
    gateway_payment_ref: str | None = None
    reason: str


@register_event
class OrderConfirmed(StatusTransitioned):
    target_status = OrderStatus.CONFIRMED


@register_event
class OrderProcessingStarted(StatusTransitioned):
    target_status = OrderStatus.PROCESSING


@register_event
class OrderShipped(StatusTransitioned):
    target_status = OrderStatus.SHIPPED

    tracking: TrackingInfo


@register_event
class OrderDelivered(StatusTransitioned):
    target_status = OrderStatus.DELIVERED

    delivered_at: datetime


@register_event
class OrderCancelled(StatusTransitioned):
    target_status = OrderStatus.CANCELLED

    reason: str
    refund_status: RefundStatus = RefundStatus.NOT_REQUIRED


@register_event
class OrderReturned(StatusTransitioned):
    target_status = OrderStatus.RETURNED

    reason: str = ""


@register_event
class RefundStatusChanged(OrderEvent):
    refund_status: RefundStatus
    refund_ref: str | None = None
    note: str = ""


@register_event
class ReservationReleased(OrderEvent):
    """The order's inventory hold went back to available stock."""

    units: int = Field(ge=0)


@register_event
class ReservationFinalized(OrderEvent):
    """The order's inventory hold was converted into sold units."""

    units: int = Field(ge=0)


@register_event
class OrderNoteAdded(OrderEvent):
    audience: Literal["customer", "admin"]
    text: str = Field(min_length=1)
