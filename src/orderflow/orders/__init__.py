"""The order aggregate, its status machine and pricing."""

from orderflow.orders.aggregate import OrderAggregate, OrderState
from orderflow.orders.events import (
    OrderCancelled,
    OrderConfirmed,
    OrderDelivered,
    OrderNoteAdded,
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
)
from orderflow.orders.models import (
    Cancellation,
    LineItem,
    OrderNotes,
    OrderStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    PostalAddress,
    PriceBreakdown,
    RefundStatus,
    ReservationState,
    StatusEntry,
    TrackingInfo,
)
from orderflow.orders.numbering import generate_order_number, unique_order_number
from orderflow.orders.pricing import PricingPolicy, compute_pricing
from orderflow.orders.repository import OrderRepository
from orderflow.orders.state_machine import (
    TERMINAL_STATES,
    TRANSITIONS,
    ensure_transition,
    next_statuses,
    validate_history,
)

__all__ = [
    "Cancellation",
    "LineItem",
    "OrderAggregate",
    "OrderCancelled",
    "OrderConfirmed",
    "OrderDelivered",
    "OrderNoteAdded",
    "OrderNotes",
    "OrderPlaced",
    "OrderProcessingStarted",
    "OrderRepository",
    "OrderReturned",
    "OrderShipped",
    "OrderState",
    "OrderStatus",
    "PaymentFailed",
    "PaymentIntentOpened",
    "PaymentMethod",
    "PaymentRecord",
    "PaymentSettled",
    "PaymentStatus",
    "PostalAddress",
    "PriceBreakdown",
    "PricingPolicy",
    "RefundStatus",
    "RefundStatusChanged",
    "ReservationFinalized",
    "ReservationReleased",
    "ReservationState",
    "StatusEntry",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "TrackingInfo",
    "compute_pricing",
    "ensure_transition",
    "generate_order_number",
    "next_statuses",
    "unique_order_number",
    "validate_history",
]
