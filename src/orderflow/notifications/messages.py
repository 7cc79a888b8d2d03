"""Notification messages rendered from order events."""

from typing import Literal

from pydantic import BaseModel, ConfigDict

from orderflow.events.base import DomainEvent
from orderflow.orders.aggregate import OrderState
from orderflow.orders.events import (
    OrderCancelled,
    OrderDelivered,
    OrderPlaced,
    OrderShipped,
    PaymentSettled,
)
from orderflow.orders.models import OrderStatus, RefundStatus

Audience = Literal["customer", "admin"]


class Notification(BaseModel):
    """One message for one recipient, ready for any channel."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    audience: Audience
    order_id: str
    order_number: str
    customer_id: str
    recipient_name: str
    phone: str
    subject: str
    body: str


def _money(state: OrderState) -> str:
    return f"{state.currency} {state.pricing.total}"


def _message(
    event: DomainEvent,
    state: OrderState,
    subject: str,
    body: str,
    audience: Audience = "customer",
) -> Notification:
    return Notification(
        event_type=event.event_type,
        audience=audience,
        order_id=str(state.order_id),
        order_number=state.order_number,
        customer_id=state.customer_id,
        recipient_name=state.shipping_address.full_name,
        phone=state.shipping_address.phone,
        subject=subject,
        body=body,
    )


def render(event: DomainEvent, state: OrderState) -> list[Notification]:
    """Messages an event produces; empty for events nobody is told about."""
    number = state.order_number
    name = state.shipping_address.full_name

    if isinstance(event, OrderPlaced):
        lines = "\n".join(
            f"- {item.name or item.product_id} x{item.quantity}: {item.line_total}"
            for item in state.items
        )
        messages: list[Notification] = []
        if event.initial_status is OrderStatus.CONFIRMED:
            messages.append(
                _message(
                    event,
                    state,
                    f"Order Confirmation - {number}",
                    f"Dear {name},\n\nThank you for your order {number}.\n{lines}\n"
                    f"Total: {_money(state)} (pay on delivery)",
                )
            )
        messages.append(
            _message(
                event,
                state,
                f"NEW ORDER RECEIVED - {number}",
                f"Order {number} from customer {state.customer_id}\n{lines}\n"
                f"Total: {_money(state)}\nPayment: {state.payment.method.value}",
                audience="admin",
            )
        )
        return messages

    if isinstance(event, PaymentSettled):
        return [
            _message(
                event,
                state,
                f"Order Confirmation - {number}",
                f"Dear {name},\n\nWe received your payment of {_money(state)} "
                f"for order {number}. We will let you know when it ships.",
            )
        ]

    if isinstance(event, OrderShipped):
        tracking = event.tracking
        estimate = (
            tracking.estimated_delivery.date().isoformat()
            if tracking.estimated_delivery
            else "3-5 business days"
        )
        return [
            _message(
                event,
                state,
                f"Your Order Has Shipped - {number}",
                f"Dear {name},\n\nYour order {number} is on its way.\n"
                f"Carrier: {tracking.carrier or 'n/a'}\n"
                f"Tracking Number: {tracking.tracking_number or 'Will be updated soon'}\n"
                f"Estimated Delivery: {estimate}",
            )
        ]

    if isinstance(event, OrderDelivered):
        return [
            _message(
                event,
                state,
                f"Order Delivered - {number}",
                f"Dear {name},\n\nYour order {number} has been delivered.",
            )
        ]

    if isinstance(event, OrderCancelled):
        refund = (
            "\nYour refund has been initiated."
            if event.refund_status is not RefundStatus.NOT_REQUIRED
            else ""
        )
        return [
            _message(
                event,
                state,
                f"Order Cancelled - {number}",
                f"Dear {name},\n\nYour order {number} was cancelled: {event.reason}.{refund}",
            )
        ]

    return []
