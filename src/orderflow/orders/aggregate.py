"""
The order aggregate.

An order is created already holding its inventory reservation and with
its prices fixed. Every status change goes through the transition table
in ``state_machine`` and appends one status history entry; payment,
refund and reservation bookkeeping are recorded as their own events so
the stream explains every field of the current state.
"""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from pydantic import BaseModel, Field

from orderflow.aggregates.base import DeclarativeAggregate
from orderflow.exceptions import InvalidTransition, ValidationFailure
from orderflow.handlers.decorators import handles
from orderflow.inventory.reservations import Reservation
from orderflow.orders.events import (
    ORDER_AGGREGATE_TYPE,
    OrderCancelled,
    OrderConfirmed,
    OrderDelivered,
    OrderEvent,
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
    StatusTransitioned,
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
from orderflow.orders.state_machine import ensure_transition, is_terminal

logger = logging.getLogger(__name__)

ESTIMATED_DELIVERY_WINDOW = timedelta(days=7)


class OrderState(BaseModel):
    order_id: UUID
    order_number: str
    customer_id: str
    items: list[LineItem]
    shipping_address: PostalAddress
    billing_address: PostalAddress
    pricing: PriceBreakdown
    currency: str
    payment: PaymentRecord
    status: OrderStatus
    status_history: list[StatusEntry] = Field(default_factory=list)
    cancellation: Cancellation | None = None
    tracking: TrackingInfo | None = None
    notes: OrderNotes = Field(default_factory=OrderNotes)
    reservation: Reservation
    reservation_state: ReservationState = ReservationState.HELD
    placed_at: datetime
    updated_at: datetime
    delivered_at: datetime | None = None
    return_reason: str | None = None
    return_refund_status: RefundStatus = RefundStatus.NOT_REQUIRED

    @property
    def seller_ids(self) -> list[str]:
        """Sellers with at least one line in the order, in line order."""
        return list(dict.fromkeys(item.seller_id for item in self.items))

    def items_for_seller(self, seller_id: str) -> list[LineItem]:
        return [item for item in self.items if item.seller_id == seller_id]

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def refund_status(self) -> RefundStatus:
        if self.cancellation is not None:
            return self.cancellation.refund_status
        return self.return_refund_status


class OrderAggregate(DeclarativeAggregate[OrderState]):
    """
    One customer order and its payment.

    Commands raise before producing events when the order's status does
    not allow them, so a rejected command leaves the order untouched.
    Payment commands return False for repeats of something already
    recorded (a duplicate callback or webhook).
    """

    aggregate_type = ORDER_AGGREGATE_TYPE

    def _get_initial_state(self) -> OrderState:
        raise RuntimeError("an order only comes into existence through OrderPlaced")

    @property
    def order_number(self) -> str:
        return self._require_state().order_number

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def place(
        self,
        *,
        order_number: str,
        customer_id: str,
        items: list[LineItem],
        shipping_address: PostalAddress,
        billing_address: PostalAddress | None,
        pricing: PriceBreakdown,
        payment_method: PaymentMethod,
        reservation: Reservation,
        currency: str = "INR",
        customer_notes: str = "",
    ) -> None:
        if self._state is not None:
            raise ValidationFailure(f"Order {self._state.order_number} already exists")
        if not items:
            raise ValidationFailure(
                "Order must contain at least one item",
                [{"field": "items", "message": "must not be empty"}],
            )

        if payment_method.is_online:
            initial_status, comment = OrderStatus.PENDING, "Order placed, awaiting payment"
        else:
            initial_status, comment = OrderStatus.CONFIRMED, "Cash on delivery order confirmed"

        self._raise_event(
            OrderPlaced(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                actor_id=customer_id,
                order_number=order_number,
                customer_id=customer_id,
                items=items,
                shipping_address=shipping_address,
                billing_address=billing_address or shipping_address,
                pricing=pricing,
                currency=currency,
                payment_method=payment_method,
                reservation=reservation,
                initial_status=initial_status,
                customer_notes=customer_notes,
                comment=comment,
            )
        )

    def open_payment_intent(self, gateway_order_ref: str, amount_minor: int, currency: str) -> bool:
        """Record the gateway order created for this order. False if already recorded."""
        state = self._require_state()
        if not state.payment.method.is_online:
            raise ValidationFailure(f"Order {state.order_number} is cash on delivery")
        awaiting_payment = (
            state.status is OrderStatus.PENDING
            and state.payment.status is not PaymentStatus.COMPLETED
        )
        if not awaiting_payment:
            raise InvalidTransition(
                state.order_number, state.status.value, OrderStatus.CONFIRMED.value
            )
        if state.payment.gateway_order_ref == gateway_order_ref:
            return False

        self._raise_event(
            PaymentIntentOpened(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                gateway_order_ref=gateway_order_ref,
                amount_minor=amount_minor,
                currency=currency,
            )
        )
        return True

    def settle_payment(
        self,
        gateway_order_ref: str,
        gateway_payment_ref: str,
        *,
        paid_at: datetime | None = None,
        source: str = "callback",
        actor_id: str | None = None,
    ) -> bool:
        """
        Record a verified, captured payment.

        A pending order is confirmed. A payment that arrives after the
        order was cancelled is recorded and flagged for refund.

        Returns:
            False if this payment was already recorded

        Raises:
            ValidationFailure: If the payment belongs to another gateway order,
                or the order was already paid by a different payment
            InvalidTransition: If the order is past the point of accepting payment
        """
        state = self._require_state()
        payment = state.payment

        if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            if payment.gateway_payment_ref == gateway_payment_ref:
                return False
            raise ValidationFailure(
                f"Order {state.order_number} was already paid by {payment.gateway_payment_ref}"
            )
        if payment.gateway_order_ref != gateway_order_ref:
            raise ValidationFailure(
                f"Gateway order {gateway_order_ref} does not belong to order {state.order_number}"
            )
        if state.status not in (OrderStatus.PENDING, OrderStatus.CANCELLED):
            raise InvalidTransition(
                state.order_number, state.status.value, OrderStatus.CONFIRMED.value
            )

        settled = PaymentSettled(
            aggregate_id=self.aggregate_id,
            aggregate_version=self.get_next_version(),
            actor_id=actor_id,
            gateway_order_ref=gateway_order_ref,
            gateway_payment_ref=gateway_payment_ref,
            paid_at=paid_at or datetime.now(UTC),
            source=source,
        )
        self._raise_event(settled)

        if state.status is OrderStatus.PENDING:
            self._raise_event(
                OrderConfirmed(
                    aggregate_id=self.aggregate_id,
                    aggregate_version=self.get_next_version(),
                    actor_id=actor_id,
                    comment="Payment received",
                ).with_causation(settled)
            )
        else:
            logger.warning(
                "Payment %s captured for cancelled order %s; refund required",
                gateway_payment_ref,
                state.order_number,
                extra={"order_number": state.order_number, "payment_ref": gateway_payment_ref},
            )
            self._raise_event(
                RefundStatusChanged(
                    aggregate_id=self.aggregate_id,
                    aggregate_version=self.get_next_version(),
                    actor_id=actor_id,
                    refund_status=RefundStatus.PENDING,
                    note="Payment captured after cancellation",
                ).with_causation(settled)
            )
        return True

    def record_payment_failure(
        self,
        reason: str,
        *,
        gateway_order_ref: str | None = None,
        gateway_payment_ref: str | None = None,
        actor_id: str | None = None,
    ) -> bool:
        """
        Record a failed or unverifiable payment attempt.

        The order stays pending so the buyer can retry; the reservation is
        left for the expiry sweep. Ignored (returns False) once the order
        is no longer awaiting payment.
        """
        state = self._require_state()
        awaiting_payment = (
            state.status is OrderStatus.PENDING
            and state.payment.status is not PaymentStatus.COMPLETED
        )
        if not awaiting_payment:
            return False

        self._raise_event(
            PaymentFailed(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                actor_id=actor_id,
                gateway_order_ref=gateway_order_ref or state.payment.gateway_order_ref,
                gateway_payment_ref=gateway_payment_ref,
                reason=reason,
            )
        )
        return True

    def confirm(self, actor_id: str | None = None, comment: str = "") -> None:
        """Manually confirm a pending order. Online orders must be paid first."""
        state = self._require_state()
        if state.payment.method.is_online and state.payment.status is not PaymentStatus.COMPLETED:
            raise ValidationFailure(f"Order {state.order_number} has not been paid")
        self._transition(OrderConfirmed, actor_id, comment or "Order confirmed")

    def start_processing(self, actor_id: str | None = None, comment: str = "") -> None:
        self._transition(OrderProcessingStarted, actor_id, comment or "Order is being processed")

    def ship(
        self,
        actor_id: str | None = None,
        comment: str = "",
        *,
        carrier: str = "",
        tracking_number: str = "",
        tracking_url: str = "",
        estimated_delivery: datetime | None = None,
    ) -> None:
        shipped_at = datetime.now(UTC)
        tracking = TrackingInfo(
            carrier=carrier,
            tracking_number=tracking_number,
            tracking_url=tracking_url,
            estimated_delivery=estimated_delivery or shipped_at + ESTIMATED_DELIVERY_WINDOW,
        )
        self._transition(OrderShipped, actor_id, comment or "Order shipped", tracking=tracking)

    def deliver(
        self,
        actor_id: str | None = None,
        comment: str = "",
        delivered_at: datetime | None = None,
    ) -> None:
        self._transition(
            OrderDelivered,
            actor_id,
            comment or "Order delivered",
            delivered_at=delivered_at or datetime.now(UTC),
        )

    def cancel(self, reason: str, actor_id: str | None = None, comment: str = "") -> None:
        """
        Cancel the order. A captured payment makes the refund pending.

        Raises:
            InvalidTransition: Once the order has shipped
        """
        state = self._require_state()
        refund_status = (
            RefundStatus.PENDING
            if state.payment.status is PaymentStatus.COMPLETED
            else RefundStatus.NOT_REQUIRED
        )
        self._transition(
            OrderCancelled,
            actor_id,
            comment or f"Order cancelled: {reason}",
            reason=reason,
            refund_status=refund_status,
        )

    def expire(self, reason: str, actor_id: str | None = "system") -> bool:
        """
        Cancel an order that is still waiting for payment.

        Returns False, changing nothing, if the order was paid or moved on
        since the sweep picked it.
        """
        state = self._require_state()
        if state.status is not OrderStatus.PENDING:
            return False
        if state.payment.status is PaymentStatus.COMPLETED:
            return False
        self.cancel(reason, actor_id)
        return True

    def mark_returned(
        self, reason: str = "", actor_id: str | None = None, comment: str = ""
    ) -> None:
        self._transition(OrderReturned, actor_id, comment or "Order returned", reason=reason)

    def record_refund(
        self,
        refund_status: RefundStatus,
        refund_ref: str | None = None,
        note: str = "",
        actor_id: str | None = None,
    ) -> bool:
        """Track the refund of a cancelled or returned order. False if unchanged."""
        state = self._require_state()
        if state.status not in (OrderStatus.CANCELLED, OrderStatus.RETURNED):
            raise ValidationFailure(f"Order {state.order_number} is not cancelled or returned")
        if state.refund_status is refund_status and refund_ref in (None, state.payment.refund_ref):
            return False

        self._raise_event(
            RefundStatusChanged(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                actor_id=actor_id,
                refund_status=refund_status,
                refund_ref=refund_ref,
                note=note,
            )
        )
        return True

    def mark_reservation_released(self, units: int) -> bool:
        """Record that the inventory hold went back to stock. False if not held."""
        state = self._require_state()
        if state.reservation_state is not ReservationState.HELD:
            return False
        self._raise_event(
            ReservationReleased(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                units=units,
            )
        )
        return True

    def mark_reservation_finalized(self, units: int) -> bool:
        """Record that the inventory hold became sold units. False if not held."""
        state = self._require_state()
        if state.reservation_state is not ReservationState.HELD:
            return False
        self._raise_event(
            ReservationFinalized(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                units=units,
            )
        )
        return True

    def add_note(self, audience: str, text: str, actor_id: str | None = None) -> None:
        state = self._require_state()
        if state.is_terminal:
            raise ValidationFailure(
                f"Order {state.order_number} is {state.status.value} and can no longer change"
            )
        self._raise_event(
            OrderNoteAdded(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                actor_id=actor_id,
                audience=audience,
                text=text,
            )
        )

    def _transition(
        self,
        event_class: type[StatusTransitioned],
        actor_id: str | None,
        comment: str,
        **fields: object,
    ) -> None:
        state = self._require_state()
        ensure_transition(state.order_number, state.status, event_class.target_status)
        self._raise_event(
            event_class(
                aggregate_id=self.aggregate_id,
                aggregate_version=self.get_next_version(),
                actor_id=actor_id,
                comment=comment,
                **fields,
            )
        )

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def _enter_status(self, event: StatusTransitioned, **changes: object) -> None:
        state = self._require_state()
        entry = StatusEntry(
            status=event.target_status,
            comment=event.comment,
            actor=event.actor_id,
            timestamp=event.occurred_at,
        )
        self._state = state.model_copy(
            update={
                "status": event.target_status,
                "status_history": [*state.status_history, entry],
                "updated_at": event.occurred_at,
                **changes,
            }
        )

    def _update(self, event: OrderEvent, **changes: object) -> None:
        state = self._require_state()
        self._state = state.model_copy(update={"updated_at": event.occurred_at, **changes})

    @handles(OrderPlaced)
    def _on_placed(self, event: OrderPlaced) -> None:
        self._state = OrderState(
            order_id=event.aggregate_id,
            order_number=event.order_number,
            customer_id=event.customer_id,
            items=event.items,
            shipping_address=event.shipping_address,
            billing_address=event.billing_address,
            pricing=event.pricing,
            currency=event.currency,
            payment=PaymentRecord(method=event.payment_method),
            status=event.initial_status,
            status_history=[
                StatusEntry(
                    status=event.initial_status,
                    comment=event.comment,
                    actor=event.actor_id,
                    timestamp=event.occurred_at,
                )
            ],
            notes=OrderNotes(customer=event.customer_notes),
            reservation=event.reservation,
            placed_at=event.occurred_at,
            updated_at=event.occurred_at,
        )

    @handles(PaymentIntentOpened)
    def _on_payment_intent_opened(self, event: PaymentIntentOpened) -> None:
        state = self._require_state()
        payment = state.payment.model_copy(
            update={
                "gateway_order_ref": event.gateway_order_ref,
                "status": PaymentStatus.PENDING,
                "failure_reason": None,
            }
        )
        self._update(event, payment=payment)

    @handles(PaymentSettled)
    def _on_payment_settled(self, event: PaymentSettled) -> None:
        state = self._require_state()
        payment = state.payment.model_copy(
            update={
                "status": PaymentStatus.COMPLETED,
                "gateway_payment_ref": event.gateway_payment_ref,
                "paid_at": event.paid_at,
                "failure_reason": None,
            }
        )
        self._update(event, payment=payment)

    @handles(PaymentFailed)
    def _on_payment_failed(self, event: PaymentFailed) -> None:
        state = self._require_state()
        payment = state.payment.model_copy(
            update={
                "status": PaymentStatus.FAILED,
                "gateway_payment_ref": event.gateway_payment_ref,
                "failed_at": event.occurred_at,
                "failure_reason": event.reason,
            }
        )
        self._update(event, payment=payment)

    @handles(OrderConfirmed)
    def _on_confirmed(self, event: OrderConfirmed) -> None:
        self._enter_status(event)

    @handles(OrderProcessingStarted)
    def _on_processing_started(self, event: OrderProcessingStarted) -> None:
        self._enter_status(event)

    @handles(OrderShipped)
    def _on_shipped(self, event: OrderShipped) -> None:
        self._enter_status(event, tracking=event.tracking)

    @handles(OrderDelivered)
    def _on_delivered(self, event: OrderDelivered) -> None:
        state = self._require_state()
        tracking = (state.tracking or TrackingInfo()).model_copy(
            update={"actual_delivery": event.delivered_at}
        )
        changes: dict[str, object] = {"tracking": tracking, "delivered_at": event.delivered_at}
        if not state.payment.method.is_online:
            # Cash is collected on delivery
            changes["payment"] = state.payment.model_copy(
                update={"status": PaymentStatus.COMPLETED, "paid_at": event.delivered_at}
            )
        self._enter_status(event, **changes)

    @handles(OrderCancelled)
    def _on_cancelled(self, event: OrderCancelled) -> None:
        cancellation = Cancellation(
            reason=event.reason,
            actor=event.actor_id,
            timestamp=event.occurred_at,
            refund_status=event.refund_status,
        )
        self._enter_status(event, cancellation=cancellation)

    @handles(OrderReturned)
    def _on_returned(self, event: OrderReturned) -> None:
        state = self._require_state()
        refund_status = (
            RefundStatus.PENDING
            if state.payment.status is PaymentStatus.COMPLETED
            else RefundStatus.NOT_REQUIRED
        )
        self._enter_status(
            event, return_reason=event.reason, return_refund_status=refund_status
        )

    @handles(RefundStatusChanged)
    def _on_refund_status_changed(self, event: RefundStatusChanged) -> None:
        state = self._require_state()
        payment_changes: dict[str, object] = {}
        if event.refund_ref:
            payment_changes["refund_ref"] = event.refund_ref
        if event.refund_status is RefundStatus.COMPLETED:
            payment_changes["status"] = PaymentStatus.REFUNDED
        changes: dict[str, object] = {
            "payment": state.payment.model_copy(update=payment_changes)
        }
        if state.cancellation is not None:
            changes["cancellation"] = state.cancellation.model_copy(
                update={"refund_status": event.refund_status}
            )
        else:
            changes["return_refund_status"] = event.refund_status
        self._update(event, **changes)

    @handles(ReservationReleased)
    def _on_reservation_released(self, event: ReservationReleased) -> None:
        self._update(event, reservation_state=ReservationState.RELEASED)

    @handles(ReservationFinalized)
    def _on_reservation_finalized(self, event: ReservationFinalized) -> None:
        self._update(event, reservation_state=ReservationState.FINALIZED)

    @handles(OrderNoteAdded)
    def _on_note_added(self, event: OrderNoteAdded) -> None:
        state = self._require_state()
        current = getattr(state.notes, event.audience)
        text = f"{current}\n{event.text}" if current else event.text
        self._update(event, notes=state.notes.model_copy(update={event.audience: text}))
