"""
Unit tests for OrderAggregate.

Tests cover:
- Placing online and cash-on-delivery orders
- Payment intents, settlement and failures (including duplicates)
- Fulfillment transitions and the status history
- Cancellation, expiry, returns and refund tracking
- Reservation bookkeeping and notes
- Rebuilding state from history
"""

from decimal import Decimal

import pytest

from orderflow.exceptions import InvalidTransition, ValidationFailure
from orderflow.orders.aggregate import OrderAggregate
from orderflow.orders.events import (
    OrderConfirmed,
    OrderPlaced,
    PaymentSettled,
    RefundStatusChanged,
)
from orderflow.orders.models import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    ReservationState,
)
from orderflow.orders.state_machine import validate_history
from tests.fixtures import make_line, placed_order


def paid_order() -> OrderAggregate:
    order = placed_order()
    order.open_payment_intent("order_abc", 40400, "INR")
    order.settle_payment("order_abc", "pay_1")
    return order


class TestPlace:
    def test_online_order_starts_pending(self) -> None:
        order = placed_order(PaymentMethod.UPI)
        state = order.state

        assert state is not None
        assert state.status is OrderStatus.PENDING
        assert state.payment.status is PaymentStatus.PENDING
        assert state.pricing.total == Decimal("404")
        assert state.billing_address == state.shipping_address
        assert state.reservation_state is ReservationState.HELD
        assert [entry.status for entry in state.status_history] == [OrderStatus.PENDING]

    def test_cod_order_starts_confirmed(self) -> None:
        order = placed_order(PaymentMethod.COD)

        assert order.state is not None
        assert order.state.status is OrderStatus.CONFIRMED
        assert isinstance(order.uncommitted_events[0], OrderPlaced)

    def test_order_cannot_be_placed_twice(self) -> None:
        order = placed_order()
        with pytest.raises(ValidationFailure):
            order.place(
                order_number="ORD20260101ZZZ999",
                customer_id="C-1",
                items=[make_line()],
                shipping_address=order.state.shipping_address,  # type: ignore[union-attr]
                billing_address=None,
                pricing=order.state.pricing,  # type: ignore[union-attr]
                payment_method=PaymentMethod.UPI,
                reservation=order.state.reservation,  # type: ignore[union-attr]
            )

    def test_seller_views(self) -> None:
        order = placed_order(
            items=[make_line("P-SAREE", 1, "1200", "S-1"), make_line("P-MUG", 2, "300", "S-2")]
        )
        state = order.state

        assert state is not None
        assert state.seller_ids == ["S-1", "S-2"]
        assert [item.product_id for item in state.items_for_seller("S-2")] == ["P-MUG"]


class TestPayment:
    def test_settlement_confirms_pending_order(self) -> None:
        order = paid_order()
        state = order.state

        assert state is not None
        assert state.status is OrderStatus.CONFIRMED
        assert state.payment.status is PaymentStatus.COMPLETED
        assert state.payment.gateway_payment_ref == "pay_1"
        assert state.payment.paid_at is not None

        settled, confirmed = order.uncommitted_events[-2:]
        assert isinstance(settled, PaymentSettled)
        assert isinstance(confirmed, OrderConfirmed)
        assert confirmed.causation_id == settled.event_id

    @pytest.mark.parametrize("method", [PaymentMethod.UPI, PaymentMethod.COD])
    def test_completed_payment_never_leaves_order_pending(self, method: PaymentMethod) -> None:
        order = placed_order(method)
        steps = [order.start_processing, order.ship, order.deliver, order.mark_returned]
        if method.is_online:
            order.open_payment_intent("order_abc", 40400, "INR")
            steps.insert(0, lambda: order.settle_payment("order_abc", "pay_1"))

        for step in steps:
            step()
            state = order.state
            assert state is not None
            if state.payment.status is PaymentStatus.COMPLETED:
                assert state.status is not OrderStatus.PENDING

        assert order.state is not None
        assert order.state.payment.status is PaymentStatus.COMPLETED

    def test_duplicate_settlement_is_ignored(self) -> None:
        order = paid_order()
        version = order.version

        assert order.settle_payment("order_abc", "pay_1") is False
        assert order.version == version

    def test_second_payment_is_rejected(self) -> None:
        order = paid_order()
        with pytest.raises(ValidationFailure):
            order.settle_payment("order_abc", "pay_2")

    def test_payment_for_another_gateway_order_is_rejected(self) -> None:
        order = placed_order()
        order.open_payment_intent("order_abc", 40400, "INR")

        with pytest.raises(ValidationFailure):
            order.settle_payment("order_other", "pay_1")

    def test_payment_intent_is_recorded_once(self) -> None:
        order = placed_order()

        assert order.open_payment_intent("order_abc", 40400, "INR") is True
        assert order.open_payment_intent("order_abc", 40400, "INR") is False
        assert order.state is not None
        assert order.state.payment.gateway_order_ref == "order_abc"

    def test_cod_order_has_no_payment_intent(self) -> None:
        order = placed_order(PaymentMethod.COD)
        with pytest.raises(ValidationFailure):
            order.open_payment_intent("order_abc", 40400, "INR")

    def test_failure_keeps_order_pending(self) -> None:
        order = placed_order()
        order.open_payment_intent("order_abc", 40400, "INR")

        assert order.record_payment_failure("signature mismatch", gateway_payment_ref="pay_x")

        state = order.state
        assert state is not None
        assert state.status is OrderStatus.PENDING
        assert state.payment.status is PaymentStatus.FAILED
        assert state.payment.failure_reason == "signature mismatch"
        assert state.payment.failed_at is not None

    def test_payment_after_failure_still_settles(self) -> None:
        order = placed_order()
        order.open_payment_intent("order_abc", 40400, "INR")
        order.record_payment_failure("card declined")

        assert order.settle_payment("order_abc", "pay_2") is True
        assert order.state is not None
        assert order.state.payment.failure_reason is None
        assert order.state.status is OrderStatus.CONFIRMED

    def test_failure_after_payment_is_ignored(self) -> None:
        order = paid_order()
        assert order.record_payment_failure("late failure webhook") is False

    def test_late_payment_on_cancelled_order_requires_refund(self) -> None:
        order = placed_order()
        order.open_payment_intent("order_abc", 40400, "INR")
        order.expire("Payment not completed in time")

        assert order.settle_payment("order_abc", "pay_1", source="webhook") is True

        state = order.state
        assert state is not None
        assert state.status is OrderStatus.CANCELLED
        assert state.payment.status is PaymentStatus.COMPLETED
        assert state.refund_status is RefundStatus.PENDING
        assert isinstance(order.uncommitted_events[-1], RefundStatusChanged)

    def test_payment_on_shipped_order_is_rejected(self) -> None:
        order = placed_order(PaymentMethod.COD)
        order.start_processing()
        order.ship()

        with pytest.raises((InvalidTransition, ValidationFailure)):
            order.settle_payment("order_abc", "pay_1")


class TestFulfillment:
    def test_full_lifecycle_history_is_valid(self) -> None:
        order = paid_order()
        order.start_processing("S-2")
        order.ship("S-2", carrier="BlueDart", tracking_number="BD123")
        order.deliver("S-2")

        state = order.state
        assert state is not None
        assert state.status is OrderStatus.DELIVERED
        assert state.tracking is not None
        assert state.tracking.tracking_number == "BD123"
        assert state.tracking.estimated_delivery is not None
        assert state.tracking.actual_delivery == state.delivered_at
        assert validate_history([entry.status for entry in state.status_history])

    def test_unpaid_online_order_cannot_be_confirmed(self) -> None:
        order = placed_order()
        with pytest.raises(ValidationFailure):
            order.confirm("admin")

    def test_skipping_a_step_is_rejected_without_events(self) -> None:
        order = paid_order()
        version = order.version

        with pytest.raises(InvalidTransition):
            order.deliver("S-2")
        assert order.version == version

    def test_cod_payment_completes_on_delivery(self) -> None:
        order = placed_order(PaymentMethod.COD)
        order.start_processing()
        order.ship()
        order.deliver()

        assert order.state is not None
        assert order.state.payment.status is PaymentStatus.COMPLETED


class TestCancellation:
    def test_unpaid_cancel_needs_no_refund(self) -> None:
        order = placed_order()
        order.cancel("changed my mind", "C-1")

        state = order.state
        assert state is not None
        assert state.status is OrderStatus.CANCELLED
        assert state.cancellation is not None
        assert state.cancellation.reason == "changed my mind"
        assert state.cancellation.actor == "C-1"
        assert state.refund_status is RefundStatus.NOT_REQUIRED

    def test_paid_cancel_makes_refund_pending(self) -> None:
        order = paid_order()
        order.cancel("out of stock", "S-2")

        assert order.state is not None
        assert order.state.refund_status is RefundStatus.PENDING

    def test_shipped_order_cannot_be_cancelled(self) -> None:
        order = paid_order()
        order.start_processing()
        order.ship()

        with pytest.raises(InvalidTransition):
            order.cancel("too late")

    def test_expire_only_touches_unpaid_pending_orders(self) -> None:
        assert paid_order().expire("timeout") is False

        order = placed_order()
        assert order.expire("timeout") is True
        assert order.expire("timeout") is False

    def test_refund_completion_marks_payment_refunded(self) -> None:
        order = paid_order()
        order.cancel("out of stock")

        assert order.record_refund(RefundStatus.COMPLETED, "rfnd_1") is True
        assert order.record_refund(RefundStatus.COMPLETED, "rfnd_1") is False

        state = order.state
        assert state is not None
        assert state.payment.status is PaymentStatus.REFUNDED
        assert state.payment.refund_ref == "rfnd_1"
        assert state.refund_status is RefundStatus.COMPLETED

    def test_refund_of_active_order_is_rejected(self) -> None:
        with pytest.raises(ValidationFailure):
            paid_order().record_refund(RefundStatus.COMPLETED, "rfnd_1")

    def test_return_after_delivery(self) -> None:
        order = paid_order()
        order.start_processing()
        order.ship()
        order.deliver()
        order.mark_returned("damaged in transit", "admin")

        state = order.state
        assert state is not None
        assert state.status is OrderStatus.RETURNED
        assert state.return_reason == "damaged in transit"
        assert state.refund_status is RefundStatus.PENDING

    def test_returned_order_tracks_its_refund_without_a_cancellation(self) -> None:
        order = paid_order()
        order.start_processing()
        order.ship()
        order.deliver()
        order.mark_returned("wrong size", "admin")
        order.record_refund(RefundStatus.COMPLETED, "rfnd_9")

        state = order.state
        assert state is not None
        assert state.cancellation is None
        assert state.return_refund_status is RefundStatus.COMPLETED
        assert state.refund_status is RefundStatus.COMPLETED
        assert state.payment.refund_ref == "rfnd_9"


class TestReservationAndNotes:
    def test_reservation_is_closed_once(self) -> None:
        order = placed_order()
        order.cancel("timeout")

        assert order.mark_reservation_released(1) is True
        assert order.mark_reservation_released(1) is False
        assert order.mark_reservation_finalized(1) is False
        assert order.state is not None
        assert order.state.reservation_state is ReservationState.RELEASED

    def test_notes_accumulate_per_audience(self) -> None:
        order = placed_order()
        order.add_note("admin", "fragile", "admin")
        order.add_note("admin", "gift wrap", "admin")

        assert order.state is not None
        assert order.state.notes.admin == "fragile\ngift wrap"
        assert order.state.notes.customer == ""

    def test_terminal_order_rejects_notes(self) -> None:
        order = placed_order()
        order.cancel("timeout")

        with pytest.raises(ValidationFailure):
            order.add_note("customer", "hello")


class TestReplay:
    def test_state_rebuilds_from_history(self) -> None:
        original = paid_order()
        original.start_processing()
        original.cancel("seller cancelled")

        replayed = OrderAggregate(original.aggregate_id)
        replayed.load_from_history(original.uncommitted_events)

        assert replayed.version == original.version
        assert replayed.state == original.state
