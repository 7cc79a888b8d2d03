"""
Unit tests for PaymentCoordinator.

Tests cover:
- Opening payment intents, reuse and gateway outages
- Buyer callback verification (valid, tampered, duplicate)
- Gateway webhooks (secret separation, unknown events, failures)
- Refunds, including payments that arrive after cancellation
"""

import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest

from orderflow.container import Services
from orderflow.exceptions import (
    GatewayUnavailable,
    InvalidTransition,
    NotFound,
    SignatureMismatch,
    ValidationFailure,
)
from orderflow.orders.models import OrderStatus, PaymentMethod, PaymentStatus, RefundStatus
from orderflow.payments.gateway import FakePaymentGateway
from orderflow.payments.models import PaymentCallback, UnverifiedPayment, VerifiedPayment
from orderflow.payments.signatures import sign_webhook
from tests.fixtures import place_order


def captured_webhook(gateway_order_ref: str, payment_ref: str = "pay_hook") -> bytes:
    body: dict[str, Any] = {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": payment_ref, "order_id": gateway_order_ref}}},
    }
    return json.dumps(body).encode()


class TestInitiate:
    @pytest.mark.asyncio
    async def test_online_order_gets_intent_in_minor_units(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)

        intent = placed.payment_intent
        assert intent is not None
        assert intent.amount_minor == 40400
        assert intent.currency == "INR"
        assert intent.receipt == placed.order.order_number
        assert intent.key_id == services.config.gateway_key_id
        assert placed.order.payment.gateway_order_ref == intent.gateway_order_ref
        assert intent.gateway_order_ref in gateway.intents

    @pytest.mark.asyncio
    async def test_repeated_initiate_reuses_the_intent(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None

        again = await services.payments.initiate(placed.order.order_id)

        assert again.gateway_order_ref == placed.payment_intent.gateway_order_ref
        assert len(gateway.intents) == 1

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        gateway.fail_next(2)

        placed = await place_order(services.order_service)

        assert placed.payment_intent is not None
        assert placed.payment_error is None
        assert gateway.calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_leave_order_pending(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        gateway.unavailable = True

        placed = await place_order(services.order_service)

        assert placed.payment_intent is None
        assert placed.payment_error is not None
        assert placed.order.status is OrderStatus.PENDING
        assert placed.order.payment.gateway_order_ref is None
        assert gateway.calls == 3

        gateway.unavailable = False
        intent = await services.order_service.retry_payment_intent(placed.order.order_number)
        assert intent.amount_minor == 40400

    @pytest.mark.asyncio
    async def test_initiate_surfaces_gateway_unavailable(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        gateway.unavailable = True
        placed = await place_order(services.order_service)

        with pytest.raises(GatewayUnavailable) as exc_info:
            await services.payments.initiate(placed.order.order_id)

        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_cod_order_cannot_be_paid_online(self, services: Services) -> None:
        placed = await place_order(services.order_service, payment_method=PaymentMethod.COD)

        with pytest.raises(ValidationFailure):
            await services.payments.initiate(placed.order.order_id)

    @pytest.mark.asyncio
    async def test_paid_order_cannot_be_initiated_again(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        ref = placed.payment_intent.gateway_order_ref
        payment_ref, signature = gateway.pay(ref)
        await services.payments.verify(
            PaymentCallback(
                gateway_order_ref=ref, gateway_payment_ref=payment_ref, signature=signature
            )
        )

        with pytest.raises(InvalidTransition):
            await services.payments.initiate(placed.order.order_id)

    def test_amount_bounds(self, services: Services) -> None:
        services.payments.validate_amount(Decimal("1"))
        with pytest.raises(ValidationFailure):
            services.payments.validate_amount(Decimal("0.5"))
        with pytest.raises(ValidationFailure):
            services.payments.validate_amount(Decimal("1000001"))


class TestVerifyCallback:
    @pytest.mark.asyncio
    async def test_valid_callback_confirms_order(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        ref = placed.payment_intent.gateway_order_ref
        payment_ref, signature = gateway.pay(ref)

        state = await services.payments.verify(
            PaymentCallback(
                gateway_order_ref=ref, gateway_payment_ref=payment_ref, signature=signature
            ),
            actor_id="C-1",
        )

        assert state.status is OrderStatus.CONFIRMED
        assert state.payment.status is PaymentStatus.COMPLETED
        assert state.payment.gateway_payment_ref == payment_ref

    @pytest.mark.asyncio
    async def test_duplicate_callback_is_harmless(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        ref = placed.payment_intent.gateway_order_ref
        payment_ref, signature = gateway.pay(ref)
        callback = PaymentCallback(
            gateway_order_ref=ref, gateway_payment_ref=payment_ref, signature=signature
        )

        first = await services.payments.verify(callback)
        second = await services.payments.verify(callback)

        assert first.status is second.status is OrderStatus.CONFIRMED
        assert len(second.status_history) == 2

    @pytest.mark.asyncio
    async def test_tampered_signature_keeps_order_pending(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        ref = placed.payment_intent.gateway_order_ref
        payment_ref, signature = gateway.pay(ref)
        tampered = signature[:-1] + ("0" if signature[-1] != "0" else "1")

        with pytest.raises(SignatureMismatch) as exc_info:
            await services.payments.verify(
                PaymentCallback(
                    gateway_order_ref=ref, gateway_payment_ref=payment_ref, signature=tampered
                )
            )

        assert exc_info.value.step == "callback"
        state = await services.order_service.get_order(placed.order.order_id)
        assert state.status is OrderStatus.PENDING
        assert state.payment.status is PaymentStatus.FAILED
        assert state.payment.failure_reason == "signature mismatch"

    @pytest.mark.asyncio
    async def test_unknown_gateway_order_is_not_found(self, services: Services) -> None:
        with pytest.raises(NotFound):
            await services.payments.verify(
                PaymentCallback(
                    gateway_order_ref="order_missing", gateway_payment_ref="pay_1", signature="x"
                )
            )

    def test_classify(self, services: Services, gateway: FakePaymentGateway) -> None:
        payment_ref, signature = gateway.pay("order_abc")

        good = services.payments.classify(
            PaymentCallback(
                gateway_order_ref="order_abc", gateway_payment_ref=payment_ref, signature=signature
            )
        )
        bad = services.payments.classify(
            PaymentCallback(
                gateway_order_ref="order_abc", gateway_payment_ref="pay_other", signature=signature
            )
        )

        assert isinstance(good, VerifiedPayment)
        assert isinstance(bad, UnverifiedPayment)


class TestWebhook:
    @pytest.mark.asyncio
    async def test_captured_webhook_settles_order(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        body = captured_webhook(placed.payment_intent.gateway_order_ref)

        result = await services.payments.handle_webhook(body, gateway.sign_webhook(body))

        assert result.handled is True
        assert result.order_id == str(placed.order.order_id)
        state = await services.order_service.get_order(placed.order.order_id)
        assert state.status is OrderStatus.CONFIRMED
        assert state.payment.gateway_payment_ref == "pay_hook"

    @pytest.mark.asyncio
    async def test_webhook_after_callback_is_idempotent(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        ref = placed.payment_intent.gateway_order_ref
        payment_ref, signature = gateway.pay(ref)
        await services.payments.verify(
            PaymentCallback(
                gateway_order_ref=ref, gateway_payment_ref=payment_ref, signature=signature
            )
        )
        body = captured_webhook(ref, payment_ref)

        result = await services.payments.handle_webhook(body, gateway.sign_webhook(body))

        assert result.handled is True
        state = await services.order_service.get_order(placed.order.order_id)
        assert [entry.status for entry in state.status_history] == [
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
        ]

    @pytest.mark.asyncio
    async def test_webhook_signed_with_key_secret_is_rejected(self, services: Services) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        body = captured_webhook(placed.payment_intent.gateway_order_ref)
        signature = sign_webhook(body, services.config.gateway_key_secret)

        with pytest.raises(SignatureMismatch) as exc_info:
            await services.payments.handle_webhook(body, signature)

        assert exc_info.value.step == "webhook"
        state = await services.order_service.get_order(placed.order.order_id)
        assert state.status is OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_unsigned_webhook_is_rejected(self, services: Services) -> None:
        with pytest.raises(SignatureMismatch):
            await services.payments.handle_webhook(b"{}", None)

    @pytest.mark.asyncio
    async def test_unknown_event_is_acknowledged(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        body = json.dumps({"event": "refund.created", "payload": {}}).encode()

        result = await services.payments.handle_webhook(body, gateway.sign_webhook(body))

        assert result.handled is False

    @pytest.mark.asyncio
    async def test_unknown_order_is_acknowledged(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        body = captured_webhook("order_unknown")

        result = await services.payments.handle_webhook(body, gateway.sign_webhook(body))

        assert result.handled is False
        assert result.detail == "order not found"

    @pytest.mark.asyncio
    async def test_malformed_body_is_validation_failure(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        body = b"not json"

        with pytest.raises(ValidationFailure):
            await services.payments.handle_webhook(body, gateway.sign_webhook(body))

    @pytest.mark.asyncio
    async def test_failed_payment_webhook_records_failure(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        body = json.dumps(
            {
                "event": "payment.failed",
                "payload": {
                    "payment": {
                        "entity": {
                            "id": "pay_failed",
                            "order_id": placed.payment_intent.gateway_order_ref,
                            "error_description": "Payment declined by bank",
                        }
                    }
                },
            }
        ).encode()

        result = await services.payments.handle_webhook(body, gateway.sign_webhook(body))

        assert result.handled is True
        state = await services.order_service.get_order(placed.order.order_id)
        assert state.status is OrderStatus.PENDING
        assert state.payment.status is PaymentStatus.FAILED
        assert state.payment.failure_reason == "Payment declined by bank"


class TestRefund:
    @pytest.mark.asyncio
    async def test_cancelling_paid_order_refunds_through_gateway(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        ref = placed.payment_intent.gateway_order_ref
        payment_ref, signature = gateway.pay(ref)
        await services.payments.verify(
            PaymentCallback(
                gateway_order_ref=ref, gateway_payment_ref=payment_ref, signature=signature
            )
        )

        state = await services.order_service.cancel_order(placed.order.order_id, "C-1")

        assert state.refund_status is RefundStatus.COMPLETED
        assert state.payment.status is PaymentStatus.REFUNDED
        assert gateway.refunds[0].payment_ref == payment_ref
        assert gateway.refunds[0].amount_minor == 40400

    @pytest.mark.asyncio
    async def test_refund_outage_is_recorded_not_raised(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        ref = placed.payment_intent.gateway_order_ref
        payment_ref, signature = gateway.pay(ref)
        await services.payments.verify(
            PaymentCallback(
                gateway_order_ref=ref, gateway_payment_ref=payment_ref, signature=signature
            )
        )
        gateway.unavailable = True

        state = await services.order_service.cancel_order(placed.order.order_id, "C-1")

        assert state.status is OrderStatus.CANCELLED
        assert state.refund_status is RefundStatus.FAILED

        gateway.unavailable = False
        status = await services.payments.refund(placed.order.order_id, "admin")
        assert status is RefundStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_payment_after_expiry_is_refunded(
        self, services: Services, gateway: FakePaymentGateway
    ) -> None:
        placed = await place_order(services.order_service)
        assert placed.payment_intent is not None
        ref = placed.payment_intent.gateway_order_ref
        await services.order_service.expire_stale_orders(
            datetime.now(UTC) + timedelta(minutes=16)
        )
        body = captured_webhook(ref, "pay_late")

        await services.payments.handle_webhook(body, gateway.sign_webhook(body))

        state = await services.order_service.get_order(placed.order.order_id)
        assert state.status is OrderStatus.CANCELLED
        assert state.refund_status is RefundStatus.COMPLETED
        assert [refund.payment_ref for refund in gateway.refunds] == ["pay_late"]
