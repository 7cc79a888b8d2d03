"""
Payment Coordinator.

Opens gateway payment intents for placed orders, verifies buyer
callbacks and gateway webhooks, and refunds captured payments of
cancelled orders. Nothing here trusts the client: callbacks and webhooks
settle an order only after their HMAC signature verifies, and amounts
always come from the stored order.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from pydantic import ValidationError

from orderflow.config import OrderflowConfig
from orderflow.exceptions import (
    GatewayUnavailable,
    InvalidTransition,
    NotFound,
    SignatureMismatch,
    ValidationFailure,
)
from orderflow.observability import Tracer, create_tracer
from orderflow.observability.attributes import (
    ATTR_GATEWAY_ORDER_REF,
    ATTR_ORDER_ID,
    ATTR_RETRY_COUNT,
)
from orderflow.orders.aggregate import OrderState
from orderflow.orders.models import OrderStatus, PaymentStatus, RefundStatus
from orderflow.orders.pricing import to_minor_units
from orderflow.orders.repository import OrderRepository
from orderflow.payments.gateway import PaymentGateway
from orderflow.payments.models import (
    GatewayIntent,
    PaymentCallback,
    PaymentOutcome,
    PaymentSource,
    UnverifiedPayment,
    VerifiedPayment,
    WebhookEnvelope,
    WebhookResult,
)
from orderflow.payments.signatures import verify_payment_signature, verify_webhook_signature
from orderflow.projections.directory import OrderDirectory
from orderflow.retry import RetryError, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")

SETTLING_WEBHOOK_EVENTS = frozenset({"payment.captured", "order.paid"})
FAILING_WEBHOOK_EVENTS = frozenset({"payment.failed"})


class PaymentCoordinator:
    """
    Drives the payment side of an order.

    Example:
        >>> coordinator = PaymentCoordinator(gateway, orders, directory, config)
        >>> intent = await coordinator.initiate(order_id)
        >>> state = await coordinator.verify(PaymentCallback(...))
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        orders: OrderRepository,
        directory: OrderDirectory,
        config: OrderflowConfig,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._gateway = gateway
        self._orders = orders
        self._directory = directory
        self._config = config

    def validate_amount(self, amount: Decimal) -> None:
        """
        Raises:
            ValidationFailure: If the amount is outside the online payment bounds
        """
        low, high = self._config.min_online_amount, self._config.max_online_amount
        if not low <= amount <= high:
            raise ValidationFailure(
                f"Amount must be between {low} and {high} {self._config.currency}",
                [{"field": "payment", "message": f"amount {amount} is out of range"}],
            )

    async def initiate(self, order_id: UUID) -> GatewayIntent:
        """
        Open a gateway payment intent for a pending online order.

        An order that already has an intent gets that intent back; the
        buyer can retry payment against the same gateway order.

        Raises:
            GatewayUnavailable: If the gateway stayed unreachable through
                every retry; the order is left pending
        """
        with self._tracer.span("orderflow.payments.initiate", {ATTR_ORDER_ID: str(order_id)}):
            order = await self._orders.load(order_id)
            state = order.state
            assert state is not None
            amount_minor = to_minor_units(state.pricing.total)

            if not state.payment.method.is_online:
                raise ValidationFailure(f"Order {state.order_number} is cash on delivery")
            paid = state.payment.status is PaymentStatus.COMPLETED
            if state.status is not OrderStatus.PENDING or paid:
                raise InvalidTransition(
                    state.order_number, state.status.value, OrderStatus.CONFIRMED.value
                )
            existing_ref = state.payment.gateway_order_ref
            if existing_ref:
                return GatewayIntent(
                    gateway_order_ref=existing_ref,
                    amount_minor=amount_minor,
                    currency=state.currency,
                    receipt=state.order_number,
                    key_id=self._config.gateway_key_id,
                )
            self.validate_amount(state.pricing.total)

            intent = await self._call_gateway(
                "create payment intent",
                lambda: self._gateway.create_intent(
                    amount_minor,
                    state.currency,
                    state.order_number,
                    notes={"customerId": state.customer_id, "orderId": str(order_id)},
                ),
            )
            await self._orders.update(
                order_id,
                lambda o: o.open_payment_intent(
                    intent.gateway_order_ref, intent.amount_minor, intent.currency
                ),
            )

        logger.info(
            "Opened payment intent %s for order %s",
            intent.gateway_order_ref,
            state.order_number,
            extra={
                "order_id": str(order_id),
                "gateway_order_ref": intent.gateway_order_ref,
                "amount_minor": intent.amount_minor,
            },
        )
        return intent.model_copy(update={"key_id": self._config.gateway_key_id})

    def classify(self, callback: PaymentCallback) -> PaymentOutcome:
        """Check a callback signature against the key secret."""
        if verify_payment_signature(
            callback.gateway_order_ref,
            callback.gateway_payment_ref,
            callback.signature,
            self._config.gateway_key_secret,
        ):
            return VerifiedPayment(
                gateway_order_ref=callback.gateway_order_ref,
                gateway_payment_ref=callback.gateway_payment_ref,
            )
        return UnverifiedPayment(
            gateway_order_ref=callback.gateway_order_ref,
            gateway_payment_ref=callback.gateway_payment_ref,
        )

    async def verify(self, callback: PaymentCallback, actor_id: str | None = None) -> OrderState:
        """
        Settle an order from a buyer's payment callback.

        Raises:
            NotFound: If no order has this gateway order reference
            SignatureMismatch: If the signature does not verify; the failed
                attempt is recorded on the order, which stays pending
        """
        order_id = await self._order_for(callback.gateway_order_ref)
        with self._tracer.span(
            "orderflow.payments.verify",
            {ATTR_ORDER_ID: str(order_id), ATTR_GATEWAY_ORDER_REF: callback.gateway_order_ref},
        ):
            outcome = self.classify(callback)
            if isinstance(outcome, UnverifiedPayment):
                logger.warning(
                    "Payment callback signature mismatch for gateway order %s",
                    callback.gateway_order_ref,
                    extra={
                        "security_event": "payment_signature_mismatch",
                        "order_id": str(order_id),
                        "gateway_order_ref": callback.gateway_order_ref,
                        "gateway_payment_ref": callback.gateway_payment_ref,
                        "actor_id": actor_id,
                    },
                )
                await self._orders.update(
                    order_id,
                    lambda o: o.record_payment_failure(
                        outcome.reason,
                        gateway_order_ref=outcome.gateway_order_ref,
                        gateway_payment_ref=outcome.gateway_payment_ref,
                        actor_id=actor_id,
                    ),
                )
                raise SignatureMismatch("callback", callback.gateway_order_ref)

            return await self._settle(order_id, outcome, actor_id)

    async def handle_webhook(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        """
        Process a gateway webhook.

        The signature is checked over the exact raw body with the webhook
        secret before anything is parsed.

        Raises:
            SignatureMismatch: If the signature is missing or wrong
            ValidationFailure: If the body is not a webhook envelope
        """
        if not verify_webhook_signature(raw_body, signature, self._config.webhook_secret):
            logger.warning(
                "Webhook signature mismatch",
                extra={"security_event": "webhook_signature_mismatch", "body_size": len(raw_body)},
            )
            raise SignatureMismatch("webhook")

        try:
            envelope = WebhookEnvelope.model_validate(json.loads(raw_body))
        except (ValueError, ValidationError) as e:
            raise ValidationFailure(
                "Malformed webhook payload", [{"field": "webhook", "message": str(e)}]
            ) from e

        if envelope.event not in SETTLING_WEBHOOK_EVENTS | FAILING_WEBHOOK_EVENTS:
            logger.info(
                "Ignoring webhook event %s", envelope.event, extra={"event": envelope.event}
            )
            return WebhookResult(event=envelope.event, handled=False, detail="event ignored")

        gateway_order_ref = envelope.gateway_order_ref
        order_id = (
            await self._find_by_gateway_ref(gateway_order_ref) if gateway_order_ref else None
        )
        if order_id is None:
            logger.warning(
                "Webhook %s for unknown gateway order %s",
                envelope.event,
                gateway_order_ref,
                extra={"event": envelope.event, "gateway_order_ref": gateway_order_ref},
            )
            return WebhookResult(event=envelope.event, handled=False, detail="order not found")
        assert gateway_order_ref is not None

        if envelope.event in SETTLING_WEBHOOK_EVENTS:
            if not envelope.gateway_payment_ref:
                raise ValidationFailure(
                    "Webhook carries no payment",
                    [{"field": "payload.payment", "message": "payment entity is required"}],
                )
            await self._settle(
                order_id,
                VerifiedPayment(
                    gateway_order_ref=gateway_order_ref,
                    gateway_payment_ref=envelope.gateway_payment_ref,
                    source="webhook",
                ),
                actor_id=None,
            )
        else:
            await self._orders.update(
                order_id,
                lambda o: o.record_payment_failure(
                    envelope.failure_reason,
                    gateway_order_ref=gateway_order_ref,
                    gateway_payment_ref=envelope.gateway_payment_ref,
                ),
            )
        return WebhookResult(event=envelope.event, handled=True, order_id=str(order_id))

    async def refund(self, order_id: UUID, actor_id: str | None = None) -> RefundStatus:
        """
        Refund the captured payment of a cancelled or returned order.

        Gateway failures are recorded as a failed refund, never raised, so
        a cancellation always completes.
        """
        order = await self._orders.load(order_id)
        state = order.state
        assert state is not None
        if state.payment.status is not PaymentStatus.COMPLETED:
            return state.refund_status
        if state.refund_status not in (RefundStatus.PENDING, RefundStatus.FAILED):
            return state.refund_status

        payment_ref = state.payment.gateway_payment_ref
        if not payment_ref:
            # Cash collected on delivery is refunded outside the gateway
            return state.refund_status

        with self._tracer.span("orderflow.payments.refund", {ATTR_ORDER_ID: str(order_id)}):
            try:
                result = await self._call_gateway(
                    "refund payment",
                    lambda: self._gateway.refund(
                        payment_ref,
                        to_minor_units(state.pricing.total),
                        notes={"orderNumber": state.order_number},
                    ),
                )
            except (GatewayUnavailable, ValidationFailure) as e:
                logger.error(
                    "Refund of order %s failed: %s",
                    state.order_number,
                    e,
                    extra={"order_id": str(order_id), "payment_ref": payment_ref},
                )
                await self._orders.update(
                    order_id,
                    lambda o: o.record_refund(RefundStatus.FAILED, note=str(e), actor_id=actor_id),
                )
                return RefundStatus.FAILED

            status = (
                RefundStatus.COMPLETED if result.status == "processed" else RefundStatus.PROCESSING
            )
            await self._orders.update(
                order_id,
                lambda o: o.record_refund(status, result.refund_ref, actor_id=actor_id),
            )

        logger.info(
            "Refund %s for order %s is %s",
            result.refund_ref,
            state.order_number,
            status.value,
            extra={"order_id": str(order_id), "refund_ref": result.refund_ref},
        )
        return status

    async def _settle(
        self,
        order_id: UUID,
        payment: VerifiedPayment,
        actor_id: str | None,
    ) -> OrderState:
        source: PaymentSource = payment.source
        order, recorded = await self._orders.update(
            order_id,
            lambda o: o.settle_payment(
                payment.gateway_order_ref,
                payment.gateway_payment_ref,
                source=source,
                actor_id=actor_id,
            ),
        )
        state = order.state
        assert state is not None
        if recorded:
            logger.info(
                "Payment %s settled order %s via %s",
                payment.gateway_payment_ref,
                state.order_number,
                source,
                extra={"order_id": str(order_id), "payment_ref": payment.gateway_payment_ref},
            )
        if state.refund_status is RefundStatus.PENDING:
            await self.refund(order_id, actor_id)
            reloaded = await self._orders.load(order_id)
            assert reloaded.state is not None
            return reloaded.state
        return state

    async def _order_for(self, gateway_order_ref: str) -> UUID:
        order_id = await self._find_by_gateway_ref(gateway_order_ref)
        if order_id is None:
            raise NotFound("Order", gateway_order_ref)
        return order_id

    async def _find_by_gateway_ref(self, gateway_order_ref: str) -> UUID | None:
        await self._directory.catch_up()
        return self._directory.find_by_gateway_ref(gateway_order_ref)

    async def _call_gateway(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        with self._tracer.span(f"orderflow.gateway.{operation.replace(' ', '_')}") as span:
            try:
                return await retry_async(
                    call,
                    config=self._config.gateway_retry,
                    retryable_exceptions=(GatewayUnavailable,),
                    operation_name=operation,
                )
            except RetryError as e:
                if span is not None:
                    span.set_attribute(ATTR_RETRY_COUNT, e.attempts)
                raise GatewayUnavailable(operation, e.attempts, e.last_error) from e.last_error
