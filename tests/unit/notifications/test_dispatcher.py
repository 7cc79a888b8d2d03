"""
Unit tests for notification rendering, channels and the dispatcher.

Tests cover:
- Which events produce which messages
- Background delivery and drain
- Failing or slow channels never affecting orders or other channels
- The webhook relay channel
"""

import asyncio
import json
import logging

import httpx
import pytest

from orderflow.container import Services
from orderflow.notifications.channels import LoggingChannel, RecordingChannel, WebhookChannel
from orderflow.notifications.dispatcher import NotificationDispatcher
from orderflow.notifications.messages import Notification, render
from orderflow.orders.models import OrderStatus, PaymentMethod
from orderflow.payments.gateway import FakePaymentGateway
from orderflow.payments.models import PaymentCallback
from tests.fixtures import make_services, place_order, placed_order


class SlowChannel:
    name = "slow"

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> None:
        await asyncio.sleep(self.delay)
        self.sent.append(notification)


class TestRender:
    def test_online_order_placed_only_notifies_admin(self) -> None:
        order = placed_order(PaymentMethod.UPI)
        assert order.state is not None

        messages = render(order.uncommitted_events[0], order.state)

        assert [m.audience for m in messages] == ["admin"]
        assert messages[0].subject.startswith("NEW ORDER RECEIVED")

    def test_cod_order_placed_confirms_to_customer(self) -> None:
        order = placed_order(PaymentMethod.COD)
        assert order.state is not None

        messages = render(order.uncommitted_events[0], order.state)

        assert [m.audience for m in messages] == ["customer", "admin"]
        assert messages[0].subject == f"Order Confirmation - {order.state.order_number}"
        assert messages[0].recipient_name == "Asha Rao"
        assert "pay on delivery" in messages[0].body

    def test_shipping_message_carries_tracking(self) -> None:
        order = placed_order(PaymentMethod.COD)
        order.start_processing()
        order.ship(carrier="BlueDart", tracking_number="BD-9")
        assert order.state is not None

        (message,) = render(order.uncommitted_events[-1], order.state)

        assert message.subject.startswith("Your Order Has Shipped")
        assert "BD-9" in message.body

    def test_cancellation_mentions_refund_when_paid(self) -> None:
        order = placed_order()
        order.open_payment_intent("order_abc", 40400, "INR")
        order.settle_payment("order_abc", "pay_1")
        order.cancel("out of stock")
        assert order.state is not None

        (message,) = render(order.uncommitted_events[-1], order.state)

        assert message.subject.startswith("Order Cancelled")
        assert "refund" in message.body

    def test_other_events_are_silent(self) -> None:
        order = placed_order()
        order.add_note("admin", "fragile")
        assert order.state is not None

        assert render(order.uncommitted_events[-1], order.state) == []


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_payment_triggers_customer_confirmation(
        self, services: Services, channel: RecordingChannel, gateway: FakePaymentGateway
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
        await services.notifications.drain()

        number = placed.order.order_number
        assert channel.subjects() == [
            f"NEW ORDER RECEIVED - {number}",
            f"Order Confirmation - {number}",
        ]
        assert services.notifications.get_stats()["delivered"] == 2

    @pytest.mark.asyncio
    async def test_fulfillment_messages(
        self, services: Services, channel: RecordingChannel
    ) -> None:
        placed = await place_order(services.order_service, payment_method=PaymentMethod.COD)
        order_id = placed.order.order_id
        for status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            await services.order_service.update_status(order_id, status, "S-2")
        await services.notifications.drain()

        subjects = channel.subjects()
        assert any(s.startswith("Your Order Has Shipped") for s in subjects)
        assert any(s.startswith("Order Delivered") for s in subjects)

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_affect_orders(self) -> None:
        broken = RecordingChannel("sms", fail=True)
        services = await make_services(channel=broken)
        try:
            placed = await place_order(
                services.order_service, payment_method=PaymentMethod.COD
            )
            await services.notifications.drain()

            assert placed.order.status is OrderStatus.CONFIRMED
            assert broken.sent == []
            stats = services.notifications.get_stats()
            assert stats["failed"] == 2
            assert stats["pending"] == 0
        finally:
            await services.close()

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_others(self, services: Services) -> None:
        broken = RecordingChannel("email", fail=True)
        healthy = RecordingChannel("sms")
        dispatcher = NotificationDispatcher(
            services.orders, [broken, healthy], enable_tracing=False
        )
        services.bus.subscribe_all(dispatcher)

        await place_order(services.order_service, payment_method=PaymentMethod.COD)
        await dispatcher.drain()

        assert len(healthy.sent) == 2
        assert dispatcher.get_stats()["failed"] == 2

    @pytest.mark.asyncio
    async def test_slow_channel_times_out(self, services: Services) -> None:
        slow = SlowChannel(delay=1.0)
        healthy = RecordingChannel()
        dispatcher = NotificationDispatcher(
            services.orders, [slow, healthy], timeout=0.01, enable_tracing=False
        )
        services.bus.subscribe_all(dispatcher)

        await place_order(services.order_service)
        await dispatcher.drain()

        assert slow.sent == []
        assert len(healthy.sent) == 1
        assert dispatcher.get_stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_unknown_order_is_logged_not_raised(self, services: Services) -> None:
        dispatcher = NotificationDispatcher(
            services.orders, [RecordingChannel()], enable_tracing=False
        )
        order = placed_order(PaymentMethod.COD)

        await dispatcher.handle(order.uncommitted_events[0])
        await dispatcher.drain()

        assert dispatcher.get_stats()["failed"] == 1


class TestWebhookChannel:
    @pytest.mark.asyncio
    async def test_posts_notification_json(self) -> None:
        received: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(202)

        channel = WebhookChannel(
            "https://relay.test/notify",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        order = placed_order(PaymentMethod.COD)
        assert order.state is not None
        notification = render(order.uncommitted_events[0], order.state)[0]

        await channel.send(notification)

        assert received[0]["subject"] == notification.subject
        assert received[0]["audience"] == "customer"

    @pytest.mark.asyncio
    async def test_relay_errors_raise(self) -> None:
        channel = WebhookChannel(
            "https://relay.test/notify",
            client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(500))
            ),
        )
        order = placed_order(PaymentMethod.COD)
        assert order.state is not None

        with pytest.raises(httpx.HTTPStatusError):
            await channel.send(render(order.uncommitted_events[0], order.state)[0])


class TestLoggingChannel:
    @pytest.mark.asyncio
    async def test_logs_subject(self, caplog: pytest.LogCaptureFixture) -> None:
        order = placed_order(PaymentMethod.COD)
        assert order.state is not None
        notification = render(order.uncommitted_events[0], order.state)[0]

        with caplog.at_level(logging.INFO, logger="orderflow.notifications.channels"):
            await LoggingChannel().send(notification)

        assert notification.subject in caplog.text
