"""
Notification Dispatcher.

Subscribed to the event bus; for each notable order event it loads the
order, renders the messages and fans them out to every channel in a
background task. A slow or failing channel only affects its own
delivery, and nothing it does can fail the command that produced the
event.
"""

import asyncio
import logging
from typing import Any

from orderflow.events.base import DomainEvent
from orderflow.notifications.channels import NotificationChannel
from orderflow.notifications.messages import Notification, render
from orderflow.observability import Tracer, create_tracer
from orderflow.observability.attributes import ATTR_EVENT_TYPE, ATTR_NOTIFICATION_CHANNEL
from orderflow.orders.events import (
    OrderCancelled,
    OrderDelivered,
    OrderPlaced,
    OrderShipped,
    PaymentSettled,
)
from orderflow.orders.repository import OrderRepository

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Example:
        >>> dispatcher = NotificationDispatcher(orders, [LoggingChannel()])
        >>> bus.subscribe_all(dispatcher)
        >>> ...
        >>> await dispatcher.drain()
    """

    def __init__(
        self,
        orders: OrderRepository,
        channels: list[NotificationChannel],
        *,
        timeout: float = 5.0,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._orders = orders
        self._channels = list(channels)
        self._timeout = timeout
        self._tasks: set[asyncio.Task[None]] = set()
        self._stats: dict[str, int] = {"delivered": 0, "failed": 0}

    def subscribed_to(self) -> list[type[DomainEvent]]:
        return [OrderPlaced, PaymentSettled, OrderShipped, OrderDelivered, OrderCancelled]

    async def handle(self, event: DomainEvent) -> None:
        task = asyncio.create_task(self._dispatch(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every outstanding delivery."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "pending": len(self._tasks), "channels": len(self._channels)}

    async def _dispatch(self, event: DomainEvent) -> None:
        try:
            order = await self._orders.load(event.aggregate_id)
        except Exception:
            logger.error(
                "Could not load order %s for %s notification",
                event.aggregate_id,
                event.event_type,
                exc_info=True,
                extra={"order_id": str(event.aggregate_id), "event_type": event.event_type},
            )
            self._stats["failed"] += 1
            return

        assert order.state is not None
        notifications = render(event, order.state)
        await asyncio.gather(
            *(
                self._deliver(channel, notification)
                for notification in notifications
                for channel in self._channels
            )
        )

    async def _deliver(self, channel: NotificationChannel, notification: Notification) -> None:
        with self._tracer.span(
            "orderflow.notifications.deliver",
            {ATTR_NOTIFICATION_CHANNEL: channel.name, ATTR_EVENT_TYPE: notification.event_type},
        ):
            try:
                await asyncio.wait_for(channel.send(notification), timeout=self._timeout)
            except Exception:
                self._stats["failed"] += 1
                logger.error(
                    "Channel %s failed to deliver %s for order %s",
                    channel.name,
                    notification.event_type,
                    notification.order_number,
                    exc_info=True,
                    extra={
                        "channel": channel.name,
                        "order_number": notification.order_number,
                        "event_type": notification.event_type,
                    },
                )
                return
            self._stats["delivered"] += 1
