"""
Wiring of the engine's components.

``build_services`` assembles one process's worth of components around a
single event store and event bus. Collaborators (store, gateway, catalog,
notification channels) can be passed in; otherwise they are chosen from
the configuration.
"""

import logging
from dataclasses import dataclass

from orderflow.bus.memory import InMemoryEventBus
from orderflow.catalog import Catalog, HttpCatalog, InMemoryCatalog
from orderflow.config import OrderflowConfig
from orderflow.inventory.reservations import ReservationManager
from orderflow.notifications.channels import LoggingChannel, NotificationChannel, WebhookChannel
from orderflow.notifications.dispatcher import NotificationDispatcher
from orderflow.observability import Tracer
from orderflow.orders.repository import OrderRepository
from orderflow.orders.service import OrderService
from orderflow.payments.coordinator import PaymentCoordinator
from orderflow.payments.gateway import HttpPaymentGateway, PaymentGateway
from orderflow.projections.directory import OrderDirectory
from orderflow.projections.sales import SellerSalesProjection
from orderflow.stores.in_memory import InMemoryEventStore
from orderflow.stores.interface import EventStore
from orderflow.stores.sqlite import SQLiteEventStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: OrderflowConfig
    event_store: EventStore
    bus: InMemoryEventBus
    reservations: ReservationManager
    orders: OrderRepository
    directory: OrderDirectory
    sales: SellerSalesProjection
    payments: PaymentCoordinator
    notifications: NotificationDispatcher
    catalog: Catalog
    gateway: PaymentGateway
    order_service: OrderService

    async def close(self) -> None:
        """Finish outstanding notifications and release the store."""
        await self.notifications.drain()
        await self.bus.shutdown()
        if isinstance(self.event_store, SQLiteEventStore):
            await self.event_store.close()


async def build_services(
    config: OrderflowConfig | None = None,
    *,
    event_store: EventStore | None = None,
    gateway: PaymentGateway | None = None,
    catalog: Catalog | None = None,
    channels: list[NotificationChannel] | None = None,
    tracer: Tracer | None = None,
) -> Services:
    """
    Build and connect every component.

    Read models are rebuilt from the store before they are subscribed,
    so a process restarted against an existing database starts with
    complete listings. They stay bound to the store and catch up with
    writes from other processes before every lookup.
    """
    config = config or OrderflowConfig()
    enable_tracing = config.enable_tracing

    if event_store is None:
        if config.database == ":memory:":
            event_store = InMemoryEventStore(tracer=tracer, enable_tracing=enable_tracing)
        else:
            sqlite_store = SQLiteEventStore(
                config.database, tracer=tracer, enable_tracing=enable_tracing
            )
            await sqlite_store.initialize()
            event_store = sqlite_store

    bus = InMemoryEventBus(tracer=tracer, enable_tracing=enable_tracing)

    directory = OrderDirectory(event_store)
    sales = SellerSalesProjection(event_store)
    await directory.rebuild()
    await sales.rebuild()
    bus.subscribe_all(directory)
    bus.subscribe_all(sales)

    reservations = ReservationManager(
        event_store,
        event_publisher=bus,
        retry_config=config.reservation_retry,
        tracer=tracer,
        enable_tracing=enable_tracing,
    )
    orders = OrderRepository(
        event_store,
        bus,
        retry_config=config.reservation_retry,
        tracer=tracer,
        enable_tracing=enable_tracing,
    )

    if gateway is None:
        gateway = HttpPaymentGateway(
            config.gateway_base_url,
            config.gateway_key_id,
            config.gateway_key_secret,
            timeout=config.gateway_timeout,
        )
    if catalog is None:
        catalog = (
            HttpCatalog(config.catalog_base_url, timeout=config.gateway_timeout)
            if config.catalog_base_url
            else InMemoryCatalog()
        )
    if channels is None:
        channels = (
            [WebhookChannel(config.notification_url, timeout=config.notification_timeout)]
            if config.notification_url
            else [LoggingChannel()]
        )

    notifications = NotificationDispatcher(
        orders,
        channels,
        timeout=config.notification_timeout,
        tracer=tracer,
        enable_tracing=enable_tracing,
    )
    bus.subscribe_all(notifications)

    payments = PaymentCoordinator(
        gateway, orders, directory, config, tracer=tracer, enable_tracing=enable_tracing
    )
    order_service = OrderService(
        orders=orders,
        reservations=reservations,
        payments=payments,
        catalog=catalog,
        directory=directory,
        sales=sales,
        config=config,
        tracer=tracer,
        enable_tracing=enable_tracing,
    )

    logger.info(
        "Built orderflow services (store=%s, gateway=%s, channels=%d)",
        type(event_store).__name__,
        type(gateway).__name__,
        len(channels),
    )
    return Services(
        config=config,
        event_store=event_store,
        bus=bus,
        reservations=reservations,
        orders=orders,
        directory=directory,
        sales=sales,
        payments=payments,
        notifications=notifications,
        catalog=catalog,
        gateway=gateway,
        order_service=order_service,
    )
