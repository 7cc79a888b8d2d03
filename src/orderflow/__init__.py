"""
orderflow - order placement and payment settlement for a marketplace.

This library provides:
- Per-product inventory ledgers with oversell-proof reservations
- An event-sourced order aggregate with an explicit status machine
- Payment gateway coordination with signed callbacks and webhooks
- Order workflows, expiry of abandoned orders and read models
- Notification fan-out and a FastAPI HTTP surface
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("orderflow")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from orderflow.aggregates.base import AggregateRoot, DeclarativeAggregate
from orderflow.aggregates.repository import AggregateRepository
from orderflow.bus.interface import EventBus
from orderflow.bus.memory import InMemoryEventBus
from orderflow.catalog import Catalog, HttpCatalog, InMemoryCatalog, ProductInfo
from orderflow.config import OrderflowConfig
from orderflow.container import Services, build_services
from orderflow.events.base import DomainEvent
from orderflow.events.registry import EventRegistry, default_registry, register_event
from orderflow.exceptions import (
    AggregateNotFoundError,
    CatalogUnavailable,
    Forbidden,
    GatewayUnavailable,
    InsufficientStock,
    InvalidTransition,
    LedgerInvariantError,
    NotFound,
    OptimisticLockError,
    OrderflowError,
    ReservationConflict,
    SignatureMismatch,
    ValidationFailure,
)
from orderflow.inventory import InventoryLedger, Reservation, ReservationManager, StockLevels
from orderflow.notifications import (
    LoggingChannel,
    NotificationChannel,
    NotificationDispatcher,
    RecordingChannel,
    WebhookChannel,
)
from orderflow.orders import (
    LineItem,
    OrderAggregate,
    OrderRepository,
    OrderState,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    PostalAddress,
    RefundStatus,
)
from orderflow.orders.service import OrderLineRequest, OrderService, PlacedOrder, TrackingUpdate
from orderflow.payments import (
    FakePaymentGateway,
    HttpPaymentGateway,
    PaymentCallback,
    PaymentCoordinator,
    PaymentGateway,
)
from orderflow.projections import OrderDirectory, SellerSalesProjection
from orderflow.retry import RetryConfig, RetryError, retry_async
from orderflow.stores import EventStore, InMemoryEventStore, SQLiteEventStore

__all__ = [
    "__version__",
    "AggregateNotFoundError",
    "AggregateRepository",
    "AggregateRoot",
    "Catalog",
    "CatalogUnavailable",
    "DeclarativeAggregate",
    "DomainEvent",
    "EventBus",
    "EventRegistry",
    "EventStore",
    "FakePaymentGateway",
    "Forbidden",
    "GatewayUnavailable",
    "HttpCatalog",
    "HttpPaymentGateway",
    "InMemoryCatalog",
    "InMemoryEventBus",
    "InMemoryEventStore",
    "InsufficientStock",
    "InvalidTransition",
    "InventoryLedger",
    "LedgerInvariantError",
    "LineItem",
    "LoggingChannel",
    "NotFound",
    "NotificationChannel",
    "NotificationDispatcher",
    "OptimisticLockError",
    "OrderAggregate",
    "OrderDirectory",
    "OrderLineRequest",
    "OrderRepository",
    "OrderService",
    "OrderState",
    "OrderStatus",
    "OrderflowConfig",
    "OrderflowError",
    "PaymentCallback",
    "PaymentCoordinator",
    "PaymentGateway",
    "PaymentMethod",
    "PaymentStatus",
    "PlacedOrder",
    "PostalAddress",
    "ProductInfo",
    "RecordingChannel",
    "RefundStatus",
    "Reservation",
    "ReservationConflict",
    "ReservationManager",
    "RetryConfig",
    "RetryError",
    "SQLiteEventStore",
    "SellerSalesProjection",
    "Services",
    "SignatureMismatch",
    "StockLevels",
    "TrackingUpdate",
    "ValidationFailure",
    "WebhookChannel",
    "build_services",
    "default_registry",
    "register_event",
    "retry_async",
]
