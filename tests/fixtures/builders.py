"""
Builders for test data and fully wired service graphs.

Prices are chosen so totals are easy to check by hand:

- P-SAREE  1200 (seller S-1): free shipping, tax 216, total 1416
- P-SCARF   450 (seller S-1)
- P-MUG     300 (seller S-2): shipping 50, tax 54, total 404
- P-RETIRED 100 (seller S-2): not purchasable
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import uuid4

from orderflow.catalog import InMemoryCatalog, ProductInfo
from orderflow.config import OrderflowConfig
from orderflow.container import Services, build_services
from orderflow.inventory.reservations import Reservation
from orderflow.notifications.channels import RecordingChannel
from orderflow.observability import MockTracer
from orderflow.orders.aggregate import OrderAggregate
from orderflow.orders.models import LineItem, PaymentMethod, PostalAddress
from orderflow.orders.pricing import compute_pricing
from orderflow.orders.service import OrderLineRequest, OrderService, PlacedOrder
from orderflow.payments.gateway import FakePaymentGateway
from orderflow.retry import RetryConfig
from orderflow.stores.interface import EventStore

PRODUCTS = [
    ProductInfo(product_id="P-SAREE", name="Silk Saree", price=Decimal("1200"), seller_id="S-1"),
    ProductInfo(product_id="P-SCARF", name="Pashmina Scarf", price=Decimal("450"), seller_id="S-1"),
    ProductInfo(product_id="P-MUG", name="Blue Pottery Mug", price=Decimal("300"), seller_id="S-2"),
    ProductInfo(
        product_id="P-RETIRED",
        name="Retired Lamp",
        price=Decimal("100"),
        seller_id="S-2",
        is_purchasable=False,
    ),
]

INITIAL_STOCK = {"P-SAREE": 5, "P-SCARF": 3, "P-MUG": 10}


def make_address(**overrides: Any) -> PostalAddress:
    values: dict[str, Any] = {
        "full_name": "Asha Rao",
        "phone": "9876543210",
        "line1": "12 Lake Road",
        "city": "Jaipur",
        "state": "Rajasthan",
        "postal_code": "302001",
    }
    values.update(overrides)
    return PostalAddress(**values)


def make_line(
    product_id: str = "P-MUG",
    quantity: int = 1,
    unit_price: str | Decimal = "300",
    seller_id: str = "S-2",
) -> LineItem:
    return LineItem(
        product_id=product_id,
        seller_id=seller_id,
        name=product_id,
        quantity=quantity,
        unit_price=Decimal(unit_price),
    )


def make_config(**overrides: Any) -> OrderflowConfig:
    """Configuration with millisecond backoff so retry paths run quickly."""
    values: dict[str, Any] = {
        "gateway_retry": RetryConfig(max_retries=2, initial_delay=0.001, max_delay=0.002),
        "reservation_retry": RetryConfig(max_retries=20, initial_delay=0.001, max_delay=0.01),
        "enable_tracing": False,
    }
    values.update(overrides)
    return OrderflowConfig(**values)


def placed_order(
    payment_method: PaymentMethod = PaymentMethod.UPI,
    items: list[LineItem] | None = None,
    order_number: str = "ORD20260101ABC123",
) -> OrderAggregate:
    """An order aggregate right after ``place``, not persisted."""
    items = items or [make_line()]
    order = OrderAggregate(uuid4())
    order.place(
        order_number=order_number,
        customer_id="C-1",
        items=items,
        shipping_address=make_address(),
        billing_address=None,
        pricing=compute_pricing(items),
        payment_method=payment_method,
        reservation=Reservation(
            reservation_id=order_number,
            quantities={item.product_id: item.quantity for item in items},
        ),
    )
    return order


async def make_services(
    config: OrderflowConfig | None = None,
    *,
    event_store: EventStore | None = None,
    gateway: FakePaymentGateway | None = None,
    channel: RecordingChannel | None = None,
    tracer: MockTracer | None = None,
    stock: dict[str, int] | None = None,
) -> Services:
    """Wire every component around fakes and receive the initial stock."""
    config = config or make_config()
    services = await build_services(
        config,
        event_store=event_store,
        gateway=gateway
        or FakePaymentGateway(config.gateway_key_secret, webhook_secret=config.webhook_secret),
        catalog=InMemoryCatalog(PRODUCTS),
        channels=[channel or RecordingChannel()],
        tracer=tracer,
    )
    for product_id, quantity in (INITIAL_STOCK if stock is None else stock).items():
        await services.reservations.receive(product_id, quantity)
    return services


async def place_order(
    service: OrderService,
    lines: list[tuple[str, int]] | None = None,
    payment_method: PaymentMethod = PaymentMethod.UPI,
    customer_id: str = "C-1",
) -> PlacedOrder:
    """Place an order through the service; one P-MUG by default."""
    return await service.create_order(
        customer_id=customer_id,
        items=[
            OrderLineRequest(product_id=product_id, quantity=quantity)
            for product_id, quantity in (lines or [("P-MUG", 1)])
        ],
        shipping_address=make_address(),
        payment_method=payment_method,
    )
