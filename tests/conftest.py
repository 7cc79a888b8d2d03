"""
Shared pytest fixtures for the orderflow tests.

This module provides:
- Event store fixtures (in_memory_store, sqlite_store)
- A fully wired service graph around fakes (services, order_service)
- The fakes themselves (gateway, channel, tracer)
- Sample data (address, config)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from orderflow.config import OrderflowConfig
from orderflow.container import Services
from orderflow.notifications.channels import RecordingChannel
from orderflow.observability import MockTracer
from orderflow.orders.models import PostalAddress
from orderflow.orders.service import OrderService
from orderflow.payments.gateway import FakePaymentGateway
from orderflow.stores.in_memory import InMemoryEventStore
from orderflow.stores.sqlite import SQLiteEventStore
from tests.fixtures import make_address, make_config, make_services


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "sqlite: tests that need aiosqlite")


# ============================================================================
# Stores
# ============================================================================


@pytest.fixture
def in_memory_store() -> InMemoryEventStore:
    return InMemoryEventStore(enable_tracing=False)


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SQLiteEventStore, None]:
    store = SQLiteEventStore(str(tmp_path / "orderflow.db"), enable_tracing=False)
    await store.initialize()
    yield store
    await store.close()


# ============================================================================
# Fakes and configuration
# ============================================================================


@pytest.fixture
def config() -> OrderflowConfig:
    return make_config()


@pytest.fixture
def gateway(config: OrderflowConfig) -> FakePaymentGateway:
    return FakePaymentGateway(config.gateway_key_secret, webhook_secret=config.webhook_secret)


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def tracer() -> MockTracer:
    return MockTracer()


@pytest.fixture
def address() -> PostalAddress:
    return make_address()


# ============================================================================
# Service graph
# ============================================================================


@pytest_asyncio.fixture
async def services(
    config: OrderflowConfig,
    gateway: FakePaymentGateway,
    channel: RecordingChannel,
    tracer: MockTracer,
) -> AsyncGenerator[Services, None]:
    built = await make_services(config, gateway=gateway, channel=channel, tracer=tracer)
    yield built
    await built.close()


@pytest.fixture
def order_service(services: Services) -> OrderService:
    return services.order_service
