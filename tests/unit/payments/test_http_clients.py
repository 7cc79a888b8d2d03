"""
Unit tests for the HTTP collaborators, using httpx.MockTransport.

Tests cover:
- HttpPaymentGateway request shape, auth and error mapping
- HttpCatalog lookups, envelopes and outages
"""

import base64
import json
from decimal import Decimal

import httpx
import pytest

from orderflow.catalog import HttpCatalog, InMemoryCatalog, ProductInfo
from orderflow.exceptions import CatalogUnavailable, GatewayUnavailable, ValidationFailure
from orderflow.payments.gateway import HttpPaymentGateway

BASE_URL = "https://gateway.test"


def gateway_with(handler: httpx.MockTransport) -> HttpPaymentGateway:
    client = httpx.AsyncClient(transport=handler)
    return HttpPaymentGateway(BASE_URL, "rzp_test_key", "secret", client=client)


class TestHttpPaymentGateway:
    @pytest.mark.asyncio
    async def test_create_intent(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "id": "order_abc",
                    "amount": body["amount"],
                    "currency": body["currency"],
                    "receipt": body["receipt"],
                    "created_at": 1767225600,
                },
            )

        gateway = gateway_with(httpx.MockTransport(handler))
        intent = await gateway.create_intent(40400, "INR", "ORD20260101ABC123")

        assert intent.gateway_order_ref == "order_abc"
        assert intent.amount_minor == 40400
        assert intent.receipt == "ORD20260101ABC123"
        assert intent.key_id == "rzp_test_key"
        assert intent.created_at is not None

        request = seen[0]
        assert request.url.path == "/v1/orders"
        expected_auth = base64.b64encode(b"rzp_test_key:secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected_auth}"

    @pytest.mark.asyncio
    async def test_refund(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/payments/pay_1/refund"
            return httpx.Response(
                200,
                json={
                    "id": "rfnd_1",
                    "payment_id": "pay_1",
                    "amount": 40400,
                    "status": "processed",
                },
            )

        gateway = gateway_with(httpx.MockTransport(handler))
        result = await gateway.refund("pay_1", 40400)

        assert result.refund_ref == "rfnd_1"
        assert result.status == "processed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [500, 502, 429])
    async def test_server_errors_are_unavailable(self, status_code: int) -> None:
        gateway = gateway_with(httpx.MockTransport(lambda request: httpx.Response(status_code)))

        with pytest.raises(GatewayUnavailable):
            await gateway.create_intent(40400, "INR", "ORD1")

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway = gateway_with(httpx.MockTransport(handler))

        with pytest.raises(GatewayUnavailable) as exc_info:
            await gateway.create_intent(40400, "INR", "ORD1")

        assert isinstance(exc_info.value.last_error, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_client_error_is_validation_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400, json={"error": {"description": "amount must be at least 100"}}
            )

        gateway = gateway_with(httpx.MockTransport(handler))

        with pytest.raises(ValidationFailure) as exc_info:
            await gateway.create_intent(50, "INR", "ORD1")

        assert exc_info.value.errors[0]["message"] == "amount must be at least 100"


class TestHttpCatalog:
    @pytest.mark.asyncio
    async def test_reads_enveloped_product(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/products/P1"
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "_id": "P1",
                        "name": "Brass Lamp",
                        "price": "799.00",
                        "isActive": True,
                        "artisan": "S-9",
                    },
                },
            )

        catalog = HttpCatalog(
            "https://catalog.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        product = await catalog.get_product("P1")

        assert product is not None
        assert product.product_id == "P1"
        assert product.price == Decimal("799.00")
        assert product.seller_id == "S-9"
        assert product.is_purchasable is True

    @pytest.mark.asyncio
    async def test_missing_product_is_none(self) -> None:
        catalog = HttpCatalog(
            "https://catalog.test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404))),
        )

        assert await catalog.get_product("P404") is None

    @pytest.mark.asyncio
    async def test_outage_raises_catalog_unavailable(self) -> None:
        catalog = HttpCatalog(
            "https://catalog.test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503))),
        )

        with pytest.raises(CatalogUnavailable):
            await catalog.get_product("P1")

    @pytest.mark.asyncio
    async def test_unreadable_product_raises_catalog_unavailable(self) -> None:
        catalog = HttpCatalog(
            "https://catalog.test",
            client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"name": "x"}))
            ),
        )

        with pytest.raises(CatalogUnavailable):
            await catalog.get_product("P1")

    @pytest.mark.asyncio
    async def test_in_memory_catalog(self) -> None:
        catalog = InMemoryCatalog()
        catalog.add(ProductInfo(product_id="P1", price=Decimal("10"), seller_id="S-1"))

        assert (await catalog.get_product("P1")) is not None
        assert await catalog.get_product("P2") is None
