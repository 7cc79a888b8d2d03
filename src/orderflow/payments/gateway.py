"""
Payment gateway clients.

``HttpPaymentGateway`` talks to a Razorpay-style REST API. The
``FakePaymentGateway`` keeps everything in memory; it can sign callbacks
the way the real gateway does and simulate outages, which makes it the
default for development and tests.
"""

import logging
import secrets
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import httpx

from orderflow.exceptions import GatewayUnavailable, ValidationFailure
from orderflow.payments.models import GatewayIntent, RefundResult
from orderflow.payments.signatures import sign_payment, sign_webhook

logger = logging.getLogger(__name__)


@runtime_checkable
class PaymentGateway(Protocol):
    """
    What the payment coordinator needs from a gateway.

    Implementations raise GatewayUnavailable for failures worth retrying
    (network errors, timeouts, 5xx) and ValidationFailure when the
    gateway rejects the request itself.
    """

    async def create_intent(
        self,
        amount_minor: int,
        currency: str,
        reference: str,
        notes: dict[str, str] | None = None,
    ) -> GatewayIntent: ...

    async def refund(
        self,
        payment_ref: str,
        amount_minor: int,
        notes: dict[str, str] | None = None,
    ) -> RefundResult: ...


class HttpPaymentGateway:
    """
    Gateway client over HTTP with basic auth (key id / key secret).

    Pass ``client`` to reuse a connection pool or to inject a mock
    transport; otherwise a short-lived client is opened per call.
    """

    def __init__(
        self,
        base_url: str,
        key_id: str,
        key_secret: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = httpx.BasicAuth(key_id, key_secret)
        self._key_id = key_id
        self._timeout = timeout
        self._client = client

    async def create_intent(
        self,
        amount_minor: int,
        currency: str,
        reference: str,
        notes: dict[str, str] | None = None,
    ) -> GatewayIntent:
        body = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": reference,
            "payment_capture": 1,
            "notes": notes or {},
        }
        data = await self._post("/v1/orders", body, operation="create payment intent")
        return GatewayIntent(
            gateway_order_ref=data["id"],
            amount_minor=data.get("amount", amount_minor),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", reference),
            key_id=self._key_id,
            created_at=_from_timestamp(data.get("created_at")),
        )

    async def refund(
        self,
        payment_ref: str,
        amount_minor: int,
        notes: dict[str, str] | None = None,
    ) -> RefundResult:
        body = {"amount": amount_minor, "notes": notes or {}}
        data = await self._post(
            f"/v1/payments/{payment_ref}/refund", body, operation="refund payment"
        )
        return RefundResult(
            refund_ref=data["id"],
            payment_ref=data.get("payment_id", payment_ref),
            amount_minor=data.get("amount", amount_minor),
            status=data.get("status", "pending"),
        )

    async def _post(self, path: str, body: dict[str, Any], operation: str) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            if self._client is not None:
                resp = await self._client.post(
                    url, json=body, auth=self._auth, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(url, json=body, auth=self._auth)
        except httpx.TransportError as e:
            raise GatewayUnavailable(operation, last_error=e) from e

        if resp.status_code >= 500 or resp.status_code == 429:
            raise GatewayUnavailable(
                operation,
                last_error=httpx.HTTPStatusError(
                    f"gateway returned {resp.status_code}", request=resp.request, response=resp
                ),
            )
        if resp.status_code >= 400:
            logger.warning(
                "Gateway rejected %s with %d",
                operation,
                resp.status_code,
                extra={"operation": operation, "status_code": resp.status_code},
            )
            raise ValidationFailure(
                f"Payment gateway rejected the request ({resp.status_code})",
                [{"field": "payment", "message": _error_description(resp)}],
            )
        return resp.json()


def _from_timestamp(value: Any) -> datetime | None:
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value, UTC)
    return None


def _error_description(resp: httpx.Response) -> str:
    try:
        return str(resp.json().get("error", {}).get("description", resp.text))
    except ValueError:
        return resp.text


class FakePaymentGateway:
    """
    In-memory gateway.

    Example:
        >>> gateway = FakePaymentGateway("key_secret", webhook_secret="hook_secret")
        >>> intent = await gateway.create_intent(118000, "INR", "ORD20260101ABC123")
        >>> payment_ref, signature = gateway.pay(intent.gateway_order_ref)
    """

    def __init__(
        self,
        key_secret: str = "test_key_secret",
        *,
        webhook_secret: str = "test_webhook_secret",
        key_id: str = "rzp_test_key",
    ) -> None:
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._key_id = key_id
        self.intents: dict[str, GatewayIntent] = {}
        self.refunds: list[RefundResult] = []
        self.calls = 0
        self._failures_remaining = 0
        self.unavailable = False

    def fail_next(self, times: int = 1) -> None:
        """Make the next ``times`` calls raise GatewayUnavailable."""
        self._failures_remaining = times

    def _maybe_fail(self, operation: str) -> None:
        self.calls += 1
        if self.unavailable:
            raise GatewayUnavailable(operation, last_error=ConnectionError("gateway offline"))
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise GatewayUnavailable(operation, last_error=TimeoutError("gateway timed out"))

    async def create_intent(
        self,
        amount_minor: int,
        currency: str,
        reference: str,
        notes: dict[str, str] | None = None,
    ) -> GatewayIntent:
        self._maybe_fail("create payment intent")
        intent = GatewayIntent(
            gateway_order_ref=f"order_{secrets.token_hex(7)}",
            amount_minor=amount_minor,
            currency=currency,
            receipt=reference,
            key_id=self._key_id,
            created_at=datetime.now(UTC),
        )
        self.intents[intent.gateway_order_ref] = intent
        return intent

    async def refund(
        self,
        payment_ref: str,
        amount_minor: int,
        notes: dict[str, str] | None = None,
    ) -> RefundResult:
        self._maybe_fail("refund payment")
        result = RefundResult(
            refund_ref=f"rfnd_{secrets.token_hex(7)}",
            payment_ref=payment_ref,
            amount_minor=amount_minor,
            status="processed",
        )
        self.refunds.append(result)
        return result

    def pay(self, gateway_order_ref: str) -> tuple[str, str]:
        """Simulate a buyer paying an intent; returns (payment ref, callback signature)."""
        payment_ref = f"pay_{secrets.token_hex(7)}"
        return payment_ref, sign_payment(gateway_order_ref, payment_ref, self._key_secret)

    def sign_webhook(self, raw_body: bytes) -> str:
        return sign_webhook(raw_body, self._webhook_secret)
