"""
Payment payloads.

Untrusted input (buyer callbacks, gateway webhooks) is parsed into the
boundary models here, then classified into a ``PaymentOutcome``: either a
``VerifiedPayment`` whose signature checked out or an
``UnverifiedPayment`` carrying why it was rejected.
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

PaymentSource = Literal["callback", "webhook"]


class PaymentCallback(BaseModel):
    """What the checkout client posts back after the buyer pays."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    gateway_order_ref: str = Field(
        min_length=1,
        validation_alias=AliasChoices("gateway_order_ref", "gatewayOrderRef", "orderId"),
    )
    gateway_payment_ref: str = Field(
        min_length=1,
        validation_alias=AliasChoices("gateway_payment_ref", "gatewayPaymentRef", "paymentId"),
    )
    signature: str = Field(min_length=1)


class WebhookEnvelope(BaseModel):
    """
    A gateway webhook body.

    Example:
        {"event": "payment.captured",
         "payload": {"payment": {"entity": {"id": "pay_1", "order_id": "order_1"}}}}
    """

    event: str
    payload: dict[str, Any] = Field(default_factory=dict)

    def _entity(self, name: str) -> dict[str, Any]:
        section = self.payload.get(name) or {}
        entity = section.get("entity") if isinstance(section, dict) else None
        return entity if isinstance(entity, dict) else {}

    @property
    def gateway_order_ref(self) -> str | None:
        return self._entity("payment").get("order_id") or self._entity("order").get("id")

    @property
    def gateway_payment_ref(self) -> str | None:
        return self._entity("payment").get("id")

    @property
    def failure_reason(self) -> str:
        payment = self._entity("payment")
        return payment.get("error_description") or payment.get("error_code") or "payment failed"


class VerifiedPayment(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["verified"] = "verified"
    gateway_order_ref: str
    gateway_payment_ref: str
    source: PaymentSource = "callback"


class UnverifiedPayment(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unverified"] = "unverified"
    gateway_order_ref: str
    gateway_payment_ref: str
    step: PaymentSource = "callback"
    reason: str = "signature mismatch"


PaymentOutcome = Annotated[VerifiedPayment | UnverifiedPayment, Field(discriminator="kind")]


class GatewayIntent(BaseModel):
    """
    A gateway-side order the buyer pays against.

    Attributes:
        gateway_order_ref: Gateway order id
        amount_minor: Amount in minor units (paise)
        currency: ISO currency code
        receipt: Our reference sent with the intent (the order number)
        key_id: Public key id the checkout client needs
    """

    model_config = ConfigDict(frozen=True)

    gateway_order_ref: str
    amount_minor: int
    currency: str
    receipt: str = ""
    key_id: str = ""
    created_at: datetime | None = None


class RefundResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    refund_ref: str
    payment_ref: str
    amount_minor: int
    status: str


class WebhookResult(BaseModel):
    """How a webhook was handled. Unknown events are acknowledged, not handled."""

    event: str
    handled: bool
    order_id: str | None = None
    detail: str = ""
