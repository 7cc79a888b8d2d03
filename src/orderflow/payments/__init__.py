"""Payment gateway integration: intents, signature verification, webhooks, refunds."""

from orderflow.payments.coordinator import PaymentCoordinator
from orderflow.payments.gateway import FakePaymentGateway, HttpPaymentGateway, PaymentGateway
from orderflow.payments.models import (
    GatewayIntent,
    PaymentCallback,
    PaymentOutcome,
    RefundResult,
    UnverifiedPayment,
    VerifiedPayment,
    WebhookEnvelope,
    WebhookResult,
)
from orderflow.payments.signatures import (
    sign_payment,
    sign_webhook,
    verify_payment_signature,
    verify_webhook_signature,
)

__all__ = [
    "FakePaymentGateway",
    "GatewayIntent",
    "HttpPaymentGateway",
    "PaymentCallback",
    "PaymentCoordinator",
    "PaymentGateway",
    "PaymentOutcome",
    "RefundResult",
    "UnverifiedPayment",
    "VerifiedPayment",
    "WebhookEnvelope",
    "WebhookResult",
    "sign_payment",
    "sign_webhook",
    "verify_payment_signature",
    "verify_webhook_signature",
]
