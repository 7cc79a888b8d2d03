"""
HMAC-SHA256 signatures used by the payment gateway.

Buyer callbacks are signed over ``"{gateway_order_ref}|{gateway_payment_ref}"``
with the API key secret; webhooks are signed over the raw request body
with a separate webhook secret. Comparisons are constant-time and run
on UTF-8 bytes, so a non-ASCII signature simply fails to match.
"""

import hashlib
import hmac


def _hex_hmac(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, signature: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def sign_payment(gateway_order_ref: str, gateway_payment_ref: str, secret: str) -> str:
    payload = f"{gateway_order_ref}|{gateway_payment_ref}".encode()
    return _hex_hmac(secret, payload)


def verify_payment_signature(
    gateway_order_ref: str,
    gateway_payment_ref: str,
    signature: str,
    secret: str,
) -> bool:
    expected = sign_payment(gateway_order_ref, gateway_payment_ref, secret)
    return _matches(expected, signature or "")


def sign_webhook(raw_body: bytes, secret: str) -> str:
    return _hex_hmac(secret, raw_body)


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    return _matches(sign_webhook(raw_body, secret), signature)
