"""
Runtime configuration for orderflow.

``OrderflowConfig`` is a plain dataclass validated on construction.
Applications usually build it from the environment:

    config = OrderflowConfig.from_env()

Recognized variables (all optional unless noted):

    ORDERFLOW_GATEWAY_KEY_ID          gateway API key id
    ORDERFLOW_GATEWAY_KEY_SECRET      secret for callback signatures and API auth
    ORDERFLOW_WEBHOOK_SECRET          secret for gateway webhooks (must differ)
    ORDERFLOW_GATEWAY_URL             gateway base URL
    ORDERFLOW_CATALOG_URL             catalog service base URL
    ORDERFLOW_NOTIFY_URL              notification relay URL
    ORDERFLOW_DATABASE                SQLite path, or ":memory:" for the in-memory store
    ORDERFLOW_CURRENCY                settlement currency (default INR)
    ORDERFLOW_FREE_SHIPPING_THRESHOLD, ORDERFLOW_SHIPPING_FEE, ORDERFLOW_TAX_RATE
    ORDERFLOW_PENDING_EXPIRY_SECONDS, ORDERFLOW_PAYMENT_GRACE_SECONDS
    ORDERFLOW_GATEWAY_TIMEOUT, ORDERFLOW_NOTIFICATION_TIMEOUT
    ORDERFLOW_GATEWAY_RETRIES, ORDERFLOW_RESERVATION_RETRIES
    ORDERFLOW_ADMIN_ACTORS            comma-separated actor ids with admin rights
    ORDERFLOW_ENABLE_TRACING
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from orderflow.retry import RetryConfig

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class OrderflowConfig:
    """
    Configuration for the order and payment engine.

    Attributes:
        gateway_key_id: Public key id sent to the gateway and to checkout clients
        gateway_key_secret: Shared secret for buyer callback signatures
        webhook_secret: Separate shared secret for gateway-initiated webhooks
        gateway_base_url: Payment gateway API base URL
        catalog_base_url: Catalog service base URL (None for an in-process catalog)
        notification_url: Relay that delivers email/SMS (None to only log)
        database: SQLite database path, or ":memory:" for the in-memory store
        currency: Settlement currency; a single currency per deployment
        free_shipping_threshold: Subtotal at or above which shipping is free
        shipping_fee: Flat shipping fee below the threshold
        tax_rate: Tax (GST) rate applied to the subtotal
        min_online_amount: Smallest total accepted for online payment
        max_online_amount: Largest total accepted for online payment
        pending_order_expiry: How long a pending order keeps its reservation
        payment_failure_grace: How long after a failed payment stock stays held
        gateway_timeout: Timeout in seconds for each gateway call
        notification_timeout: Timeout in seconds for each notification delivery
        gateway_retry: Backoff for gateway calls
        reservation_retry: Backoff for ledger appends that lose a race
        admin_actors: Actor ids that may cancel or update any order
        enable_tracing: Emit OpenTelemetry spans when available
    """

    gateway_key_id: str = "rzp_test_key"
    gateway_key_secret: str = "test_key_secret"
    webhook_secret: str = "test_webhook_secret"
    gateway_base_url: str = "https://api.razorpay.com"
    catalog_base_url: str | None = None
    notification_url: str | None = None
    database: str = ":memory:"
    currency: str = "INR"
    free_shipping_threshold: Decimal = Decimal("1000")
    shipping_fee: Decimal = Decimal("50")
    tax_rate: Decimal = Decimal("0.18")
    min_online_amount: Decimal = Decimal("1")
    max_online_amount: Decimal = Decimal("1000000")
    pending_order_expiry: timedelta = timedelta(minutes=15)
    payment_failure_grace: timedelta = timedelta(minutes=5)
    gateway_timeout: float = 10.0
    notification_timeout: float = 5.0
    gateway_retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(max_retries=3, initial_delay=0.5, max_delay=4.0)
    )
    reservation_retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(max_retries=5, initial_delay=0.01, max_delay=0.2)
    )
    admin_actors: frozenset[str] = frozenset({"admin"})
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.gateway_key_secret:
            raise ValueError("gateway_key_secret must not be empty.")

        if not self.webhook_secret:
            raise ValueError("webhook_secret must not be empty.")

        if self.webhook_secret == self.gateway_key_secret:
            raise ValueError(
                "webhook_secret must differ from gateway_key_secret; "
                "webhooks and buyer callbacks are verified with separate secrets."
            )

        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValueError(f"currency must be a 3-letter code, got {self.currency!r}.")
        self.currency = self.currency.upper()

        if self.free_shipping_threshold < 0 or self.shipping_fee < 0:
            raise ValueError("free_shipping_threshold and shipping_fee must be >= 0.")

        if not Decimal("0") <= self.tax_rate < Decimal("1"):
            raise ValueError(f"tax_rate must be in [0, 1), got {self.tax_rate}.")

        if self.min_online_amount <= 0 or self.max_online_amount < self.min_online_amount:
            raise ValueError(
                f"online amount bounds are invalid: "
                f"[{self.min_online_amount}, {self.max_online_amount}]."
            )

        if self.pending_order_expiry <= timedelta(0):
            raise ValueError("pending_order_expiry must be positive.")

        if self.payment_failure_grace < timedelta(0):
            raise ValueError("payment_failure_grace must be >= 0.")

        if self.gateway_timeout <= 0 or self.notification_timeout <= 0:
            raise ValueError("gateway_timeout and notification_timeout must be positive.")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "OrderflowConfig":
        """
        Build a configuration from ``ORDERFLOW_*`` environment variables.

        Unset variables keep their defaults.

        Raises:
            ValueError: If a variable cannot be parsed or the result is invalid
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        for name, key in (
            ("gateway_key_id", "ORDERFLOW_GATEWAY_KEY_ID"),
            ("gateway_key_secret", "ORDERFLOW_GATEWAY_KEY_SECRET"),
            ("webhook_secret", "ORDERFLOW_WEBHOOK_SECRET"),
            ("gateway_base_url", "ORDERFLOW_GATEWAY_URL"),
            ("catalog_base_url", "ORDERFLOW_CATALOG_URL"),
            ("notification_url", "ORDERFLOW_NOTIFY_URL"),
            ("database", "ORDERFLOW_DATABASE"),
            ("currency", "ORDERFLOW_CURRENCY"),
        ):
            if key in env:
                kwargs[name] = env[key]

        for name, key in (
            ("free_shipping_threshold", "ORDERFLOW_FREE_SHIPPING_THRESHOLD"),
            ("shipping_fee", "ORDERFLOW_SHIPPING_FEE"),
            ("tax_rate", "ORDERFLOW_TAX_RATE"),
        ):
            if key in env:
                kwargs[name] = _parse_decimal(key, env[key])

        if "ORDERFLOW_PENDING_EXPIRY_SECONDS" in env:
            kwargs["pending_order_expiry"] = timedelta(
                seconds=_parse_float("ORDERFLOW_PENDING_EXPIRY_SECONDS", env)
            )
        if "ORDERFLOW_PAYMENT_GRACE_SECONDS" in env:
            kwargs["payment_failure_grace"] = timedelta(
                seconds=_parse_float("ORDERFLOW_PAYMENT_GRACE_SECONDS", env)
            )
        if "ORDERFLOW_GATEWAY_TIMEOUT" in env:
            kwargs["gateway_timeout"] = _parse_float("ORDERFLOW_GATEWAY_TIMEOUT", env)
        if "ORDERFLOW_NOTIFICATION_TIMEOUT" in env:
            kwargs["notification_timeout"] = _parse_float("ORDERFLOW_NOTIFICATION_TIMEOUT", env)
        if "ORDERFLOW_GATEWAY_RETRIES" in env:
            kwargs["gateway_retry"] = RetryConfig(
                max_retries=int(env["ORDERFLOW_GATEWAY_RETRIES"]),
                initial_delay=0.5,
                max_delay=4.0,
            )
        if "ORDERFLOW_RESERVATION_RETRIES" in env:
            kwargs["reservation_retry"] = RetryConfig(
                max_retries=int(env["ORDERFLOW_RESERVATION_RETRIES"]),
                initial_delay=0.01,
                max_delay=0.2,
            )
        if "ORDERFLOW_ADMIN_ACTORS" in env:
            kwargs["admin_actors"] = frozenset(
                actor.strip() for actor in env["ORDERFLOW_ADMIN_ACTORS"].split(",") if actor.strip()
            )
        if "ORDERFLOW_ENABLE_TRACING" in env:
            kwargs["enable_tracing"] = env["ORDERFLOW_ENABLE_TRACING"].lower() in _TRUE_VALUES

        return cls(**kwargs)  # type: ignore[arg-type]


def _parse_decimal(key: str, value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"{key} must be a number, got {value!r}") from e


def _parse_float(key: str, env: Mapping[str, str]) -> float:
    try:
        return float(env[key])
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {env[key]!r}") from e
