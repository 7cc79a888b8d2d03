"""
Standard span attributes for orderflow.

Example:
    >>> with tracer.span(
    ...     "orderflow.reservations.reserve",
    ...     {ATTR_RESERVATION_ID: "ORD20260101ABC123", ATTR_LINE_COUNT: 2},
    ... ):
    ...     pass
"""

# =============================================================================
# Event store attributes
# =============================================================================

ATTR_AGGREGATE_ID = "orderflow.aggregate.id"
"""Unique identifier for the aggregate instance (UUID string)."""

ATTR_AGGREGATE_TYPE = "orderflow.aggregate.type"
"""Type name of the aggregate ('Order', 'InventoryLedger')."""

ATTR_EVENT_ID = "orderflow.event.id"
ATTR_EVENT_TYPE = "orderflow.event.type"
ATTR_EVENT_COUNT = "orderflow.event.count"

ATTR_VERSION = "orderflow.version"
"""Current version of an aggregate or stream (integer)."""

ATTR_EXPECTED_VERSION = "orderflow.expected_version"
"""Expected version for optimistic concurrency (integer)."""

ATTR_DB_SYSTEM = "db.system"

# =============================================================================
# Event bus attributes
# =============================================================================

ATTR_HANDLER_NAME = "orderflow.handler.name"
ATTR_HANDLER_COUNT = "orderflow.handler.count"
ATTR_HANDLER_SUCCESS = "orderflow.handler.success"

# =============================================================================
# Domain attributes
# =============================================================================

ATTR_ORDER_ID = "orderflow.order.id"
"""Human-legible order number (string)."""

ATTR_ORDER_STATUS = "orderflow.order.status"
ATTR_CUSTOMER_ID = "orderflow.customer.id"
ATTR_PRODUCT_ID = "orderflow.product.id"
ATTR_RESERVATION_ID = "orderflow.reservation.id"
ATTR_LINE_COUNT = "orderflow.order.line_count"
ATTR_PAYMENT_METHOD = "orderflow.payment.method"
ATTR_GATEWAY_ORDER_REF = "orderflow.payment.gateway_order_ref"
ATTR_RETRY_COUNT = "orderflow.retry.count"
ATTR_NOTIFICATION_CHANNEL = "orderflow.notification.channel"
ATTR_ACTOR_ID = "orderflow.actor.id"
