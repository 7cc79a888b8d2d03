"""Exceptions raised by the orderflow package.

Two families live here. Domain errors (``ValidationFailure``,
``InsufficientStock``, ``InvalidTransition``, ``SignatureMismatch``,
``GatewayUnavailable``, ``NotFound``) are surfaced to callers and carry
enough detail to say which line item or payment step failed.
Infrastructure errors (``OptimisticLockError``, ``EventVersionError`` and
friends) come from the event-sourced persistence layer.
"""

from typing import Any
from uuid import UUID


class OrderflowError(Exception):
    """Base exception for the orderflow package."""

    pass


# =============================================================================
# Domain errors
# =============================================================================


class ValidationFailure(OrderflowError):
    """Raised when a request is malformed or refers to something unusable.

    Attributes:
        errors: Field or line level problems, e.g.
            ``[{"field": "items[1].productId", "message": "not purchasable"}]``
    """

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        self.message = message
        self.errors = errors or []
        super().__init__(message)


class InsufficientStock(OrderflowError):
    """Raised when a reservation is denied because not enough units are available."""

    def __init__(
        self,
        product_id: str,
        requested: int,
        available: int,
        line_index: int | None = None,
    ) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.line_index = line_index
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )

    def to_error(self) -> dict[str, Any]:
        """Describe the failing line for an error envelope."""
        error: dict[str, Any] = {
            "productId": self.product_id,
            "requested": self.requested,
            "available": self.available,
            "message": str(self),
        }
        if self.line_index is not None:
            error["field"] = f"items[{self.line_index}]"
        return error


class InvalidTransition(OrderflowError):
    """Raised when an order status change is not allowed by the state machine."""

    def __init__(
        self,
        order_id: str,
        current: str,
        target: str,
        allowed: list[str] | None = None,
    ) -> None:
        self.order_id = order_id
        self.current = current
        self.target = target
        self.allowed = allowed or []
        super().__init__(f"Order {order_id} cannot move from '{current}' to '{target}'")


class SignatureMismatch(OrderflowError):
    """Raised when a payment callback or webhook signature does not verify.

    Attributes:
        step: Which verification step rejected the payload
            (``"callback"`` or ``"webhook"``)
        gateway_order_ref: Gateway order reference from the payload, if any
    """

    def __init__(self, step: str, gateway_order_ref: str | None = None) -> None:
        self.step = step
        self.gateway_order_ref = gateway_order_ref
        ref_info = f" for gateway order {gateway_order_ref}" if gateway_order_ref else ""
        super().__init__(f"Payment {step} signature verification failed{ref_info}")


class GatewayUnavailable(OrderflowError):
    """Raised when an external collaborator cannot be reached after retries."""

    def __init__(
        self,
        operation: str,
        attempts: int = 1,
        last_error: Exception | None = None,
    ) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        cause = f": {last_error}" if last_error else ""
        super().__init__(f"{operation} failed after {attempts} attempt(s){cause}")


class CatalogUnavailable(GatewayUnavailable):
    """Raised when the product catalog cannot be reached."""

    pass


class NotFound(OrderflowError):
    """Raised when a requested entity does not exist."""

    def __init__(self, kind: str, identifier: Any) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class Forbidden(OrderflowError):
    """Raised when the actor may not act on the order.

    Attributes:
        actor_id: The acting party, if one was given
        action: What was attempted (``"cancel"`` or ``"update_status"``)
    """

    def __init__(self, actor_id: str | None, action: str, order_ref: Any) -> None:
        self.actor_id = actor_id
        self.action = action
        self.order_ref = order_ref
        super().__init__(f"{actor_id or 'Anonymous'} may not {action} order {order_ref}")


# =============================================================================
# Persistence and infrastructure errors
# =============================================================================


class OptimisticLockError(OrderflowError):
    """Raised when there's a version conflict during event append."""

    def __init__(self, aggregate_id: UUID, expected_version: int, actual_version: int) -> None:
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock error for aggregate {aggregate_id}: "
            f"expected version {expected_version}, but current version is {actual_version}"
        )


class ReservationConflict(OrderflowError):
    """Raised when a ledger write keeps losing races after every retry."""

    def __init__(self, product_id: str, attempts: int) -> None:
        self.product_id = product_id
        self.attempts = attempts
        super().__init__(
            f"Could not reserve product {product_id}: "
            f"ledger changed concurrently on all {attempts} attempts"
        )


class LedgerInvariantError(OrderflowError):
    """Raised when a ledger command would break ``available + reserved <= total``."""

    def __init__(self, product_id: str, message: str) -> None:
        self.product_id = product_id
        super().__init__(f"Inventory ledger for {product_id}: {message}")


class AggregateNotFoundError(NotFound):
    """Raised when an aggregate cannot be found."""

    def __init__(self, aggregate_id: UUID, aggregate_type: str | None = None) -> None:
        self.aggregate_id = aggregate_id
        self.aggregate_type = aggregate_type
        super().__init__(aggregate_type or "Aggregate", aggregate_id)


class EventStoreError(OrderflowError):
    """Raised when there's an error in the event store."""

    pass


class SerializationError(OrderflowError):
    """Raised when event serialization or deserialization fails."""

    def __init__(self, event_type: str, message: str) -> None:
        self.event_type = event_type
        super().__init__(f"Serialization error for {event_type}: {message}")


class EventVersionError(OrderflowError):
    """
    Raised when event version validation fails during aggregate event application.

    This happens on a version gap or regression, and protects aggregate
    state from out-of-order events.

    Attributes:
        expected_version: The version that was expected (current version + 1)
        actual_version: The version found in the event
        event_id: ID of the event with invalid version
        aggregate_id: ID of the aggregate being updated
    """

    def __init__(
        self,
        expected_version: int,
        actual_version: int,
        event_id: UUID,
        aggregate_id: UUID,
    ) -> None:
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.event_id = event_id
        self.aggregate_id = aggregate_id
        super().__init__(
            f"Event version mismatch for aggregate {aggregate_id}: "
            f"expected version {expected_version}, got {actual_version} "
            f"(event_id: {event_id})"
        )


class UnhandledEventError(OrderflowError):
    """Raised when an aggregate receives an event it has no handler for."""

    def __init__(
        self,
        event_type: str,
        event_id: UUID,
        handler_class: str,
        available_handlers: list[str],
    ) -> None:
        self.event_type = event_type
        self.event_id = event_id
        self.handler_class = handler_class
        self.available_handlers = available_handlers
        handlers_str = ", ".join(available_handlers) if available_handlers else "none"
        super().__init__(
            f"No handler registered for event type '{event_type}' "
            f"in {handler_class}. Available handlers: {handlers_str}."
        )
