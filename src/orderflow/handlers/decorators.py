"""
The @handles decorator for declarative event routing.

Aggregates mark their state-mutating methods with ``@handles(EventType)``;
projections mark their read-model updaters the same way. Base classes
discover the marked methods when they are instantiated.
"""

from collections.abc import Callable
from typing import Any, TypeVar

from orderflow.events.base import DomainEvent

F = TypeVar("F", bound=Callable[..., Any])


def handles(event_type: type[DomainEvent]) -> Callable[[F], F]:
    """
    Mark a method as the handler for a specific event type.

    Args:
        event_type: The DomainEvent subclass this handler processes

    Example:
        >>> class InventoryLedger(DeclarativeAggregate[LedgerState]):
        ...     @handles(StockReceived)
        ...     def _on_stock_received(self, event: StockReceived) -> None:
        ...         ...
    """

    def decorator(func: F) -> F:
        func._handles_event_type = event_type  # type: ignore[attr-defined]
        return func

    return decorator


def get_handled_event_type(func: Callable[..., Any]) -> type[DomainEvent] | None:
    """Return the event type a decorated function handles, if any."""
    return getattr(func, "_handles_event_type", None)


def discover_handlers(instance: object) -> dict[type[DomainEvent], Callable[..., Any]]:
    """
    Collect ``@handles`` methods of an instance, keyed by event type.

    Walks ``dir()`` so handlers declared on base classes are included.
    """
    found: dict[type[DomainEvent], Callable[..., Any]] = {}
    for attr_name in dir(instance):
        if attr_name.startswith("__"):
            continue
        try:
            attr = getattr(instance, attr_name)
        except AttributeError:
            continue
        event_type = get_handled_event_type(attr) if callable(attr) else None
        if event_type is not None:
            found[event_type] = attr
    return found


__all__ = [
    "discover_handlers",
    "get_handled_event_type",
    "handles",
]
