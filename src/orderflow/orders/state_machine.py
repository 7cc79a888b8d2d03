"""
Order status transitions.

This table is the single source of truth for which status changes are
legal; the order aggregate checks it before producing any event.
"""

from collections.abc import Sequence

from orderflow.exceptions import InvalidTransition
from orderflow.orders.models import OrderStatus

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    # Returns are a manual post-delivery flow, never automatic
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
}

INITIAL_STATES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

TERMINAL_STATES = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.RETURNED}
)

CANCELLABLE_STATES = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}
)

def next_statuses(current: OrderStatus) -> list[OrderStatus]:
    """Statuses reachable from ``current`` in one step, in lifecycle order."""
    allowed = TRANSITIONS[current]
    return [status for status in OrderStatus if status in allowed]


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(order_id: str, current: OrderStatus, target: OrderStatus) -> None:
    """
    Raise InvalidTransition unless ``current -> target`` is an edge of the table.
    """
    if not can_transition(current, target):
        raise InvalidTransition(
            order_id,
            current.value,
            target.value,
            allowed=[status.value for status in next_statuses(current)],
        )


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATES


def validate_history(statuses: Sequence[OrderStatus]) -> bool:
    """
    Check that a status history is a path through the transition table.

    The first entry must be an initial state and every following entry
    must be one legal step from its predecessor.
    """
    if not statuses or statuses[0] not in INITIAL_STATES:
        return False
    return all(can_transition(prev, nxt) for prev, nxt in zip(statuses, statuses[1:]))
