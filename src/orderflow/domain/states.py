"""
Order states and the transition table.

The table is the single source of truth for which state changes are
structurally possible. Business guards are layered on top of it in
``orderflow.domain.transitions``.
"""

from enum import Enum


class OrderState(str, Enum):
    """Lifecycle state of an order."""

    INITIAL = "Initial"
    PENDING = "Pending"
    PAID = "Paid"
    COMPLETED = "Completed"
    REFUNDED = "Refunded"
    CANCELLED = "Cancelled"

    def __str__(self) -> str:
        return self.value


TRANSITIONS: dict[OrderState, frozenset[OrderState]] = {
    OrderState.INITIAL: frozenset({OrderState.PENDING}),
    OrderState.PENDING: frozenset({OrderState.PAID, OrderState.CANCELLED}),
    OrderState.PAID: frozenset({OrderState.COMPLETED, OrderState.REFUNDED}),
    OrderState.REFUNDED: frozenset({OrderState.CANCELLED}),
    OrderState.COMPLETED: frozenset({OrderState.CANCELLED}),
    # Reactivation
    OrderState.CANCELLED: frozenset({OrderState.PENDING}),
}

# States in which the item list may still change
MUTABLE_ITEM_STATES: frozenset[OrderState] = frozenset({OrderState.INITIAL, OrderState.PENDING})


def can_transition(current: OrderState, target: OrderState) -> bool:
    """
    Check whether the transition table allows current -> target.

    Pure table lookup: no guards are evaluated.

    Example:
        >>> can_transition(OrderState.PENDING, OrderState.PAID)
        True
        >>> can_transition(OrderState.COMPLETED, OrderState.PAID)
        False
    """
    return target in TRANSITIONS.get(current, frozenset())


__all__ = [
    "OrderState",
    "TRANSITIONS",
    "MUTABLE_ITEM_STATES",
    "can_transition",
]
