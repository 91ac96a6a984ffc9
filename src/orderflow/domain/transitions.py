"""
Pure transition validation and application.

Validation is evaluated completely before anything is changed; applying
a transition returns a new ``Order`` and never touches the input. No
function in this module performs I/O.

Rules reported on rejection:
    transition_not_allowed  - the pair is not in the transition table
    refund_not_allowed      - refunds need a Paid or Completed order
    insufficient_payment    - captured payments do not cover the total
    payment_not_active      - completion needs a captured payment
    stock_not_confirmed     - completion needs every ordered unit confirmed
    order_already_fulfilled - the fulfillment policy blocks cancellation
"""

from __future__ import annotations

from datetime import datetime

from orderflow.domain.models import (
    Order,
    OrderJourney,
    PaymentStatus,
    StockStatus,
    utc_now,
)
from orderflow.domain.policies import FulfillmentPolicy, NeverFulfilledPolicy
from orderflow.domain.states import TRANSITIONS, OrderState, can_transition
from orderflow.exceptions import InvalidTransitionError

RULE_TRANSITION_NOT_ALLOWED = "transition_not_allowed"
RULE_REFUND_NOT_ALLOWED = "refund_not_allowed"
RULE_INSUFFICIENT_PAYMENT = "insufficient_payment"
RULE_PAYMENT_NOT_ACTIVE = "payment_not_active"
RULE_STOCK_NOT_CONFIRMED = "stock_not_confirmed"
RULE_ORDER_ALREADY_FULFILLED = "order_already_fulfilled"

_REFUNDABLE_STATES = frozenset({OrderState.PAID, OrderState.COMPLETED})
_DEFAULT_POLICY = NeverFulfilledPolicy()


def _stock_confirmed(order: Order) -> bool:
    active = order.active_stocks
    if not active or any(s.status != StockStatus.CONFIRMED for s in active):
        return False
    confirmed = order.stock_quantities(StockStatus.CONFIRMED)
    return all(
        confirmed.get(product_id, 0) >= quantity
        for product_id, quantity in order.item_quantities.items()
    )


def check_transition(
    order: Order,
    target: OrderState,
    policy: FulfillmentPolicy | None = None,
) -> tuple[str, str | None] | None:
    """
    Evaluate the table and every guard for ``order.state -> target``.

    Returns:
        None when the transition is allowed, otherwise a ``(rule, detail)``
        tuple naming the first violated rule
    """
    current = order.state
    if not can_transition(current, target):
        allowed = sorted(s.value for s in TRANSITIONS.get(current, frozenset()))
        return RULE_TRANSITION_NOT_ALLOWED, f"allowed targets: {', '.join(allowed) or 'none'}"

    if target == OrderState.REFUNDED and current not in _REFUNDABLE_STATES:
        return RULE_REFUND_NOT_ALLOWED, None

    if target == OrderState.PAID and order.captured_amount < order.total_amount:
        return (
            RULE_INSUFFICIENT_PAYMENT,
            f"captured {order.captured_amount} of {order.total_amount}",
        )

    if target == OrderState.COMPLETED:
        if order.payment is None or order.payment.status != PaymentStatus.CAPTURED:
            return RULE_PAYMENT_NOT_ACTIVE, None
        if not _stock_confirmed(order):
            return RULE_STOCK_NOT_CONFIRMED, None

    if target == OrderState.CANCELLED and current == OrderState.COMPLETED:
        if (policy or _DEFAULT_POLICY).is_fulfilled(order):
            return RULE_ORDER_ALREADY_FULFILLED, None

    return None


def validate_transition(
    order: Order,
    target: OrderState,
    policy: FulfillmentPolicy | None = None,
) -> None:
    """
    Raise InvalidTransitionError if ``order`` cannot move to ``target``.

    Raises:
        InvalidTransitionError: Naming the violated rule
    """
    violation = check_transition(order, target, policy)
    if violation is not None:
        rule, detail = violation
        raise InvalidTransitionError(rule, order.state.value, target.value, detail)


def apply_transition(
    order: Order,
    target: OrderState,
    *,
    reference_id: str | None = None,
    actor: str | None = None,
    at: datetime | None = None,
) -> tuple[Order, OrderJourney]:
    """
    Produce the order after moving to ``target`` and the journey row for it.

    Does not validate; call ``validate_transition`` first. Bookkeeping that
    belongs to the transition is applied in the same step: refunding marks a
    captured payment refunded, cancelling releases outstanding stock.
    """
    occurred_at = at or utc_now()
    journey = OrderJourney(
        sequence=order.next_journey_sequence,
        from_state=order.state,
        to_state=target,
        occurred_at=occurred_at,
        reference_id=reference_id,
        actor=actor,
    )

    payment = order.payment
    if (
        target == OrderState.REFUNDED
        and payment is not None
        and payment.status == PaymentStatus.CAPTURED
    ):
        payment = payment.model_copy(update={"status": PaymentStatus.REFUNDED})

    stocks = order.stocks
    if target == OrderState.CANCELLED:
        stocks = [
            s
            if s.status == StockStatus.RELEASED
            else s.model_copy(update={"status": StockStatus.RELEASED})
            for s in stocks
        ]

    updated = order.model_copy(
        update={
            "state": target,
            "payment": payment,
            "stocks": stocks,
            "journeys": [*order.journeys, journey],
            "updated_at": occurred_at,
        }
    )
    return updated, journey


def transition(
    order: Order,
    target: OrderState,
    *,
    reference_id: str | None = None,
    actor: str | None = None,
    policy: FulfillmentPolicy | None = None,
) -> tuple[Order, OrderJourney]:
    """Validate and apply a transition in one call (all or nothing)."""
    validate_transition(order, target, policy)
    return apply_transition(order, target, reference_id=reference_id, actor=actor)


def valid_next_states(
    order: Order,
    policy: FulfillmentPolicy | None = None,
) -> set[OrderState]:
    """Get the table targets of ``order.state`` whose guards currently pass."""
    return {
        target
        for target in TRANSITIONS.get(order.state, frozenset())
        if check_transition(order, target, policy) is None
    }


__all__ = [
    "RULE_TRANSITION_NOT_ALLOWED",
    "RULE_REFUND_NOT_ALLOWED",
    "RULE_INSUFFICIENT_PAYMENT",
    "RULE_PAYMENT_NOT_ACTIVE",
    "RULE_STOCK_NOT_CONFIRMED",
    "RULE_ORDER_ALREADY_FULFILLED",
    "check_transition",
    "validate_transition",
    "apply_transition",
    "transition",
    "valid_next_states",
]
