"""Order domain: states, data model, transition rules and the aggregate."""

from orderflow.domain.aggregate import OrderAggregate
from orderflow.domain.models import (
    LogResult,
    LoyaltyStatus,
    LoyaltyTransactionType,
    Order,
    OrderItem,
    OrderJourney,
    OrderLog,
    OrderLoyalty,
    OrderPayment,
    OrderStock,
    PaymentMethod,
    PaymentStatus,
    StockStatus,
)
from orderflow.domain.policies import (
    FulfillmentPolicy,
    LoyaltyPolicy,
    NeverFulfilledPolicy,
    RateLoyaltyPolicy,
)
from orderflow.domain.states import TRANSITIONS, OrderState, can_transition
from orderflow.domain.transitions import (
    check_transition,
    validate_transition,
    valid_next_states,
)

__all__ = [
    "OrderAggregate",
    "Order",
    "OrderItem",
    "OrderPayment",
    "OrderStock",
    "OrderLoyalty",
    "OrderJourney",
    "OrderLog",
    "PaymentMethod",
    "PaymentStatus",
    "StockStatus",
    "LoyaltyTransactionType",
    "LoyaltyStatus",
    "LogResult",
    "OrderState",
    "TRANSITIONS",
    "can_transition",
    "check_transition",
    "validate_transition",
    "valid_next_states",
    "FulfillmentPolicy",
    "LoyaltyPolicy",
    "NeverFulfilledPolicy",
    "RateLoyaltyPolicy",
]
