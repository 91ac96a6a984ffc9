"""
Pluggable business policies.

Two decisions are left to the deploying application:

- whether a completed order has already been fulfilled and shipped, which
  blocks cancelling it (``FulfillmentPolicy``)
- how many loyalty points an order earns (``LoyaltyPolicy``)

The defaults are deliberately neutral: nothing counts as fulfilled, and
one point is earned per whole currency unit of the order total.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import Protocol, runtime_checkable

from orderflow.domain.models import Order


@runtime_checkable
class FulfillmentPolicy(Protocol):
    """Decides whether an order has been fulfilled and shipped."""

    def is_fulfilled(self, order: Order) -> bool: ...


@runtime_checkable
class LoyaltyPolicy(Protocol):
    """Computes the points an order earns on payment."""

    def points_for(self, order: Order) -> int: ...


class NeverFulfilledPolicy:
    """Default fulfillment policy: no order is ever considered shipped."""

    def is_fulfilled(self, order: Order) -> bool:
        return False


class RateLoyaltyPolicy:
    """
    Earn a fixed number of points per currency unit of the order total.

    The result is rounded down to a whole number of points.

    Example:
        >>> policy = RateLoyaltyPolicy(points_per_unit=Decimal("2"))
        >>> policy.points_for(order)  # total 10.75 -> 21
    """

    def __init__(self, points_per_unit: Decimal | int = 1) -> None:
        rate = Decimal(points_per_unit)
        if rate < 0:
            raise ValueError(f"points_per_unit must be >= 0, got {points_per_unit}")
        self.points_per_unit = rate

    def points_for(self, order: Order) -> int:
        points = (order.total_amount * self.points_per_unit).to_integral_value(
            rounding=ROUND_FLOOR
        )
        return max(0, int(points))


__all__ = [
    "FulfillmentPolicy",
    "LoyaltyPolicy",
    "NeverFulfilledPolicy",
    "RateLoyaltyPolicy",
]
