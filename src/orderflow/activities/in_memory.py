"""
Scripted in-memory activities.

In-process stand-ins for the stock, payment and loyalty services, for
tests and local development. Each one deduplicates by reference id like
a well-behaved remote service, and can be scripted to decline, fail
transiently or respond slowly.

Example:
    >>> payments = InMemoryPaymentActivity()
    >>> payments.decline("capture", "card declined")
    >>> stock = InMemoryStockActivity()
    >>> stock.fail_transiently("reserve", times=2)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from orderflow.activities.interface import (
    ActivityResult,
    LoyaltyResult,
    PaymentResult,
    StockResult,
)
from orderflow.domain.models import OrderItem, PaymentMethod
from orderflow.exceptions import ActivityTransientError

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=ActivityResult)


@dataclass(frozen=True)
class ActivityCall:
    """One invocation received by a scripted activity."""

    operation: str
    reference_id: str
    arguments: dict[str, Any] = field(default_factory=dict)


class ScriptedActivity:
    """
    Base class for in-memory activities.

    Attributes:
        calls: Every invocation received, including replays and failures
        effects: Invocations that actually applied a side effect
    """

    name = "activity"

    def __init__(self) -> None:
        self.calls: list[ActivityCall] = []
        self.effects: list[ActivityCall] = []
        self._results: dict[tuple[str, str], ActivityResult] = {}
        self._declines: dict[str, str] = {}
        self._transient: dict[str, int] = {}
        self._delays: dict[str, float] = {}

    def decline(self, operation: str, reason: str) -> None:
        """Make every new call to ``operation`` return a declined result."""
        self._declines[operation] = reason

    def fail_transiently(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls to ``operation`` raise ActivityTransientError."""
        self._transient[operation] = times

    def delay(self, operation: str, seconds: float) -> None:
        """Make calls to ``operation`` take ``seconds`` before responding."""
        self._delays[operation] = seconds

    def reset_script(self) -> None:
        self._declines.clear()
        self._transient.clear()
        self._delays.clear()

    def calls_for(self, operation: str) -> list[ActivityCall]:
        return [c for c in self.calls if c.operation == operation]

    def effects_for(self, operation: str) -> list[ActivityCall]:
        return [c for c in self.effects if c.operation == operation]

    async def _invoke(
        self,
        operation: str,
        reference_id: str,
        arguments: dict[str, Any],
        apply: Callable[[], R],
        declined: Callable[[str], R],
    ) -> R:
        call = ActivityCall(operation, reference_id, arguments)
        self.calls.append(call)

        delay = self._delays.get(operation)
        if delay:
            await asyncio.sleep(delay)

        previous = self._results.get((operation, reference_id))
        if previous is not None:
            return previous  # type: ignore[return-value]

        remaining = self._transient.get(operation, 0)
        if remaining > 0:
            self._transient[operation] = remaining - 1
            raise ActivityTransientError(f"{self.name}.{operation}", "service unavailable")

        reason = self._declines.get(operation)
        if reason is not None:
            result = declined(reason)
        else:
            result = apply()
            self.effects.append(call)

        self._results[(operation, reference_id)] = result
        logger.debug(
            "%s.%s(%s) -> ok=%s",
            self.name,
            operation,
            reference_id,
            result.ok,
        )
        return result


class InMemoryStockActivity(ScriptedActivity):
    """
    In-memory stock service.

    Args:
        unavailable: Product ids that can never be reserved
    """

    name = "stock"

    def __init__(self, unavailable: set[str] | None = None) -> None:
        super().__init__()
        self.unavailable = set(unavailable or ())
        self.reservations: dict[UUID, dict[str, str]] = {}

    async def reserve(
        self, order_id: UUID, items: list[OrderItem], reference_id: str
    ) -> StockResult:
        product_ids = [item.product_id for item in items]
        missing = [p for p in product_ids if p in self.unavailable]
        if missing:
            self.calls.append(ActivityCall("reserve", reference_id, {"order_id": order_id}))
            return StockResult(
                ok=False,
                reason=f"stock unavailable: {', '.join(missing)}",
                product_ids=missing,
            )

        def apply() -> StockResult:
            reserved = self.reservations.setdefault(order_id, {})
            for product_id in product_ids:
                reserved[product_id] = "reserved"
            return StockResult(ok=True, transaction_id=str(uuid4()), product_ids=product_ids)

        return await self._invoke(
            "reserve",
            reference_id,
            {"order_id": order_id, "product_ids": product_ids},
            apply,
            lambda reason: StockResult(ok=False, reason=reason),
        )

    async def confirm(
        self, order_id: UUID, items: list[OrderItem], reference_id: str
    ) -> StockResult:
        def apply() -> StockResult:
            reserved = self.reservations.setdefault(order_id, {})
            for item in items:
                reserved[item.product_id] = "confirmed"
            return StockResult(ok=True, transaction_id=str(uuid4()))

        return await self._invoke(
            "confirm",
            reference_id,
            {"order_id": order_id},
            apply,
            lambda reason: StockResult(ok=False, reason=reason),
        )

    async def release(
        self, order_id: UUID, items: list[OrderItem], reference_id: str
    ) -> StockResult:
        def apply() -> StockResult:
            reserved = self.reservations.setdefault(order_id, {})
            for item in items:
                reserved[item.product_id] = "released"
            return StockResult(ok=True, transaction_id=str(uuid4()))

        return await self._invoke(
            "release",
            reference_id,
            {"order_id": order_id},
            apply,
            lambda reason: StockResult(ok=False, reason=reason),
        )


class InMemoryPaymentActivity(ScriptedActivity):
    """In-memory payment service."""

    name = "payment"

    def __init__(self) -> None:
        super().__init__()
        self.captured: dict[UUID, Decimal] = {}
        self.refunded: dict[UUID, Decimal] = {}

    async def capture(
        self,
        order_id: UUID,
        method: PaymentMethod,
        amount: Decimal,
        reference_id: str,
    ) -> PaymentResult:
        def apply() -> PaymentResult:
            self.captured[order_id] = self.captured.get(order_id, Decimal("0")) + amount
            return PaymentResult(ok=True, transaction_id=str(uuid4()), amount=amount)

        return await self._invoke(
            "capture",
            reference_id,
            {"order_id": order_id, "method": method, "amount": amount},
            apply,
            lambda reason: PaymentResult(ok=False, reason=reason),
        )

    async def refund(
        self,
        order_id: UUID,
        amount: Decimal,
        reference_id: str,
    ) -> PaymentResult:
        def apply() -> PaymentResult:
            self.refunded[order_id] = self.refunded.get(order_id, Decimal("0")) + amount
            return PaymentResult(ok=True, transaction_id=str(uuid4()), amount=amount)

        return await self._invoke(
            "refund",
            reference_id,
            {"order_id": order_id, "amount": amount},
            apply,
            lambda reason: PaymentResult(ok=False, reason=reason),
        )


class InMemoryLoyaltyActivity(ScriptedActivity):
    """
    In-memory loyalty ledger with a single point balance.

    Args:
        balance: Points available for burning
    """

    name = "loyalty"

    def __init__(self, balance: int = 0) -> None:
        super().__init__()
        self.balance = balance
        self._applied: dict[str, int] = {}

    async def burn(self, order_id: UUID, points: int, reference_id: str) -> LoyaltyResult:
        if (("burn", reference_id) not in self._results) and points > self.balance:
            self.calls.append(ActivityCall("burn", reference_id, {"points": points}))
            return LoyaltyResult(ok=False, reason="insufficient points", points=points)

        def apply() -> LoyaltyResult:
            self.balance -= points
            self._applied[reference_id] = -points
            return LoyaltyResult(ok=True, transaction_id=str(uuid4()), points=points)

        return await self._invoke(
            "burn",
            reference_id,
            {"order_id": order_id, "points": points},
            apply,
            lambda reason: LoyaltyResult(ok=False, reason=reason),
        )

    async def earn(self, order_id: UUID, points: int, reference_id: str) -> LoyaltyResult:
        def apply() -> LoyaltyResult:
            self.balance += points
            self._applied[reference_id] = points
            return LoyaltyResult(ok=True, transaction_id=str(uuid4()), points=points)

        return await self._invoke(
            "earn",
            reference_id,
            {"order_id": order_id, "points": points},
            apply,
            lambda reason: LoyaltyResult(ok=False, reason=reason),
        )

    async def reverse(
        self,
        order_id: UUID,
        original_reference_id: str,
        points: int,
        reference_id: str,
    ) -> LoyaltyResult:
        def apply() -> LoyaltyResult:
            delta = self._applied.pop(original_reference_id, 0)
            self.balance -= delta
            return LoyaltyResult(ok=True, transaction_id=str(uuid4()), points=abs(delta))

        return await self._invoke(
            "reverse",
            reference_id,
            {"order_id": order_id, "original_reference_id": original_reference_id},
            apply,
            lambda reason: LoyaltyResult(ok=False, reason=reason),
        )


__all__ = [
    "ActivityCall",
    "ScriptedActivity",
    "InMemoryStockActivity",
    "InMemoryPaymentActivity",
    "InMemoryLoyaltyActivity",
]
