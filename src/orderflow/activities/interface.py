"""
Activity contracts.

Activities are the remote stock, payment and loyalty operations the
workflow drives. Every call carries a reference id and must be
idempotent for that id: calling twice with the same reference id has
the effect of calling once.

A business-level refusal (declined payment, unavailable stock,
insufficient points) is reported as a result with ``ok=False`` or by
raising ActivityDeclinedError. Network failures and timeouts raise
ActivityTransientError.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from orderflow.domain.models import OrderItem, PaymentMethod


class ActivityResult(BaseModel):
    """
    Result of an activity call.

    Attributes:
        ok: True if the remote side applied the operation
        reason: Why the operation was refused (when ok is False)
        transaction_id: Identifier assigned by the remote side
    """

    model_config = ConfigDict(frozen=True)

    ok: bool
    reason: str | None = None
    transaction_id: str | None = None

    @classmethod
    def success(cls, transaction_id: str | None = None, **kwargs: object) -> ActivityResult:
        return cls(ok=True, transaction_id=transaction_id, **kwargs)

    @classmethod
    def declined(cls, reason: str, **kwargs: object) -> ActivityResult:
        return cls(ok=False, reason=reason, **kwargs)


class StockResult(ActivityResult):
    """Result of a stock operation."""

    product_ids: list[str] = []


class PaymentResult(ActivityResult):
    """Result of a payment operation."""

    amount: Decimal | None = None


class LoyaltyResult(ActivityResult):
    """Result of a loyalty operation."""

    points: int | None = None


@runtime_checkable
class StockActivity(Protocol):
    """Stock reservation service."""

    async def reserve(
        self, order_id: UUID, items: list[OrderItem], reference_id: str
    ) -> StockResult: ...

    async def confirm(
        self, order_id: UUID, items: list[OrderItem], reference_id: str
    ) -> StockResult: ...

    async def release(
        self, order_id: UUID, items: list[OrderItem], reference_id: str
    ) -> StockResult: ...


@runtime_checkable
class PaymentActivity(Protocol):
    """Payment capture service."""

    async def capture(
        self,
        order_id: UUID,
        method: PaymentMethod,
        amount: Decimal,
        reference_id: str,
    ) -> PaymentResult: ...

    async def refund(
        self,
        order_id: UUID,
        amount: Decimal,
        reference_id: str,
    ) -> PaymentResult: ...


@runtime_checkable
class LoyaltyActivity(Protocol):
    """Loyalty points ledger service."""

    async def burn(self, order_id: UUID, points: int, reference_id: str) -> LoyaltyResult: ...

    async def earn(self, order_id: UUID, points: int, reference_id: str) -> LoyaltyResult: ...

    async def reverse(
        self,
        order_id: UUID,
        original_reference_id: str,
        points: int,
        reference_id: str,
    ) -> LoyaltyResult: ...


__all__ = [
    "ActivityResult",
    "StockResult",
    "PaymentResult",
    "LoyaltyResult",
    "StockActivity",
    "PaymentActivity",
    "LoyaltyActivity",
]
