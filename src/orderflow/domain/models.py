"""
Order data model.

All models are immutable pydantic models. The aggregate never edits a
record in place: changes produce a new ``Order`` through ``model_copy``,
and the journey, log and loyalty collections only ever grow.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Self
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from orderflow.domain.states import OrderState


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


class PaymentMethod(str, Enum):
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    BANK_TRANSFER = "Bank Transfer"
    DIGITAL_WALLET = "Digital Wallet"
    CASH = "Cash"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    CAPTURED = "Captured"
    REFUNDED = "Refunded"


class StockStatus(str, Enum):
    RESERVED = "Reserved"
    CONFIRMED = "Confirmed"
    RELEASED = "Released"


class LoyaltyTransactionType(str, Enum):
    EARN = "Earn"
    BURN = "Burn"


class LoyaltyStatus(str, Enum):
    PENDING = "Pending"
    APPLIED = "Applied"
    REVERSED = "Reversed"


class LogResult(str, Enum):
    """Outcome recorded on an OrderLog row."""

    ATTEMPTED = "attempted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INFO = "info"


class OrderItem(BaseModel):
    """A line on an order."""

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(..., min_length=1, description="Product reference")
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderPayment(BaseModel):
    """
    The payment record of an order.

    An order holds at most one payment. A refund changes the status of the
    existing record; it never creates a second one.
    """

    model_config = ConfigDict(frozen=True)

    method: PaymentMethod
    amount: Decimal = Field(..., gt=0)
    status: PaymentStatus = PaymentStatus.PENDING
    reference_id: str
    recorded_at: datetime = Field(default_factory=utc_now)


class OrderStock(BaseModel):
    """Reservation record for one ordered product."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    quantity: int = Field(..., gt=0)
    status: StockStatus = StockStatus.RESERVED
    reference_id: str


class OrderLoyalty(BaseModel):
    """
    Loyalty ledger entry.

    Entries are append-only. A reversal is a new entry with status
    REVERSED whose ``reverses`` field points at the corrected entry.
    """

    model_config = ConfigDict(frozen=True)

    entry_id: UUID = Field(default_factory=uuid4)
    transaction_type: LoyaltyTransactionType
    points: int = Field(..., gt=0)
    status: LoyaltyStatus = LoyaltyStatus.APPLIED
    reference_id: str
    reverses: UUID | None = None
    occurred_at: datetime = Field(default_factory=utc_now)


class OrderJourney(BaseModel):
    """One applied state transition. Never updated or deleted."""

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(..., ge=1)
    from_state: OrderState
    to_state: OrderState
    occurred_at: datetime = Field(default_factory=utc_now)
    reference_id: str | None = None
    actor: str | None = None


class OrderLog(BaseModel):
    """Diagnostic record of an action taken on behalf of an order."""

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(..., ge=1)
    action: str
    result: LogResult
    correlation_id: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utc_now)


class Order(BaseModel):
    """
    Complete state of one order including its owned child records.

    Invariant: ``total_amount`` equals the sum of item line totals.
    """

    model_config = ConfigDict(frozen=True)

    order_id: UUID = Field(default_factory=uuid4)
    state: OrderState = OrderState.INITIAL
    version: int = Field(default=0, ge=0)
    total_amount: Decimal = Decimal("0")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    items: list[OrderItem] = Field(default_factory=list)
    payment: OrderPayment | None = None
    stocks: list[OrderStock] = Field(default_factory=list)
    loyalty: list[OrderLoyalty] = Field(default_factory=list)
    journeys: list[OrderJourney] = Field(default_factory=list)
    logs: list[OrderLog] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_total(self) -> Self:
        expected = sum((item.line_total for item in self.items), Decimal("0"))
        if self.total_amount != expected:
            raise ValueError(
                f"total_amount {self.total_amount} does not match item total {expected}"
            )
        return self

    @property
    def captured_amount(self) -> Decimal:
        """Sum of captured payment amounts."""
        if self.payment is not None and self.payment.status == PaymentStatus.CAPTURED:
            return self.payment.amount
        return Decimal("0")

    @property
    def active_stocks(self) -> list[OrderStock]:
        """Stock records that have not been released."""
        return [s for s in self.stocks if s.status != StockStatus.RELEASED]

    @property
    def item_quantities(self) -> dict[str, int]:
        """Ordered quantity per product, summed over every line."""
        totals: dict[str, int] = {}
        for item in self.items:
            totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
        return totals

    def stock_quantities(self, *statuses: StockStatus) -> dict[str, int]:
        """Quantity per product held by stock records in any of ``statuses``."""
        totals: dict[str, int] = {}
        for stock in self.stocks:
            if stock.status in statuses:
                totals[stock.product_id] = totals.get(stock.product_id, 0) + stock.quantity
        return totals

    @property
    def next_journey_sequence(self) -> int:
        return self.journeys[-1].sequence + 1 if self.journeys else 1

    @property
    def next_log_sequence(self) -> int:
        return self.logs[-1].sequence + 1 if self.logs else 1

    def reversal_of(self, entry_id: UUID) -> OrderLoyalty | None:
        """Get the entry reversing ``entry_id``, if one was recorded."""
        for entry in self.loyalty:
            if entry.reverses == entry_id:
                return entry
        return None


__all__ = [
    "utc_now",
    "PaymentMethod",
    "PaymentStatus",
    "StockStatus",
    "LoyaltyTransactionType",
    "LoyaltyStatus",
    "LogResult",
    "OrderItem",
    "OrderPayment",
    "OrderStock",
    "OrderLoyalty",
    "OrderJourney",
    "OrderLog",
    "Order",
]
