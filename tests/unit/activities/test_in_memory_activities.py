"""
Tests for the scripted in-memory activities.

Tests cover:
- Reference id deduplication
- Declines, transient failures and delays
- Service-specific bookkeeping (reservations, captures, point balance)
- Protocol conformance
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest

from orderflow.activities import (
    InMemoryLoyaltyActivity,
    InMemoryPaymentActivity,
    InMemoryStockActivity,
    LoyaltyActivity,
    PaymentActivity,
    StockActivity,
)
from orderflow.domain import PaymentMethod
from orderflow.exceptions import ActivityTransientError
from tests.fixtures import make_items


class TestProtocols:
    """The in-memory activities satisfy the activity protocols."""

    def test_runtime_checkable(self) -> None:
        assert isinstance(InMemoryStockActivity(), StockActivity)
        assert isinstance(InMemoryPaymentActivity(), PaymentActivity)
        assert isinstance(InMemoryLoyaltyActivity(), LoyaltyActivity)


class TestDeduplication:
    """Repeated reference ids replay the first result."""

    async def test_repeat_capture_has_one_effect(self) -> None:
        payment = InMemoryPaymentActivity()
        order_id = uuid4()

        first = await payment.capture(order_id, PaymentMethod.CASH, Decimal("40.00"), "ref-1")
        second = await payment.capture(order_id, PaymentMethod.CASH, Decimal("40.00"), "ref-1")

        assert first == second
        assert payment.captured[order_id] == Decimal("40.00")
        assert len(payment.calls_for("capture")) == 2
        assert len(payment.effects_for("capture")) == 1

    async def test_declined_result_is_replayed_after_script_reset(self) -> None:
        payment = InMemoryPaymentActivity()
        payment.decline("capture", "card declined")
        order_id = uuid4()

        first = await payment.capture(order_id, PaymentMethod.CASH, Decimal("1"), "ref-1")
        payment.reset_script()
        replay = await payment.capture(order_id, PaymentMethod.CASH, Decimal("1"), "ref-1")
        fresh = await payment.capture(order_id, PaymentMethod.CASH, Decimal("1"), "ref-2")

        assert not first.ok
        assert first.reason == "card declined"
        assert not replay.ok
        assert fresh.ok


class TestScripting:
    """Transient failures and delays."""

    async def test_fail_transiently_then_succeed(self) -> None:
        stock = InMemoryStockActivity()
        stock.fail_transiently("reserve", times=2)
        order_id = uuid4()

        for _ in range(2):
            with pytest.raises(ActivityTransientError) as exc_info:
                await stock.reserve(order_id, make_items(), "ref-1")
            assert exc_info.value.activity == "stock.reserve"

        result = await stock.reserve(order_id, make_items(), "ref-1")

        assert result.ok
        assert len(stock.calls_for("reserve")) == 3
        assert len(stock.effects_for("reserve")) == 1

    async def test_delay(self) -> None:
        payment = InMemoryPaymentActivity()
        payment.delay("capture", 0.2)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                payment.capture(uuid4(), PaymentMethod.CASH, Decimal("1"), "ref-1"),
                timeout=0.01,
            )

        assert payment.effects == []


class TestStock:
    """Stock bookkeeping."""

    async def test_reservation_lifecycle(self) -> None:
        stock = InMemoryStockActivity()
        order_id = uuid4()

        reserved = await stock.reserve(order_id, make_items(), "r")
        assert reserved.product_ids == ["sku-1", "sku-2"]
        assert stock.reservations[order_id] == {"sku-1": "reserved", "sku-2": "reserved"}

        await stock.confirm(order_id, make_items(), "c")
        assert stock.reservations[order_id]["sku-1"] == "confirmed"

        await stock.release(order_id, make_items(), "x")
        assert stock.reservations[order_id]["sku-2"] == "released"

    async def test_unavailable_product_is_declined(self) -> None:
        stock = InMemoryStockActivity(unavailable={"sku-2"})

        result = await stock.reserve(uuid4(), make_items(), "r")

        assert not result.ok
        assert result.reason == "stock unavailable: sku-2"
        assert result.product_ids == ["sku-2"]
        assert stock.effects == []


class TestPayment:
    """Payment bookkeeping."""

    async def test_refund_is_tracked(self) -> None:
        payment = InMemoryPaymentActivity()
        order_id = uuid4()

        result = await payment.refund(order_id, Decimal("25.00"), "refund-1")

        assert result.ok
        assert result.amount == Decimal("25.00")
        assert payment.refunded[order_id] == Decimal("25.00")


class TestLoyalty:
    """Point balance bookkeeping."""

    async def test_burn_and_reverse(self) -> None:
        loyalty = InMemoryLoyaltyActivity(balance=100)
        order_id = uuid4()

        await loyalty.burn(order_id, 30, "burn-1")
        assert loyalty.balance == 70

        reversed_ = await loyalty.reverse(order_id, "burn-1", 30, "rev-1")
        assert reversed_.ok
        assert reversed_.points == 30
        assert loyalty.balance == 100

    async def test_earn_and_reverse(self) -> None:
        loyalty = InMemoryLoyaltyActivity(balance=0)
        order_id = uuid4()

        await loyalty.earn(order_id, 50, "earn-1")
        await loyalty.reverse(order_id, "earn-1", 50, "rev-1")
        await loyalty.reverse(order_id, "earn-1", 50, "rev-1")

        assert loyalty.balance == 0

    async def test_burn_more_than_balance_is_declined(self) -> None:
        loyalty = InMemoryLoyaltyActivity(balance=10)

        result = await loyalty.burn(uuid4(), 11, "burn-1")

        assert not result.ok
        assert result.reason == "insufficient points"
        assert loyalty.balance == 10

    async def test_replayed_burn_ignores_balance(self) -> None:
        loyalty = InMemoryLoyaltyActivity(balance=10)
        order_id = uuid4()

        first = await loyalty.burn(order_id, 10, "burn-1")
        replay = await loyalty.burn(order_id, 10, "burn-1")

        assert first.ok
        assert replay == first
        assert loyalty.balance == 0
