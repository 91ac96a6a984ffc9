"""
Tests for OrderService.

Tests cover:
- Order creation and queries
- Idempotent commands (items, payment, stock, loyalty)
- Direct transitions and valid next states
- Workflow control through the service
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest

from orderflow.activities import InMemoryPaymentActivity
from orderflow.application import OrderService
from orderflow.domain import (
    LoyaltyTransactionType,
    OrderState,
    PaymentMethod,
    StockStatus,
)
from orderflow.exceptions import (
    ConcurrencyConflictError,
    InvalidOrderError,
    OrderflowError,
    OrderNotFoundError,
)
from orderflow.idempotency import IdempotencyGuard
from orderflow.repositories import InMemoryOrderRepository
from orderflow.workflow import WorkflowStatus
from tests.fixtures import make_item, make_items


class TestOrders:
    """Creation and queries."""

    async def test_create_order(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())

        order = await service.get_order(order_id)
        assert order.state == OrderState.INITIAL
        assert order.version == 1
        assert order.total_amount == Decimal("100.00")

    async def test_create_with_given_id(self, service: OrderService) -> None:
        order_id = uuid4()

        assert await service.create_order(make_items(), order_id=order_id) == order_id

        with pytest.raises(ConcurrencyConflictError):
            await service.create_order(make_items(), order_id=order_id)

    async def test_create_without_items(self, service: OrderService) -> None:
        with pytest.raises(InvalidOrderError):
            await service.create_order([])

    async def test_unknown_order(self, service: OrderService) -> None:
        with pytest.raises(OrderNotFoundError):
            await service.get_order(uuid4())


class TestCommands:
    """Idempotent order commands."""

    async def test_add_item(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())

        result = await service.add_item(order_id, make_item("sku-3", 2, "5.00"), "add-1")
        replay = await service.add_item(order_id, make_item("sku-3", 2, "5.00"), "add-1")

        assert result.accepted
        assert result.payload == {"total_amount": "110.00"}
        assert replay.duplicate
        assert len((await service.get_order(order_id)).items) == 3

    async def test_record_payment(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())

        result = await service.record_payment(
            order_id, PaymentMethod.BANK_TRANSFER, Decimal("100.00"), "pay-1"
        )

        assert result.accepted
        assert result.payload == {"amount": "100.00", "status": "Captured"}
        order = await service.get_order(order_id)
        assert order.payment is not None
        assert order.payment.reference_id == "pay-1"

    async def test_rejected_command_is_recorded(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())

        first = await service.record_payment(order_id, PaymentMethod.CASH, Decimal("0"), "pay-0")
        second = await service.record_payment(
            order_id, PaymentMethod.CASH, Decimal("100.00"), "pay-0"
        )

        assert not first.accepted
        assert first.reason is not None
        assert "positive" in first.reason
        assert second.duplicate
        assert not second.accepted
        assert (await service.get_order(order_id)).payment is None

    async def test_stock_commands(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())

        reserved = await service.reserve_stock(order_id, "reserve-1")
        confirmed = await service.confirm_stock(order_id, "confirm-1")

        assert reserved.payload == {"product_ids": ["sku-1", "sku-2"]}
        assert confirmed.accepted
        order = await service.get_order(order_id)
        assert [s.status for s in order.stocks] == [StockStatus.CONFIRMED] * 2

    async def test_confirm_without_reservation(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())

        result = await service.confirm_stock(order_id, "confirm-1")

        assert not result.accepted

    async def test_apply_loyalty(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())

        result = await service.apply_loyalty(
            order_id, LoyaltyTransactionType.BURN, 25, "burn-1"
        )

        assert result.accepted
        assert result.payload["points"] == 25
        assert len((await service.get_order(order_id)).loyalty) == 1

    async def test_command_on_unknown_order(self, service: OrderService) -> None:
        with pytest.raises(OrderNotFoundError):
            await service.reserve_stock(uuid4(), "reserve-1")


class TestTransitions:
    """Direct transitions through the service."""

    async def test_request_transition(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())

        result = await service.request_transition(
            order_id, OrderState.PENDING, "req-1", actor="clerk"
        )

        assert result.applied
        journeys = await service.get_journey(order_id)
        assert [(j.from_state, j.to_state, j.actor) for j in journeys] == [
            (OrderState.INITIAL, OrderState.PENDING, "clerk")
        ]

    async def test_valid_next_states(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())
        await service.request_transition(order_id, OrderState.PENDING, "req-1")

        # Paid needs a full payment first
        assert await service.get_valid_next_states(order_id) == {OrderState.CANCELLED}

        await service.record_payment(order_id, PaymentMethod.CASH, Decimal("100.00"), "pay-1")
        assert await service.get_valid_next_states(order_id) == {
            OrderState.PAID,
            OrderState.CANCELLED,
        }

    async def test_logs_query(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())

        assert await service.get_logs(order_id) == []


class TestWorkflow:
    """Workflow control through the service."""

    async def test_start_and_wait(self, service: OrderService) -> None:
        order_id = await service.create_order(make_items())

        workflow_id = await service.start_workflow(order_id, PaymentMethod.CREDIT_CARD)
        checkpoint = await service.wait_for_workflow(workflow_id, timeout=5.0)

        assert checkpoint.status == WorkflowStatus.COMPLETED
        progress = await service.get_workflow_progress(workflow_id)
        assert progress.order_id == order_id
        assert (await service.get_order(order_id)).state == OrderState.COMPLETED

    async def test_start_for_unknown_order(self, service: OrderService) -> None:
        with pytest.raises(OrderNotFoundError):
            await service.start_workflow(uuid4(), PaymentMethod.CASH)

    async def test_cancel_workflow(
        self, service: OrderService, payment: InMemoryPaymentActivity
    ) -> None:
        order_id = await service.create_order(make_items())
        payment.delay("capture", 0.2)
        workflow_id = await service.start_workflow(order_id, PaymentMethod.CASH)
        await asyncio.sleep(0.05)

        await service.cancel_workflow(workflow_id)
        checkpoint = await service.wait_for_workflow(workflow_id, timeout=5.0)

        assert checkpoint.status == WorkflowStatus.COMPENSATED
        assert checkpoint.cancel_requested

    async def test_workflow_operations_need_a_runner(
        self, repository: InMemoryOrderRepository, guard: IdempotencyGuard
    ) -> None:
        service = OrderService(repository, guard, enable_tracing=False)
        order_id = await service.create_order(make_items())

        with pytest.raises(OrderflowError, match="WorkflowRunner"):
            await service.start_workflow(order_id, PaymentMethod.CASH)
        with pytest.raises(OrderflowError):
            await service.get_workflow_progress("order-x")
