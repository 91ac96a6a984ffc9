"""
Tests for TransitionUseCase.

Tests cover:
- Applied transitions and their journey rows
- Invalid transitions (table and guards) leaving the order unchanged
- Duplicate reference ids replaying the first outcome
- Optimistic concurrency conflicts
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest

from orderflow.application import TransitionOutcome, TransitionUseCase
from orderflow.domain import OrderState, PaymentMethod
from orderflow.domain.transitions import (
    RULE_INSUFFICIENT_PAYMENT,
    RULE_TRANSITION_NOT_ALLOWED,
)
from orderflow.exceptions import OrderNotFoundError
from orderflow.idempotency import IdempotencyGuard
from orderflow.observability import MockTracer
from orderflow.repositories import InMemoryOrderRepository
from tests.fixtures import build_order, create_order, make_item


@pytest.fixture
def use_case(repository: InMemoryOrderRepository, guard: IdempotencyGuard) -> TransitionUseCase:
    return TransitionUseCase(repository, guard, enable_tracing=False)


class TestApplied:
    """Transitions that pass the table and every guard."""

    async def test_pending_to_cancelled(
        self, use_case: TransitionUseCase, repository: InMemoryOrderRepository
    ) -> None:
        order = await create_order(repository, OrderState.PENDING)

        result = await use_case.execute(
            order.order_id, OrderState.CANCELLED, "admin-1", actor="admin"
        )

        assert result.outcome == TransitionOutcome.APPLIED
        assert result.applied
        assert result.state == OrderState.CANCELLED
        assert result.version == 2
        assert not result.duplicate

        journeys = await repository.get_journey(order.order_id)
        last = journeys[-1]
        assert (last.from_state, last.to_state) == (OrderState.PENDING, OrderState.CANCELLED)
        assert last.reference_id == "admin-1"
        assert last.actor == "admin"

    async def test_manual_refund(
        self, use_case: TransitionUseCase, repository: InMemoryOrderRepository
    ) -> None:
        order = await create_order(repository, OrderState.PAID)

        result = await use_case.execute(order.order_id, OrderState.REFUNDED, "refund-1")

        assert result.applied
        loaded = await repository.load(order.order_id)
        assert loaded.order.payment is not None
        assert loaded.order.payment.status.value == "Refunded"

    async def test_reactivation(
        self, use_case: TransitionUseCase, repository: InMemoryOrderRepository
    ) -> None:
        order = await create_order(repository, OrderState.CANCELLED)

        result = await use_case.execute(order.order_id, OrderState.PENDING, "reopen-1")

        assert result.applied
        assert (await repository.load(order.order_id)).state == OrderState.PENDING


class TestInvalid:
    """Rejected transitions change nothing."""

    async def test_not_in_table(
        self, use_case: TransitionUseCase, repository: InMemoryOrderRepository
    ) -> None:
        order = await create_order(repository, OrderState.COMPLETED)

        result = await use_case.execute(order.order_id, OrderState.PAID, "req-1")

        assert result.outcome == TransitionOutcome.INVALID_TRANSITION
        assert result.rule == RULE_TRANSITION_NOT_ALLOWED
        assert result.state == OrderState.COMPLETED
        assert result.version == 1
        loaded = await repository.load(order.order_id)
        assert loaded.version == 1
        assert len(loaded.order.journeys) == 3

    async def test_partial_payment(
        self, use_case: TransitionUseCase, repository: InMemoryOrderRepository
    ) -> None:
        aggregate = build_order(OrderState.PENDING)
        aggregate.record_payment(PaymentMethod.CASH, Decimal("60.00"), "pay-1")
        await repository.save(aggregate)

        result = await use_case.execute(aggregate.order_id, OrderState.PAID, "req-1")

        assert result.outcome == TransitionOutcome.INVALID_TRANSITION
        assert result.rule == RULE_INSUFFICIENT_PAYMENT
        assert result.detail == "captured 60.00 of 100.00"
        assert (await repository.load(aggregate.order_id)).state == OrderState.PENDING

    async def test_rejection_is_replayed_for_same_reference(
        self, use_case: TransitionUseCase, repository: InMemoryOrderRepository
    ) -> None:
        order = await create_order(repository, OrderState.INITIAL)
        first = await use_case.execute(order.order_id, OrderState.PAID, "req-1")

        second = await use_case.execute(order.order_id, OrderState.PAID, "req-1")

        assert first.outcome == second.outcome == TransitionOutcome.INVALID_TRANSITION
        assert second.duplicate
        assert second.rule == first.rule

    async def test_unknown_order(self, use_case: TransitionUseCase) -> None:
        with pytest.raises(OrderNotFoundError):
            await use_case.execute(uuid4(), OrderState.PENDING, "req-1")


class TestDuplicates:
    """A repeated reference id replays the recorded outcome."""

    async def test_duplicate_does_not_reapply(
        self, use_case: TransitionUseCase, repository: InMemoryOrderRepository
    ) -> None:
        order = await create_order(repository, OrderState.PENDING)
        first = await use_case.execute(order.order_id, OrderState.CANCELLED, "admin-1")

        second = await use_case.execute(order.order_id, OrderState.CANCELLED, "admin-1")

        assert second.duplicate
        assert second.outcome == TransitionOutcome.APPLIED
        assert second.version == first.version == 2
        assert len(await repository.get_journey(order.order_id)) == 2

    async def test_replay_ignores_later_state(
        self, use_case: TransitionUseCase, repository: InMemoryOrderRepository
    ) -> None:
        order = await create_order(repository, OrderState.PENDING)
        await use_case.execute(order.order_id, OrderState.CANCELLED, "cancel-1")
        await use_case.execute(order.order_id, OrderState.PENDING, "reopen-1")

        replay = await use_case.execute(order.order_id, OrderState.CANCELLED, "cancel-1")

        assert replay.duplicate
        assert replay.state == OrderState.CANCELLED
        assert (await repository.load(order.order_id)).state == OrderState.PENDING


class TestConcurrency:
    """Optimistic concurrency on the order version."""

    async def test_stale_expected_version(
        self, use_case: TransitionUseCase, repository: InMemoryOrderRepository
    ) -> None:
        order = await create_order(repository, OrderState.PENDING)
        other = await repository.load(order.order_id)
        other.add_item(make_item("sku-3"))
        await repository.save(other)

        result = await use_case.execute(
            order.order_id, OrderState.CANCELLED, "req-1", expected_version=1
        )

        assert result.outcome == TransitionOutcome.CONCURRENCY_CONFLICT
        assert result.version == 2
        assert result.state is None
        assert (await repository.load(order.order_id)).state == OrderState.PENDING

    async def test_conflict_is_not_recorded(
        self, use_case: TransitionUseCase, repository: InMemoryOrderRepository
    ) -> None:
        order = await create_order(repository, OrderState.PENDING)

        conflict = await use_case.execute(
            order.order_id, OrderState.CANCELLED, "req-1", expected_version=7
        )
        retry = await use_case.execute(order.order_id, OrderState.CANCELLED, "req-1")

        assert conflict.outcome == TransitionOutcome.CONCURRENCY_CONFLICT
        assert retry.applied
        assert not retry.duplicate

    async def test_only_one_concurrent_writer_wins(
        self, repository: InMemoryOrderRepository, guard: IdempotencyGuard
    ) -> None:
        order = await create_order(repository, OrderState.PENDING)
        use_case = TransitionUseCase(repository, guard, enable_tracing=False)
        loaded = await repository.load(order.order_id)

        first = await use_case.execute(
            order.order_id, OrderState.CANCELLED, "writer-1", expected_version=loaded.version
        )
        second = await use_case.execute(
            order.order_id, OrderState.CANCELLED, "writer-2", expected_version=loaded.version
        )

        assert first.applied
        assert second.outcome in (
            TransitionOutcome.CONCURRENCY_CONFLICT,
            TransitionOutcome.INVALID_TRANSITION,
        )
        assert len(await repository.get_journey(order.order_id)) == 2


class TestTracing:
    """Use case spans."""

    async def test_span(
        self, repository: InMemoryOrderRepository, guard: IdempotencyGuard
    ) -> None:
        tracer = MockTracer()
        use_case = TransitionUseCase(repository, guard, tracer=tracer)
        order = await create_order(repository, OrderState.PENDING)

        await use_case.execute(order.order_id, OrderState.CANCELLED, "req-1")

        assert tracer.span_names == ["orderflow.use_case.transition"]
        _, attributes = tracer.spans[0]
        assert attributes is not None
        assert attributes["orderflow.order.target_state"] == "Cancelled"
