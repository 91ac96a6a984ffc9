"""
Order service facade.

The surface an API layer calls: order creation, idempotent commands,
direct transitions, audit queries and workflow control.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from orderflow.application.use_cases import (
    CommandResult,
    OrderCommandUseCase,
    TransitionResult,
    TransitionUseCase,
)
from orderflow.domain.aggregate import OrderAggregate
from orderflow.domain.models import (
    LoyaltyTransactionType,
    Order,
    OrderItem,
    OrderJourney,
    OrderLog,
    PaymentMethod,
)
from orderflow.domain.policies import FulfillmentPolicy
from orderflow.domain.states import OrderState
from orderflow.exceptions import OrderflowError
from orderflow.idempotency import IdempotencyGuard
from orderflow.observability import Tracer
from orderflow.repositories.interface import OrderRepository
from orderflow.workflow import WorkflowCheckpoint, WorkflowProgress, WorkflowRunner

logger = logging.getLogger(__name__)


class OrderService:
    """
    Application entry point for orders.

    Args:
        repository: Order repository
        guard: Idempotency guard shared by all commands
        runner: Workflow runner (workflow operations raise without one)
        fulfillment_policy: Policy for new orders; should match the repository's
        tracer: Optional custom Tracer instance
        enable_tracing: If True and OpenTelemetry is available, emit traces

    Example:
        >>> service = OrderService(repository, guard, runner)
        >>> order_id = await service.create_order([OrderItem(...)])
        >>> workflow_id = await service.start_workflow(order_id, PaymentMethod.CASH)
    """

    def __init__(
        self,
        repository: OrderRepository,
        guard: IdempotencyGuard,
        runner: WorkflowRunner | None = None,
        *,
        fulfillment_policy: FulfillmentPolicy | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._runner = runner
        self._fulfillment_policy = fulfillment_policy
        self._transitions = TransitionUseCase(
            repository, guard, tracer=tracer, enable_tracing=enable_tracing
        )
        self._commands = OrderCommandUseCase(
            repository, guard, tracer=tracer, enable_tracing=enable_tracing
        )

    @property
    def repository(self) -> OrderRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def create_order(
        self,
        items: Iterable[OrderItem],
        order_id: UUID | None = None,
    ) -> UUID:
        """
        Create an order in the Initial state.

        Raises:
            InvalidOrderError: If no items are given
            ConcurrencyConflictError: If ``order_id`` is already taken
        """
        aggregate = OrderAggregate.create(
            items, order_id=order_id, fulfillment_policy=self._fulfillment_policy
        )
        await self._repository.save(aggregate)
        logger.info(
            "Created order %s (total %s)",
            aggregate.order_id,
            aggregate.order.total_amount,
            extra={"order_id": str(aggregate.order_id)},
        )
        return aggregate.order_id

    async def get_order(self, order_id: UUID) -> Order:
        return (await self._repository.load(order_id)).order

    async def add_item(self, order_id: UUID, item: OrderItem, reference_id: str) -> CommandResult:
        def mutate(aggregate: OrderAggregate) -> dict[str, object]:
            aggregate.add_item(item)
            return {"total_amount": str(aggregate.order.total_amount)}

        return await self._commands.execute(order_id, "add_item", reference_id, mutate)

    async def record_payment(
        self,
        order_id: UUID,
        method: PaymentMethod,
        amount: Decimal,
        reference_id: str,
    ) -> CommandResult:
        def mutate(aggregate: OrderAggregate) -> dict[str, object]:
            payment = aggregate.record_payment(method, Decimal(amount), reference_id)
            return {"amount": str(payment.amount), "status": payment.status.value}

        return await self._commands.execute(order_id, "record_payment", reference_id, mutate)

    async def reserve_stock(self, order_id: UUID, reference_id: str) -> CommandResult:
        def mutate(aggregate: OrderAggregate) -> dict[str, object]:
            created = aggregate.reserve_stock(reference_id)
            return {"product_ids": [s.product_id for s in created]}

        return await self._commands.execute(order_id, "reserve_stock", reference_id, mutate)

    async def confirm_stock(self, order_id: UUID, reference_id: str) -> CommandResult:
        def mutate(aggregate: OrderAggregate) -> dict[str, object]:
            confirmed = aggregate.confirm_stock(reference_id)
            return {"product_ids": [s.product_id for s in confirmed]}

        return await self._commands.execute(order_id, "confirm_stock", reference_id, mutate)

    async def apply_loyalty(
        self,
        order_id: UUID,
        transaction_type: LoyaltyTransactionType,
        points: int,
        reference_id: str,
    ) -> CommandResult:
        def mutate(aggregate: OrderAggregate) -> dict[str, object]:
            entry = aggregate.apply_loyalty(transaction_type, points, reference_id)
            return {"entry_id": str(entry.entry_id), "points": entry.points}

        return await self._commands.execute(order_id, "apply_loyalty", reference_id, mutate)

    # ------------------------------------------------------------------
    # Transitions and audit
    # ------------------------------------------------------------------

    async def request_transition(
        self,
        order_id: UUID,
        target: OrderState,
        reference_id: str,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        return await self._transitions.execute(
            order_id, target, reference_id, actor=actor, expected_version=expected_version
        )

    async def get_valid_next_states(self, order_id: UUID) -> set[OrderState]:
        aggregate = await self._repository.load(order_id)
        return aggregate.valid_next_states()

    async def get_journey(self, order_id: UUID) -> list[OrderJourney]:
        return await self._repository.get_journey(order_id)

    async def get_logs(self, order_id: UUID) -> list[OrderLog]:
        return await self._repository.get_logs(order_id)

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def _require_runner(self) -> WorkflowRunner:
        if self._runner is None:
            raise OrderflowError("OrderService was created without a WorkflowRunner")
        return self._runner

    async def start_workflow(
        self,
        order_id: UUID,
        payment_method: PaymentMethod,
        burn_points: int = 0,
    ) -> str:
        """
        Start the order's workflow, or attach to the running one.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        runner = self._require_runner()
        await self._repository.load(order_id)
        return await runner.start(order_id, payment_method, burn_points)

    async def get_workflow_progress(self, workflow_id: str) -> WorkflowProgress:
        return await self._require_runner().get_progress(workflow_id)

    async def cancel_workflow(self, workflow_id: str) -> None:
        await self._require_runner().request_cancellation(workflow_id)

    async def wait_for_workflow(
        self, workflow_id: str, timeout: float | None = None
    ) -> WorkflowCheckpoint:
        return await self._require_runner().wait(workflow_id, timeout)


__all__ = ["OrderService"]
