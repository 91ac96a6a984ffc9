"""
Order orchestration engine.

Runs one workflow checkpoint forward step by step:

    start -> reserve_stock -> process_payment -> burn_loyalty -> earn_loyalty
          -> mark_paid -> confirm_stock -> mark_completed

Activity steps are retried with exponential backoff on transient failures
and bounded by a per-step deadline. A decline, an exhausted retry budget
or a rejected order command stops forward progress and compensates the
steps that succeeded, newest first, then settles the order:

    Paid/Completed -> Refunded -> Cancelled
    Pending        -> Cancelled (if anything had happened or cancel was requested)

An activity step counts as succeeded once the remote call does, whether
or not the order write recording it goes through.

Every activity attempt is written to the order's log rows, and the
checkpoint is saved after every attempt and every step. Activities and
aggregate commands are idempotent by reference id, so re-running a step
after a crash repeats no side effect.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from orderflow.activities.interface import (
    ActivityResult,
    LoyaltyActivity,
    PaymentActivity,
    StockActivity,
)
from orderflow.config import WorkflowConfig
from orderflow.domain.aggregate import OrderAggregate
from orderflow.domain.models import LogResult, LoyaltyTransactionType
from orderflow.domain.policies import LoyaltyPolicy, RateLoyaltyPolicy
from orderflow.domain.states import OrderState
from orderflow.exceptions import (
    ActivityDeclinedError,
    CompensationFailedError,
    ConcurrencyConflictError,
    InvalidOrderError,
    InvalidTransitionError,
    WorkflowNotFoundError,
)
from orderflow.observability import (
    ATTR_ACTIVITY,
    ATTR_ORDER_ID,
    ATTR_RETRY_COUNT,
    ATTR_WORKFLOW_ID,
    ATTR_WORKFLOW_STATUS,
    ATTR_WORKFLOW_STEP,
    Tracer,
    create_tracer,
)
from orderflow.repositories.interface import OrderRepository
from orderflow.retry import TRANSIENT_EXCEPTIONS, RetryConfig, RetryError, retry_async
from orderflow.workflow.checkpoints import CheckpointStore
from orderflow.workflow.state import (
    COMPENSATIONS,
    FORWARD_STEPS,
    ActivityRecord,
    WorkflowCheckpoint,
    WorkflowStatus,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

WORKFLOW_ACTOR = "workflow"


class StepFailedError(Exception):
    """A forward step cannot succeed; the workflow must compensate."""

    def __init__(self, step: WorkflowStep, reason: str) -> None:
        self.step = step
        self.reason = reason
        super().__init__(f"Step {step.value} failed: {reason}")


class OrderWorkflowEngine:
    """
    Executes order workflows from their checkpoints.

    The engine holds no per-workflow state between calls; everything it
    needs is in the checkpoint store and the order repository, so any
    engine instance can resume any workflow.

    Args:
        repository: Order repository
        stock: Stock activity
        payment: Payment activity
        loyalty: Loyalty activity
        checkpoints: Checkpoint store
        config: Timeouts and retry budgets
        loyalty_policy: Points earned for an order (default: 1 point per unit)
        tracer: Optional custom Tracer instance
        enable_tracing: If True and OpenTelemetry is available, emit traces
    """

    def __init__(
        self,
        repository: OrderRepository,
        stock: StockActivity,
        payment: PaymentActivity,
        loyalty: LoyaltyActivity,
        checkpoints: CheckpointStore,
        *,
        config: WorkflowConfig | None = None,
        loyalty_policy: LoyaltyPolicy | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._stock = stock
        self._payment = payment
        self._loyalty = loyalty
        self._checkpoints = checkpoints
        self._config = config or WorkflowConfig()
        self._loyalty_policy = loyalty_policy or RateLoyaltyPolicy()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

        self._forward: dict[
            WorkflowStep, Callable[[WorkflowCheckpoint], Awaitable[bool]]
        ] = {
            WorkflowStep.START: self._start,
            WorkflowStep.RESERVE_STOCK: self._reserve_stock,
            WorkflowStep.PROCESS_PAYMENT: self._process_payment,
            WorkflowStep.BURN_LOYALTY: self._burn_loyalty,
            WorkflowStep.EARN_LOYALTY: self._earn_loyalty,
            WorkflowStep.MARK_PAID: self._mark_paid,
            WorkflowStep.CONFIRM_STOCK: self._confirm_stock,
            WorkflowStep.MARK_COMPLETED: self._mark_completed,
        }
        self._compensations: dict[
            WorkflowStep, Callable[[WorkflowCheckpoint], Awaitable[None]]
        ] = {
            WorkflowStep.RESERVE_STOCK: self._release_stock,
            WorkflowStep.PROCESS_PAYMENT: self._refund_payment,
            WorkflowStep.BURN_LOYALTY: self._reverse_burn,
            WorkflowStep.EARN_LOYALTY: self._reverse_earn,
        }

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    @property
    def checkpoints(self) -> CheckpointStore:
        return self._checkpoints

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    async def run(self, workflow_id: str) -> WorkflowCheckpoint:
        """
        Run a workflow until it completes, compensates or needs review.

        Returns immediately for a workflow that is no longer active.

        Raises:
            WorkflowNotFoundError: If no checkpoint exists
            CorruptCheckpointError: If the checkpoint cannot be decoded
            WorkflowConflictError: If another worker advanced the checkpoint
        """
        checkpoint = await self._checkpoints.load(workflow_id)
        if checkpoint is None:
            raise WorkflowNotFoundError(workflow_id)

        with self._tracer.span(
            "orderflow.workflow.run",
            {
                ATTR_WORKFLOW_ID: workflow_id,
                ATTR_ORDER_ID: str(checkpoint.order_id),
                ATTR_WORKFLOW_STATUS: checkpoint.status.value,
            },
        ):
            if not checkpoint.is_active:
                return checkpoint

            logger.info(
                "Running workflow %s from step %d (%s)",
                workflow_id,
                checkpoint.step_index,
                checkpoint.status.value,
                extra={"workflow_id": workflow_id, "order_id": str(checkpoint.order_id)},
            )

            if checkpoint.status == WorkflowStatus.RUNNING:
                await self._run_forward(checkpoint)
            if checkpoint.status == WorkflowStatus.COMPENSATING:
                await self._compensate(checkpoint)

            logger.info(
                "Workflow %s finished with status %s",
                workflow_id,
                checkpoint.status.value,
                extra={"workflow_id": workflow_id, "status": checkpoint.status.value},
            )
            return checkpoint

    async def _run_forward(self, checkpoint: WorkflowCheckpoint) -> None:
        while checkpoint.status == WorkflowStatus.RUNNING:
            if checkpoint.step_index >= len(FORWARD_STEPS):
                checkpoint.status = WorkflowStatus.COMPLETED
                await self._checkpoint(checkpoint)
                return

            if await self._cancellation_requested(checkpoint):
                logger.info(
                    "Cancellation requested for workflow %s",
                    checkpoint.workflow_id,
                    extra={"workflow_id": checkpoint.workflow_id},
                )
                await self._log(checkpoint, "workflow.cancel", LogResult.INFO, None)
                checkpoint.status = WorkflowStatus.COMPENSATING
                checkpoint.last_error = "cancellation requested"
                await self._checkpoint(checkpoint)
                return

            step = FORWARD_STEPS[checkpoint.step_index]
            with self._tracer.span(
                "orderflow.workflow.step",
                {ATTR_WORKFLOW_ID: checkpoint.workflow_id, ATTR_WORKFLOW_STEP: step.value},
            ):
                try:
                    performed = await self._forward[step](checkpoint)
                except StepFailedError as e:
                    logger.warning(
                        "Workflow %s step %s failed: %s",
                        checkpoint.workflow_id,
                        step.value,
                        e.reason,
                        extra={"workflow_id": checkpoint.workflow_id, "step": step.value},
                    )
                    checkpoint.status = WorkflowStatus.COMPENSATING
                    checkpoint.failed_step = step
                    checkpoint.last_error = e.reason
                    await self._checkpoint(checkpoint)
                    return

            if performed and step not in checkpoint.completed_steps:
                checkpoint.completed_steps.append(step)
            checkpoint.step_index += 1
            await self._checkpoint(checkpoint)

    async def _cancellation_requested(self, checkpoint: WorkflowCheckpoint) -> bool:
        if checkpoint.cancel_requested:
            return True
        latest = await self._checkpoints.load(checkpoint.workflow_id)
        if latest is not None and latest.cancel_requested:
            checkpoint.cancel_requested = True
        return checkpoint.cancel_requested

    async def _checkpoint(self, checkpoint: WorkflowCheckpoint) -> None:
        checkpoint.version = await self._checkpoints.save(checkpoint, checkpoint.version)

    # ------------------------------------------------------------------
    # Order writes
    # ------------------------------------------------------------------

    async def _mutate_order(
        self,
        checkpoint: WorkflowCheckpoint,
        mutate: Callable[[OrderAggregate], Any],
    ) -> Any:
        """Load, change and save the order, retrying version conflicts with a fresh read."""

        async def attempt() -> Any:
            aggregate = await self._repository.load(checkpoint.order_id)
            value = mutate(aggregate)
            await self._repository.save(aggregate)
            return value

        return await retry_async(
            attempt,
            config=self._config.conflict_retry,
            retryable_exceptions=(ConcurrencyConflictError,),
            operation_name=f"{checkpoint.workflow_id}:order_write",
        )

    async def _log(
        self,
        checkpoint: WorkflowCheckpoint,
        action: str,
        result: LogResult,
        reference_id: str | None,
        **detail: Any,
    ) -> None:
        await self._mutate_order(
            checkpoint,
            lambda aggregate: aggregate.log_action(
                action,
                result,
                correlation_id=reference_id or checkpoint.workflow_id,
                detail={"workflow_id": checkpoint.workflow_id, **detail},
            ),
        )

    async def _transition(
        self,
        checkpoint: WorkflowCheckpoint,
        step: WorkflowStep,
        target: OrderState,
    ) -> bool:
        def apply(aggregate: OrderAggregate) -> bool:
            if aggregate.state == target:
                return False
            aggregate.transition_to(
                target,
                reference_id=checkpoint.reference(step),
                actor=WORKFLOW_ACTOR,
            )
            return True

        try:
            return await self._mutate_order(checkpoint, apply)
        except InvalidTransitionError as e:
            raise StepFailedError(step, str(e)) from e

    # ------------------------------------------------------------------
    # Activity invocation
    # ------------------------------------------------------------------

    async def _invoke(
        self,
        checkpoint: WorkflowCheckpoint,
        step: WorkflowStep,
        action: str,
        call: Callable[[str], Awaitable[ActivityResult]],
        record: Callable[[OrderAggregate, ActivityResult], Any] | None = None,
        *,
        compensate: bool = False,
        retry: RetryConfig | None = None,
    ) -> ActivityResult:
        """
        Call an activity with retries, logging every attempt.

        Returns the successful result after recording it on the order with
        ``record``.

        Raises:
            ActivityDeclinedError: If the activity refused or retries ran out
        """
        reference_id = checkpoint.reference(step, compensate=compensate)
        attempts_key = f"{step.value}:compensate" if compensate else step.value
        timeout = self._config.timeout_for(step.value)

        async def attempt() -> ActivityResult:
            number = checkpoint.next_attempt(attempts_key)
            await self._log(checkpoint, action, LogResult.ATTEMPTED, reference_id, attempt=number)
            with self._tracer.span(
                "orderflow.workflow.activity",
                {
                    ATTR_WORKFLOW_ID: checkpoint.workflow_id,
                    ATTR_WORKFLOW_STEP: step.value,
                    ATTR_ACTIVITY: action,
                    ATTR_RETRY_COUNT: number - 1,
                },
            ):
                try:
                    result = await asyncio.wait_for(call(reference_id), timeout=timeout)
                except TRANSIENT_EXCEPTIONS as e:
                    reason = str(e) or type(e).__name__
                    await self._record_failure(
                        checkpoint, attempts_key, action, reference_id, number, reason
                    )
                    raise
                except ActivityDeclinedError as e:
                    await self._record_failure(
                        checkpoint, attempts_key, action, reference_id, number, e.reason
                    )
                    raise

            if not result.ok:
                reason = result.reason or "declined"
                await self._record_failure(
                    checkpoint, attempts_key, action, reference_id, number, reason
                )
                raise ActivityDeclinedError(action, reason)

            if not compensate and step not in checkpoint.completed_steps:
                # The remote side has acted: undo it on compensation even if
                # recording it on the order fails below.
                checkpoint.completed_steps.append(step)
                await self._checkpoint(checkpoint)

            def apply(aggregate: OrderAggregate) -> None:
                if record is not None:
                    record(aggregate, result)
                aggregate.log_action(
                    action,
                    LogResult.SUCCEEDED,
                    correlation_id=reference_id,
                    detail={
                        "workflow_id": checkpoint.workflow_id,
                        "attempt": number,
                        "transaction_id": result.transaction_id,
                    },
                )

            try:
                await self._mutate_order(checkpoint, apply)
            except (InvalidOrderError, InvalidTransitionError, RetryError) as e:
                await self._record_failure(
                    checkpoint,
                    attempts_key,
                    action,
                    reference_id,
                    number,
                    f"succeeded but could not be recorded: {e}",
                )
                raise
            checkpoint.history.append(
                ActivityRecord(
                    step=attempts_key,
                    action=action,
                    reference_id=reference_id,
                    attempt=number,
                    result=LogResult.SUCCEEDED,
                )
            )
            await self._checkpoint(checkpoint)
            return result

        try:
            return await retry_async(
                attempt,
                config=retry or self._config.retry,
                retryable_exceptions=TRANSIENT_EXCEPTIONS,
                operation_name=f"{checkpoint.workflow_id}:{action}",
            )
        except RetryError as e:
            raise ActivityDeclinedError(
                action, f"gave up after {e.attempts} attempts: {e.last_error}"
            ) from e

    async def _record_failure(
        self,
        checkpoint: WorkflowCheckpoint,
        step_key: str,
        action: str,
        reference_id: str,
        attempt: int,
        reason: str,
    ) -> None:
        await self._log(
            checkpoint, action, LogResult.FAILED, reference_id, attempt=attempt, reason=reason
        )
        checkpoint.last_error = f"{action}: {reason}"
        checkpoint.history.append(
            ActivityRecord(
                step=step_key,
                action=action,
                reference_id=reference_id,
                attempt=attempt,
                result=LogResult.FAILED,
                reason=reason,
            )
        )
        await self._checkpoint(checkpoint)

    async def _forward_activity(
        self,
        checkpoint: WorkflowCheckpoint,
        step: WorkflowStep,
        action: str,
        call: Callable[[str], Awaitable[ActivityResult]],
        record: Callable[[OrderAggregate, ActivityResult], Any],
    ) -> ActivityResult:
        try:
            return await self._invoke(checkpoint, step, action, call, record)
        except ActivityDeclinedError as e:
            raise StepFailedError(step, e.reason) from e
        except (InvalidOrderError, InvalidTransitionError) as e:
            raise StepFailedError(step, str(e)) from e

    # ------------------------------------------------------------------
    # Forward steps (return False when there was nothing to do)
    # ------------------------------------------------------------------

    async def _start(self, checkpoint: WorkflowCheckpoint) -> bool:
        order = (await self._repository.load(checkpoint.order_id)).order
        if order.state not in (OrderState.INITIAL, OrderState.PENDING, OrderState.CANCELLED):
            raise StepFailedError(
                WorkflowStep.START, f"order is already {order.state.value}"
            )
        return await self._transition(checkpoint, WorkflowStep.START, OrderState.PENDING)

    async def _reserve_stock(self, checkpoint: WorkflowCheckpoint) -> bool:
        order = (await self._repository.load(checkpoint.order_id)).order
        await self._forward_activity(
            checkpoint,
            WorkflowStep.RESERVE_STOCK,
            "stock.reserve",
            lambda ref: self._stock.reserve(order.order_id, list(order.items), ref),
            lambda aggregate, _: aggregate.reserve_stock(
                checkpoint.reference(WorkflowStep.RESERVE_STOCK)
            ),
        )
        return True

    async def _process_payment(self, checkpoint: WorkflowCheckpoint) -> bool:
        order = (await self._repository.load(checkpoint.order_id)).order
        amount = order.total_amount
        method = checkpoint.input.payment_method

        def record(aggregate: OrderAggregate, result: ActivityResult) -> None:
            captured = getattr(result, "amount", None) or amount
            checkpoint.captured_amount = captured
            aggregate.record_payment(
                method, captured, checkpoint.reference(WorkflowStep.PROCESS_PAYMENT)
            )

        await self._forward_activity(
            checkpoint,
            WorkflowStep.PROCESS_PAYMENT,
            "payment.capture",
            lambda ref: self._payment.capture(order.order_id, method, amount, ref),
            record,
        )
        return True

    async def _burn_loyalty(self, checkpoint: WorkflowCheckpoint) -> bool:
        points = checkpoint.input.burn_points
        if points <= 0:
            return False
        await self._forward_activity(
            checkpoint,
            WorkflowStep.BURN_LOYALTY,
            "loyalty.burn",
            lambda ref: self._loyalty.burn(checkpoint.order_id, points, ref),
            lambda aggregate, _: aggregate.apply_loyalty(
                LoyaltyTransactionType.BURN,
                points,
                checkpoint.reference(WorkflowStep.BURN_LOYALTY),
            ),
        )
        return True

    async def _earn_loyalty(self, checkpoint: WorkflowCheckpoint) -> bool:
        order = (await self._repository.load(checkpoint.order_id)).order
        points = self._loyalty_policy.points_for(order)
        if points <= 0:
            return False
        checkpoint.earned_points = points
        await self._forward_activity(
            checkpoint,
            WorkflowStep.EARN_LOYALTY,
            "loyalty.earn",
            lambda ref: self._loyalty.earn(checkpoint.order_id, points, ref),
            lambda aggregate, _: aggregate.apply_loyalty(
                LoyaltyTransactionType.EARN,
                points,
                checkpoint.reference(WorkflowStep.EARN_LOYALTY),
            ),
        )
        return True

    async def _mark_paid(self, checkpoint: WorkflowCheckpoint) -> bool:
        return await self._transition(checkpoint, WorkflowStep.MARK_PAID, OrderState.PAID)

    async def _confirm_stock(self, checkpoint: WorkflowCheckpoint) -> bool:
        order = (await self._repository.load(checkpoint.order_id)).order
        await self._forward_activity(
            checkpoint,
            WorkflowStep.CONFIRM_STOCK,
            "stock.confirm",
            lambda ref: self._stock.confirm(order.order_id, list(order.items), ref),
            lambda aggregate, _: aggregate.confirm_stock(
                checkpoint.reference(WorkflowStep.CONFIRM_STOCK)
            ),
        )
        return True

    async def _mark_completed(self, checkpoint: WorkflowCheckpoint) -> bool:
        return await self._transition(
            checkpoint, WorkflowStep.MARK_COMPLETED, OrderState.COMPLETED
        )

    # ------------------------------------------------------------------
    # Compensation
    # ------------------------------------------------------------------

    async def _compensate(self, checkpoint: WorkflowCheckpoint) -> None:
        pending = [
            step
            for step in reversed(checkpoint.completed_steps)
            if step in COMPENSATIONS and step not in checkpoint.compensated_steps
        ]
        for step in pending:
            action = COMPENSATIONS[step]
            with self._tracer.span(
                "orderflow.workflow.compensate",
                {ATTR_WORKFLOW_ID: checkpoint.workflow_id, ATTR_WORKFLOW_STEP: step.value},
            ):
                try:
                    await self._compensations[step](checkpoint)
                except (ActivityDeclinedError, InvalidOrderError) as e:
                    failure = CompensationFailedError(checkpoint.workflow_id, action, str(e))
                    logger.error(
                        "%s",
                        failure,
                        extra={"workflow_id": checkpoint.workflow_id, "step": action},
                    )
                    if step not in checkpoint.failed_compensations:
                        checkpoint.failed_compensations.append(step)
                    checkpoint.last_error = str(failure)
                    await self._checkpoint(checkpoint)
                    continue

            checkpoint.compensated_steps.append(step)
            if step in checkpoint.failed_compensations:
                checkpoint.failed_compensations.remove(step)
            await self._checkpoint(checkpoint)

        if checkpoint.failed_compensations:
            failed = ", ".join(COMPENSATIONS[s] for s in checkpoint.failed_compensations)
            logger.error(
                "Workflow %s needs manual review: compensation failed for %s",
                checkpoint.workflow_id,
                failed,
                extra={"workflow_id": checkpoint.workflow_id, "order_id": str(checkpoint.order_id)},
            )
            await self._log(
                checkpoint,
                "workflow.manual_review",
                LogResult.FAILED,
                None,
                failed_compensations=[s.value for s in checkpoint.failed_compensations],
            )
            checkpoint.status = WorkflowStatus.MANUAL_REVIEW
            await self._checkpoint(checkpoint)
            return

        await self._settle(checkpoint)
        checkpoint.status = WorkflowStatus.COMPENSATED
        await self._checkpoint(checkpoint)

    async def _release_stock(self, checkpoint: WorkflowCheckpoint) -> None:
        order = (await self._repository.load(checkpoint.order_id)).order
        await self._invoke(
            checkpoint,
            WorkflowStep.RESERVE_STOCK,
            "stock.release",
            lambda ref: self._stock.release(order.order_id, list(order.items), ref),
            lambda aggregate, _: aggregate.release_stock(
                checkpoint.reference(WorkflowStep.RESERVE_STOCK, compensate=True)
            ),
            compensate=True,
            retry=self._config.compensation_retry,
        )

    async def _refund_payment(self, checkpoint: WorkflowCheckpoint) -> None:
        order = (await self._repository.load(checkpoint.order_id)).order
        amount = checkpoint.captured_amount or order.total_amount

        def record(aggregate: OrderAggregate, _: ActivityResult) -> None:
            payment = aggregate.order.payment
            if payment is not None and payment.reference_id == checkpoint.reference(
                WorkflowStep.PROCESS_PAYMENT
            ):
                aggregate.record_refund(
                    checkpoint.reference(WorkflowStep.PROCESS_PAYMENT, compensate=True)
                )

        await self._invoke(
            checkpoint,
            WorkflowStep.PROCESS_PAYMENT,
            "payment.refund",
            lambda ref: self._payment.refund(order.order_id, amount, ref),
            record,
            compensate=True,
            retry=self._config.compensation_retry,
        )

    async def _reverse_loyalty(
        self,
        checkpoint: WorkflowCheckpoint,
        step: WorkflowStep,
        action: str,
        points: int,
    ) -> None:
        original = checkpoint.reference(step)

        def record(aggregate: OrderAggregate, _: ActivityResult) -> None:
            if aggregate.find_loyalty(original) is not None:
                aggregate.reverse_loyalty(original, checkpoint.reference(step, compensate=True))

        await self._invoke(
            checkpoint,
            step,
            action,
            lambda ref: self._loyalty.reverse(checkpoint.order_id, original, points, ref),
            record,
            compensate=True,
            retry=self._config.compensation_retry,
        )

    async def _reverse_burn(self, checkpoint: WorkflowCheckpoint) -> None:
        await self._reverse_loyalty(
            checkpoint,
            WorkflowStep.BURN_LOYALTY,
            "loyalty.reverse_burn",
            checkpoint.input.burn_points,
        )

    async def _reverse_earn(self, checkpoint: WorkflowCheckpoint) -> None:
        await self._reverse_loyalty(
            checkpoint,
            WorkflowStep.EARN_LOYALTY,
            "loyalty.reverse_earn",
            checkpoint.earned_points,
        )

    async def _settle(self, checkpoint: WorkflowCheckpoint) -> None:
        """Move the order to its final state after a successful compensation."""
        had_effects = any(step in COMPENSATIONS for step in checkpoint.completed_steps)
        paid_here = WorkflowStep.PROCESS_PAYMENT in checkpoint.completed_steps
        reference = checkpoint.reference("settle")

        def apply(aggregate: OrderAggregate) -> list[OrderState]:
            moved: list[OrderState] = []
            if not had_effects and not checkpoint.cancel_requested:
                return moved
            if paid_here and aggregate.state in (OrderState.PAID, OrderState.COMPLETED):
                aggregate.transition_to(
                    OrderState.REFUNDED, reference_id=reference, actor=WORKFLOW_ACTOR
                )
                moved.append(OrderState.REFUNDED)
            if aggregate.state in (OrderState.REFUNDED, OrderState.PENDING):
                aggregate.transition_to(
                    OrderState.CANCELLED, reference_id=reference, actor=WORKFLOW_ACTOR
                )
                moved.append(OrderState.CANCELLED)
            return moved

        moved = await self._mutate_order(checkpoint, apply)
        logger.info(
            "Settled order %s after compensation: %s",
            checkpoint.order_id,
            " -> ".join(s.value for s in moved) or "unchanged",
            extra={"workflow_id": checkpoint.workflow_id, "order_id": str(checkpoint.order_id)},
        )


__all__ = ["OrderWorkflowEngine", "StepFailedError", "WORKFLOW_ACTOR"]
