"""
Application use cases.

TransitionUseCase is the direct entry point for state transitions that do
not need the workflow (admin cancel, manual refund, reactivation).
OrderCommandUseCase runs the other mutating order commands. Both go
through the IdempotencyGuard, so a repeated reference id replays the
recorded outcome instead of changing the order again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from orderflow.domain.aggregate import OrderAggregate
from orderflow.domain.states import OrderState
from orderflow.exceptions import (
    ConcurrencyConflictError,
    InvalidOrderError,
    InvalidTransitionError,
)
from orderflow.idempotency import (
    GuardedOutcome,
    IdempotencyGuard,
    IdempotencyKey,
    IdempotencyOutcome,
    IdempotencyStatus,
)
from orderflow.observability import (
    ATTR_COMMAND,
    ATTR_ORDER_ID,
    ATTR_REFERENCE_ID,
    ATTR_TARGET_STATE,
    Tracer,
    create_tracer,
)
from orderflow.repositories.interface import OrderRepository

logger = logging.getLogger(__name__)

TRANSITION_COMMAND = "transition"


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    INVALID_TRANSITION = "invalid_transition"
    CONCURRENCY_CONFLICT = "concurrency_conflict"


@dataclass(frozen=True)
class TransitionResult:
    """
    Result of a transition request.

    Attributes:
        outcome: What happened
        order_id: Order the request was for
        state: Order state after the request (None on a conflict)
        version: Order version after the request; on a conflict, the
            version currently stored
        rule: Violated rule for INVALID_TRANSITION
        detail: Extra explanation of the violation
        duplicate: True if the result was replayed for a repeated reference id
    """

    outcome: TransitionOutcome
    order_id: UUID
    state: OrderState | None = None
    version: int | None = None
    rule: str | None = None
    detail: str | None = None
    duplicate: bool = False

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED


@dataclass(frozen=True)
class CommandResult:
    """
    Result of an order command.

    Attributes:
        command: Command name
        order_id: Order the command was for
        accepted: False if the order rejected the command
        version: Order version after the command
        payload: Command-specific response data
        reason: Why the command was rejected
        duplicate: True if the result was replayed for a repeated reference id
    """

    command: str
    order_id: UUID
    accepted: bool
    version: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None
    duplicate: bool = False


class TransitionUseCase:
    """
    Validates and applies one transition with optimistic concurrency.

    The order is loaded, validated and saved with the version it was
    loaded at (or ``expected_version`` when the caller read the order
    earlier). The new state, version and journey row are written together.

    Example:
        >>> use_case = TransitionUseCase(repository, guard)
        >>> result = await use_case.execute(order_id, OrderState.CANCELLED, "admin-77")
        >>> result.outcome
        <TransitionOutcome.APPLIED: 'applied'>
    """

    def __init__(
        self,
        repository: OrderRepository,
        guard: IdempotencyGuard,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._guard = guard
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def execute(
        self,
        order_id: UUID,
        target: OrderState,
        reference_id: str,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """
        Request a transition.

        Returns:
            APPLIED, INVALID_TRANSITION (nothing changed) or
            CONCURRENCY_CONFLICT (retry with a fresh read)

        Raises:
            OrderNotFoundError: If the order does not exist
            RequestInProgressError: If the same reference id is still in flight
        """
        key = IdempotencyKey(order_id, TRANSITION_COMMAND, reference_id)

        async def operation() -> IdempotencyOutcome:
            aggregate = await self._repository.load(order_id)
            try:
                aggregate.transition_to(target, reference_id=reference_id, actor=actor)
            except InvalidTransitionError as e:
                return IdempotencyOutcome.rejected(
                    aggregate.version,
                    {
                        "outcome": TransitionOutcome.INVALID_TRANSITION.value,
                        "state": aggregate.state.value,
                        "rule": e.rule,
                        "detail": e.detail,
                    },
                )
            version = await self._repository.save(
                aggregate,
                aggregate.version if expected_version is None else expected_version,
            )
            return IdempotencyOutcome.succeeded(
                version,
                {"outcome": TransitionOutcome.APPLIED.value, "state": aggregate.state.value},
            )

        with self._tracer.span(
            "orderflow.use_case.transition",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_TARGET_STATE: target.value,
                ATTR_REFERENCE_ID: reference_id,
            },
        ):
            try:
                guarded = await self._guard.execute(key, operation)
            except ConcurrencyConflictError as e:
                logger.warning(
                    "Transition of order %s to %s hit a version conflict",
                    order_id,
                    target.value,
                    extra={
                        "order_id": str(order_id),
                        "expected_version": e.expected_version,
                        "actual_version": e.actual_version,
                    },
                )
                return TransitionResult(
                    outcome=TransitionOutcome.CONCURRENCY_CONFLICT,
                    order_id=order_id,
                    version=e.actual_version,
                )

        result = self._to_result(order_id, guarded)
        if result.applied and not result.duplicate:
            logger.info(
                "Order %s transitioned to %s",
                order_id,
                target.value,
                extra={"order_id": str(order_id), "version": result.version},
            )
        return result

    @staticmethod
    def _to_result(order_id: UUID, guarded: GuardedOutcome) -> TransitionResult:
        payload = guarded.outcome.payload
        state = payload.get("state")
        return TransitionResult(
            outcome=TransitionOutcome(payload["outcome"]),
            order_id=order_id,
            state=OrderState(state) if state is not None else None,
            version=guarded.outcome.order_version,
            rule=payload.get("rule"),
            detail=payload.get("detail"),
            duplicate=guarded.duplicate,
        )


class OrderCommandUseCase:
    """
    Runs an order command at most once per reference id.

    The command is a callable that changes the aggregate and returns a
    JSON-serializable payload. An ``InvalidOrderError`` raised by the
    command is recorded as a rejection.
    """

    def __init__(
        self,
        repository: OrderRepository,
        guard: IdempotencyGuard,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._guard = guard
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def execute(
        self,
        order_id: UUID,
        command: str,
        reference_id: str,
        mutate: Callable[[OrderAggregate], dict[str, Any] | None],
    ) -> CommandResult:
        """
        Raises:
            OrderNotFoundError: If the order does not exist
            ConcurrencyConflictError: If the order changed while the command ran
            RequestInProgressError: If the same reference id is still in flight
        """
        key = IdempotencyKey(order_id, command, reference_id)

        async def operation() -> IdempotencyOutcome:
            aggregate = await self._repository.load(order_id)
            try:
                payload = mutate(aggregate) or {}
            except InvalidOrderError as e:
                return IdempotencyOutcome.rejected(aggregate.version, {"reason": str(e)})
            version = await self._repository.save(aggregate)
            return IdempotencyOutcome.succeeded(version, payload)

        with self._tracer.span(
            "orderflow.use_case.command",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_COMMAND: command,
                ATTR_REFERENCE_ID: reference_id,
            },
        ):
            guarded = await self._guard.execute(key, operation)

        outcome = guarded.outcome
        accepted = outcome.status == IdempotencyStatus.SUCCEEDED
        return CommandResult(
            command=command,
            order_id=order_id,
            accepted=accepted,
            version=outcome.order_version,
            payload={} if not accepted else dict(outcome.payload),
            reason=None if accepted else outcome.payload.get("reason"),
            duplicate=guarded.duplicate,
        )


__all__ = [
    "TRANSITION_COMMAND",
    "TransitionOutcome",
    "TransitionResult",
    "CommandResult",
    "TransitionUseCase",
    "OrderCommandUseCase",
]
