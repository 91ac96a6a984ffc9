"""
Idempotency guard.

Wraps a command so that a reference id is processed at most once per
order and command type. A repeated call returns the stored outcome with
``duplicate=True`` and runs nothing.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from orderflow.config import DuplicateMode, IdempotencyConfig
from orderflow.exceptions import RequestInProgressError
from orderflow.idempotency.store import (
    IdempotencyKey,
    IdempotencyOutcome,
    IdempotencyStore,
)
from orderflow.observability import (
    ATTR_COMMAND,
    ATTR_DUPLICATE,
    ATTR_ORDER_ID,
    ATTR_REFERENCE_ID,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardedOutcome:
    """An outcome and whether it was replayed from an earlier call."""

    outcome: IdempotencyOutcome
    duplicate: bool


class IdempotencyGuard:
    """
    Runs commands at most once per idempotency key.

    The operation returns an ``IdempotencyOutcome``; business rejections
    should be returned as REJECTED outcomes so they are replayed like
    successes. Any exception raised by the operation releases the claim
    and propagates, so the caller can retry with the same reference id.
    A claim left behind by a caller that died is taken over once it is
    older than ``claim_lease``.

    Example:
        >>> guard = IdempotencyGuard(InMemoryIdempotencyStore())
        >>> result = await guard.execute(
        ...     IdempotencyKey(order_id, "transition", "req-1"),
        ...     operation,
        ... )
        >>> result.duplicate
        False
    """

    def __init__(
        self,
        store: IdempotencyStore,
        config: IdempotencyConfig | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._config = config or IdempotencyConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @property
    def store(self) -> IdempotencyStore:
        return self._store

    @property
    def config(self) -> IdempotencyConfig:
        return self._config

    async def execute(
        self,
        key: IdempotencyKey,
        operation: Callable[[], Awaitable[IdempotencyOutcome]],
    ) -> GuardedOutcome:
        """
        Run ``operation`` unless ``key`` has already been processed.

        Raises:
            RequestInProgressError: If the key is held by another in-flight
                call (immediately in FAIL_FAST mode, after ``wait_timeout`` in
                BLOCK mode)
        """
        with self._tracer.span(
            "orderflow.idempotency.execute",
            {
                ATTR_ORDER_ID: str(key.order_id),
                ATTR_COMMAND: key.command,
                ATTR_REFERENCE_ID: key.reference_id,
            },
        ) as span:
            replay = await self._claim_or_replay(key)
            if replay is not None:
                if span is not None:
                    span.set_attribute(ATTR_DUPLICATE, True)
                logger.info(
                    "Duplicate request %s replayed stored outcome",
                    key,
                    extra={"order_id": str(key.order_id), "command": key.command},
                )
                return GuardedOutcome(outcome=replay, duplicate=True)

            try:
                outcome = await operation()
            except BaseException:
                await self._store.release(key)
                raise

            await self._store.complete(key, outcome)
            return GuardedOutcome(outcome=outcome, duplicate=False)

    async def _claim_or_replay(self, key: IdempotencyKey) -> IdempotencyOutcome | None:
        """Claim the key, or return the stored outcome of a finished earlier call."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.wait_timeout

        while True:
            claim = await self._store.claim(key, stale_before=self._stale_before())
            if claim.claimed:
                return None

            existing = claim.existing
            if existing is not None and existing.is_complete:
                assert existing.outcome is not None
                return existing.outcome

            if self._config.mode == DuplicateMode.FAIL_FAST:
                raise RequestInProgressError(str(key))

            # BLOCK: wait for the original call to finish or release its claim
            while True:
                if loop.time() >= deadline:
                    logger.warning(
                        "Timed out waiting for in-flight request %s",
                        key,
                        extra={"wait_timeout": self._config.wait_timeout},
                    )
                    raise RequestInProgressError(str(key))
                await asyncio.sleep(self._config.poll_interval)
                record = await self._store.get(key)
                if record is None:
                    # Released; try to claim it ourselves
                    break
                if record.is_complete:
                    assert record.outcome is not None
                    return record.outcome
                if record.created_at < self._stale_before():
                    # Claimant outlived its lease; take the key over
                    break

    def _stale_before(self) -> datetime:
        return datetime.now(UTC) - self._config.claim_lease

    async def prune(self, now: datetime | None = None) -> int:
        """Delete completed entries older than the configured retention."""
        cutoff = (now or datetime.now(UTC)) - self._config.retention
        return await self._store.prune(cutoff)


__all__ = ["GuardedOutcome", "IdempotencyGuard"]
