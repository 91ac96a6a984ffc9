"""
In-memory order repository.

Useful for testing and development. Not suitable for production as all
orders are lost when the process terminates.
"""

import asyncio
import logging
from uuid import UUID

from orderflow.domain.aggregate import OrderAggregate
from orderflow.domain.models import Order, OrderJourney, OrderLog
from orderflow.domain.policies import FulfillmentPolicy
from orderflow.exceptions import ConcurrencyConflictError, OrderNotFoundError
from orderflow.observability import (
    ATTR_EXPECTED_VERSION,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATE,
    Tracer,
    create_tracer,
)
from orderflow.repositories.interface import OrderRepository

logger = logging.getLogger(__name__)


class InMemoryOrderRepository(OrderRepository):
    """
    In-memory implementation of the order repository.

    Keeps the latest immutable ``Order`` snapshot per order id. Snapshots are
    never edited, so loaded aggregates cannot affect stored state until
    they are saved.

    Thread-safety:
        Uses an asyncio.Lock around the version check and the write. Safe for
        concurrent async operations within a single process.

    Example:
        >>> repository = InMemoryOrderRepository()
        >>> order = OrderAggregate.create(items)
        >>> await repository.save(order)
        >>> loaded = await repository.load(order.order_id)
    """

    def __init__(
        self,
        *,
        fulfillment_policy: FulfillmentPolicy | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize an empty repository.

        Args:
            fulfillment_policy: Policy handed to every loaded aggregate
            tracer: Optional custom Tracer instance
            enable_tracing: If True and OpenTelemetry is available, emit traces
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._fulfillment_policy = fulfillment_policy
        self._orders: dict[UUID, Order] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    async def load(self, order_id: UUID) -> OrderAggregate:
        with self._tracer.span("orderflow.repository.load", {ATTR_ORDER_ID: str(order_id)}):
            async with self._lock:
                order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            return OrderAggregate(order, self._fulfillment_policy)

    async def save(
        self,
        aggregate: OrderAggregate,
        expected_version: int | None = None,
    ) -> int:
        expected = aggregate.version if expected_version is None else expected_version
        with self._tracer.span(
            "orderflow.repository.save",
            {
                ATTR_ORDER_ID: str(aggregate.order_id),
                ATTR_ORDER_STATE: aggregate.state.value,
                ATTR_EXPECTED_VERSION: expected,
            },
        ):
            if not aggregate.has_changes:
                return aggregate.version

            async with self._lock:
                stored = self._orders.get(aggregate.order_id)
                current = stored.version if stored is not None else 0
                if current != expected:
                    logger.debug(
                        "Version conflict for order %s: expected=%d, actual=%d",
                        aggregate.order_id,
                        expected,
                        current,
                    )
                    raise ConcurrencyConflictError(aggregate.order_id, expected, current)

                new_version = expected + 1
                # Audit rows appended since load, on top of what is stored
                journeys = list(stored.journeys) if stored is not None else []
                logs = list(stored.logs) if stored is not None else []
                journeys.extend(aggregate.uncommitted_journeys)
                logs.extend(aggregate.uncommitted_logs)
                self._orders[aggregate.order_id] = aggregate.order.model_copy(
                    update={"version": new_version, "journeys": journeys, "logs": logs}
                )

            aggregate.mark_committed(new_version)
            logger.debug(
                "Saved order %s at version %d",
                aggregate.order_id,
                new_version,
                extra={"order_id": str(aggregate.order_id), "version": new_version},
            )
            return new_version

    async def exists(self, order_id: UUID) -> bool:
        async with self._lock:
            return order_id in self._orders

    async def get_journey(self, order_id: UUID) -> list[OrderJourney]:
        with self._tracer.span(
            "orderflow.repository.get_journey", {ATTR_ORDER_ID: str(order_id)}
        ):
            async with self._lock:
                order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            return list(order.journeys)

    async def get_logs(self, order_id: UUID) -> list[OrderLog]:
        with self._tracer.span("orderflow.repository.get_logs", {ATTR_ORDER_ID: str(order_id)}):
            async with self._lock:
                order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            return list(order.logs)

    async def clear(self) -> None:
        """Remove all orders. Useful between tests."""
        async with self._lock:
            self._orders.clear()


__all__ = ["InMemoryOrderRepository"]
