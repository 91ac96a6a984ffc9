"""
PostgreSQL order repository.

Production persistence using SQLAlchemy async with the asyncpg driver.
Optimistic locking is enforced by a conditional UPDATE on the version
column, and the audit tables' unique sequence constraints catch any
writer that slips past it.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from orderflow.domain.aggregate import OrderAggregate
from orderflow.domain.models import OrderJourney, OrderLog
from orderflow.domain.policies import FulfillmentPolicy
from orderflow.exceptions import ConcurrencyConflictError, OrderNotFoundError
from orderflow.observability import (
    ATTR_DB_SYSTEM,
    ATTR_EXPECTED_VERSION,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATE,
    Tracer,
    create_tracer,
)
from orderflow.repositories._codec import (
    build_journey,
    build_log,
    build_order,
    encode_order_data,
)
from orderflow.repositories._connection import execute_with_connection
from orderflow.repositories.interface import OrderRepository
from orderflow.serialization import json_dumps

logger = logging.getLogger(__name__)

_SELECT_ORDER = text("""
    SELECT order_id, state, version, total_amount, data, created_at, updated_at
    FROM orders
    WHERE order_id = :order_id
""")

_SELECT_VERSION = text("SELECT version FROM orders WHERE order_id = :order_id")

_INSERT_ORDER = text("""
    INSERT INTO orders
        (order_id, state, version, total_amount, data, created_at, updated_at)
    VALUES
        (:order_id, :state, :version, :total_amount, :data, :created_at, :updated_at)
    ON CONFLICT (order_id) DO NOTHING
    RETURNING version
""")

_UPDATE_ORDER = text("""
    UPDATE orders
    SET state = :state,
        version = :version,
        total_amount = :total_amount,
        data = :data,
        updated_at = :updated_at
    WHERE order_id = :order_id AND version = :expected_version
    RETURNING version
""")

_INSERT_JOURNEY = text("""
    INSERT INTO order_journeys
        (order_id, sequence, from_state, to_state, reference_id, actor, occurred_at)
    VALUES
        (:order_id, :sequence, :from_state, :to_state, :reference_id, :actor, :occurred_at)
""")

_INSERT_LOG = text("""
    INSERT INTO order_logs
        (order_id, sequence, action, result, correlation_id, detail, occurred_at)
    VALUES
        (:order_id, :sequence, :action, :result, :correlation_id, :detail, :occurred_at)
""")

_SELECT_JOURNEYS = text("""
    SELECT sequence, from_state, to_state, reference_id, actor, occurred_at
    FROM order_journeys
    WHERE order_id = :order_id
    ORDER BY sequence ASC
""")

_SELECT_LOGS = text("""
    SELECT sequence, action, result, correlation_id, detail, occurred_at
    FROM order_logs
    WHERE order_id = :order_id
    ORDER BY sequence ASC
""")


class PostgreSQLOrderRepository(OrderRepository):
    """
    PostgreSQL implementation of the order repository.

    Accepts an AsyncEngine (each call runs in its own transaction) or an
    AsyncConnection (calls join the caller's transaction).

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://localhost/orders")
        >>> repository = PostgreSQLOrderRepository(engine)
        >>> aggregate = await repository.load(order_id)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        fulfillment_policy: FulfillmentPolicy | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self.conn = conn
        self._fulfillment_policy = fulfillment_policy
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def load(self, order_id: UUID) -> OrderAggregate:
        with self._tracer.span(
            "orderflow.repository.load",
            {ATTR_ORDER_ID: str(order_id), ATTR_DB_SYSTEM: "postgresql"},
        ):
            params = {"order_id": order_id}
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(_SELECT_ORDER, params)
                row = result.mappings().fetchone()
                if row is None:
                    raise OrderNotFoundError(order_id)
                journeys = await self._fetch_journeys(conn, order_id)
                logs = await self._fetch_logs(conn, order_id)

            order = build_order(dict(row), journeys, logs)
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
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            if not aggregate.has_changes:
                return aggregate.version

            new_version = expected + 1
            try:
                async with execute_with_connection(self.conn, transactional=True) as conn:
                    await self._write_order(conn, aggregate, expected, new_version)
                    await self._insert_audit_rows(conn, aggregate)
            except IntegrityError as e:
                actual = await self._current_version(aggregate.order_id)
                logger.debug(
                    "Integrity error saving order %s (expected=%d, actual=%d): %s",
                    aggregate.order_id,
                    expected,
                    actual,
                    e,
                )
                raise ConcurrencyConflictError(aggregate.order_id, expected, actual) from e

            aggregate.mark_committed(new_version)
            logger.debug(
                "Saved order %s at version %d",
                aggregate.order_id,
                new_version,
                extra={"order_id": str(aggregate.order_id), "version": new_version},
            )
            return new_version

    async def _write_order(
        self,
        conn: AsyncConnection,
        aggregate: OrderAggregate,
        expected: int,
        new_version: int,
    ) -> None:
        order = aggregate.order
        params: dict[str, Any] = {
            "order_id": order.order_id,
            "state": order.state.value,
            "version": new_version,
            "total_amount": order.total_amount,
            "data": encode_order_data(order),
            "updated_at": order.updated_at,
        }
        if expected == 0:
            params["created_at"] = order.created_at
            result = await conn.execute(_INSERT_ORDER, params)
        else:
            params["expected_version"] = expected
            result = await conn.execute(_UPDATE_ORDER, params)

        if result.fetchone() is not None:
            return

        current = await conn.execute(_SELECT_VERSION, {"order_id": order.order_id})
        row = current.fetchone()
        if row is None:
            raise OrderNotFoundError(order.order_id)
        logger.debug(
            "Version conflict for order %s: expected=%d, actual=%d",
            order.order_id,
            expected,
            row[0],
        )
        raise ConcurrencyConflictError(order.order_id, expected, row[0])

    async def _insert_audit_rows(self, conn: AsyncConnection, aggregate: OrderAggregate) -> None:
        journeys = aggregate.uncommitted_journeys
        if journeys:
            await conn.execute(
                _INSERT_JOURNEY,
                [
                    {
                        "order_id": aggregate.order_id,
                        "sequence": j.sequence,
                        "from_state": j.from_state.value,
                        "to_state": j.to_state.value,
                        "reference_id": j.reference_id,
                        "actor": j.actor,
                        "occurred_at": j.occurred_at,
                    }
                    for j in journeys
                ],
            )
        logs = aggregate.uncommitted_logs
        if logs:
            await conn.execute(
                _INSERT_LOG,
                [
                    {
                        "order_id": aggregate.order_id,
                        "sequence": log.sequence,
                        "action": log.action,
                        "result": log.result.value,
                        "correlation_id": log.correlation_id,
                        "detail": json_dumps(log.detail),
                        "occurred_at": log.occurred_at,
                    }
                    for log in logs
                ],
            )

    async def _current_version(self, order_id: UUID) -> int:
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(_SELECT_VERSION, {"order_id": order_id})
            row = result.fetchone()
            return row[0] if row else 0

    async def _fetch_journeys(self, conn: AsyncConnection, order_id: UUID) -> list[OrderJourney]:
        result = await conn.execute(_SELECT_JOURNEYS, {"order_id": order_id})
        return [build_journey(dict(row)) for row in result.mappings().fetchall()]

    async def _fetch_logs(self, conn: AsyncConnection, order_id: UUID) -> list[OrderLog]:
        result = await conn.execute(_SELECT_LOGS, {"order_id": order_id})
        return [build_log(dict(row)) for row in result.mappings().fetchall()]

    async def exists(self, order_id: UUID) -> bool:
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(_SELECT_VERSION, {"order_id": order_id})
            return result.fetchone() is not None

    async def get_journey(self, order_id: UUID) -> list[OrderJourney]:
        with self._tracer.span("orderflow.repository.get_journey", {ATTR_ORDER_ID: str(order_id)}):
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(_SELECT_VERSION, {"order_id": order_id})
                if result.fetchone() is None:
                    raise OrderNotFoundError(order_id)
                return await self._fetch_journeys(conn, order_id)

    async def get_logs(self, order_id: UUID) -> list[OrderLog]:
        with self._tracer.span("orderflow.repository.get_logs", {ATTR_ORDER_ID: str(order_id)}):
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(_SELECT_VERSION, {"order_id": order_id})
                if result.fetchone() is None:
                    raise OrderNotFoundError(order_id)
                return await self._fetch_logs(conn, order_id)


__all__ = ["PostgreSQLOrderRepository"]
