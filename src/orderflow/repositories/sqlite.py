"""
SQLite order repository.

Lightweight persistence using SQLite with async support via aiosqlite.

This implementation is suitable for:
- Development and testing environments
- Single-instance deployments
- Embedded applications

For multi-process deployments, use PostgreSQLOrderRepository.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

import aiosqlite

from orderflow.domain.aggregate import OrderAggregate
from orderflow.domain.models import OrderJourney, OrderLog
from orderflow.domain.policies import FulfillmentPolicy
from orderflow.exceptions import ConcurrencyConflictError, OrderNotFoundError
from orderflow.migrations import get_schema
from orderflow.observability import (
    ATTR_DB_NAME,
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
from orderflow.repositories.interface import OrderRepository
from orderflow.serialization import json_dumps

logger = logging.getLogger(__name__)


class SQLiteDatabase:
    """
    Shared aiosqlite connection for the SQLite backends.

    The order repository, idempotency store and checkpoint store can all
    work on one database. A single connection has a single transaction, so
    every unit of work runs under an asyncio.Lock and either commits or
    rolls back as a whole.

    SQLite-specific adaptations:
    - UUIDs stored as TEXT (36 characters, hyphenated format)
    - Timestamps stored as TEXT in ISO 8601 format
    - JSON stored as TEXT

    Example:
        >>> async with SQLiteDatabase(":memory:") as db:
        ...     await db.initialize()
        ...     repository = SQLiteOrderRepository(db)
    """

    def __init__(
        self,
        database: str,
        *,
        wal_mode: bool = True,
        busy_timeout: int = 5000,
    ) -> None:
        """
        Args:
            database: Path to SQLite database file or ':memory:'
            wal_mode: If True, enable WAL mode for better concurrency
            busy_timeout: Timeout in milliseconds when the database is locked
        """
        self._database = database
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> SQLiteDatabase:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def connect(self) -> None:
        """
        Open the database connection and configure settings.

        Called automatically by ``async with``. Safe to call twice.
        """
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database)
        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        if self._wal_mode:
            await self._connection.execute("PRAGMA journal_mode = WAL")
        self._connection.row_factory = aiosqlite.Row

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """Close the connection. Safe to call multiple times."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """
        Create all orderflow tables if they don't exist.

        Idempotent: safe to call multiple times.
        """
        await self.connect()
        async with self.transaction() as conn:
            await conn.executescript(get_schema("all", backend="sqlite"))
        logger.info("Initialized SQLite schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with database:' or call 'connect()' first."
            )
        return self._connection

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a unit of work that commits on success and rolls back on error."""
        async with self._lock:
            conn = self._ensure_connected()
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run read-only statements without interleaving with a write."""
        async with self._lock:
            yield self._ensure_connected()

    @property
    def database(self) -> str:
        return self._database

    @property
    def is_connected(self) -> bool:
        return self._connection is not None


class SQLiteOrderRepository(OrderRepository):
    """
    SQLite implementation of the order repository.

    The version check is an ``UPDATE ... WHERE version = ?``; a row count
    of zero means another writer got there first. Journey and log rows are
    inserted in the same transaction, and their ``UNIQUE(order_id,
    sequence)`` constraints catch writers racing from other processes.

    Example:
        >>> async with SQLiteDatabase("orders.db") as db:
        ...     await db.initialize()
        ...     repository = SQLiteOrderRepository(db)
        ...     await repository.save(OrderAggregate.create(items))
    """

    def __init__(
        self,
        database: SQLiteDatabase,
        *,
        fulfillment_policy: FulfillmentPolicy | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._db = database
        self._fulfillment_policy = fulfillment_policy
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    def _span_attributes(self, order_id: UUID) -> dict[str, Any]:
        return {
            ATTR_ORDER_ID: str(order_id),
            ATTR_DB_SYSTEM: "sqlite",
            ATTR_DB_NAME: self._db.database,
        }

    async def load(self, order_id: UUID) -> OrderAggregate:
        with self._tracer.span("orderflow.repository.load", self._span_attributes(order_id)):
            async with self._db.reading() as conn:
                cursor = await conn.execute(
                    """
                    SELECT order_id, state, version, total_amount, data, created_at, updated_at
                    FROM orders
                    WHERE order_id = ?
                    """,
                    (str(order_id),),
                )
                row = await cursor.fetchone()
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
        attributes = self._span_attributes(aggregate.order_id)
        attributes[ATTR_EXPECTED_VERSION] = expected
        attributes[ATTR_ORDER_STATE] = aggregate.state.value

        with self._tracer.span("orderflow.repository.save", attributes):
            if not aggregate.has_changes:
                return aggregate.version

            new_version = expected + 1
            try:
                async with self._db.transaction() as conn:
                    await self._write_order(conn, aggregate, expected, new_version)
                    await self._insert_audit_rows(conn, aggregate)
            except aiosqlite.IntegrityError as e:
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
        conn: aiosqlite.Connection,
        aggregate: OrderAggregate,
        expected: int,
        new_version: int,
    ) -> None:
        order = aggregate.order
        if expected == 0:
            cursor = await conn.execute(
                "SELECT version FROM orders WHERE order_id = ?", (str(order.order_id),)
            )
            row = await cursor.fetchone()
            if row is not None:
                raise ConcurrencyConflictError(order.order_id, expected, row[0])
            await conn.execute(
                """
                INSERT INTO orders
                    (order_id, state, version, total_amount, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(order.order_id),
                    order.state.value,
                    new_version,
                    str(order.total_amount),
                    encode_order_data(order),
                    order.created_at.isoformat(),
                    order.updated_at.isoformat(),
                ),
            )
            return

        cursor = await conn.execute(
            """
            UPDATE orders
            SET state = ?, version = ?, total_amount = ?, data = ?, updated_at = ?
            WHERE order_id = ? AND version = ?
            """,
            (
                order.state.value,
                new_version,
                str(order.total_amount),
                encode_order_data(order),
                order.updated_at.isoformat(),
                str(order.order_id),
                expected,
            ),
        )
        if cursor.rowcount == 0:
            cursor = await conn.execute(
                "SELECT version FROM orders WHERE order_id = ?", (str(order.order_id),)
            )
            row = await cursor.fetchone()
            if row is None:
                raise OrderNotFoundError(order.order_id)
            logger.debug(
                "Version conflict for order %s: expected=%d, actual=%d",
                order.order_id,
                expected,
                row[0],
            )
            raise ConcurrencyConflictError(order.order_id, expected, row[0])

    async def _insert_audit_rows(
        self,
        conn: aiosqlite.Connection,
        aggregate: OrderAggregate,
    ) -> None:
        order_id = str(aggregate.order_id)
        journeys = aggregate.uncommitted_journeys
        if journeys:
            await conn.executemany(
                """
                INSERT INTO order_journeys
                    (order_id, sequence, from_state, to_state, reference_id, actor, occurred_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        order_id,
                        j.sequence,
                        j.from_state.value,
                        j.to_state.value,
                        j.reference_id,
                        j.actor,
                        j.occurred_at.isoformat(),
                    )
                    for j in journeys
                ],
            )
        logs = aggregate.uncommitted_logs
        if logs:
            await conn.executemany(
                """
                INSERT INTO order_logs
                    (order_id, sequence, action, result, correlation_id, detail, occurred_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        order_id,
                        log.sequence,
                        log.action,
                        log.result.value,
                        log.correlation_id,
                        json_dumps(log.detail),
                        log.occurred_at.isoformat(),
                    )
                    for log in logs
                ],
            )

    async def _current_version(self, order_id: UUID) -> int:
        async with self._db.reading() as conn:
            cursor = await conn.execute(
                "SELECT version FROM orders WHERE order_id = ?", (str(order_id),)
            )
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def _fetch_journeys(
        self, conn: aiosqlite.Connection, order_id: UUID
    ) -> list[OrderJourney]:
        cursor = await conn.execute(
            """
            SELECT sequence, from_state, to_state, reference_id, actor, occurred_at
            FROM order_journeys
            WHERE order_id = ?
            ORDER BY sequence ASC
            """,
            (str(order_id),),
        )
        return [build_journey(dict(row)) for row in await cursor.fetchall()]

    async def _fetch_logs(self, conn: aiosqlite.Connection, order_id: UUID) -> list[OrderLog]:
        cursor = await conn.execute(
            """
            SELECT sequence, action, result, correlation_id, detail, occurred_at
            FROM order_logs
            WHERE order_id = ?
            ORDER BY sequence ASC
            """,
            (str(order_id),),
        )
        return [build_log(dict(row)) for row in await cursor.fetchall()]

    async def _require_order(self, conn: aiosqlite.Connection, order_id: UUID) -> None:
        cursor = await conn.execute("SELECT 1 FROM orders WHERE order_id = ?", (str(order_id),))
        if await cursor.fetchone() is None:
            raise OrderNotFoundError(order_id)

    async def exists(self, order_id: UUID) -> bool:
        async with self._db.reading() as conn:
            cursor = await conn.execute(
                "SELECT 1 FROM orders WHERE order_id = ?", (str(order_id),)
            )
            return await cursor.fetchone() is not None

    async def get_journey(self, order_id: UUID) -> list[OrderJourney]:
        with self._tracer.span(
            "orderflow.repository.get_journey", self._span_attributes(order_id)
        ):
            async with self._db.reading() as conn:
                await self._require_order(conn, order_id)
                return await self._fetch_journeys(conn, order_id)

    async def get_logs(self, order_id: UUID) -> list[OrderLog]:
        with self._tracer.span("orderflow.repository.get_logs", self._span_attributes(order_id)):
            async with self._db.reading() as conn:
                await self._require_order(conn, order_id)
                return await self._fetch_logs(conn, order_id)


__all__ = ["SQLiteDatabase", "SQLiteOrderRepository"]
