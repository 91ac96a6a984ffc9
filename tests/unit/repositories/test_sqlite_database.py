"""
Tests for SQLiteDatabase and file-backed persistence.

Tests cover:
- Connection lifecycle
- Schema initialization being repeatable
- Rollback of a failed unit of work
- Orders surviving a reconnect to the same file
"""

from __future__ import annotations

from pathlib import Path

import pytest

from orderflow.domain import OrderState
from tests.conftest import AIOSQLITE_AVAILABLE, skip_if_no_aiosqlite
from tests.fixtures import create_order

if AIOSQLITE_AVAILABLE:
    from orderflow.repositories.sqlite import SQLiteDatabase, SQLiteOrderRepository

pytestmark = [pytest.mark.sqlite, skip_if_no_aiosqlite]


class TestLifecycle:
    """Tests for connect/close."""

    async def test_context_manager_connects_and_closes(self) -> None:
        database = SQLiteDatabase(":memory:", wal_mode=False)
        assert not database.is_connected

        async with database:
            assert database.is_connected

        assert not database.is_connected

    async def test_use_before_connect_raises(self) -> None:
        database = SQLiteDatabase(":memory:", wal_mode=False)

        with pytest.raises(RuntimeError, match="Not connected"):
            async with database.reading():
                pass

    async def test_initialize_is_repeatable(self, sqlite_database: SQLiteDatabase) -> None:
        await sqlite_database.initialize()

        async with sqlite_database.reading() as conn:
            cursor = await conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
            )
            tables = {row["name"] for row in await cursor.fetchall()}

        assert {
            "orders",
            "order_journeys",
            "order_logs",
            "idempotency_keys",
            "workflow_checkpoints",
        } <= tables


class TestTransactions:
    """Tests for transaction()."""

    async def test_failed_unit_of_work_is_rolled_back(
        self, sqlite_database: SQLiteDatabase
    ) -> None:
        with pytest.raises(ValueError):
            async with sqlite_database.transaction() as conn:
                await conn.execute(
                    "INSERT INTO workflow_checkpoints "
                    "(workflow_id, order_id, status, version, data, created_at, updated_at) "
                    "VALUES ('wf-1', 'o-1', 'running', 1, '{}', 'now', 'now')"
                )
                raise ValueError("abort")

        async with sqlite_database.reading() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM workflow_checkpoints")
            row = await cursor.fetchone()
        assert row[0] == 0


class TestFilePersistence:
    """Orders written to a file are visible after reconnecting."""

    async def test_order_survives_reconnect(self, tmp_path: Path) -> None:
        path = str(tmp_path / "orders.db")
        async with SQLiteDatabase(path) as database:
            await database.initialize()
            aggregate = await create_order(
                SQLiteOrderRepository(database, enable_tracing=False), OrderState.PENDING
            )

        async with SQLiteDatabase(path) as database:
            repository = SQLiteOrderRepository(database, enable_tracing=False)
            loaded = await repository.load(aggregate.order_id)

        assert loaded.state == OrderState.PENDING
        assert loaded.version == 1
        assert len(loaded.order.journeys) == 1
