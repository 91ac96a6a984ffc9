"""
Shared pytest fixtures for integration tests.

Integration tests build a full orderflow stack on a SQLite file in a
temporary directory, so a test can close the database and open it again
to simulate a process restart.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from orderflow.activities import (
    InMemoryLoyaltyActivity,
    InMemoryPaymentActivity,
    InMemoryStockActivity,
)
from orderflow.application import OrderService
from orderflow.config import IdempotencyConfig
from orderflow.idempotency import IdempotencyGuard
from orderflow.workflow import OrderWorkflowEngine, WorkflowRunner
from tests.conftest import AIOSQLITE_AVAILABLE
from tests.fixtures import fast_workflow_config

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


# ============================================================================
# Stack Fixtures
# ============================================================================


@dataclass
class Stack:
    """One process worth of orderflow components sharing a database."""

    database: Any
    service: OrderService
    engine: OrderWorkflowEngine
    runner: WorkflowRunner

    async def close(self) -> None:
        await self.runner.shutdown(timeout=1.0)
        await self.database.close()


@dataclass
class Activities:
    stock: InMemoryStockActivity
    payment: InMemoryPaymentActivity
    loyalty: InMemoryLoyaltyActivity


@pytest.fixture
def database_path(tmp_path: Path) -> str:
    return str(tmp_path / "orders.db")


@pytest.fixture
def activities() -> Activities:
    """External services shared by every stack of a test, like real ones would be."""
    return Activities(
        stock=InMemoryStockActivity(),
        payment=InMemoryPaymentActivity(),
        loyalty=InMemoryLoyaltyActivity(balance=500),
    )


async def open_stack(path: str, activities: Activities, stock: Any = None) -> Stack:
    """Open the database at ``path`` and wire a stack on top of it."""
    from orderflow.idempotency import SQLiteIdempotencyStore
    from orderflow.repositories.sqlite import SQLiteDatabase, SQLiteOrderRepository
    from orderflow.workflow import SQLiteCheckpointStore

    database = SQLiteDatabase(path)
    await database.connect()
    await database.initialize()

    repository = SQLiteOrderRepository(database, enable_tracing=False)
    guard = IdempotencyGuard(
        SQLiteIdempotencyStore(database, enable_tracing=False),
        IdempotencyConfig(wait_timeout=1.0, poll_interval=0.01),
        enable_tracing=False,
    )
    engine = OrderWorkflowEngine(
        repository,
        stock or activities.stock,
        activities.payment,
        activities.loyalty,
        SQLiteCheckpointStore(database, enable_tracing=False),
        config=fast_workflow_config(),
        enable_tracing=False,
    )
    runner = WorkflowRunner(engine)
    service = OrderService(repository, guard, runner, enable_tracing=False)
    return Stack(database=database, service=service, engine=engine, runner=runner)


@pytest_asyncio.fixture
async def stack(database_path: str, activities: Activities) -> AsyncGenerator[Stack, None]:
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    opened = await open_stack(database_path, activities)
    yield opened
    await opened.close()
