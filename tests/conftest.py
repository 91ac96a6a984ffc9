"""
Shared pytest fixtures for the orderflow library tests.

This module provides:
- Sample data fixtures (order_id, items)
- Store fixtures (repository, idempotency_store, guard, checkpoint_store)
- Activity fixtures (stock, payment, loyalty)
- Workflow fixtures (workflow_config, engine, runner)
- Application fixtures (service)
- SQLite fixtures (sqlite_database and the SQLite stores)

All fixtures create fresh state per test.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from orderflow.activities import (
    InMemoryLoyaltyActivity,
    InMemoryPaymentActivity,
    InMemoryStockActivity,
)
from orderflow.application import OrderService
from orderflow.config import DuplicateMode, IdempotencyConfig, WorkflowConfig
from orderflow.domain import OrderItem
from orderflow.idempotency import IdempotencyGuard, InMemoryIdempotencyStore
from orderflow.repositories import InMemoryOrderRepository
from orderflow.workflow import InMemoryCheckpointStore, OrderWorkflowEngine, WorkflowRunner
from tests.fixtures import fast_workflow_config, make_items

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    pass


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


# ============================================================================
# Skip Condition
# ============================================================================

skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def order_id() -> UUID:
    """Provide a random order ID."""
    return uuid4()


@pytest.fixture
def items() -> list[OrderItem]:
    """Two order lines totalling 100.00."""
    return make_items()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository(enable_tracing=False)


@pytest.fixture
def idempotency_store() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore(enable_tracing=False)


@pytest.fixture
def idempotency_config() -> IdempotencyConfig:
    return IdempotencyConfig(mode=DuplicateMode.BLOCK, wait_timeout=1.0, poll_interval=0.01)


@pytest.fixture
def guard(
    idempotency_store: InMemoryIdempotencyStore,
    idempotency_config: IdempotencyConfig,
) -> IdempotencyGuard:
    return IdempotencyGuard(idempotency_store, idempotency_config, enable_tracing=False)


@pytest.fixture
def checkpoint_store() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore(enable_tracing=False)


# =============================================================================
# Activity Fixtures
# =============================================================================


@pytest.fixture
def stock() -> InMemoryStockActivity:
    return InMemoryStockActivity()


@pytest.fixture
def payment() -> InMemoryPaymentActivity:
    return InMemoryPaymentActivity()


@pytest.fixture
def loyalty() -> InMemoryLoyaltyActivity:
    """Loyalty ledger with 500 points available."""
    return InMemoryLoyaltyActivity(balance=500)


# =============================================================================
# Workflow Fixtures
# =============================================================================


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return fast_workflow_config()


@pytest.fixture
def engine(
    repository: InMemoryOrderRepository,
    stock: InMemoryStockActivity,
    payment: InMemoryPaymentActivity,
    loyalty: InMemoryLoyaltyActivity,
    checkpoint_store: InMemoryCheckpointStore,
    workflow_config: WorkflowConfig,
) -> OrderWorkflowEngine:
    return OrderWorkflowEngine(
        repository,
        stock,
        payment,
        loyalty,
        checkpoint_store,
        config=workflow_config,
        enable_tracing=False,
    )


@pytest_asyncio.fixture
async def runner(engine: OrderWorkflowEngine) -> AsyncGenerator[WorkflowRunner, None]:
    """
    Provide a workflow runner.

    Running workflows are waited for (and cancelled after a second) when
    the test ends.
    """
    workflow_runner = WorkflowRunner(engine)
    yield workflow_runner
    await workflow_runner.shutdown(timeout=1.0)


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def service(
    repository: InMemoryOrderRepository,
    guard: IdempotencyGuard,
    runner: WorkflowRunner,
) -> OrderService:
    return OrderService(repository, guard, runner, enable_tracing=False)


# ============================================================================
# SQLite Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def sqlite_database() -> AsyncGenerator[Any, None]:
    """
    Provide an initialized SQLiteDatabase on an in-memory database.

    Yields:
        SQLiteDatabase: Connected database with every orderflow table
    """
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    from orderflow.repositories.sqlite import SQLiteDatabase

    # WAL mode not supported in-memory
    async with SQLiteDatabase(":memory:", wal_mode=False) as database:
        await database.initialize()
        yield database


@pytest.fixture
def sqlite_repository(sqlite_database: Any) -> Any:
    from orderflow.repositories.sqlite import SQLiteOrderRepository

    return SQLiteOrderRepository(sqlite_database, enable_tracing=False)


@pytest.fixture
def sqlite_idempotency_store(sqlite_database: Any) -> Any:
    from orderflow.idempotency import SQLiteIdempotencyStore

    return SQLiteIdempotencyStore(sqlite_database, enable_tracing=False)


@pytest.fixture
def sqlite_checkpoint_store(sqlite_database: Any) -> Any:
    from orderflow.workflow import SQLiteCheckpointStore

    return SQLiteCheckpointStore(sqlite_database, enable_tracing=False)


__all__ = [
    "AIOSQLITE_AVAILABLE",
    "skip_if_no_aiosqlite",
]
