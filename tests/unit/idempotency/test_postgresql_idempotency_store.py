"""
Unit tests for PostgreSQLIdempotencyStore with a mocked connection.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from orderflow.idempotency import (
    IdempotencyKey,
    IdempotencyOutcome,
    IdempotencyStatus,
    PostgreSQLIdempotencyStore,
)
from orderflow.observability import MockTracer


def result_with_row(row: Any, rowcount: int = 0) -> MagicMock:
    result = MagicMock()
    result.fetchone.return_value = row
    result.mappings.return_value.fetchone.return_value = row
    result.rowcount = rowcount
    return result


def stored_row(key: IdempotencyKey, status: str, **overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "order_id": key.order_id,
        "command": key.command,
        "reference_id": key.reference_id,
        "status": status,
        "order_version": None,
        "payload": None,
        "created_at": datetime(2025, 1, 1, tzinfo=UTC),
        "completed_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def key() -> IdempotencyKey:
    return IdempotencyKey(uuid4(), "transition", "req-1")


@pytest.fixture
def conn() -> MagicMock:
    connection = MagicMock()
    connection.execute = AsyncMock()
    return connection


@pytest.fixture
def store(conn: MagicMock) -> PostgreSQLIdempotencyStore:
    return PostgreSQLIdempotencyStore(conn, enable_tracing=False)


class TestClaim:
    async def test_claimed(
        self, store: PostgreSQLIdempotencyStore, conn: MagicMock, key: IdempotencyKey
    ) -> None:
        conn.execute.side_effect = [result_with_row((1,))]

        result = await store.claim(key)

        assert result.claimed
        assert result.existing is None
        params = conn.execute.await_args.args[1]
        assert params["order_id"] == key.order_id
        assert params["status"] == "in_progress"

    async def test_existing_in_progress(
        self, store: PostgreSQLIdempotencyStore, conn: MagicMock, key: IdempotencyKey
    ) -> None:
        conn.execute.side_effect = [
            result_with_row(None),
            result_with_row(stored_row(key, "in_progress")),
        ]

        result = await store.claim(key)

        assert not result.claimed
        assert result.existing is not None
        assert result.existing.status == IdempotencyStatus.IN_PROGRESS
        assert result.existing.outcome is None

    async def test_existing_outcome(
        self, store: PostgreSQLIdempotencyStore, conn: MagicMock, key: IdempotencyKey
    ) -> None:
        completed_at = datetime(2025, 1, 2, tzinfo=UTC)
        conn.execute.side_effect = [
            result_with_row(None),
            result_with_row(
                stored_row(
                    key,
                    "succeeded",
                    order_version=3,
                    payload='{"state": "Paid"}',
                    completed_at=completed_at,
                )
            ),
        ]

        result = await store.claim(key)

        assert result.existing is not None
        assert result.existing.is_complete
        assert result.existing.completed_at == completed_at
        assert result.existing.outcome == IdempotencyOutcome(
            status=IdempotencyStatus.SUCCEEDED, order_version=3, payload={"state": "Paid"}
        )

    async def test_expired_claim_taken_over(
        self, store: PostgreSQLIdempotencyStore, conn: MagicMock, key: IdempotencyKey
    ) -> None:
        stale_before = datetime(2025, 1, 1, 0, 5, tzinfo=UTC)
        conn.execute.side_effect = [result_with_row(None), result_with_row(("in_progress",))]

        result = await store.claim(key, stale_before=stale_before)

        assert result.claimed
        assert result.took_over
        params = conn.execute.await_args.args[1]
        assert params["stale_before"] == stale_before
        assert params["in_progress"] == "in_progress"

    async def test_live_claim_not_taken_over(
        self, store: PostgreSQLIdempotencyStore, conn: MagicMock, key: IdempotencyKey
    ) -> None:
        conn.execute.side_effect = [
            result_with_row(None),
            result_with_row(None),
            result_with_row(stored_row(key, "in_progress")),
        ]

        result = await store.claim(key, stale_before=datetime(2024, 12, 31, tzinfo=UTC))

        assert not result.claimed
        assert not result.took_over
        assert result.existing is not None
        assert conn.execute.await_count == 3

    async def test_claim_span(self, conn: MagicMock, key: IdempotencyKey) -> None:
        tracer = MockTracer()
        store = PostgreSQLIdempotencyStore(conn, tracer=tracer)
        conn.execute.side_effect = [result_with_row((1,))]

        await store.claim(key)

        name, attributes = tracer.spans[0]
        assert name == "orderflow.idempotency.claim"
        assert attributes is not None
        assert attributes["db.system"] == "postgresql"


class TestComplete:
    async def test_complete_writes_outcome(
        self, store: PostgreSQLIdempotencyStore, conn: MagicMock, key: IdempotencyKey
    ) -> None:
        conn.execute.side_effect = [result_with_row(None, rowcount=1)]

        await store.complete(key, IdempotencyOutcome.rejected(2, {"rule": "refund_not_allowed"}))

        params = conn.execute.await_args.args[1]
        assert params["status"] == "rejected"
        assert params["order_version"] == 2
        assert params["payload"] == '{"rule": "refund_not_allowed"}'
        assert params["in_progress"] == "in_progress"


class TestReleaseGetPrune:
    async def test_release(
        self, store: PostgreSQLIdempotencyStore, conn: MagicMock, key: IdempotencyKey
    ) -> None:
        conn.execute.side_effect = [result_with_row(None, rowcount=1), result_with_row(None)]

        assert await store.release(key)
        assert not await store.release(key)

    async def test_get_missing(
        self, store: PostgreSQLIdempotencyStore, conn: MagicMock, key: IdempotencyKey
    ) -> None:
        conn.execute.side_effect = [result_with_row(None)]

        assert await store.get(key) is None

    async def test_get_accepts_text_columns(
        self, store: PostgreSQLIdempotencyStore, conn: MagicMock, key: IdempotencyKey
    ) -> None:
        conn.execute.side_effect = [
            result_with_row(
                stored_row(
                    key,
                    "in_progress",
                    order_id=str(key.order_id),
                    created_at="2025-01-01T00:00:00+00:00",
                )
            )
        ]

        record = await store.get(key)

        assert record is not None
        assert record.key == key
        assert record.created_at == datetime(2025, 1, 1, tzinfo=UTC)

    async def test_prune(self, store: PostgreSQLIdempotencyStore, conn: MagicMock) -> None:
        cutoff = datetime(2025, 1, 1, tzinfo=UTC)
        conn.execute.side_effect = [result_with_row(None, rowcount=4)]

        assert await store.prune(cutoff) == 4
        assert conn.execute.await_args.args[1] == {"completed_before": cutoff}
