"""
Idempotency key stores.

A key identifies one logical intent: the order, the command type and the
caller-supplied reference id. Claiming a key is an insert-if-absent
operation, so exactly one caller wins even across processes when the
store is backed by a database unique constraint.
An unfinished claim older than the caller-supplied cutoff is taken over,
so a process that died mid-command does not block its key for good.

This module provides:
- IdempotencyKey, IdempotencyOutcome, IdempotencyRecord, ClaimResult
- IdempotencyStore: Abstract base class for stores
- InMemoryIdempotencyStore: Lock-protected dictionary
- SQLiteIdempotencyStore: aiosqlite, INSERT OR IGNORE
- PostgreSQLIdempotencyStore: SQLAlchemy, ON CONFLICT DO NOTHING
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from orderflow.observability import (
    ATTR_COMMAND,
    ATTR_DB_SYSTEM,
    ATTR_ORDER_ID,
    ATTR_REFERENCE_ID,
    Tracer,
    create_tracer,
)
from orderflow.repositories._codec import decode_json
from orderflow.repositories._connection import execute_with_connection
from orderflow.serialization import json_dumps

if TYPE_CHECKING:
    from orderflow.repositories.sqlite import SQLiteDatabase

logger = logging.getLogger(__name__)


class IdempotencyStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"


@dataclass(frozen=True)
class IdempotencyKey:
    """
    Scope of a reference id: one order, one command type.

    Example:
        >>> key = IdempotencyKey(order_id, "transition", "req-42")
        >>> str(key)
        '3f1c...:transition:req-42'
    """

    order_id: UUID
    command: str
    reference_id: str

    def __str__(self) -> str:
        return f"{self.order_id}:{self.command}:{self.reference_id}"


@dataclass(frozen=True)
class IdempotencyOutcome:
    """
    Recorded result of a completed command.

    Attributes:
        status: SUCCEEDED or REJECTED
        order_version: Order version after the command (None if unknown)
        payload: JSON-serializable response payload
    """

    status: IdempotencyStatus
    order_version: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.status == IdempotencyStatus.IN_PROGRESS:
            raise ValueError("An outcome must be SUCCEEDED or REJECTED")

    @classmethod
    def succeeded(cls, order_version: int | None, payload: dict[str, Any]) -> IdempotencyOutcome:
        return cls(IdempotencyStatus.SUCCEEDED, order_version, payload)

    @classmethod
    def rejected(cls, order_version: int | None, payload: dict[str, Any]) -> IdempotencyOutcome:
        return cls(IdempotencyStatus.REJECTED, order_version, payload)


@dataclass(frozen=True)
class IdempotencyRecord:
    """Stored state of a key."""

    key: IdempotencyKey
    status: IdempotencyStatus
    created_at: datetime
    outcome: IdempotencyOutcome | None = None
    completed_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return self.status != IdempotencyStatus.IN_PROGRESS


@dataclass(frozen=True)
class ClaimResult:
    """
    Result of claiming a key.

    Attributes:
        claimed: True if this caller now owns the key
        existing: The record that was already stored when not claimed
        took_over: True if the key was claimed from an expired claimant
    """

    claimed: bool
    existing: IdempotencyRecord | None = None
    took_over: bool = False


def _span_attributes(key: IdempotencyKey) -> dict[str, Any]:
    return {
        ATTR_ORDER_ID: str(key.order_id),
        ATTR_COMMAND: key.command,
        ATTR_REFERENCE_ID: key.reference_id,
    }


def _record_from_row(row: dict[str, Any]) -> IdempotencyRecord:
    key = IdempotencyKey(
        order_id=row["order_id"] if isinstance(row["order_id"], UUID) else UUID(row["order_id"]),
        command=row["command"],
        reference_id=row["reference_id"],
    )
    status = IdempotencyStatus(row["status"])
    outcome = None
    if status != IdempotencyStatus.IN_PROGRESS:
        outcome = IdempotencyOutcome(
            status=status,
            order_version=row["order_version"],
            payload=decode_json(row["payload"]) or {},
        )
    return IdempotencyRecord(
        key=key,
        status=status,
        created_at=_as_datetime(row["created_at"]),
        outcome=outcome,
        completed_at=_as_datetime(row["completed_at"]) if row["completed_at"] else None,
    )


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _is_stale(record: IdempotencyRecord, stale_before: datetime | None) -> bool:
    return (
        stale_before is not None
        and not record.is_complete
        and record.created_at < stale_before
    )


def _log_takeover(key: IdempotencyKey, previous: IdempotencyRecord | None) -> None:
    logger.warning(
        "Took over expired claim on idempotency key %s",
        key,
        extra={
            "order_id": str(key.order_id),
            "command": key.command,
            "claimed_at": previous.created_at.isoformat() if previous else None,
        },
    )


class IdempotencyStore(ABC):
    """
    Abstract base class for idempotency stores.

    Concrete implementations:
    - InMemoryIdempotencyStore
    - SQLiteIdempotencyStore
    - PostgreSQLIdempotencyStore
    """

    @abstractmethod
    async def claim(
        self, key: IdempotencyKey, stale_before: datetime | None = None
    ) -> ClaimResult:
        """
        Insert an in-progress record unless one already exists.

        An in-progress record created before ``stale_before`` is taken over:
        its creation time is reset and the caller owns the key.
        """
        pass

    @abstractmethod
    async def complete(self, key: IdempotencyKey, outcome: IdempotencyOutcome) -> None:
        """Record the outcome of a claimed key."""
        pass

    @abstractmethod
    async def release(self, key: IdempotencyKey) -> bool:
        """
        Drop an in-progress claim so the same reference id can be retried.

        Completed records are never released.

        Returns:
            True if a claim was removed
        """
        pass

    @abstractmethod
    async def get(self, key: IdempotencyKey) -> IdempotencyRecord | None:
        """Get the stored record for a key."""
        pass

    @abstractmethod
    async def prune(self, completed_before: datetime) -> int:
        """
        Delete completed records older than ``completed_before``.

        Returns:
            Number of records deleted
        """
        pass


class InMemoryIdempotencyStore(IdempotencyStore):
    """
    In-memory idempotency store for testing and single-process use.

    Example:
        >>> store = InMemoryIdempotencyStore()
        >>> result = await store.claim(key)
        >>> result.claimed
        True
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._records: dict[IdempotencyKey, IdempotencyRecord] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    async def claim(
        self, key: IdempotencyKey, stale_before: datetime | None = None
    ) -> ClaimResult:
        with self._tracer.span("orderflow.idempotency.claim", _span_attributes(key)):
            async with self._lock:
                existing = self._records.get(key)
                took_over = existing is not None and _is_stale(existing, stale_before)
                if existing is not None and not took_over:
                    return ClaimResult(claimed=False, existing=existing)
                self._records[key] = IdempotencyRecord(
                    key=key,
                    status=IdempotencyStatus.IN_PROGRESS,
                    created_at=datetime.now(UTC),
                )
                if took_over:
                    _log_takeover(key, existing)
                return ClaimResult(claimed=True, took_over=took_over)

    async def complete(self, key: IdempotencyKey, outcome: IdempotencyOutcome) -> None:
        with self._tracer.span("orderflow.idempotency.complete", _span_attributes(key)):
            async with self._lock:
                existing = self._records.get(key)
                if existing is None or existing.is_complete:
                    logger.warning("Completing idempotency key %s that is not claimed", key)
                    return
                self._records[key] = IdempotencyRecord(
                    key=key,
                    status=outcome.status,
                    created_at=existing.created_at,
                    outcome=outcome,
                    completed_at=datetime.now(UTC),
                )

    async def release(self, key: IdempotencyKey) -> bool:
        async with self._lock:
            existing = self._records.get(key)
            if existing is None or existing.is_complete:
                return False
            del self._records[key]
            return True

    async def get(self, key: IdempotencyKey) -> IdempotencyRecord | None:
        async with self._lock:
            return self._records.get(key)

    async def prune(self, completed_before: datetime) -> int:
        async with self._lock:
            expired = [
                key
                for key, record in self._records.items()
                if record.completed_at is not None and record.completed_at < completed_before
            ]
            for key in expired:
                del self._records[key]
            return len(expired)

    async def clear(self) -> None:
        """Remove all records. Useful between tests."""
        async with self._lock:
            self._records.clear()


class SQLiteIdempotencyStore(IdempotencyStore):
    """
    SQLite idempotency store on the shared ``SQLiteDatabase``.

    The composite primary key on ``idempotency_keys`` turns ``INSERT OR
    IGNORE`` into an atomic claim.
    """

    def __init__(
        self,
        database: SQLiteDatabase,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._db = database
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def claim(
        self, key: IdempotencyKey, stale_before: datetime | None = None
    ) -> ClaimResult:
        attributes = _span_attributes(key)
        attributes[ATTR_DB_SYSTEM] = "sqlite"
        with self._tracer.span("orderflow.idempotency.claim", attributes):
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """
                    INSERT OR IGNORE INTO idempotency_keys
                        (order_id, command, reference_id, status, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        str(key.order_id),
                        key.command,
                        key.reference_id,
                        IdempotencyStatus.IN_PROGRESS.value,
                        datetime.now(UTC).isoformat(),
                    ),
                )
                if cursor.rowcount == 1:
                    return ClaimResult(claimed=True)
                existing = await self._fetch(conn, key)
                if existing is not None and _is_stale(existing, stale_before):
                    cursor = await conn.execute(
                        """
                        UPDATE idempotency_keys SET created_at = ?
                        WHERE order_id = ? AND command = ? AND reference_id = ?
                          AND status = ? AND created_at = ?
                        """,
                        (
                            datetime.now(UTC).isoformat(),
                            str(key.order_id),
                            key.command,
                            key.reference_id,
                            IdempotencyStatus.IN_PROGRESS.value,
                            existing.created_at.isoformat(),
                        ),
                    )
                    if cursor.rowcount == 1:
                        _log_takeover(key, existing)
                        return ClaimResult(claimed=True, took_over=True)
                    existing = await self._fetch(conn, key)
            return ClaimResult(claimed=False, existing=existing)

    async def complete(self, key: IdempotencyKey, outcome: IdempotencyOutcome) -> None:
        with self._tracer.span("orderflow.idempotency.complete", _span_attributes(key)):
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """
                    UPDATE idempotency_keys
                    SET status = ?, order_version = ?, payload = ?, completed_at = ?
                    WHERE order_id = ? AND command = ? AND reference_id = ? AND status = ?
                    """,
                    (
                        outcome.status.value,
                        outcome.order_version,
                        json_dumps(outcome.payload),
                        datetime.now(UTC).isoformat(),
                        str(key.order_id),
                        key.command,
                        key.reference_id,
                        IdempotencyStatus.IN_PROGRESS.value,
                    ),
                )
                if cursor.rowcount == 0:
                    logger.warning("Completing idempotency key %s that is not claimed", key)

    async def release(self, key: IdempotencyKey) -> bool:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                DELETE FROM idempotency_keys
                WHERE order_id = ? AND command = ? AND reference_id = ? AND status = ?
                """,
                (
                    str(key.order_id),
                    key.command,
                    key.reference_id,
                    IdempotencyStatus.IN_PROGRESS.value,
                ),
            )
            return cursor.rowcount > 0

    async def get(self, key: IdempotencyKey) -> IdempotencyRecord | None:
        async with self._db.reading() as conn:
            return await self._fetch(conn, key)

    async def _fetch(self, conn: Any, key: IdempotencyKey) -> IdempotencyRecord | None:
        cursor = await conn.execute(
            """
            SELECT order_id, command, reference_id, status, order_version, payload,
                   created_at, completed_at
            FROM idempotency_keys
            WHERE order_id = ? AND command = ? AND reference_id = ?
            """,
            (str(key.order_id), key.command, key.reference_id),
        )
        row = await cursor.fetchone()
        return _record_from_row(dict(row)) if row else None

    async def prune(self, completed_before: datetime) -> int:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                DELETE FROM idempotency_keys
                WHERE completed_at IS NOT NULL AND completed_at < ?
                """,
                (completed_before.isoformat(),),
            )
            deleted = cursor.rowcount
        logger.info("Pruned %d idempotency key(s)", deleted)
        return deleted


_PG_CLAIM = text("""
    INSERT INTO idempotency_keys (order_id, command, reference_id, status, created_at)
    VALUES (:order_id, :command, :reference_id, :status, :created_at)
    ON CONFLICT (order_id, command, reference_id) DO NOTHING
    RETURNING status
""")

_PG_TAKE_OVER = text("""
    UPDATE idempotency_keys SET created_at = :created_at
    WHERE order_id = :order_id AND command = :command AND reference_id = :reference_id
      AND status = :in_progress AND created_at < :stale_before
    RETURNING status
""")

_PG_SELECT = text("""
    SELECT order_id, command, reference_id, status, order_version, payload,
           created_at, completed_at
    FROM idempotency_keys
    WHERE order_id = :order_id AND command = :command AND reference_id = :reference_id
""")

_PG_COMPLETE = text("""
    UPDATE idempotency_keys
    SET status = :status, order_version = :order_version, payload = :payload,
        completed_at = :completed_at
    WHERE order_id = :order_id AND command = :command AND reference_id = :reference_id
      AND status = :in_progress
""")

_PG_RELEASE = text("""
    DELETE FROM idempotency_keys
    WHERE order_id = :order_id AND command = :command AND reference_id = :reference_id
      AND status = :in_progress
""")

_PG_PRUNE = text("""
    DELETE FROM idempotency_keys
    WHERE completed_at IS NOT NULL AND completed_at < :completed_before
""")


class PostgreSQLIdempotencyStore(IdempotencyStore):
    """
    PostgreSQL idempotency store.

    Example:
        >>> store = PostgreSQLIdempotencyStore(engine)
        >>> result = await store.claim(IdempotencyKey(order_id, "transition", "req-1"))
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self.conn = conn
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @staticmethod
    def _key_params(key: IdempotencyKey) -> dict[str, Any]:
        return {
            "order_id": key.order_id,
            "command": key.command,
            "reference_id": key.reference_id,
        }

    async def claim(
        self, key: IdempotencyKey, stale_before: datetime | None = None
    ) -> ClaimResult:
        attributes = _span_attributes(key)
        attributes[ATTR_DB_SYSTEM] = "postgresql"
        with self._tracer.span("orderflow.idempotency.claim", attributes):
            params = self._key_params(key)
            params["status"] = IdempotencyStatus.IN_PROGRESS.value
            params["created_at"] = datetime.now(UTC)
            async with execute_with_connection(self.conn, transactional=True) as conn:
                result = await conn.execute(_PG_CLAIM, params)
                if result.fetchone() is not None:
                    return ClaimResult(claimed=True)
                if stale_before is not None:
                    taken = await conn.execute(
                        _PG_TAKE_OVER,
                        {
                            **params,
                            "in_progress": IdempotencyStatus.IN_PROGRESS.value,
                            "stale_before": stale_before,
                        },
                    )
                    if taken.fetchone() is not None:
                        _log_takeover(key, None)
                        return ClaimResult(claimed=True, took_over=True)
                existing = await conn.execute(_PG_SELECT, self._key_params(key))
                row = existing.mappings().fetchone()
            return ClaimResult(claimed=False, existing=_record_from_row(dict(row)) if row else None)

    async def complete(self, key: IdempotencyKey, outcome: IdempotencyOutcome) -> None:
        with self._tracer.span("orderflow.idempotency.complete", _span_attributes(key)):
            params = self._key_params(key)
            params.update(
                {
                    "status": outcome.status.value,
                    "order_version": outcome.order_version,
                    "payload": json_dumps(outcome.payload),
                    "completed_at": datetime.now(UTC),
                    "in_progress": IdempotencyStatus.IN_PROGRESS.value,
                }
            )
            async with execute_with_connection(self.conn, transactional=True) as conn:
                result = await conn.execute(_PG_COMPLETE, params)
                if result.rowcount == 0:
                    logger.warning("Completing idempotency key %s that is not claimed", key)

    async def release(self, key: IdempotencyKey) -> bool:
        params = self._key_params(key)
        params["in_progress"] = IdempotencyStatus.IN_PROGRESS.value
        async with execute_with_connection(self.conn, transactional=True) as conn:
            result = await conn.execute(_PG_RELEASE, params)
            return result.rowcount > 0

    async def get(self, key: IdempotencyKey) -> IdempotencyRecord | None:
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(_PG_SELECT, self._key_params(key))
            row = result.mappings().fetchone()
            return _record_from_row(dict(row)) if row else None

    async def prune(self, completed_before: datetime) -> int:
        async with execute_with_connection(self.conn, transactional=True) as conn:
            result = await conn.execute(_PG_PRUNE, {"completed_before": completed_before})
            deleted = result.rowcount
        logger.info("Pruned %d idempotency key(s)", deleted)
        return deleted


__all__ = [
    "IdempotencyStatus",
    "IdempotencyKey",
    "IdempotencyOutcome",
    "IdempotencyRecord",
    "ClaimResult",
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
    "SQLiteIdempotencyStore",
    "PostgreSQLIdempotencyStore",
]
