"""Command deduplication by caller-supplied reference id."""

from orderflow.idempotency.guard import GuardedOutcome, IdempotencyGuard
from orderflow.idempotency.store import (
    ClaimResult,
    IdempotencyKey,
    IdempotencyOutcome,
    IdempotencyRecord,
    IdempotencyStatus,
    IdempotencyStore,
    InMemoryIdempotencyStore,
    PostgreSQLIdempotencyStore,
    SQLiteIdempotencyStore,
)

__all__ = [
    "IdempotencyGuard",
    "GuardedOutcome",
    "IdempotencyKey",
    "IdempotencyOutcome",
    "IdempotencyRecord",
    "IdempotencyStatus",
    "ClaimResult",
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
    "SQLiteIdempotencyStore",
    "PostgreSQLIdempotencyStore",
]
