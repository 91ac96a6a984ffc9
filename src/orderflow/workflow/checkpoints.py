"""
Workflow checkpoint stores.

A checkpoint store keeps one record per workflow id. Writes use
optimistic versioning: ``save`` succeeds only when the stored version
equals the version the caller loaded, so two workers can never both
advance the same workflow. The cancellation flag lives in its own
column and is set without touching the version, so a cancellation
request never conflicts with the running engine.

Records that cannot be decoded raise CorruptCheckpointError and are
left for manual intervention.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from orderflow.domain.models import utc_now
from orderflow.exceptions import (
    CorruptCheckpointError,
    WorkflowConflictError,
    WorkflowNotFoundError,
)
from orderflow.observability import (
    ATTR_DB_SYSTEM,
    ATTR_EXPECTED_VERSION,
    ATTR_WORKFLOW_ID,
    ATTR_WORKFLOW_STATUS,
    Tracer,
    create_tracer,
)
from orderflow.repositories._codec import decode_json
from orderflow.repositories._connection import execute_with_connection
from orderflow.workflow.state import WorkflowCheckpoint, WorkflowStatus

if TYPE_CHECKING:
    from orderflow.repositories.sqlite import SQLiteDatabase

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = (WorkflowStatus.RUNNING.value, WorkflowStatus.COMPENSATING.value)

# Stored in their own columns
_COLUMN_FIELDS = {"version", "cancel_requested"}


def encode_checkpoint(checkpoint: WorkflowCheckpoint) -> str:
    return checkpoint.model_dump_json(exclude=_COLUMN_FIELDS)


def decode_checkpoint(
    workflow_id: str,
    data: Any,
    version: int,
    cancel_requested: bool,
) -> WorkflowCheckpoint:
    """
    Rebuild a checkpoint from its stored columns.

    Raises:
        CorruptCheckpointError: If the data is not valid JSON or fails validation
    """
    try:
        payload = decode_json(data)
        if not isinstance(payload, dict):
            raise ValueError(f"expected an object, got {type(payload).__name__}")
        payload["version"] = version
        payload["cancel_requested"] = bool(cancel_requested)
        checkpoint = WorkflowCheckpoint.model_validate(payload)
    except (ValueError, TypeError, ValidationError) as e:
        logger.error(
            "Corrupt checkpoint for workflow %s: %s",
            workflow_id,
            e,
            extra={"workflow_id": workflow_id},
        )
        raise CorruptCheckpointError(workflow_id, str(e)) from e
    if checkpoint.workflow_id != workflow_id:
        raise CorruptCheckpointError(
            workflow_id, f"record belongs to workflow {checkpoint.workflow_id}"
        )
    return checkpoint


class CheckpointStore(ABC):
    """
    Abstract base class for workflow checkpoint stores.

    Versions start at 1 when a checkpoint is created and increase by one on
    every successful save.
    """

    @abstractmethod
    async def create(self, checkpoint: WorkflowCheckpoint) -> bool:
        """
        Insert a checkpoint if none exists for its workflow id.

        On success ``checkpoint.version`` is set to 1.

        Returns:
            True if the checkpoint was created, False if one already existed
        """
        pass

    @abstractmethod
    async def load(self, workflow_id: str) -> WorkflowCheckpoint | None:
        """
        Load a checkpoint.

        Returns:
            The checkpoint, or None if the workflow is unknown

        Raises:
            CorruptCheckpointError: If the stored record cannot be decoded
        """
        pass

    @abstractmethod
    async def save(
        self,
        checkpoint: WorkflowCheckpoint,
        expected_version: int,
        *,
        reset_cancellation: bool = False,
    ) -> int:
        """
        Overwrite a checkpoint written at ``expected_version``.

        The stored cancellation flag is kept if it was already set, unless
        ``reset_cancellation`` is True (used when a new run replaces a
        finished one).

        Returns:
            The new version

        Raises:
            WorkflowNotFoundError: If the workflow is unknown
            WorkflowConflictError: If the stored version differs
        """
        pass

    @abstractmethod
    async def request_cancellation(self, workflow_id: str) -> None:
        """
        Set the cancellation flag.

        Raises:
            WorkflowNotFoundError: If the workflow is unknown
        """
        pass

    @abstractmethod
    async def list_resumable(self) -> list[str]:
        """Ids of workflows that are running or compensating."""
        pass


class InMemoryCheckpointStore(CheckpointStore):
    """
    In-memory checkpoint store for tests and development.

    Records are kept in encoded form, like a database row, so loading
    exercises the same decoding as the SQL stores.
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def create(self, checkpoint: WorkflowCheckpoint) -> bool:
        async with self._lock:
            if checkpoint.workflow_id in self._rows:
                return False
            checkpoint.version = 1
            self._rows[checkpoint.workflow_id] = {
                "status": checkpoint.status.value,
                "version": 1,
                "cancel_requested": checkpoint.cancel_requested,
                "data": encode_checkpoint(checkpoint),
            }
        logger.debug("Created checkpoint for workflow %s", checkpoint.workflow_id)
        return True

    async def load(self, workflow_id: str) -> WorkflowCheckpoint | None:
        async with self._lock:
            row = self._rows.get(workflow_id)
            if row is None:
                return None
            row = dict(row)
        return decode_checkpoint(
            workflow_id, row["data"], row["version"], row["cancel_requested"]
        )

    async def save(
        self,
        checkpoint: WorkflowCheckpoint,
        expected_version: int,
        *,
        reset_cancellation: bool = False,
    ) -> int:
        with self._tracer.span(
            "orderflow.checkpoint.save",
            {
                ATTR_WORKFLOW_ID: checkpoint.workflow_id,
                ATTR_WORKFLOW_STATUS: checkpoint.status.value,
                ATTR_EXPECTED_VERSION: expected_version,
            },
        ):
            async with self._lock:
                row = self._rows.get(checkpoint.workflow_id)
                if row is None:
                    raise WorkflowNotFoundError(checkpoint.workflow_id)
                if row["version"] != expected_version:
                    raise WorkflowConflictError(checkpoint.workflow_id, expected_version)
                checkpoint.updated_at = utc_now()
                new_version = expected_version + 1
                row.update(
                    status=checkpoint.status.value,
                    version=new_version,
                    cancel_requested=(
                        checkpoint.cancel_requested
                        if reset_cancellation
                        else row["cancel_requested"] or checkpoint.cancel_requested
                    ),
                    data=encode_checkpoint(checkpoint),
                )
            return new_version

    async def request_cancellation(self, workflow_id: str) -> None:
        async with self._lock:
            row = self._rows.get(workflow_id)
            if row is None:
                raise WorkflowNotFoundError(workflow_id)
            row["cancel_requested"] = True

    async def list_resumable(self) -> list[str]:
        async with self._lock:
            return [
                workflow_id
                for workflow_id, row in self._rows.items()
                if row["status"] in _ACTIVE_STATUSES
            ]

    async def clear(self) -> None:
        async with self._lock:
            self._rows.clear()


class SQLiteCheckpointStore(CheckpointStore):
    """Checkpoint store on the shared ``SQLiteDatabase``."""

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

    async def create(self, checkpoint: WorkflowCheckpoint) -> bool:
        now = utc_now().isoformat()
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO workflow_checkpoints
                    (workflow_id, order_id, status, version, cancel_requested, data,
                     created_at, updated_at)
                VALUES (?, ?, ?, 1, ?, ?, ?, ?)
                """,
                (
                    checkpoint.workflow_id,
                    str(checkpoint.order_id),
                    checkpoint.status.value,
                    int(checkpoint.cancel_requested),
                    encode_checkpoint(checkpoint.model_copy(update={"version": 1})),
                    now,
                    now,
                ),
            )
            created = cursor.rowcount == 1
        if created:
            checkpoint.version = 1
        return created

    async def load(self, workflow_id: str) -> WorkflowCheckpoint | None:
        async with self._db.reading() as conn:
            cursor = await conn.execute(
                """
                SELECT version, cancel_requested, data
                FROM workflow_checkpoints
                WHERE workflow_id = ?
                """,
                (workflow_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return decode_checkpoint(
            workflow_id, row["data"], row["version"], bool(row["cancel_requested"])
        )

    async def save(
        self,
        checkpoint: WorkflowCheckpoint,
        expected_version: int,
        *,
        reset_cancellation: bool = False,
    ) -> int:
        with self._tracer.span(
            "orderflow.checkpoint.save",
            {
                ATTR_WORKFLOW_ID: checkpoint.workflow_id,
                ATTR_WORKFLOW_STATUS: checkpoint.status.value,
                ATTR_EXPECTED_VERSION: expected_version,
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            checkpoint.updated_at = utc_now()
            new_version = expected_version + 1
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """
                    UPDATE workflow_checkpoints
                    SET status = ?, version = ?, data = ?, updated_at = ?,
                        cancel_requested = CASE WHEN ? THEN ? ELSE MAX(cancel_requested, ?) END
                    WHERE workflow_id = ? AND version = ?
                    """,
                    (
                        checkpoint.status.value,
                        new_version,
                        encode_checkpoint(checkpoint),
                        checkpoint.updated_at.isoformat(),
                        int(reset_cancellation),
                        int(checkpoint.cancel_requested),
                        int(checkpoint.cancel_requested),
                        checkpoint.workflow_id,
                        expected_version,
                    ),
                )
                if cursor.rowcount == 0:
                    cursor = await conn.execute(
                        "SELECT version FROM workflow_checkpoints WHERE workflow_id = ?",
                        (checkpoint.workflow_id,),
                    )
                    if await cursor.fetchone() is None:
                        raise WorkflowNotFoundError(checkpoint.workflow_id)
                    raise WorkflowConflictError(checkpoint.workflow_id, expected_version)
            return new_version

    async def request_cancellation(self, workflow_id: str) -> None:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE workflow_checkpoints SET cancel_requested = 1 WHERE workflow_id = ?",
                (workflow_id,),
            )
            if cursor.rowcount == 0:
                raise WorkflowNotFoundError(workflow_id)

    async def list_resumable(self) -> list[str]:
        async with self._db.reading() as conn:
            cursor = await conn.execute(
                """
                SELECT workflow_id FROM workflow_checkpoints
                WHERE status IN (?, ?)
                ORDER BY created_at
                """,
                _ACTIVE_STATUSES,
            )
            rows = await cursor.fetchall()
        return [row["workflow_id"] for row in rows]


_PG_INSERT = text("""
    INSERT INTO workflow_checkpoints
        (workflow_id, order_id, status, version, cancel_requested, data,
         created_at, updated_at)
    VALUES (:workflow_id, :order_id, :status, 1, :cancel_requested, :data,
            :created_at, :updated_at)
    ON CONFLICT (workflow_id) DO NOTHING
    RETURNING version
""")

_PG_SELECT = text("""
    SELECT version, cancel_requested, data
    FROM workflow_checkpoints
    WHERE workflow_id = :workflow_id
""")

_PG_UPDATE = text("""
    UPDATE workflow_checkpoints
    SET status = :status, version = :new_version, data = :data, updated_at = :updated_at,
        cancel_requested = CASE WHEN :reset_cancellation THEN :cancel_requested
                                ELSE cancel_requested OR :cancel_requested END
    WHERE workflow_id = :workflow_id AND version = :expected_version
    RETURNING version
""")

_PG_CANCEL = text("""
    UPDATE workflow_checkpoints SET cancel_requested = TRUE
    WHERE workflow_id = :workflow_id
    RETURNING workflow_id
""")

_PG_RESUMABLE = text("""
    SELECT workflow_id FROM workflow_checkpoints
    WHERE status IN (:running, :compensating)
    ORDER BY created_at
""")


class PostgreSQLCheckpointStore(CheckpointStore):
    """
    PostgreSQL checkpoint store.

    Example:
        >>> store = PostgreSQLCheckpointStore(engine)
        >>> checkpoint = await store.load("order-...")
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

    async def create(self, checkpoint: WorkflowCheckpoint) -> bool:
        now = utc_now()
        async with execute_with_connection(self.conn, transactional=True) as conn:
            result = await conn.execute(
                _PG_INSERT,
                {
                    "workflow_id": checkpoint.workflow_id,
                    "order_id": checkpoint.order_id,
                    "status": checkpoint.status.value,
                    "cancel_requested": checkpoint.cancel_requested,
                    "data": encode_checkpoint(checkpoint),
                    "created_at": now,
                    "updated_at": now,
                },
            )
            created = result.fetchone() is not None
        if created:
            checkpoint.version = 1
        return created

    async def load(self, workflow_id: str) -> WorkflowCheckpoint | None:
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(_PG_SELECT, {"workflow_id": workflow_id})
            row = result.mappings().fetchone()
        if row is None:
            return None
        return decode_checkpoint(
            workflow_id, row["data"], row["version"], bool(row["cancel_requested"])
        )

    async def save(
        self,
        checkpoint: WorkflowCheckpoint,
        expected_version: int,
        *,
        reset_cancellation: bool = False,
    ) -> int:
        with self._tracer.span(
            "orderflow.checkpoint.save",
            {
                ATTR_WORKFLOW_ID: checkpoint.workflow_id,
                ATTR_WORKFLOW_STATUS: checkpoint.status.value,
                ATTR_EXPECTED_VERSION: expected_version,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            checkpoint.updated_at = utc_now()
            new_version = expected_version + 1
            async with execute_with_connection(self.conn, transactional=True) as conn:
                result = await conn.execute(
                    _PG_UPDATE,
                    {
                        "status": checkpoint.status.value,
                        "new_version": new_version,
                        "data": encode_checkpoint(checkpoint),
                        "updated_at": checkpoint.updated_at,
                        "cancel_requested": checkpoint.cancel_requested,
                        "reset_cancellation": reset_cancellation,
                        "workflow_id": checkpoint.workflow_id,
                        "expected_version": expected_version,
                    },
                )
                if result.fetchone() is None:
                    existing = await conn.execute(
                        _PG_SELECT, {"workflow_id": checkpoint.workflow_id}
                    )
                    if existing.fetchone() is None:
                        raise WorkflowNotFoundError(checkpoint.workflow_id)
                    raise WorkflowConflictError(checkpoint.workflow_id, expected_version)
            return new_version

    async def request_cancellation(self, workflow_id: str) -> None:
        async with execute_with_connection(self.conn, transactional=True) as conn:
            result = await conn.execute(_PG_CANCEL, {"workflow_id": workflow_id})
            if result.fetchone() is None:
                raise WorkflowNotFoundError(workflow_id)

    async def list_resumable(self) -> list[str]:
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(
                _PG_RESUMABLE,
                {"running": _ACTIVE_STATUSES[0], "compensating": _ACTIVE_STATUSES[1]},
            )
            return [row[0] for row in result.fetchall()]


__all__ = [
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "PostgreSQLCheckpointStore",
    "encode_checkpoint",
    "decode_checkpoint",
]
