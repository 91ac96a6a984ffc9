"""
Workflow runner.

Runs workflows as background asyncio tasks, one task per workflow id, with
a semaphore bounding how many run at once. Starting a workflow that is
already running attaches to the existing task instead of starting a
second one. Starts and resumes of the same workflow id are serialised by
a per-id lock.

Example:
    >>> runner = WorkflowRunner(engine)
    >>> workflow_id = await runner.start(order_id, PaymentMethod.CREDIT_CARD)
    >>> checkpoint = await runner.wait(workflow_id)
    >>> # On process startup
    >>> await runner.resume_all()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any
from uuid import UUID

from orderflow.domain.models import PaymentMethod
from orderflow.exceptions import CorruptCheckpointError, WorkflowNotFoundError
from orderflow.workflow.engine import OrderWorkflowEngine
from orderflow.workflow.state import (
    WorkflowCheckpoint,
    WorkflowInput,
    WorkflowProgress,
    WorkflowStatus,
    workflow_id_for,
)

logger = logging.getLogger(__name__)


class WorkflowRunner:
    """
    Background execution of order workflows.

    Args:
        engine: Engine that executes the workflows
        max_concurrency: Maximum workflows running at once
            (defaults to the engine's configuration)
    """

    def __init__(
        self,
        engine: OrderWorkflowEngine,
        max_concurrency: int | None = None,
    ) -> None:
        self._engine = engine
        self._checkpoints = engine.checkpoints
        limit = engine.config.max_concurrency if max_concurrency is None else max_concurrency
        if limit < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {limit}")
        self._semaphore = asyncio.Semaphore(limit)
        self._tasks: dict[str, asyncio.Task[WorkflowCheckpoint]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def start(
        self,
        order_id: UUID,
        payment_method: PaymentMethod,
        burn_points: int = 0,
    ) -> str:
        """
        Start the workflow for an order, or attach to the one already running.

        A workflow that ended compensated is started again as a new run. A
        completed workflow or one waiting for manual review is returned as
        it is.

        Returns:
            The workflow id

        Raises:
            CorruptCheckpointError: If an existing checkpoint cannot be decoded
        """
        workflow_id = workflow_id_for(order_id)
        async with self._lock_for(workflow_id):
            if self.is_running(workflow_id):
                logger.debug("Attaching to running workflow %s", workflow_id)
                return workflow_id

            checkpoint = WorkflowCheckpoint(
                workflow_id=workflow_id,
                order_id=order_id,
                input=WorkflowInput(payment_method=payment_method, burn_points=burn_points),
            )
            if await self._checkpoints.create(checkpoint):
                logger.info(
                    "Started workflow %s",
                    workflow_id,
                    extra={"workflow_id": workflow_id, "order_id": str(order_id)},
                )
                self._submit(workflow_id)
                return workflow_id

            existing = await self._checkpoints.load(workflow_id)
            if existing is None:
                raise WorkflowNotFoundError(workflow_id)

            if existing.is_active:
                # Left behind by a previous process
                self._submit(workflow_id)
            elif existing.status == WorkflowStatus.COMPENSATED:
                checkpoint.run = existing.run + 1
                checkpoint.version = await self._checkpoints.save(
                    checkpoint, existing.version, reset_cancellation=True
                )
                logger.info(
                    "Restarted workflow %s as run %d",
                    workflow_id,
                    checkpoint.run,
                    extra={"workflow_id": workflow_id, "order_id": str(order_id)},
                )
                self._submit(workflow_id)
            else:
                logger.debug(
                    "Workflow %s already %s, not restarting", workflow_id, existing.status.value
                )
            return workflow_id

    async def resume(self, workflow_id: str) -> bool:
        """
        Resume a workflow from its checkpoint.

        Returns:
            True if a task was started or is already running

        Raises:
            WorkflowNotFoundError: If no checkpoint exists
            CorruptCheckpointError: If the checkpoint cannot be decoded
        """
        async with self._lock_for(workflow_id):
            if self.is_running(workflow_id):
                return True
            checkpoint = await self._checkpoints.load(workflow_id)
            if checkpoint is None:
                raise WorkflowNotFoundError(workflow_id)
            if not checkpoint.is_active:
                return False
            self._submit(workflow_id)
            return True

    async def resume_all(self) -> list[str]:
        """
        Resume every running or compensating workflow.

        Corrupt checkpoints are logged and skipped.

        Returns:
            Ids of the workflows that were resumed
        """
        resumed: list[str] = []
        for workflow_id in await self._checkpoints.list_resumable():
            try:
                if await self.resume(workflow_id):
                    resumed.append(workflow_id)
            except CorruptCheckpointError as e:
                logger.error(
                    "Not resuming workflow %s: %s",
                    workflow_id,
                    e,
                    extra={"workflow_id": workflow_id},
                )
        logger.info("Resumed %d workflow(s)", len(resumed))
        return resumed

    async def wait(self, workflow_id: str, timeout: float | None = None) -> WorkflowCheckpoint:
        """
        Wait for a workflow task to finish and return its checkpoint.

        Errors raised by the run are re-raised here. For a workflow that is
        not running, the stored checkpoint is returned.

        Raises:
            asyncio.TimeoutError: If the task does not finish in time
            WorkflowNotFoundError: If the workflow is unknown
        """
        task = self._tasks.get(workflow_id)
        if task is not None:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        checkpoint = await self._checkpoints.load(workflow_id)
        if checkpoint is None:
            raise WorkflowNotFoundError(workflow_id)
        return checkpoint

    async def request_cancellation(self, workflow_id: str) -> None:
        """
        Ask a workflow to stop and compensate at its next step boundary.

        Raises:
            WorkflowNotFoundError: If the workflow is unknown
        """
        await self._checkpoints.request_cancellation(workflow_id)
        logger.info("Cancellation requested for workflow %s", workflow_id)

    async def get_progress(self, workflow_id: str) -> WorkflowProgress:
        """
        Raises:
            WorkflowNotFoundError: If the workflow is unknown
            CorruptCheckpointError: If the checkpoint cannot be decoded
        """
        checkpoint = await self._checkpoints.load(workflow_id)
        if checkpoint is None:
            raise WorkflowNotFoundError(workflow_id)
        return WorkflowProgress.from_checkpoint(checkpoint)

    def is_running(self, workflow_id: str) -> bool:
        task = self._tasks.get(workflow_id)
        return task is not None and not task.done()

    @property
    def pending_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def _lock_for(self, workflow_id: str) -> asyncio.Lock:
        return self._locks.setdefault(workflow_id, asyncio.Lock())

    def _submit(self, workflow_id: str) -> asyncio.Task[WorkflowCheckpoint]:
        running = self._tasks.get(workflow_id)
        if running is not None and not running.done():
            return running
        task = asyncio.create_task(self._run(workflow_id), name=f"workflow:{workflow_id}")
        self._tasks[workflow_id] = task
        task.add_done_callback(self._on_task_done)
        return task

    async def _run(self, workflow_id: str) -> WorkflowCheckpoint:
        async with self._semaphore:
            return await self._engine.run(workflow_id)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        if not task.cancelled():
            exc = task.exception()
            if exc:
                logger.error(
                    "Workflow task %s failed: %s",
                    task.get_name(),
                    exc,
                    exc_info=exc,
                )

    async def shutdown(self, timeout: float | None = None) -> int:
        """
        Wait for running workflows, cancelling those still running after ``timeout``.

        Cancelled workflows keep their last checkpoint and can be resumed.

        Returns:
            Number of tasks that were waited for
        """
        pending = [task for task in self._tasks.values() if not task.done()]
        if not pending:
            self._tasks.clear()
            return 0

        _, remaining = await asyncio.wait(pending, timeout=timeout)
        if remaining:
            logger.warning(
                "%d workflow(s) did not finish within timeout, cancelling",
                len(remaining),
                extra={"remaining_tasks": len(remaining), "timeout": timeout},
            )
            for task in remaining:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._tasks.clear()
        self._locks.clear()
        return len(pending)


__all__ = ["WorkflowRunner"]
