"""Durable saga that drives an order through stock, payment and loyalty activities."""

from orderflow.workflow.checkpoints import (
    CheckpointStore,
    InMemoryCheckpointStore,
    PostgreSQLCheckpointStore,
    SQLiteCheckpointStore,
)
from orderflow.workflow.engine import WORKFLOW_ACTOR, OrderWorkflowEngine, StepFailedError
from orderflow.workflow.runner import WorkflowRunner
from orderflow.workflow.state import (
    COMPENSATIONS,
    FORWARD_STEPS,
    ActivityRecord,
    WorkflowCheckpoint,
    WorkflowInput,
    WorkflowProgress,
    WorkflowStatus,
    WorkflowStep,
    reference_for,
    workflow_id_for,
)

__all__ = [
    "WorkflowStatus",
    "WorkflowStep",
    "FORWARD_STEPS",
    "COMPENSATIONS",
    "WorkflowInput",
    "ActivityRecord",
    "WorkflowCheckpoint",
    "WorkflowProgress",
    "workflow_id_for",
    "reference_for",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "PostgreSQLCheckpointStore",
    "OrderWorkflowEngine",
    "StepFailedError",
    "WORKFLOW_ACTOR",
    "WorkflowRunner",
]
