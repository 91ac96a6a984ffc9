"""
Workflow state.

The orchestration workflow is an explicit persisted state machine: the
checkpoint records which forward step runs next, which steps succeeded,
what was compensated and every activity outcome. The engine saves it
after every attempt and every step, so a restarted process resumes from
the last recorded position instead of starting over.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from orderflow.domain.models import LogResult, PaymentMethod, utc_now


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    COMPENSATING = "compensating"
    COMPLETED = "completed"
    COMPENSATED = "compensated"
    MANUAL_REVIEW = "manual_review"

    @property
    def is_active(self) -> bool:
        """True while the engine still has work to do."""
        return self in (WorkflowStatus.RUNNING, WorkflowStatus.COMPENSATING)


class WorkflowStep(str, Enum):
    START = "start"
    RESERVE_STOCK = "reserve_stock"
    PROCESS_PAYMENT = "process_payment"
    BURN_LOYALTY = "burn_loyalty"
    EARN_LOYALTY = "earn_loyalty"
    MARK_PAID = "mark_paid"
    CONFIRM_STOCK = "confirm_stock"
    MARK_COMPLETED = "mark_completed"


FORWARD_STEPS: tuple[WorkflowStep, ...] = (
    WorkflowStep.START,
    WorkflowStep.RESERVE_STOCK,
    WorkflowStep.PROCESS_PAYMENT,
    WorkflowStep.BURN_LOYALTY,
    WorkflowStep.EARN_LOYALTY,
    WorkflowStep.MARK_PAID,
    WorkflowStep.CONFIRM_STOCK,
    WorkflowStep.MARK_COMPLETED,
)

# Forward step -> name of the action that undoes it
COMPENSATIONS: dict[WorkflowStep, str] = {
    WorkflowStep.RESERVE_STOCK: "release_stock",
    WorkflowStep.PROCESS_PAYMENT: "refund_payment",
    WorkflowStep.BURN_LOYALTY: "reverse_burn",
    WorkflowStep.EARN_LOYALTY: "reverse_earn",
}


def workflow_id_for(order_id: UUID) -> str:
    """Stable workflow identifier for an order."""
    return f"order-{order_id}"


def reference_for(
    workflow_id: str,
    step: WorkflowStep | str,
    *,
    run: int = 1,
    compensate: bool = False,
) -> str:
    """
    Activity reference id for one step of one run.

    The first run uses ``"{workflow_id}:{step}"``. A workflow restarted
    after compensation gets a run number so its calls are not mistaken
    for replays of the previous run.
    """
    step_name = step.value if isinstance(step, WorkflowStep) else step
    prefix = workflow_id if run == 1 else f"{workflow_id}:r{run}"
    reference = f"{prefix}:{step_name}"
    if compensate:
        reference = f"{reference}:compensate"
    return reference


class WorkflowInput(BaseModel):
    """Parameters a workflow was started with."""

    model_config = ConfigDict(frozen=True)

    payment_method: PaymentMethod
    burn_points: int = Field(default=0, ge=0)


class ActivityRecord(BaseModel):
    """Outcome of one activity attempt."""

    model_config = ConfigDict(frozen=True)

    step: str
    action: str
    reference_id: str
    attempt: int = Field(..., ge=1)
    result: LogResult
    reason: str | None = None
    occurred_at: datetime = Field(default_factory=utc_now)


class WorkflowCheckpoint(BaseModel):
    """
    Durable progress of one workflow run.

    ``version`` is the optimistic concurrency token of the stored record.
    ``cancel_requested`` is set from outside through the checkpoint store
    and only ever goes from False to True.
    """

    workflow_id: str
    order_id: UUID
    input: WorkflowInput
    run: int = Field(default=1, ge=1)
    status: WorkflowStatus = WorkflowStatus.RUNNING
    step_index: int = Field(default=0, ge=0)
    completed_steps: list[WorkflowStep] = Field(default_factory=list)
    compensated_steps: list[WorkflowStep] = Field(default_factory=list)
    failed_compensations: list[WorkflowStep] = Field(default_factory=list)
    failed_step: WorkflowStep | None = None
    attempts: dict[str, int] = Field(default_factory=dict)
    last_error: str | None = None
    history: list[ActivityRecord] = Field(default_factory=list)
    cancel_requested: bool = False
    captured_amount: Decimal | None = None
    earned_points: int = 0
    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def current_step(self) -> WorkflowStep | None:
        """Forward step that runs next, or None once forward work has stopped."""
        if self.status != WorkflowStatus.RUNNING or self.step_index >= len(FORWARD_STEPS):
            return None
        return FORWARD_STEPS[self.step_index]

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def reference(self, step: WorkflowStep | str, compensate: bool = False) -> str:
        return reference_for(self.workflow_id, step, run=self.run, compensate=compensate)

    def next_attempt(self, key: str) -> int:
        """Increment and return the attempt counter for ``key``."""
        self.attempts[key] = self.attempts.get(key, 0) + 1
        return self.attempts[key]


class WorkflowProgress(BaseModel):
    """Read-only view of a workflow for queries."""

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    order_id: UUID
    status: WorkflowStatus
    current_step: WorkflowStep | None
    completed_steps: tuple[WorkflowStep, ...]
    compensated_steps: tuple[WorkflowStep, ...]
    failed_compensations: tuple[WorkflowStep, ...]
    attempts: dict[str, int]
    last_error: str | None
    cancel_requested: bool
    history: tuple[ActivityRecord, ...]
    updated_at: datetime

    @classmethod
    def from_checkpoint(cls, checkpoint: WorkflowCheckpoint) -> WorkflowProgress:
        return cls(
            workflow_id=checkpoint.workflow_id,
            order_id=checkpoint.order_id,
            status=checkpoint.status,
            current_step=checkpoint.current_step,
            completed_steps=tuple(checkpoint.completed_steps),
            compensated_steps=tuple(checkpoint.compensated_steps),
            failed_compensations=tuple(checkpoint.failed_compensations),
            attempts=dict(checkpoint.attempts),
            last_error=checkpoint.last_error,
            cancel_requested=checkpoint.cancel_requested,
            history=tuple(checkpoint.history),
            updated_at=checkpoint.updated_at,
        )


__all__ = [
    "WorkflowStatus",
    "WorkflowStep",
    "FORWARD_STEPS",
    "COMPENSATIONS",
    "workflow_id_for",
    "reference_for",
    "WorkflowInput",
    "ActivityRecord",
    "WorkflowCheckpoint",
    "WorkflowProgress",
]
