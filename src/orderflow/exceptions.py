"""Library exceptions for the orderflow package."""

from uuid import UUID


class OrderflowError(Exception):
    """Base exception for orderflow library."""

    pass


class InvalidOrderError(OrderflowError):
    """Raised when a command carries invalid order data (bad items, amounts)."""

    pass


class InvalidTransitionError(OrderflowError):
    """
    Raised when a state transition violates the transition table or a guard.

    The aggregate is never mutated when this error is raised: all checks
    run before any change is applied.

    Attributes:
        rule: Identifier of the violated rule (e.g. 'insufficient_payment')
        current: State the order was in
        target: State that was requested
    """

    def __init__(self, rule: str, current: str, target: str, detail: str | None = None) -> None:
        self.rule = rule
        self.current = current
        self.target = target
        self.detail = detail
        message = f"Invalid transition {current} -> {target}: {rule}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ConcurrencyConflictError(OrderflowError):
    """Raised when a save is attempted against a stale order version."""

    def __init__(self, order_id: UUID, expected_version: int, actual_version: int) -> None:
        self.order_id = order_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrency conflict for order {order_id}: "
            f"expected version {expected_version}, but current version is {actual_version}"
        )


class OrderNotFoundError(OrderflowError):
    """Raised when an order cannot be found."""

    def __init__(self, order_id: UUID) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class ActivityError(OrderflowError):
    """Base class for failures reported by activity clients."""

    def __init__(self, activity: str, reason: str) -> None:
        self.activity = activity
        self.reason = reason
        super().__init__(f"Activity {activity} failed: {reason}")


class ActivityDeclinedError(ActivityError):
    """
    Raised when an activity reports a business-level failure.

    Declines (payment declined, stock unavailable, insufficient points)
    are not retried and trigger compensation in the workflow.
    """

    pass


class ActivityTransientError(ActivityError):
    """
    Raised for network failures and timeouts talking to an activity.

    Transient errors are retried with backoff up to a bounded number of
    attempts, then handled like a decline.
    """

    pass


class RequestInProgressError(OrderflowError):
    """Raised when a command with the same reference id is still being processed."""

    def __init__(self, scope: str) -> None:
        self.scope = scope
        super().__init__(f"Request {scope} is still in progress")


class WorkflowNotFoundError(OrderflowError):
    """Raised when a workflow checkpoint cannot be found."""

    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class WorkflowConflictError(OrderflowError):
    """Raised when a workflow checkpoint was written by another worker."""

    def __init__(self, workflow_id: str, expected_version: int) -> None:
        self.workflow_id = workflow_id
        self.expected_version = expected_version
        super().__init__(
            f"Checkpoint for workflow {workflow_id} changed since version {expected_version}"
        )


class CorruptCheckpointError(OrderflowError):
    """
    Raised when a persisted workflow checkpoint cannot be decoded.

    A corrupt checkpoint is never resumed automatically; it needs
    manual intervention.
    """

    def __init__(self, workflow_id: str, message: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Corrupt checkpoint for workflow {workflow_id}: {message}")


class CompensationFailedError(OrderflowError):
    """Raised when a compensating action exhausted its retries."""

    def __init__(self, workflow_id: str, step: str, reason: str) -> None:
        self.workflow_id = workflow_id
        self.step = step
        self.reason = reason
        super().__init__(f"Compensation {step} failed for workflow {workflow_id}: {reason}")
