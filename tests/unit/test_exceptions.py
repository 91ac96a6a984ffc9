"""
Unit tests for exceptions module.

Tests the exception hierarchy, attributes and error messages.
"""

from uuid import uuid4

import pytest

from orderflow.exceptions import (
    ActivityDeclinedError,
    ActivityError,
    ActivityTransientError,
    CompensationFailedError,
    ConcurrencyConflictError,
    CorruptCheckpointError,
    InvalidOrderError,
    InvalidTransitionError,
    OrderflowError,
    OrderNotFoundError,
    RequestInProgressError,
    WorkflowConflictError,
    WorkflowNotFoundError,
)


class TestOrderflowError:
    """Tests for the base OrderflowError."""

    def test_base_exception(self):
        """Test that OrderflowError can be raised with message."""
        with pytest.raises(OrderflowError) as exc_info:
            raise OrderflowError("Test error")
        assert str(exc_info.value) == "Test error"

    @pytest.mark.parametrize(
        "exc_type",
        [
            InvalidOrderError,
            InvalidTransitionError,
            ConcurrencyConflictError,
            OrderNotFoundError,
            ActivityError,
            RequestInProgressError,
            WorkflowNotFoundError,
            WorkflowConflictError,
            CorruptCheckpointError,
            CompensationFailedError,
        ],
    )
    def test_hierarchy(self, exc_type):
        """Every library error can be caught as OrderflowError."""
        assert issubclass(exc_type, OrderflowError)


class TestInvalidTransitionError:
    """Tests for InvalidTransitionError."""

    def test_attributes(self):
        error = InvalidTransitionError("transition_not_allowed", "Completed", "Paid")

        assert error.rule == "transition_not_allowed"
        assert error.current == "Completed"
        assert error.target == "Paid"
        assert error.detail is None
        assert str(error) == "Invalid transition Completed -> Paid: transition_not_allowed"

    def test_detail_in_message(self):
        error = InvalidTransitionError(
            "insufficient_payment", "Pending", "Paid", detail="captured 60.00 of 100.00"
        )

        assert str(error).endswith("(captured 60.00 of 100.00)")


class TestConcurrencyConflictError:
    """Tests for ConcurrencyConflictError."""

    def test_attributes_and_message(self):
        order_id = uuid4()
        error = ConcurrencyConflictError(order_id, 3, 5)

        assert error.order_id == order_id
        assert error.expected_version == 3
        assert error.actual_version == 5
        assert str(order_id) in str(error)
        assert "expected version 3" in str(error)
        assert "current version is 5" in str(error)


class TestOrderNotFoundError:
    def test_message(self):
        order_id = uuid4()
        error = OrderNotFoundError(order_id)

        assert error.order_id == order_id
        assert str(error) == f"Order not found: {order_id}"


class TestActivityErrors:
    """Tests for activity error types."""

    def test_declined(self):
        error = ActivityDeclinedError("payment.capture", "card declined")

        assert isinstance(error, ActivityError)
        assert error.activity == "payment.capture"
        assert error.reason == "card declined"
        assert str(error) == "Activity payment.capture failed: card declined"

    def test_declined_and_transient_are_distinct(self):
        assert not issubclass(ActivityTransientError, ActivityDeclinedError)
        assert not issubclass(ActivityDeclinedError, ActivityTransientError)


class TestWorkflowErrors:
    """Tests for workflow error types."""

    def test_request_in_progress(self):
        error = RequestInProgressError("order-1:transition:ref-1")

        assert error.scope == "order-1:transition:ref-1"
        assert "still in progress" in str(error)

    def test_workflow_not_found(self):
        error = WorkflowNotFoundError("order-abc")

        assert error.workflow_id == "order-abc"
        assert str(error) == "Workflow not found: order-abc"

    def test_workflow_conflict(self):
        error = WorkflowConflictError("order-abc", 4)

        assert error.expected_version == 4
        assert "since version 4" in str(error)

    def test_corrupt_checkpoint(self):
        error = CorruptCheckpointError("order-abc", "invalid JSON")

        assert error.workflow_id == "order-abc"
        assert str(error) == "Corrupt checkpoint for workflow order-abc: invalid JSON"

    def test_compensation_failed(self):
        error = CompensationFailedError("order-abc", "process_payment", "gave up")

        assert error.step == "process_payment"
        assert error.reason == "gave up"
        assert "process_payment" in str(error)
