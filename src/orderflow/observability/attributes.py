"""
Standard span attributes for orderflow.

Attribute constants used across repositories, the idempotency guard and
the workflow engine so spans are named and labelled consistently. Database
and HTTP attributes follow OpenTelemetry semantic conventions.
"""

# =============================================================================
# Order Attributes
# =============================================================================

ATTR_ORDER_ID = "orderflow.order.id"
"""Unique identifier for the order (UUID string)."""

ATTR_ORDER_STATE = "orderflow.order.state"
"""Current state of the order (e.g., 'Pending')."""

ATTR_TARGET_STATE = "orderflow.order.target_state"
"""State requested by a transition command."""

# =============================================================================
# Version Attributes
# =============================================================================

ATTR_VERSION = "orderflow.version"
"""Current version of an order (integer)."""

ATTR_EXPECTED_VERSION = "orderflow.expected_version"
"""Expected version for optimistic concurrency (integer)."""

# =============================================================================
# Command / Idempotency Attributes
# =============================================================================

ATTR_COMMAND = "orderflow.command"
"""Command type name (e.g., 'transition', 'add_item')."""

ATTR_REFERENCE_ID = "orderflow.reference_id"
"""Caller-supplied reference id used for deduplication."""

ATTR_DUPLICATE = "orderflow.duplicate"
"""Whether the command was answered from a stored outcome (bool)."""

# =============================================================================
# Workflow Attributes
# =============================================================================

ATTR_WORKFLOW_ID = "orderflow.workflow.id"
"""Workflow identifier derived from the order id."""

ATTR_WORKFLOW_STEP = "orderflow.workflow.step"
"""Name of the workflow step being executed."""

ATTR_WORKFLOW_STATUS = "orderflow.workflow.status"
"""Workflow status (running, compensating, completed, ...)."""

ATTR_ACTIVITY = "orderflow.activity"
"""Activity operation name (e.g., 'stock.reserve')."""

ATTR_RETRY_COUNT = "orderflow.retry.count"
"""Number of retry attempts made (integer)."""

ATTR_ERROR_TYPE = "orderflow.error.type"
"""Type/class name of an error that occurred."""

# =============================================================================
# Database Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'postgresql', 'sqlite')."""

ATTR_DB_NAME = "db.name"
"""Database name."""

# =============================================================================
# HTTP Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_HTTP_METHOD = "http.request.method"
"""HTTP request method."""

ATTR_HTTP_URL = "url.full"
"""Full request URL."""

ATTR_HTTP_STATUS_CODE = "http.response.status_code"
"""HTTP response status code (integer)."""

__all__ = [
    "ATTR_ORDER_ID",
    "ATTR_ORDER_STATE",
    "ATTR_TARGET_STATE",
    "ATTR_VERSION",
    "ATTR_EXPECTED_VERSION",
    "ATTR_COMMAND",
    "ATTR_REFERENCE_ID",
    "ATTR_DUPLICATE",
    "ATTR_WORKFLOW_ID",
    "ATTR_WORKFLOW_STEP",
    "ATTR_WORKFLOW_STATUS",
    "ATTR_ACTIVITY",
    "ATTR_RETRY_COUNT",
    "ATTR_ERROR_TYPE",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_NAME",
    "ATTR_HTTP_METHOD",
    "ATTR_HTTP_URL",
    "ATTR_HTTP_STATUS_CODE",
]
