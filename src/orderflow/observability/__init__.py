"""
Observability utilities for orderflow.

Tracing helpers and standard attribute definitions shared by every
component. OpenTelemetry is optional; without it every component falls
back to a NullTracer.

Example:
    >>> from orderflow.observability import create_tracer
    >>>
    >>> class MyStore:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from orderflow.observability.attributes import (
    ATTR_ACTIVITY,
    ATTR_COMMAND,
    ATTR_DB_NAME,
    ATTR_DB_SYSTEM,
    ATTR_DUPLICATE,
    ATTR_ERROR_TYPE,
    ATTR_EXPECTED_VERSION,
    ATTR_HTTP_METHOD,
    ATTR_HTTP_STATUS_CODE,
    ATTR_HTTP_URL,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATE,
    ATTR_REFERENCE_ID,
    ATTR_RETRY_COUNT,
    ATTR_TARGET_STATE,
    ATTR_VERSION,
    ATTR_WORKFLOW_ID,
    ATTR_WORKFLOW_STATUS,
    ATTR_WORKFLOW_STEP,
)
from orderflow.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from orderflow.observability.tracing import OTEL_AVAILABLE

__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
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
