"""
Tracers handed to orderflow components.

Every component takes an optional ``tracer`` and otherwise builds one with
``create_tracer(__name__, enable_tracing)``. Spans are opened with
``with self._tracer.span(name, attributes):`` whatever the implementation:

- ``OpenTelemetryTracer`` when the telemetry extra is installed
- ``NullTracer`` when tracing is off or OpenTelemetry is missing
- ``MockTracer`` in tests, to assert on span names and attributes
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

from orderflow.observability.tracing import OTEL_AVAILABLE


class SpanKindEnum(Enum):
    """
    Span kinds used by orderflow.

    Calls to stock, payment and loyalty services are CLIENT spans; everything
    that happens inside the process is INTERNAL.
    """

    INTERNAL = "internal"
    CLIENT = "client"


@runtime_checkable
class Tracer(Protocol):
    """What components need from a tracer."""

    @property
    def enabled(self) -> bool: ...

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]: ...

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]: ...


class NullTracer:
    """Tracer that opens no spans."""

    enabled = False

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[None]:
        return self.span_with_kind(name, SpanKindEnum.INTERNAL, attributes)

    @contextlib.contextmanager
    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[None]:
        yield None


class OpenTelemetryTracer:
    """
    Tracer backed by ``opentelemetry.trace.get_tracer(tracer_name)``.

    Spans go to whatever provider the application configured; with none
    configured, OpenTelemetry hands out non-recording spans.

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    enabled = True

    def __init__(self, tracer_name: str) -> None:
        from opentelemetry import trace

        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self.span_with_kind(name, SpanKindEnum.INTERNAL, attributes)

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        from opentelemetry.trace import SpanKind

        otel_kind = SpanKind.CLIENT if kind is SpanKindEnum.CLIENT else SpanKind.INTERNAL
        return self._tracer.start_as_current_span(
            name, kind=otel_kind, attributes=attributes or {}
        )


class MockTracer:
    """
    Records ``(name, attributes)`` for every span opened.

    Example:
        >>> tracer = MockTracer()
        >>> repository = InMemoryOrderRepository(tracer=tracer)
        >>> await repository.save(aggregate)
        >>> tracer.span_names
        ['orderflow.repository.save']
    """

    enabled = True

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []
        self.kinds: list[SpanKindEnum] = []

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()
        self.kinds.clear()

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[None]:
        return self.span_with_kind(name, SpanKindEnum.INTERNAL, attributes)

    @contextlib.contextmanager
    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[None]:
        self.spans.append((name, attributes))
        self.kinds.append(kind)
        yield None


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """OpenTelemetryTracer when tracing is wanted and available, else NullTracer."""
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
]
