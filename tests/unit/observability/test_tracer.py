"""
Unit tests for tracer protocol and implementations.

Tests for:
- Tracer Protocol (runtime_checkable)
- NullTracer class
- OpenTelemetryTracer class
- MockTracer class
- create_tracer() factory function
"""

from __future__ import annotations

import pytest

from orderflow.observability import (
    ATTR_ORDER_ID,
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)


class TestTracerProtocol:
    """Tests for Tracer protocol."""

    def test_null_tracer_implements_protocol(self):
        assert isinstance(NullTracer(), Tracer)

    def test_mock_tracer_implements_protocol(self):
        assert isinstance(MockTracer(), Tracer)

    @pytest.mark.skipif(not OTEL_AVAILABLE, reason="OTEL not installed")
    def test_otel_tracer_implements_protocol(self):
        assert isinstance(OpenTelemetryTracer(__name__), Tracer)

    def test_plain_object_does_not_match(self):
        assert not isinstance(object(), Tracer)


class TestNullTracer:
    """Tests for NullTracer."""

    def test_disabled(self):
        assert NullTracer().enabled is False

    def test_span_yields_none(self):
        with NullTracer().span("orderflow.repository.save", {ATTR_ORDER_ID: "x"}) as span:
            assert span is None

    def test_span_with_kind_yields_none(self):
        with NullTracer().span_with_kind("orderflow.activity", SpanKindEnum.CLIENT) as span:
            assert span is None

    def test_exceptions_propagate(self):
        with pytest.raises(RuntimeError), NullTracer().span("failing"):
            raise RuntimeError("boom")


class TestMockTracer:
    """Tests for MockTracer."""

    def test_records_spans_in_order(self):
        tracer = MockTracer()

        with tracer.span("first", {"a": 1}):
            with tracer.span_with_kind("second", SpanKindEnum.CLIENT):
                pass

        assert tracer.spans == [("first", {"a": 1}), ("second", None)]
        assert tracer.span_names == ["first", "second"]
        assert tracer.kinds == [SpanKindEnum.INTERNAL, SpanKindEnum.CLIENT]
        assert tracer.enabled

    def test_clear(self):
        tracer = MockTracer()
        with tracer.span("first"):
            pass

        tracer.clear()

        assert tracer.spans == []
        assert tracer.kinds == []


@pytest.mark.skipif(not OTEL_AVAILABLE, reason="OTEL not installed")
class TestOpenTelemetryTracer:
    """Tests for OpenTelemetryTracer against the global (no-op) provider."""

    def test_enabled(self):
        assert OpenTelemetryTracer(__name__).enabled is True

    def test_span_context(self):
        tracer = OpenTelemetryTracer(__name__)

        with tracer.span("orderflow.test", {ATTR_ORDER_ID: "abc"}) as span:
            assert span is not None

    def test_span_with_kind(self):
        tracer = OpenTelemetryTracer(__name__)

        with tracer.span_with_kind("orderflow.activity.test", SpanKindEnum.CLIENT) as span:
            assert span is not None


class TestCreateTracer:
    """Tests for the create_tracer factory."""

    def test_disabled_gives_null_tracer(self):
        assert isinstance(create_tracer(__name__, enable_tracing=False), NullTracer)

    def test_enabled_follows_otel_availability(self):
        tracer = create_tracer(__name__, enable_tracing=True)

        if OTEL_AVAILABLE:
            assert isinstance(tracer, OpenTelemetryTracer)
        else:
            assert isinstance(tracer, NullTracer)

