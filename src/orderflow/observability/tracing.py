"""
OpenTelemetry availability for orderflow.

OpenTelemetry comes with the ``telemetry`` extra. This is the only module
that tries to import it; everything else checks ``OTEL_AVAILABLE``.
"""

try:
    import opentelemetry.trace  # noqa: F401

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False


__all__ = ["OTEL_AVAILABLE"]
