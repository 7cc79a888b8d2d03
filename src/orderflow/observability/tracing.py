"""
OpenTelemetry availability detection.

OpenTelemetry is an optional extra (``pip install orderflow[telemetry]``).
Everything else in the package goes through ``orderflow.observability.tracer``
and never imports OpenTelemetry directly.
"""

from __future__ import annotations

try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]


def should_trace(enable_tracing: bool) -> bool:
    """True when tracing is requested and OpenTelemetry is installed."""
    return enable_tracing and OTEL_AVAILABLE
