"""
Span creation for orderflow components.

Every traced component takes an optional ``tracer`` and falls back to
``create_tracer(__name__, enable_tracing)``. Work is wrapped in
``with self._tracer.span(name, attributes) as span:``; ``span`` is None
whenever tracing is off, so callers check it before setting attributes.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from orderflow.observability.tracing import should_trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span

SpanAttributes = dict[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """Anything that can open a span around a block of work."""

    def span(
        self, name: str, attributes: SpanAttributes | None = None
    ) -> AbstractContextManager[Span | None]: ...

    @property
    def enabled(self) -> bool: ...


class NullTracer:
    """Opens no spans. Used when tracing is off or OpenTelemetry is missing."""

    @contextmanager
    def span(self, name: str, attributes: SpanAttributes | None = None) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """Delegates to an OpenTelemetry tracer named after the calling module."""

    def __init__(self, tracer_name: str) -> None:
        from opentelemetry import trace

        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self, name: str, attributes: SpanAttributes | None = None
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Records the spans it is asked to open, for assertions in tests.

        tracer = MockTracer()
        manager = ReservationManager(store, tracer=tracer)
        await manager.reserve("ORD1", [("P1", 2)])
        assert "orderflow.reservations.reserve" in tracer.span_names
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, SpanAttributes | None]] = []

    @contextmanager
    def span(self, name: str, attributes: SpanAttributes | None = None) -> Iterator[None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """OpenTelemetry-backed tracer when requested and installed, else a NullTracer."""
    if should_trace(enable_tracing):
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanAttributes",
    "Tracer",
    "create_tracer",
]
