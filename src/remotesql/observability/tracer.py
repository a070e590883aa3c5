"""
Tracer protocol and implementations for remotesql components.

Every component takes an optional ``tracer`` argument and opens spans through
it rather than importing OpenTelemetry. Three implementations ship:

- NullTracer: tracing disabled, spans are ``None``
- OpenTelemetryTracer: real spans (requires ``remotesql-py[telemetry]``)
- MockTracer: records spans so tests can assert on names and attributes

Span names follow ``remotesql.<component>.<operation>``; the backend client
opens CLIENT spans, everything else is INTERNAL.

Example:
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("remotesql.prober.check_connection") as span:
    ...     if span is not None:
    ...         span.set_attribute("remotesql.probe.name", "health")
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

from remotesql.observability.tracing import should_trace


class SpanKind(Enum):
    """
    Span kinds used by remotesql.

    Values:
        INTERNAL: Orchestration inside the library (retry loops, bootstrap)
        CLIENT: Outgoing requests to the backend
    """

    INTERNAL = "internal"
    CLIENT = "client"


@runtime_checkable
class Tracer(Protocol):
    """Anything that can open a span around a block of work."""

    @property
    def enabled(self) -> bool:
        """True if spans opened through this tracer are recorded."""
        ...

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> AbstractContextManager[Any]:
        """
        Open a span.

        Args:
            name: Span name (e.g., "remotesql.executor.execute_sql")
            attributes: Initial span attributes
            kind: INTERNAL or CLIENT

        Returns:
            Context manager yielding an object with ``set_attribute`` or None
        """
        ...


class NullTracer:
    """Tracer used when tracing is disabled; every span is ``None``."""

    @property
    def enabled(self) -> bool:
        return False

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> Generator[None, None, None]:
        yield None


class OpenTelemetryTracer:
    """
    Tracer backed by ``opentelemetry.trace``.

    Args:
        tracer_name: Instrumentation scope name (typically __name__)

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        from opentelemetry import trace

        self._tracer = trace.get_tracer(tracer_name)

    @property
    def enabled(self) -> bool:
        return True

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> AbstractContextManager[Span]:
        from opentelemetry.trace import SpanKind as OtelSpanKind

        otel_kind = OtelSpanKind.CLIENT if kind is SpanKind.CLIENT else OtelSpanKind.INTERNAL
        return self._tracer.start_as_current_span(
            name,
            kind=otel_kind,
            attributes=attributes or {},
        )


@dataclass
class RecordedSpan:
    """A span captured by MockTracer."""

    name: str
    kind: SpanKind = SpanKind.INTERNAL
    attributes: dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value


class MockTracer:
    """
    Tracer for tests. Spans are recorded in opening order and yielded to the
    caller, so attributes set inside the block are captured too.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("remotesql.status.check", {"k": "v"}):
        ...     pass
        >>> tracer.span_names
        ['remotesql.status.check']
    """

    def __init__(self) -> None:
        self.spans: list[RecordedSpan] = []

    @property
    def enabled(self) -> bool:
        return True

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> Generator[RecordedSpan, None, None]:
        recorded = RecordedSpan(name, kind, dict(attributes or {}))
        self.spans.append(recorded)
        yield recorded

    @property
    def span_names(self) -> list[str]:
        return [s.name for s in self.spans]

    def find(self, name: str) -> RecordedSpan | None:
        """First recorded span called ``name``."""
        return next((s for s in self.spans if s.name == name), None)

    def attributes_for(self, name: str) -> dict[str, Any] | None:
        recorded = self.find(name)
        return recorded.attributes if recorded is not None else None

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    OpenTelemetryTracer when tracing is enabled and installed, else NullTracer.
    """
    if should_trace(enable_tracing):
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "RecordedSpan",
    "SpanKind",
    "create_tracer",
]
