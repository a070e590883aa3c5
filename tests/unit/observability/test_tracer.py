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

import contextlib
from typing import Any

import pytest

from remotesql.observability import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    RecordedSpan,
    SpanKind,
    Tracer,
    create_tracer,
)


class TestTracerProtocol:
    def test_null_tracer_implements_protocol(self):
        assert isinstance(NullTracer(), Tracer)

    def test_mock_tracer_implements_protocol(self):
        assert isinstance(MockTracer(), Tracer)

    @pytest.mark.skipif(not OTEL_AVAILABLE, reason="OTEL not installed")
    def test_otel_tracer_implements_protocol(self):
        assert isinstance(OpenTelemetryTracer(__name__), Tracer)

    def test_custom_implementation_matches_protocol(self):
        class LoggingTracer:
            @property
            def enabled(self) -> bool:
                return False

            def span(
                self,
                name: str,
                attributes: dict[str, Any] | None = None,
                kind: SpanKind = SpanKind.INTERNAL,
            ):
                return contextlib.nullcontext()

        assert isinstance(LoggingTracer(), Tracer)


class TestNullTracer:
    def test_span_yields_none(self):
        with NullTracer().span("remotesql.test", {"a": 1}, kind=SpanKind.CLIENT) as span:
            assert span is None

    def test_is_disabled(self):
        assert NullTracer().enabled is False


class TestMockTracer:
    def test_records_spans_in_order(self):
        tracer = MockTracer()
        with tracer.span("first", {"k": "v"}):
            with tracer.span("second"):
                pass

        assert tracer.span_names == ["first", "second"]
        assert tracer.attributes_for("first") == {"k": "v"}
        assert tracer.attributes_for("missing") is None

    def test_yields_recording_span(self):
        tracer = MockTracer()
        with tracer.span("remotesql.executor.execute_sql", {"a": 1}) as span:
            span.set_attribute("remotesql.sql.method", "direct-rpc")

        assert isinstance(span, RecordedSpan)
        assert tracer.attributes_for("remotesql.executor.execute_sql") == {
            "a": 1,
            "remotesql.sql.method": "direct-rpc",
        }

    def test_does_not_alias_caller_attributes(self):
        tracer = MockTracer()
        attributes = {"a": 1}
        with tracer.span("x", attributes) as span:
            span.set_attribute("b", 2)

        assert attributes == {"a": 1}

    def test_records_span_kind(self):
        tracer = MockTracer()
        with tracer.span("remotesql.client.post", kind=SpanKind.CLIENT):
            pass
        with tracer.span("remotesql.prober.check_connection"):
            pass

        assert tracer.find("remotesql.client.post").kind is SpanKind.CLIENT
        assert tracer.find("remotesql.prober.check_connection").kind is SpanKind.INTERNAL
        assert tracer.find("missing") is None

    def test_clear(self):
        tracer = MockTracer()
        with tracer.span("x"):
            pass
        tracer.clear()

        assert tracer.spans == []

    def test_is_enabled(self):
        assert MockTracer().enabled is True


class TestCreateTracer:
    def test_disabled_returns_null_tracer(self):
        assert isinstance(create_tracer(__name__, enable_tracing=False), NullTracer)

    @pytest.mark.skipif(not OTEL_AVAILABLE, reason="OTEL not installed")
    def test_enabled_returns_otel_tracer(self):
        assert isinstance(create_tracer(__name__, enable_tracing=True), OpenTelemetryTracer)

    @pytest.mark.skipif(not OTEL_AVAILABLE, reason="OTEL not installed")
    def test_otel_span_is_usable(self):
        tracer = OpenTelemetryTracer(__name__)
        with tracer.span("remotesql.test", {"a": 1}, kind=SpanKind.CLIENT) as span:
            assert span is not None
            span.set_attribute("b", 2)
