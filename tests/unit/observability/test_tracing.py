"""
Unit tests for OpenTelemetry availability detection.
"""

from unittest.mock import patch

from remotesql.observability import tracing
from remotesql.observability.tracer import NullTracer, create_tracer
from remotesql.observability.tracing import OTEL_AVAILABLE, should_trace


class TestShouldTrace:
    def test_disabled_component_never_traces(self):
        assert should_trace(False) is False

    def test_enabled_component_follows_availability(self):
        assert should_trace(True) is OTEL_AVAILABLE

    def test_unavailable_otel_disables_tracing(self):
        with patch.object(tracing, "OTEL_AVAILABLE", False):
            assert tracing.should_trace(True) is False

    def test_unavailable_otel_yields_null_tracer(self):
        with patch.object(tracing, "OTEL_AVAILABLE", False):
            assert isinstance(create_tracer(__name__, enable_tracing=True), NullTracer)
