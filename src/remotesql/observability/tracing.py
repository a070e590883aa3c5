"""
OpenTelemetry availability detection for remotesql.

OpenTelemetry is an optional dependency (``pip install remotesql-py[telemetry]``).
This module is the only place that probes for it; the rest of the package
asks ``should_trace``.
"""

from __future__ import annotations

# Optional OpenTelemetry import - single source of truth
try:
    from opentelemetry import trace  # noqa: F401

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False


def should_trace(enable_tracing: bool) -> bool:
    """True if the component asked for tracing and OpenTelemetry is installed."""
    return enable_tracing and OTEL_AVAILABLE


__all__ = [
    "OTEL_AVAILABLE",
    "should_trace",
]
