"""
Observability utilities for remotesql.

Tracing is optional: install ``remotesql-py[telemetry]`` to get real
OpenTelemetry spans. Without it every component falls back to NullTracer.

Example:
    >>> from remotesql.observability import create_tracer, MockTracer
    >>>
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> test_tracer = MockTracer()
"""

from remotesql.observability.attributes import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    ATTR_ERROR_TYPE,
    ATTR_HTTP_METHOD,
    ATTR_HTTP_STATUS_CODE,
    ATTR_MIGRATION_NAME,
    ATTR_OPERATION_ID,
    ATTR_OPERATION_TYPE,
    ATTR_PROBE_NAME,
    ATTR_RETRY_COUNT,
    ATTR_SQL_LENGTH,
    ATTR_SQL_METHOD,
    ATTR_URL_PATH,
)
from remotesql.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    RecordedSpan,
    SpanKind,
    Tracer,
    create_tracer,
)
from remotesql.observability.tracing import OTEL_AVAILABLE, should_trace

__all__ = [
    # Tracing
    "OTEL_AVAILABLE",
    "should_trace",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "RecordedSpan",
    "SpanKind",
    "create_tracer",
    # Attributes
    "ATTR_OPERATION_ID",
    "ATTR_OPERATION_TYPE",
    "ATTR_SQL_LENGTH",
    "ATTR_SQL_METHOD",
    "ATTR_MIGRATION_NAME",
    "ATTR_PROBE_NAME",
    "ATTR_RETRY_COUNT",
    "ATTR_ERROR_TYPE",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_DB_TABLE",
    "ATTR_HTTP_METHOD",
    "ATTR_HTTP_STATUS_CODE",
    "ATTR_URL_PATH",
]
