"""
Standard span attributes for remotesql.

Attribute constants used across remotesql components for consistent span
naming. Database and HTTP attributes follow OpenTelemetry semantic
conventions.

Example:
    >>> from remotesql.observability.attributes import ATTR_OPERATION_ID
    >>>
    >>> with tracer.span(
    ...     "remotesql.executor.execute_sql",
    ...     {ATTR_OPERATION_ID: operation_id},
    ... ):
    ...     pass
"""

# =============================================================================
# Operation Attributes
# =============================================================================

ATTR_OPERATION_ID = "remotesql.operation.id"
"""Caller-visible correlation id of the operation."""

ATTR_OPERATION_TYPE = "remotesql.operation.type"
"""Audit operation type (e.g. 'custom_sql', 'setup_exec_sql')."""

ATTR_SQL_LENGTH = "remotesql.sql.length"
"""Length of the SQL text in characters (integer)."""

ATTR_SQL_METHOD = "remotesql.sql.method"
"""Execution strategy that produced the result."""

ATTR_MIGRATION_NAME = "remotesql.migration.name"
"""Catalog name of the migration being applied."""

ATTR_PROBE_NAME = "remotesql.probe.name"
"""Connection probe strategy name."""

# =============================================================================
# Error/Retry Attributes
# =============================================================================

ATTR_RETRY_COUNT = "remotesql.retry.count"
"""Retry budget of the operation (integer)."""

ATTR_ERROR_TYPE = "error.type"
"""Error code or exception type of a failed operation."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (always 'postgresql')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g. 'INSERT', 'SELECT', 'RPC')."""

ATTR_DB_TABLE = "db.sql.table"
"""Table the operation targets."""

# =============================================================================
# HTTP Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_HTTP_METHOD = "http.request.method"
"""HTTP request method."""

ATTR_HTTP_STATUS_CODE = "http.response.status_code"
"""HTTP response status code (integer)."""

ATTR_URL_PATH = "url.path"
"""Request path relative to the backend URL."""


__all__ = [
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
