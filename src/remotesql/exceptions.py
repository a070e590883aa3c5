"""
Error codes and exceptions for the remotesql package.

Public operations never raise across their boundary; failures are reported
as result objects carrying an ``ErrorCode``. The exception classes here are
reserved for programmer and configuration errors.

Error Classification:
    Each ErrorCode maps to an ErrorClassification describing whether the
    condition is retryable and what an operator should do about it. The
    executor, prober and bootstrapper consult ``is_retryable`` when deciding
    whether to spend another attempt.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """
    Error codes reported in ``ExecutionError.code``.

    Values are the wire strings used in result payloads and audit details.
    """

    EMPTY_SQL = "EMPTY_SQL"
    """SQL text was empty or whitespace-only (local validation)."""

    AUTH_ERROR = "AUTH_ERROR"
    """The backend answered 401/403. Terminal, never retried."""

    NETWORK_ERROR = "NETWORK_ERROR"
    """Transport failure, status 0 or 5xx."""

    CORS_ERROR = "CORS_ERROR"
    """Preflight request to an edge function failed."""

    PARSE_ERROR = "PARSE_ERROR"
    """Response body could not be decoded."""

    EDGE_FUNCTION_ERROR = "EDGE_FUNCTION_ERROR"
    """Edge function invocation raised or returned a generic failure."""

    SQL_ERROR = "SQL_ERROR"
    """Application-level error surfaced verbatim from the backend."""

    FUNCTION_MISSING = "FUNCTION_MISSING"
    """The server-side exec_sql function does not exist."""

    TABLE_MISSING = "TABLE_MISSING"
    """The migration_logs audit table does not exist."""

    CONNECTION_ERROR = "CONNECTION_ERROR"
    """Every connection probe failed for mixed reasons."""

    BOOTSTRAP_FAILED = "BOOTSTRAP_FAILED"
    """Every strategy for installing exec_sql failed."""

    UNKNOWN_MIGRATION = "UNKNOWN_MIGRATION"
    """apply_migration was called with a name outside the catalog."""

    FALLBACK_UNAVAILABLE = "FALLBACK_UNAVAILABLE"
    """No direct-execution collaborator is configured."""

    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
    """Top-level catch-all. Terminal."""


class ErrorRecoverability(Enum):
    """
    How the system should respond to an error code.

    Attributes:
        TRANSIENT: Retry within the configured budget.
        REPAIRABLE: Run self-repair (bootstrap) and then retry.
        FATAL: Stop immediately and report.
    """

    TRANSIENT = "transient"
    REPAIRABLE = "repairable"
    FATAL = "fatal"


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata describing how an error code is handled.

    Attributes:
        code: The error code being classified.
        recoverability: Retry / repair / stop decision.
        category: Grouping used for logging and metrics labels.
        suggested_action: Human-readable operator guidance.
    """

    code: ErrorCode
    recoverability: ErrorRecoverability
    category: str
    suggested_action: str

    @property
    def is_retryable(self) -> bool:
        """True when another attempt may succeed."""
        return self.recoverability is not ErrorRecoverability.FATAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "recoverability": self.recoverability.value,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }


_CLASSIFICATIONS: dict[ErrorCode, ErrorClassification] = {
    ErrorCode.EMPTY_SQL: ErrorClassification(
        ErrorCode.EMPTY_SQL,
        ErrorRecoverability.FATAL,
        "validation",
        "Provide a non-empty SQL statement.",
    ),
    ErrorCode.AUTH_ERROR: ErrorClassification(
        ErrorCode.AUTH_ERROR,
        ErrorRecoverability.FATAL,
        "auth",
        "Authentication failed. Please log in again.",
    ),
    ErrorCode.NETWORK_ERROR: ErrorClassification(
        ErrorCode.NETWORK_ERROR,
        ErrorRecoverability.TRANSIENT,
        "connectivity",
        "Check network connectivity and backend availability.",
    ),
    ErrorCode.CORS_ERROR: ErrorClassification(
        ErrorCode.CORS_ERROR,
        ErrorRecoverability.TRANSIENT,
        "connectivity",
        "Check the edge function CORS headers and deployment.",
    ),
    ErrorCode.PARSE_ERROR: ErrorClassification(
        ErrorCode.PARSE_ERROR,
        ErrorRecoverability.TRANSIENT,
        "protocol",
        "The backend returned a malformed body; retry or inspect the function logs.",
    ),
    ErrorCode.EDGE_FUNCTION_ERROR: ErrorClassification(
        ErrorCode.EDGE_FUNCTION_ERROR,
        ErrorRecoverability.TRANSIENT,
        "edge_function",
        "Inspect the edge function logs.",
    ),
    ErrorCode.SQL_ERROR: ErrorClassification(
        ErrorCode.SQL_ERROR,
        ErrorRecoverability.TRANSIENT,
        "sql",
        "Review the SQL statement and the reported database error.",
    ),
    ErrorCode.FUNCTION_MISSING: ErrorClassification(
        ErrorCode.FUNCTION_MISSING,
        ErrorRecoverability.REPAIRABLE,
        "schema",
        "Run setup_exec_sql_function to install exec_sql.",
    ),
    ErrorCode.TABLE_MISSING: ErrorClassification(
        ErrorCode.TABLE_MISSING,
        ErrorRecoverability.REPAIRABLE,
        "schema",
        "Run create_migration_logs_table to install the audit table.",
    ),
    ErrorCode.CONNECTION_ERROR: ErrorClassification(
        ErrorCode.CONNECTION_ERROR,
        ErrorRecoverability.TRANSIENT,
        "connectivity",
        "Every connection probe failed; see debug_info for per-probe errors.",
    ),
    ErrorCode.BOOTSTRAP_FAILED: ErrorClassification(
        ErrorCode.BOOTSTRAP_FAILED,
        ErrorRecoverability.FATAL,
        "schema",
        "Install exec_sql manually with the bundled exec_sql_function template.",
    ),
    ErrorCode.UNKNOWN_MIGRATION: ErrorClassification(
        ErrorCode.UNKNOWN_MIGRATION,
        ErrorRecoverability.FATAL,
        "validation",
        "Use one of the names returned by list_migrations().",
    ),
    ErrorCode.FALLBACK_UNAVAILABLE: ErrorClassification(
        ErrorCode.FALLBACK_UNAVAILABLE,
        ErrorRecoverability.FATAL,
        "configuration",
        "Configure a direct executor or a database_url.",
    ),
    ErrorCode.UNEXPECTED_ERROR: ErrorClassification(
        ErrorCode.UNEXPECTED_ERROR,
        ErrorRecoverability.FATAL,
        "unknown",
        "An unexpected error occurred. Review logs and debug_info.",
    ),
}


def classify(code: ErrorCode) -> ErrorClassification:
    """Return the classification registered for an error code."""
    return _CLASSIFICATIONS[code]


def is_retryable(code: ErrorCode) -> bool:
    """Check whether an error code allows another attempt."""
    return classify(code).is_retryable


class RemoteSqlError(Exception):
    """Base exception for the remotesql library."""

    pass


class ConfigurationError(RemoteSqlError):
    """Raised when client configuration is missing or invalid."""

    def __init__(self, setting: str, message: str) -> None:
        self.setting = setting
        super().__init__(f"Invalid configuration for {setting}: {message}")


class MigrationNotFoundError(RemoteSqlError):
    """Raised when a migration name is not registered in the catalog."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        available_str = ", ".join(available) if available else "none"
        super().__init__(f"Unknown migration: {name}. Available migrations: {available_str}")


class LogStoreError(RemoteSqlError):
    """
    Raised by a MigrationLogStore when the audit store rejects an operation.

    The recorder converts these into log warnings or failed results; they
    never escape a public operation.
    """

    def __init__(
        self,
        message: str,
        *,
        missing_table: bool = False,
        status: int | None = None,
    ) -> None:
        self.missing_table = missing_table
        self.status = status
        super().__init__(message)


class TemplateNotFoundError(RemoteSqlError):
    """Raised when a bundled SQL template cannot be found."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(f"SQL template '{name}' not found. Available templates: {available}")


__all__ = [
    "ErrorCode",
    "ErrorRecoverability",
    "ErrorClassification",
    "classify",
    "is_retryable",
    "RemoteSqlError",
    "ConfigurationError",
    "MigrationNotFoundError",
    "LogStoreError",
    "TemplateNotFoundError",
]
