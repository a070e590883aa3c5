"""
Result and trace records returned by remotesql operations.

Every public operation returns one of these records instead of raising.

Models in this module:

Traces:
    - AttemptRecord: One strategy attempt (request, status, error, timing)
    - DebugTrace: Ordered attempt list plus summary fields

Results:
    - ExecutionError: Structured error (message, code, status, details)
    - ExecutionResult: Outcome of a SQL-executing operation
    - ProbeErrorType / ProbeResult: Outcome of one connection probe
    - ConnectionCheckResult: Outcome of the whole connection check
    - SystemStatusReport / SystemStatusResult: Bootstrapped component status
    - ModuleIntegrationsColumns: Audit columns found on module_integrations
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from remotesql.exceptions import ErrorCode, is_retryable


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def new_operation_id(prefix: str = "sql-exec") -> str:
    """
    Generate a correlation id such as ``sql-exec-1718000000000-3f9a1``.

    Args:
        prefix: Leading label naming the kind of operation
    """
    millis = int(utc_now().timestamp() * 1000)
    return f"{prefix}-{millis}-{uuid4().hex[:5]}"


@dataclass
class AttemptRecord:
    """
    One attempt made by a strategy.

    Attributes:
        attempt_number: Sequential number within the trace (1-based)
        method: Strategy name (e.g. "edge-function", "direct-rpc")
        timestamp: When the attempt started
        delay_ms: Backoff delay that preceded the attempt
        status_code: HTTP status, if a response was received
        status_text: HTTP reason phrase
        error: Error message, if the attempt failed
        error_code: Error code, if the attempt failed
        duration_ms: Time spent in the attempt
    """

    attempt_number: int
    method: str
    timestamp: datetime = field(default_factory=utc_now)
    delay_ms: float = 0.0
    status_code: int | None = None
    status_text: str | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    duration_ms: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.error_code is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "method": self.method,
            "timestamp": self.timestamp.isoformat(),
            "delay_ms": self.delay_ms,
            "status_code": self.status_code,
            "status_text": self.status_text,
            "error": self.error,
            "error_code": self.error_code.value if self.error_code else None,
            "duration_ms": self.duration_ms,
        }


@dataclass
class DebugTrace:
    """
    Diagnostic trace accumulated by one operation.

    Each call owns its own trace; traces are never shared across
    concurrent operations.

    Attributes:
        operation_id: Correlation id of the operation
        started_at: When the operation started
        finished_at: When the operation returned
        attempts: Attempts in chronological order
        methods: Distinct strategy names in the order first tried
        final_method: Strategy that produced the final result
        warnings: Non-fatal problems (e.g. failed pre-flight checks)
        annotations: Extra structured diagnostics
        auth_error: True when the operation stopped on 401/403
    """

    operation_id: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    attempts: list[AttemptRecord] = field(default_factory=list)
    methods: list[str] = field(default_factory=list)
    final_method: str | None = None
    warnings: list[str] = field(default_factory=list)
    annotations: dict[str, Any] = field(default_factory=dict)
    auth_error: bool = False

    @property
    def total_attempts(self) -> int:
        return len(self.attempts)

    def record(self, method: str, **kwargs: Any) -> AttemptRecord:
        """
        Append a new attempt for ``method`` and return it for completion.

        Args:
            method: Strategy name
            **kwargs: Initial AttemptRecord fields

        Returns:
            The appended AttemptRecord
        """
        attempt = AttemptRecord(attempt_number=len(self.attempts) + 1, method=method, **kwargs)
        self.attempts.append(attempt)
        if method not in self.methods:
            self.methods.append(method)
        return attempt

    def merge(self, other: DebugTrace) -> None:
        """
        Append another trace's attempts, renumbering them to follow ours.

        Warnings and annotations are merged too; ours win on key clashes.
        """
        for attempt in other.attempts:
            attempt.attempt_number = len(self.attempts) + 1
            self.attempts.append(attempt)
            if attempt.method not in self.methods:
                self.methods.append(attempt.method)
        self.warnings.extend(other.warnings)
        for key, value in other.annotations.items():
            self.annotations.setdefault(key, value)
        self.auth_error = self.auth_error or other.auth_error

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def finish(self, final_method: str | None = None) -> DebugTrace:
        """Stamp the finish time (and final method) and return self."""
        if final_method is not None:
            self.final_method = final_method
        self.finished_at = utc_now()
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "attempts": [a.to_dict() for a in self.attempts],
            "methods": list(self.methods),
            "final_method": self.final_method,
            "total_attempts": self.total_attempts,
            "warnings": list(self.warnings),
            "annotations": dict(self.annotations),
            "auth_error": self.auth_error,
        }


@dataclass(frozen=True)
class ExecutionError:
    """
    Structured error carried by failed results.

    Attributes:
        message: Human-readable message
        code: Error code
        status: HTTP status, when the error came from a response
        details: Extra structured information
    """

    message: str
    code: ErrorCode
    status: int | None = None
    details: Any = None

    @property
    def retryable(self) -> bool:
        return is_retryable(self.code)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"message": self.message, "code": self.code.value}
        if self.status is not None:
            result["status"] = self.status
        if self.details is not None:
            result["details"] = self.details
        return result


@dataclass
class ExecutionResult:
    """
    Outcome of a SQL-executing operation.

    Use ``ExecutionResult.ok`` and ``ExecutionResult.failure`` rather than the
    constructor; they keep ``data`` and ``error`` mutually exclusive.

    Attributes:
        success: Whether the operation succeeded
        data: Result payload (success only)
        error: Structured error (failure only)
        debug_info: Diagnostic trace
    """

    success: bool
    data: Any = None
    error: ExecutionError | None = None
    debug_info: DebugTrace = field(default_factory=DebugTrace)

    @classmethod
    def ok(cls, data: Any = None, debug_info: DebugTrace | None = None) -> ExecutionResult:
        return cls(success=True, data=data, debug_info=debug_info or DebugTrace())

    @classmethod
    def failure(
        cls,
        message: str,
        code: ErrorCode,
        *,
        status: int | None = None,
        details: Any = None,
        debug_info: DebugTrace | None = None,
    ) -> ExecutionResult:
        return cls(
            success=False,
            error=ExecutionError(message=message, code=code, status=status, details=details),
            debug_info=debug_info or DebugTrace(),
        )

    @classmethod
    def from_error(cls, error: ExecutionError, debug_info: DebugTrace | None = None) -> ExecutionResult:
        return cls(success=False, error=error, debug_info=debug_info or DebugTrace())

    @property
    def error_code(self) -> ErrorCode | None:
        return self.error.code if self.error else None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "debug_info": self.debug_info.to_dict(),
        }
        if self.success:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


class ProbeErrorType(Enum):
    """
    Classification of a failed connection probe.

    Attributes:
        AUTH: 401/403, terminal for the whole connection check
        NETWORK: Status 0, status >= 500, or a transport exception
        CORS: Edge function preflight failed
        API: Any other non-2xx response
        GENERAL: Unclassified failure
    """

    AUTH = "auth"
    NETWORK = "network"
    CORS = "cors"
    API = "api"
    GENERAL = "general"


@dataclass(frozen=True)
class ProbeResult:
    """
    Outcome of a single probe attempt.

    Attributes:
        probe: Probe strategy name
        success: Whether the probe succeeded
        status: HTTP status (0 when no response was received)
        status_text: HTTP reason phrase
        error_type: Failure classification, None on success
        error: Failure message
    """

    probe: str
    success: bool
    status: int = 0
    status_text: str = ""
    error_type: ProbeErrorType | None = None
    error: str | None = None


@dataclass
class ConnectionCheckResult:
    """
    Outcome of ``ConnectionProber.check_connection``.

    Attributes:
        success: True when any probe succeeded
        error: Aggregated error when every probe failed
        debug_info: One attempt per probe call
    """

    success: bool
    error: ExecutionError | None = None
    debug_info: DebugTrace = field(default_factory=DebugTrace)

    @property
    def is_auth_error(self) -> bool:
        return self.error is not None and self.error.code is ErrorCode.AUTH_ERROR


class SystemStatus(Enum):
    """Overall state of the bootstrapped server-side components."""

    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class SystemStatusReport:
    """
    Snapshot of server-side component presence.

    ``missing_components``, ``unknown_components`` and ``status`` are derived
    from ``components``. A component whose value is None could not be
    checked; it is reported as unknown and does not make the system
    incomplete.

    Attributes:
        components: Component name -> present (None when not checkable)
        timestamp: When the snapshot was taken
        source: "remote_function" or "manual_probe"
    """

    components: dict[str, bool | None]
    timestamp: datetime = field(default_factory=utc_now)
    source: str = "remote_function"

    @property
    def missing_components(self) -> list[str]:
        return [name for name, present in self.components.items() if present is False]

    @property
    def unknown_components(self) -> list[str]:
        return [name for name, present in self.components.items() if present is None]

    @property
    def status(self) -> SystemStatus:
        return SystemStatus.INCOMPLETE if self.missing_components else SystemStatus.COMPLETE

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "components": dict(self.components),
            "missing_components": self.missing_components,
            "unknown_components": self.unknown_components,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }


@dataclass
class SystemStatusResult:
    """Outcome of ``SystemStatusChecker.check_migration_system_status``."""

    success: bool
    status: SystemStatusReport | None = None
    error: ExecutionError | None = None


@dataclass(frozen=True)
class ModuleIntegrationsColumns:
    """Which timestamp columns exist on the module_integrations table."""

    has_created_at: bool = False
    has_updated_at: bool = False


__all__ = [
    "utc_now",
    "new_operation_id",
    "AttemptRecord",
    "DebugTrace",
    "ExecutionError",
    "ExecutionResult",
    "ProbeErrorType",
    "ProbeResult",
    "ConnectionCheckResult",
    "SystemStatus",
    "SystemStatusReport",
    "SystemStatusResult",
    "ModuleIntegrationsColumns",
]
