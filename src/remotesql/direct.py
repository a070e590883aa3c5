"""
Direct SQL execution used when the edge function path is exhausted.

This module provides:
- DirectSqlExecutor: Protocol for fallback executors
- RpcDirectExecutor: ``rpc/exec_sql`` then ``rpc/pg_query`` over PostgREST
- DatabaseDirectExecutor: Raw SQL over a SQLAlchemy async connection
- ChainedDirectExecutor: Tries several direct executors in order

Each executor owns the DebugTrace of its own attempts. The remote executor
merges that trace into its own when it falls back.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from sqlalchemy.exc import InterfaceError, OperationalError

from remotesql._connection import DatabaseBind, execute_with_connection
from remotesql.client import BackendClient
from remotesql.exceptions import ErrorCode
from remotesql.observability import Tracer, create_tracer
from remotesql.observability.attributes import (
    ATTR_DB_SYSTEM,
    ATTR_OPERATION_ID,
    ATTR_SQL_LENGTH,
    ATTR_SQL_METHOD,
)
from remotesql.results import DebugTrace, ExecutionResult

logger = logging.getLogger(__name__)

ALL_METHODS_FAILED = "all-methods-failed"


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000.0


@runtime_checkable
class DirectSqlExecutor(Protocol):
    """
    Protocol for executors that bypass the edge function.

    Implementations never raise for backend failures; they return a failed
    ExecutionResult whose ``debug_info`` lists one attempt per method tried.
    """

    async def execute(self, sql: str, operation_id: str | None = None) -> ExecutionResult:
        """
        Execute ``sql``.

        Args:
            sql: SQL text (already validated as non-empty)
            operation_id: Correlation id for the trace

        Returns:
            ExecutionResult with ``debug_info.final_method`` set to the method
            that succeeded, or "all-methods-failed"
        """
        ...


class RpcDirectExecutor:
    """
    Executes SQL through database functions exposed by PostgREST.

    Methods, in order:
        direct-rpc: ``exec_sql(sql_text)``
        pg-query: ``pg_query(query)``

    An authentication failure stops the chain.

    Example:
        >>> executor = RpcDirectExecutor(client)
        >>> result = await executor.execute("SELECT 1", operation_id="op-1")
        >>> result.debug_info.final_method
        'direct-rpc'
    """

    def __init__(
        self,
        client: BackendClient,
        exec_function: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._client = client
        self._exec_function = exec_function or client.config.exec_function
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def execute(self, sql: str, operation_id: str | None = None) -> ExecutionResult:
        trace = DebugTrace(operation_id=operation_id)
        methods = (
            ("direct-rpc", self._exec_function, {"sql_text": sql}),
            ("pg-query", "pg_query", {"query": sql}),
        )

        last_error: tuple[str, ErrorCode, int] | None = None
        for method, function, params in methods:
            with self._tracer.span(
                "remotesql.direct.rpc",
                {
                    ATTR_OPERATION_ID: operation_id or "",
                    ATTR_SQL_METHOD: method,
                    ATTR_SQL_LENGTH: len(sql),
                },
            ):
                started = time.monotonic()
                response = await self._client.rpc(function, params)
                trace.record(
                    method,
                    duration_ms=_elapsed_ms(started),
                    **response.attempt_fields(function),
                )

            if response.ok:
                logger.info(
                    "SQL executed via direct method",
                    extra={"operation_id": operation_id, "method": method},
                )
                return ExecutionResult.ok(response.data, trace.finish(method))

            code = response.classify(function) or ErrorCode.SQL_ERROR
            last_error = (response.error or "Unknown error", code, response.status)
            logger.warning(
                "Direct SQL method failed",
                extra={
                    "operation_id": operation_id,
                    "method": method,
                    "status": response.status,
                    "error": response.error,
                },
            )
            if code is ErrorCode.AUTH_ERROR:
                trace.auth_error = True
                break

        assert last_error is not None
        message, code, status = last_error
        return ExecutionResult.failure(
            message,
            code,
            status=status,
            debug_info=trace.finish(ALL_METHODS_FAILED),
        )


class DatabaseDirectExecutor:
    """
    Executes SQL on a direct Postgres connection (method "direct-db").

    The SQL is sent as a simple-query script through the driver connection,
    so multi-statement migration payloads run unchanged.

    Args:
        conn: AsyncEngine or AsyncConnection (asyncpg driver)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    METHOD = "direct-db"

    def __init__(
        self,
        conn: DatabaseBind,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._conn = conn
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def execute(self, sql: str, operation_id: str | None = None) -> ExecutionResult:
        trace = DebugTrace(operation_id=operation_id)
        started = time.monotonic()

        with self._tracer.span(
            "remotesql.direct.database",
            {
                ATTR_OPERATION_ID: operation_id or "",
                ATTR_SQL_METHOD: self.METHOD,
                ATTR_DB_SYSTEM: "postgresql",
                ATTR_SQL_LENGTH: len(sql),
            },
        ):
            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    raw = await conn.get_raw_connection()
                    command_status = await raw.driver_connection.execute(sql)
            except (OSError, TimeoutError, InterfaceError, OperationalError) as e:
                return self._failed(trace, started, str(e), ErrorCode.NETWORK_ERROR)
            except Exception as e:
                return self._failed(trace, started, str(e), ErrorCode.SQL_ERROR)

        trace.record(self.METHOD, duration_ms=_elapsed_ms(started))
        logger.info(
            "SQL executed via direct database connection",
            extra={"operation_id": operation_id},
        )
        return ExecutionResult.ok(
            {"success": True, "command_status": command_status},
            trace.finish(self.METHOD),
        )

    def _failed(
        self,
        trace: DebugTrace,
        started: float,
        message: str,
        code: ErrorCode,
    ) -> ExecutionResult:
        trace.record(
            self.METHOD,
            duration_ms=_elapsed_ms(started),
            error=message,
            error_code=code,
        )
        logger.warning(
            "Direct database execution failed",
            extra={"operation_id": trace.operation_id, "error": message},
        )
        return ExecutionResult.failure(message, code, debug_info=trace.finish(ALL_METHODS_FAILED))


class ChainedDirectExecutor:
    """
    Tries several direct executors in order until one succeeds.

    Attempts from every executor tried are merged into one trace. An
    authentication failure stops the chain.

    Example:
        >>> chain = ChainedDirectExecutor([
        ...     RpcDirectExecutor(client),
        ...     DatabaseDirectExecutor(engine),
        ... ])
    """

    def __init__(self, executors: Sequence[DirectSqlExecutor]) -> None:
        self._executors = list(executors)

    @property
    def executors(self) -> list[DirectSqlExecutor]:
        return list(self._executors)

    async def execute(self, sql: str, operation_id: str | None = None) -> ExecutionResult:
        trace = DebugTrace(operation_id=operation_id)
        last: ExecutionResult | None = None

        for executor in self._executors:
            result = await executor.execute(sql, operation_id)
            trace.merge(result.debug_info)
            if result.success:
                return ExecutionResult.ok(
                    result.data, trace.finish(result.debug_info.final_method)
                )
            last = result
            if result.error_code is ErrorCode.AUTH_ERROR:
                break

        if last is None or last.error is None:
            return ExecutionResult.failure(
                "No direct execution method is configured",
                ErrorCode.FALLBACK_UNAVAILABLE,
                debug_info=trace.finish(ALL_METHODS_FAILED),
            )
        return ExecutionResult.from_error(last.error, trace.finish(ALL_METHODS_FAILED))


__all__ = [
    "ALL_METHODS_FAILED",
    "DirectSqlExecutor",
    "RpcDirectExecutor",
    "DatabaseDirectExecutor",
    "ChainedDirectExecutor",
]
