"""
Remote SQL execution with strategy fallback.

RemoteSqlExecutor runs an arbitrary SQL string against the backend:

1. Reject empty SQL locally.
2. Make sure the audit table exists (best effort).
3. Check the connection; an authentication failure ends the call.
4. Invoke the ``execute-sql`` edge function, retrying with backoff. A
   missing ``exec_sql`` function is installed inline and the same attempt
   is repeated once.
5. When the edge function budget is spent, hand the SQL to the direct
   executor.

Every path past step 1 writes exactly one audit entry before returning.
The public methods never raise.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime

from remotesql.audit import MigrationLogRecorder, OperationData
from remotesql.bootstrap import SchemaBootstrapper
from remotesql.client import BackendClient, BackendResponse
from remotesql.direct import ALL_METHODS_FAILED, DirectSqlExecutor
from remotesql.exceptions import ErrorCode
from remotesql.observability import Tracer, create_tracer
from remotesql.observability.attributes import (
    ATTR_ERROR_TYPE,
    ATTR_OPERATION_ID,
    ATTR_OPERATION_TYPE,
    ATTR_RETRY_COUNT,
    ATTR_SQL_LENGTH,
    ATTR_SQL_METHOD,
)
from remotesql.prober import AUTH_FAILED_MESSAGE, ConnectionProber
from remotesql.results import DebugTrace, ExecutionResult, new_operation_id, utc_now
from remotesql.retry import (
    AttemptContext,
    AttemptVerdict,
    RetryConfig,
    SleepFunc,
    retry_with_backoff,
    verdict_for,
)

logger = logging.getLogger(__name__)

EDGE_FUNCTION_METHOD = "edge-function"
EMPTY_SQL_MESSAGE = "SQL query is empty"
_SELF_REPAIRABLE = frozenset({ErrorCode.FUNCTION_MISSING})


class RemoteSqlExecutor:
    """
    Executes SQL through the edge function, falling back to direct execution.

    The bootstrapper is bound after construction because it is built from
    the same client and direct executor; see ``bind_bootstrapper``.

    Args:
        client: Backend transport
        prober: Connection pre-check
        recorder: Audit recorder
        fallback: Direct executor used once the edge function budget is spent
        retry_config: Backoff between edge function attempts
        sleep: Awaitable sleep taking seconds (tests inject a recorder)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> executor = RemoteSqlExecutor(client, prober, recorder, fallback)
        >>> executor.bind_bootstrapper(bootstrapper)
        >>> result = await executor.execute_sql("SELECT 1")
        >>> result.debug_info.final_method
        'edge-function'
    """

    def __init__(
        self,
        client: BackendClient,
        prober: ConnectionProber,
        recorder: MigrationLogRecorder,
        fallback: DirectSqlExecutor | None = None,
        retry_config: RetryConfig | None = None,
        sleep: SleepFunc | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._client = client
        self._config = client.config
        self._prober = prober
        self._recorder = recorder
        self._fallback = fallback
        self._retry_config = retry_config or self._config.retry
        self._sleep = sleep
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._bootstrapper: SchemaBootstrapper | None = None
        self._log_table_ready = False

    def bind_bootstrapper(self, bootstrapper: SchemaBootstrapper) -> None:
        """Attach the bootstrapper used for self-repair and audit table setup."""
        self._bootstrapper = bootstrapper

    @property
    def bootstrapper(self) -> SchemaBootstrapper | None:
        return self._bootstrapper

    @property
    def fallback(self) -> DirectSqlExecutor | None:
        return self._fallback

    async def execute_sql(
        self,
        sql: str,
        max_retries: int = 2,
        *,
        operation_type: str = "custom_sql",
        operation_id: str | None = None,
    ) -> ExecutionResult:
        """
        Execute ``sql`` and record the outcome in the audit log.

        Args:
            sql: SQL text, passed to the backend unchanged
            max_retries: Edge function retries after the first attempt
            operation_type: Audit operation type (e.g. "migration:<name>")
            operation_id: Correlation id; generated when omitted

        Returns:
            ExecutionResult. ``debug_info.attempts`` lists every attempt made,
            fallback attempts included. Never raises.
        """
        if not sql or not sql.strip():
            logger.warning("Refusing to execute empty SQL")
            return ExecutionResult.failure(
                EMPTY_SQL_MESSAGE,
                ErrorCode.EMPTY_SQL,
                debug_info=DebugTrace(operation_id=operation_id).finish(),
            )

        operation_id = operation_id or new_operation_id()
        trace = DebugTrace(operation_id=operation_id)
        start_time = utc_now()

        with self._tracer.span(
            "remotesql.executor.execute_sql",
            {
                ATTR_OPERATION_ID: operation_id,
                ATTR_OPERATION_TYPE: operation_type,
                ATTR_SQL_LENGTH: len(sql),
                ATTR_RETRY_COUNT: max_retries,
            },
        ) as span:
            try:
                result, method_used = await self._execute(sql, max_retries, operation_id, trace)
            except Exception as e:
                logger.exception(
                    "Unexpected error executing SQL",
                    extra={"operation_id": operation_id, "operation_type": operation_type},
                )
                result = ExecutionResult.failure(
                    f"Unexpected error executing SQL: {e}",
                    ErrorCode.UNEXPECTED_ERROR,
                    details={"type": type(e).__name__, "message": str(e)},
                    debug_info=trace.finish("error"),
                )
                method_used = "error"

            if span is not None:
                span.set_attribute(ATTR_SQL_METHOD, method_used)
                if result.error is not None:
                    span.set_attribute(ATTR_ERROR_TYPE, result.error.code.value)

        await self._record(operation_id, operation_type, sql, method_used, start_time, result)
        return result

    async def _execute(
        self,
        sql: str,
        max_retries: int,
        operation_id: str,
        trace: DebugTrace,
    ) -> tuple[ExecutionResult, str]:
        """Run the pipeline; returns the result and the audit ``method_used``."""
        await self._ensure_log_table(trace)

        connection = await self._prober.check_connection(max_retries=1)
        trace.annotations["connection_check"] = connection.debug_info.to_dict()
        if connection.is_auth_error:
            trace.auth_error = True
            assert connection.error is not None
            logger.error(
                "Authentication failed before executing SQL",
                extra={"operation_id": operation_id},
            )
            return (
                ExecutionResult.from_error(connection.error, trace.finish("auth_error")),
                "auth_error",
            )
        if not connection.success:
            message = connection.error.message if connection.error else "unknown error"
            trace.warn(f"Connection check failed: {message}")
            logger.warning(
                "Connection check failed, attempting execution anyway",
                extra={"operation_id": operation_id, "error": message},
            )

        outcome = await retry_with_backoff(
            lambda ctx: self._edge_function_attempt(ctx, sql, operation_id, trace),
            self._classify_edge_response,
            max_retries,
            self._retry_config,
            repair=lambda response: self._repair_exec_sql(operation_id, trace),
            max_repairs=1,
            sleep=self._sleep,
            operation_name="edge function SQL execution",
        )
        last = outcome.last
        assert last is not None

        if outcome.succeeded:
            logger.info(
                "SQL executed via edge function",
                extra={"operation_id": operation_id, "calls": outcome.calls},
            )
            return ExecutionResult.ok(last.data, trace.finish(EDGE_FUNCTION_METHOD)), EDGE_FUNCTION_METHOD

        if outcome.aborted:
            trace.auth_error = True
            logger.error(
                "Edge function rejected the credentials",
                extra={"operation_id": operation_id, "status": last.status},
            )
            return (
                ExecutionResult.failure(
                    AUTH_FAILED_MESSAGE,
                    ErrorCode.AUTH_ERROR,
                    status=last.status,
                    details={"error": last.error},
                    debug_info=trace.finish(EDGE_FUNCTION_METHOD),
                ),
                "auth_error",
            )

        logger.warning(
            "Edge function attempts exhausted, falling back to direct execution",
            extra={"operation_id": operation_id, "calls": outcome.calls, "error": last.error},
        )
        return await self._run_fallback(sql, operation_id, trace, last)

    async def _edge_function_attempt(
        self,
        ctx: AttemptContext,
        sql: str,
        operation_id: str,
        trace: DebugTrace,
    ) -> BackendResponse:
        if ctx.is_first:
            preflight = await self._client.preflight(self._config.edge_function)
            if not 200 <= preflight.status < 300:
                trace.warn(
                    f"Edge function preflight failed with HTTP {preflight.status}: "
                    f"{preflight.error or preflight.status_text}"
                )

        started = time.monotonic()
        response = await self._client.invoke_function(
            self._config.edge_function,
            {"sql": sql, "sql_text": sql, "debug": True, "operation_id": operation_id},
        )
        trace.record(
            EDGE_FUNCTION_METHOD,
            delay_ms=ctx.delay_ms,
            duration_ms=(time.monotonic() - started) * 1000.0,
            **response.attempt_fields(self._config.exec_function),
        )
        return response

    def _classify_edge_response(self, response: BackendResponse) -> AttemptVerdict:
        code = response.classify(self._config.exec_function)
        if code is None:
            return AttemptVerdict.SUCCEEDED
        # Only a bound bootstrapper can install exec_sql
        repairable = _SELF_REPAIRABLE if self._bootstrapper is not None else frozenset()
        return verdict_for(code, repairable)

    async def _repair_exec_sql(self, operation_id: str, trace: DebugTrace) -> bool:
        assert self._bootstrapper is not None
        logger.info(
            "exec_sql function is missing, installing it",
            extra={"operation_id": operation_id},
        )
        setup = await self._bootstrapper.setup_exec_sql_function()
        trace.annotations["bootstrap"] = setup.debug_info.to_dict()
        if not setup.success:
            message = setup.error.message if setup.error else "unknown error"
            trace.warn(f"exec_sql installation failed: {message}")
        return setup.success

    async def _run_fallback(
        self,
        sql: str,
        operation_id: str,
        trace: DebugTrace,
        last: BackendResponse,
    ) -> tuple[ExecutionResult, str]:
        if self._fallback is None:
            return (
                ExecutionResult.failure(
                    f"Edge function failed and no direct execution method is configured: {last.error}",
                    ErrorCode.FALLBACK_UNAVAILABLE,
                    status=last.status,
                    debug_info=trace.finish(ALL_METHODS_FAILED),
                ),
                ALL_METHODS_FAILED,
            )

        fallback = await self._fallback.execute(sql, operation_id)
        trace.merge(fallback.debug_info)
        final_method = fallback.debug_info.final_method or ALL_METHODS_FAILED
        trace.finish(final_method)

        if fallback.success:
            logger.info(
                "SQL executed via direct fallback",
                extra={"operation_id": operation_id, "method": final_method},
            )
            return ExecutionResult.ok(fallback.data, trace), final_method

        assert fallback.error is not None
        logger.error(
            "All SQL execution methods failed",
            extra={"operation_id": operation_id, "error": fallback.error.message},
        )
        return ExecutionResult.from_error(fallback.error, trace), final_method

    async def _ensure_log_table(self, trace: DebugTrace) -> None:
        if self._log_table_ready or self._bootstrapper is None:
            return
        ready = await self._bootstrapper.ensure_migration_logs_table()
        if ready:
            self._log_table_ready = True
        else:
            trace.annotations["log_table"] = "unavailable"
            trace.warn("Migration logs table could not be verified or created")

    async def _record(
        self,
        operation_id: str,
        operation_type: str,
        sql: str,
        method_used: str,
        start_time: datetime,
        result: ExecutionResult,
    ) -> None:
        await self._recorder.safely_log_operation(
            OperationData(operation_id, operation_type, sql, method_used),
            start_time,
            result,
        )


__all__ = [
    "EDGE_FUNCTION_METHOD",
    "EMPTY_SQL_MESSAGE",
    "RemoteSqlExecutor",
]
