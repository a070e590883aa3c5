"""
Idempotent installation of the server-side prerequisites.

SchemaBootstrapper makes sure the backend has what the executor needs:

- ``exec_sql(sql_text)``: the SQL execution function
- ``migration_logs``: the audit table
- ``check_migration_system_status()``: the aggregate status function

Every payload is idempotent (``CREATE OR REPLACE``, ``IF NOT EXISTS``,
``DROP POLICY IF EXISTS``), so running the bootstrapper against a system
that is already set up is safe, and concurrent bootstraps converge.

The bootstrapper depends only on the HTTP client and a direct executor. The
remote executor receives it after construction (``bind_bootstrapper``) to
self-repair a missing ``exec_sql`` function.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from remotesql.audit import MigrationLogRecorder, OperationData
from remotesql.client import BackendClient, BackendResponse
from remotesql.direct import ALL_METHODS_FAILED, DirectSqlExecutor
from remotesql.exceptions import ErrorCode
from remotesql.observability import Tracer, create_tracer
from remotesql.observability.attributes import (
    ATTR_ERROR_TYPE,
    ATTR_OPERATION_ID,
    ATTR_RETRY_COUNT,
    ATTR_SQL_METHOD,
)
from remotesql.prober import AUTH_FAILED_MESSAGE
from remotesql.results import DebugTrace, ExecutionResult, new_operation_id, utc_now
from remotesql.retry import (
    AttemptContext,
    AttemptVerdict,
    RetryConfig,
    SleepFunc,
    retry_with_backoff,
    verdict_for,
)
from remotesql.schemas import get_schema

logger = logging.getLogger(__name__)

BOOTSTRAP_FAILED_MESSAGE = "All methods to create exec_sql function failed"
VERIFY_SQL = "SELECT 1"


@dataclass(frozen=True)
class _Step:
    """Outcome of one strategy attempt."""

    success: bool
    error: str | None = None
    code: ErrorCode | None = None
    status: int | None = None

    @classmethod
    def from_response(cls, response: BackendResponse, function: str | None = None) -> _Step:
        if response.ok:
            return cls(True, status=response.status)
        return cls(
            False,
            error=response.error,
            code=response.classify(function),
            status=response.status,
        )

    @classmethod
    def from_result(cls, result: ExecutionResult) -> _Step:
        if result.success:
            return cls(True)
        error = result.error
        return cls(
            False,
            error=error.message if error else None,
            code=error.code if error else ErrorCode.SQL_ERROR,
            status=error.status if error else None,
        )


StrategyFunc = Callable[[], Awaitable[_Step]]


class SchemaBootstrapper:
    """
    Installs ``exec_sql``, the audit table and the status function.

    Args:
        client: Backend transport
        fallback: Direct executor used as the last-resort strategy
        recorder: Audit recorder (None disables bootstrap logging)
        retry_config: Backoff between retries of one strategy
        sleep: Awaitable sleep taking seconds (tests inject a recorder)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> bootstrapper = SchemaBootstrapper(client, RpcDirectExecutor(client), recorder)
        >>> result = await bootstrapper.setup_exec_sql_function()
        >>> result.debug_info.final_method
        'edge-function'
    """

    def __init__(
        self,
        client: BackendClient,
        fallback: DirectSqlExecutor,
        recorder: MigrationLogRecorder | None = None,
        retry_config: RetryConfig | None = None,
        sleep: SleepFunc | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._client = client
        self._config = client.config
        self._fallback = fallback
        self._recorder = recorder
        self._retry_config = retry_config or self._config.retry
        self._sleep = sleep
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    # =========================================================================
    # exec_sql
    # =========================================================================

    async def setup_exec_sql_function(
        self,
        max_retries: int = 2,
        log_results: bool = True,
    ) -> ExecutionResult:
        """
        Create (or replace) the ``exec_sql`` function and verify it works.

        Strategies are tried in order, each retried with backoff:
        edge-function, direct-rpc, rest-rpc, executor-fallback. A strategy
        that appears to succeed is verified by running ``SELECT 1`` through
        ``exec_sql``; a failed verification moves on to the next strategy.

        Args:
            max_retries: Retries per strategy after its first attempt
            log_results: Whether to write audit entries (skipped silently
                when the audit table is unreachable)

        Returns:
            ExecutionResult; AUTH_ERROR as soon as the backend answers
            401/403, BOOTSTRAP_FAILED when every strategy failed.
            Never raises.
        """
        operation_id = new_operation_id("setup-exec-sql")
        trace = DebugTrace(operation_id=operation_id)
        start_time = utc_now()

        with self._tracer.span(
            "remotesql.bootstrap.setup_exec_sql_function",
            {ATTR_OPERATION_ID: operation_id, ATTR_RETRY_COUNT: max_retries},
        ) as span:
            try:
                result = await self._setup_exec_sql(
                    operation_id, max_retries, log_results, trace, start_time
                )
            except Exception as e:
                logger.exception(
                    "Unexpected error setting up exec_sql",
                    extra={"operation_id": operation_id},
                )
                result = ExecutionResult.failure(
                    f"Unexpected error setting up exec_sql: {e}",
                    ErrorCode.UNEXPECTED_ERROR,
                    details={"type": type(e).__name__, "message": str(e)},
                    debug_info=trace.finish("error"),
                )

            if span is not None and result.error is not None:
                span.set_attribute(ATTR_ERROR_TYPE, result.error.code.value)
            return result

    async def _setup_exec_sql(
        self,
        operation_id: str,
        max_retries: int,
        log_results: bool,
        trace: DebugTrace,
        start_time: datetime,
    ) -> ExecutionResult:
        function_sql = get_schema("exec_sql_function")
        can_log = log_results and await self._log_table_reachable()
        if log_results and not can_log:
            trace.warn("Audit table unreachable; bootstrap results will not be logged")

        for name, strategy in self._exec_sql_strategies(function_sql, operation_id):

            async def attempt(ctx: AttemptContext, name=name, strategy=strategy) -> _Step:
                started = time.monotonic()
                with self._tracer.span(
                    "remotesql.bootstrap.strategy",
                    {ATTR_OPERATION_ID: operation_id, ATTR_SQL_METHOD: name},
                ):
                    step = await strategy()
                trace.record(
                    name,
                    delay_ms=ctx.delay_ms,
                    duration_ms=(time.monotonic() - started) * 1000.0,
                    status_code=step.status,
                    error=step.error,
                    error_code=step.code,
                )

                final_try = ctx.attempt >= max_retries or _step_verdict(step) is AttemptVerdict.ABORT
                if not step.success and final_try and can_log:
                    await self._log(
                        operation_id,
                        "setup_exec_sql",
                        function_sql,
                        name,
                        start_time,
                        ExecutionResult.failure(
                            step.error or f"{name} failed",
                            step.code or ErrorCode.SQL_ERROR,
                            status=step.status,
                            debug_info=trace,
                        ),
                    )
                return step

            outcome = await retry_with_backoff(
                attempt,
                _step_verdict,
                max_retries,
                self._retry_config,
                sleep=self._sleep,
                operation_name=f"exec_sql setup via {name}",
            )

            last = outcome.last
            if outcome.aborted and last is not None and last.code is ErrorCode.AUTH_ERROR:
                return self._auth_failure(operation_id, name, last, trace)

            if not outcome.succeeded:
                logger.warning(
                    "exec_sql setup strategy failed",
                    extra={"operation_id": operation_id, "method": name, "calls": outcome.calls},
                )
                continue

            verification = await self._verify_exec_sql(trace)
            if verification.success:
                result = ExecutionResult.ok({"method": name}, trace.finish(name))
                logger.info(
                    "exec_sql function is installed and verified",
                    extra={"operation_id": operation_id, "method": name},
                )
                if can_log:
                    await self._log(
                        operation_id, "setup_exec_sql", function_sql, name, start_time, result
                    )
                return result

            trace.warn(f"Verification after {name} failed: {verification.error}")
            logger.warning(
                "exec_sql verification failed",
                extra={"operation_id": operation_id, "method": name, "error": verification.error},
            )
            if can_log:
                await self._log(
                    operation_id,
                    "verify_exec_sql",
                    VERIFY_SQL,
                    name,
                    start_time,
                    ExecutionResult.failure(
                        verification.error or "Verification failed",
                        verification.code or ErrorCode.FUNCTION_MISSING,
                        status=verification.status,
                        debug_info=trace,
                    ),
                )
            if verification.code is ErrorCode.AUTH_ERROR:
                return self._auth_failure(operation_id, name, verification, trace)

        result = ExecutionResult.failure(
            BOOTSTRAP_FAILED_MESSAGE,
            ErrorCode.BOOTSTRAP_FAILED,
            details={"methods": list(trace.methods)},
            debug_info=trace.finish(ALL_METHODS_FAILED),
        )
        logger.error(
            BOOTSTRAP_FAILED_MESSAGE,
            extra={"operation_id": operation_id, "attempts": trace.total_attempts},
        )
        if can_log:
            await self._log(
                operation_id, "setup_exec_sql", function_sql, ALL_METHODS_FAILED, start_time, result
            )
        return result

    def _auth_failure(
        self,
        operation_id: str,
        method: str,
        step: _Step | None,
        trace: DebugTrace,
    ) -> ExecutionResult:
        """A 401/403 from any strategy or from verification ends the setup."""
        trace.auth_error = True
        logger.error(
            "Backend rejected the credentials during exec_sql setup",
            extra={"operation_id": operation_id, "method": method},
        )
        return ExecutionResult.failure(
            AUTH_FAILED_MESSAGE,
            ErrorCode.AUTH_ERROR,
            status=step.status if step is not None else None,
            details={"method": method, "error": step.error if step is not None else None},
            debug_info=trace.finish(method),
        )

    def _exec_sql_strategies(
        self, function_sql: str, operation_id: str
    ) -> list[tuple[str, StrategyFunc]]:
        exec_function = self._config.exec_function

        async def edge_function() -> _Step:
            response = await self._client.invoke_function(
                self._config.bootstrap_edge_function,
                {"sql": function_sql, "operation_id": operation_id},
            )
            return _Step.from_response(response)

        async def direct_rpc() -> _Step:
            probe = await self._client.rpc(exec_function, {"sql_text": VERIFY_SQL})
            if probe.ok:
                return _Step(True, status=probe.status)
            if probe.is_auth_error or not probe.indicates_missing_function(exec_function):
                return _Step.from_response(probe, exec_function)
            created = await self._client.rpc("pg_query", {"query": function_sql})
            return _Step.from_response(created, "pg_query")

        async def rest_rpc() -> _Step:
            response = await self._client.rpc(exec_function, {"sql_text": function_sql})
            return _Step.from_response(response, exec_function)

        async def executor_fallback() -> _Step:
            return _Step.from_result(await self._fallback.execute(function_sql, operation_id))

        return [
            ("edge-function", edge_function),
            ("direct-rpc", direct_rpc),
            ("rest-rpc", rest_rpc),
            ("executor-fallback", executor_fallback),
        ]

    async def _verify_exec_sql(self, trace: DebugTrace) -> _Step:
        exec_function = self._config.exec_function
        started = time.monotonic()
        response = await self._client.rpc(exec_function, {"sql_text": VERIFY_SQL})
        trace.record(
            "verify",
            duration_ms=(time.monotonic() - started) * 1000.0,
            **response.attempt_fields(exec_function),
        )
        return _Step.from_response(response, exec_function)

    # =========================================================================
    # Audit table and status function
    # =========================================================================

    async def create_migration_logs_table(self) -> ExecutionResult:
        """
        Create the audit table, its indexes and its policies.

        Tries the bootstrap edge function first, then the direct executor.
        Never raises.
        """
        table_sql = get_schema("migration_logs")
        if self._config.log_table != "migration_logs":
            table_sql = table_sql.replace("migration_logs", self._config.log_table)
        return await self._install(
            table_sql,
            "create_migration_logs_table",
            "remotesql.bootstrap.create_migration_logs_table",
        )

    async def ensure_migration_logs_table(self) -> bool:
        """
        Make sure the audit table exists, creating it when absent.

        Returns:
            True if the table exists afterwards. Never raises.
        """
        try:
            if await self._log_table_reachable():
                return True
            logger.info(
                "Migration logs table may not exist, attempting to create it",
                extra={"table": self._config.log_table},
            )
            result = await self.create_migration_logs_table()
            return result.success
        except Exception:
            logger.exception("Failed to ensure migration logs table")
            return False

    async def install_status_function(self) -> ExecutionResult:
        """Create the ``check_migration_system_status()`` function."""
        return await self._install(
            get_schema("system_status_function"),
            "create_status_function",
            "remotesql.bootstrap.install_status_function",
        )

    async def setup_migration_system(self) -> ExecutionResult:
        """
        Install every prerequisite: exec_sql, audit table, status function.

        Steps run in order and stop at the first failure. The returned trace
        holds the attempts of every step that ran.
        """
        trace = DebugTrace(operation_id=new_operation_id("setup-migration-system"))
        steps: dict[str, bool] = {}

        with self._tracer.span(
            "remotesql.bootstrap.setup_migration_system",
            {ATTR_OPERATION_ID: trace.operation_id or ""},
        ):
            try:
                for step_name, run in (
                    ("exec_sql_function", self.setup_exec_sql_function),
                    ("migration_logs_table", self.create_migration_logs_table),
                    ("system_status_function", self.install_status_function),
                ):
                    result = await run()
                    trace.merge(result.debug_info)
                    steps[step_name] = result.success
                    if not result.success:
                        trace.annotations["steps"] = steps
                        assert result.error is not None
                        logger.error(
                            "Migration system setup failed",
                            extra={"step": step_name, "error": result.error.message},
                        )
                        return ExecutionResult.from_error(result.error, trace.finish(step_name))
            except Exception as e:
                logger.exception("Unexpected error setting up migration system")
                return ExecutionResult.failure(
                    f"Unexpected error setting up migration system: {e}",
                    ErrorCode.UNEXPECTED_ERROR,
                    debug_info=trace.finish("error"),
                )

        trace.annotations["steps"] = steps
        logger.info("Migration system setup completed", extra={"steps": steps})
        return ExecutionResult.ok({"steps": steps}, trace.finish("setup-migration-system"))

    # =========================================================================
    # Helper methods
    # =========================================================================

    async def _install(self, sql: str, operation_type: str, span_name: str) -> ExecutionResult:
        """Run an idempotent DDL payload: bootstrap edge function, then direct executor."""
        operation_id = new_operation_id(operation_type.replace("_", "-"))
        trace = DebugTrace(operation_id=operation_id)
        start_time = utc_now()

        with self._tracer.span(span_name, {ATTR_OPERATION_ID: operation_id}):
            try:
                started = time.monotonic()
                response = await self._client.invoke_function(
                    self._config.bootstrap_edge_function,
                    {"sql": sql, "operation_id": operation_id},
                )
                trace.record(
                    "edge-function",
                    duration_ms=(time.monotonic() - started) * 1000.0,
                    **response.attempt_fields(),
                )

                if response.ok:
                    result = ExecutionResult.ok(response.data, trace.finish("edge-function"))
                elif response.is_auth_error:
                    trace.auth_error = True
                    result = ExecutionResult.failure(
                        AUTH_FAILED_MESSAGE,
                        ErrorCode.AUTH_ERROR,
                        status=response.status,
                        debug_info=trace.finish("edge-function"),
                    )
                else:
                    logger.warning(
                        "Bootstrap edge function failed, falling back to direct execution",
                        extra={"operation_id": operation_id, "error": response.error},
                    )
                    fallback = await self._fallback.execute(sql, operation_id)
                    trace.merge(fallback.debug_info)
                    result = ExecutionResult(
                        success=fallback.success,
                        data=fallback.data,
                        error=fallback.error,
                        debug_info=trace.finish(fallback.debug_info.final_method),
                    )
            except Exception as e:
                logger.exception(
                    "Unexpected error installing schema object",
                    extra={"operation_id": operation_id, "operation_type": operation_type},
                )
                result = ExecutionResult.failure(
                    f"Unexpected error: {e}",
                    ErrorCode.UNEXPECTED_ERROR,
                    debug_info=trace.finish("error"),
                )

        if result.success and self._recorder is not None:
            await self._log(
                operation_id,
                operation_type,
                sql,
                result.debug_info.final_method or "unknown",
                start_time,
                result,
            )
        return result

    async def _log_table_reachable(self) -> bool:
        if self._recorder is not None:
            try:
                return await self._recorder.store.table_exists()
            except Exception:
                logger.debug("Audit table probe raised", exc_info=True)
                return False
        response = await self._client.select(self._config.log_table, "id", limit=1)
        return response.ok

    async def _log(
        self,
        operation_id: str,
        operation_type: str,
        sql: str,
        method_used: str,
        start_time: datetime,
        result: ExecutionResult,
    ) -> None:
        if self._recorder is None:
            return
        await self._recorder.safely_log_operation(
            OperationData(operation_id, operation_type, sql, method_used),
            start_time,
            result,
        )


def _step_verdict(step: _Step) -> AttemptVerdict:
    if step.success:
        return AttemptVerdict.SUCCEEDED
    return verdict_for(step.code or ErrorCode.SQL_ERROR)


__all__ = [
    "BOOTSTRAP_FAILED_MESSAGE",
    "SchemaBootstrapper",
]
