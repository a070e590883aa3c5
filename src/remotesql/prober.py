"""
Connection health probing.

ConnectionProber answers "can we reach the backend, and are we allowed
to?" by trying several independent endpoints in order:

    session        GET  /auth/v1/user  (only with a user access token)
    rest           GET  /rest/v1/
    health         GET  /auth/v1/health
    edge-function  OPTIONS /functions/v1/<edge function>
    exec-sql       POST /rest/v1/rpc/exec_sql  with ``SELECT 1``

The first successful probe ends the check. The first authentication
failure ends it too, with AUTH_ERROR, because no other endpoint will accept
the same credentials.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

from remotesql.client import BackendClient, BackendResponse
from remotesql.exceptions import ErrorCode
from remotesql.observability import Tracer, create_tracer
from remotesql.observability.attributes import (
    ATTR_ERROR_TYPE,
    ATTR_PROBE_NAME,
    ATTR_RETRY_COUNT,
)
from remotesql.results import (
    ConnectionCheckResult,
    DebugTrace,
    ExecutionError,
    ProbeErrorType,
    ProbeResult,
)
from remotesql.retry import (
    AttemptContext,
    AttemptVerdict,
    RetryConfig,
    RetryOutcome,
    SleepFunc,
    retry_with_backoff,
    verdict_for,
)

logger = logging.getLogger(__name__)

AUTH_FAILED_MESSAGE = "Authentication failed. Please log in again."

_PROBE_ERROR_CODES = {
    ProbeErrorType.AUTH: ErrorCode.AUTH_ERROR,
    ProbeErrorType.NETWORK: ErrorCode.NETWORK_ERROR,
    ProbeErrorType.CORS: ErrorCode.CORS_ERROR,
    ProbeErrorType.API: ErrorCode.SQL_ERROR,
    ProbeErrorType.GENERAL: ErrorCode.CONNECTION_ERROR,
}

ProbeFunc = Callable[[], Awaitable[ProbeResult]]


def probe_error_type(response: BackendResponse) -> ProbeErrorType:
    """Classify a failed probe response."""
    if response.is_auth_error:
        return ProbeErrorType.AUTH
    if response.status == 0 or response.status >= 500:
        return ProbeErrorType.NETWORK
    return ProbeErrorType.API


class ConnectionProber:
    """
    Checks backend reachability and authentication.

    Args:
        client: Backend transport
        retry_config: Backoff between retries of one probe
        sleep: Awaitable sleep taking seconds (tests inject a recorder)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> prober = ConnectionProber(client)
        >>> result = await prober.check_connection(max_retries=1)
        >>> if result.is_auth_error:
        ...     print("log in again")
    """

    def __init__(
        self,
        client: BackendClient,
        retry_config: RetryConfig | None = None,
        sleep: SleepFunc | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._client = client
        self._config = client.config
        self._retry_config = retry_config or self._config.retry
        self._sleep = sleep
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    def probes(self) -> list[tuple[str, ProbeFunc]]:
        """Probe strategies in the order they are tried."""
        probes: list[tuple[str, ProbeFunc]] = []
        if self._config.access_token:
            probes.append(("session", self._probe_session))
        probes.extend(
            [
                ("rest", self._probe_rest),
                ("health", self._probe_health),
                ("edge-function", self._probe_edge_function),
                ("exec-sql", self._probe_exec_sql),
            ]
        )
        return probes

    async def check_connection(self, max_retries: int = 2) -> ConnectionCheckResult:
        """
        Run the probes until one succeeds or authentication fails.

        Each probe is retried up to ``max_retries`` times with the shared
        backoff. This method never raises.

        Args:
            max_retries: Retries per probe after its first attempt

        Returns:
            ConnectionCheckResult; on total failure the error code is
            NETWORK_ERROR when every probe failed at the network level,
            AUTH_ERROR when every probe was rejected, CONNECTION_ERROR
            otherwise
        """
        trace = DebugTrace()
        with self._tracer.span(
            "remotesql.prober.check_connection",
            {ATTR_RETRY_COUNT: max_retries},
        ) as span:
            try:
                result = await self._run_probes(max_retries, trace)
            except Exception as e:
                logger.exception("Unexpected error during connection check")
                result = ConnectionCheckResult(
                    success=False,
                    error=ExecutionError(
                        f"Unexpected error checking connection: {e}",
                        ErrorCode.UNEXPECTED_ERROR,
                    ),
                    debug_info=trace.finish(),
                )

            if span is not None and result.error is not None:
                span.set_attribute(ATTR_ERROR_TYPE, result.error.code.value)
            return result

    async def _run_probes(self, max_retries: int, trace: DebugTrace) -> ConnectionCheckResult:
        failures: list[ProbeResult] = []

        for name, probe in self.probes():
            outcome = await self._retry_probe(name, probe, max_retries, trace)
            last = outcome.last
            assert last is not None

            if outcome.succeeded:
                logger.debug("Connection check succeeded", extra={"probe": name})
                return ConnectionCheckResult(success=True, debug_info=trace.finish(name))

            if outcome.aborted:
                trace.auth_error = True
                logger.error(
                    "Connection check stopped on authentication failure",
                    extra={"probe": name, "status": last.status},
                )
                return ConnectionCheckResult(
                    success=False,
                    error=ExecutionError(
                        AUTH_FAILED_MESSAGE,
                        ErrorCode.AUTH_ERROR,
                        status=last.status,
                        details={"probe": name, "error": last.error},
                    ),
                    debug_info=trace.finish(name),
                )

            failures.append(last)

        return self._aggregate_failure(failures, trace)

    async def _retry_probe(
        self,
        name: str,
        probe: ProbeFunc,
        max_retries: int,
        trace: DebugTrace,
    ) -> RetryOutcome[ProbeResult]:
        async def attempt(ctx: AttemptContext) -> ProbeResult:
            started = time.monotonic()
            with self._tracer.span("remotesql.prober.probe", {ATTR_PROBE_NAME: name}):
                try:
                    result = await probe()
                except Exception as e:
                    # Preflight exceptions are CORS failures; anything else is unclassified
                    error_type = (
                        ProbeErrorType.CORS if name == "edge-function" else ProbeErrorType.GENERAL
                    )
                    result = ProbeResult(probe=name, success=False, error_type=error_type, error=str(e))

            trace.record(
                name,
                delay_ms=ctx.delay_ms,
                duration_ms=(time.monotonic() - started) * 1000.0,
                status_code=result.status,
                status_text=result.status_text,
                error=result.error,
                error_code=_PROBE_ERROR_CODES[result.error_type] if result.error_type else None,
            )
            return result

        def verdict(result: ProbeResult) -> AttemptVerdict:
            if result.success:
                return AttemptVerdict.SUCCEEDED
            return verdict_for(_PROBE_ERROR_CODES[result.error_type or ProbeErrorType.GENERAL])

        return await retry_with_backoff(
            attempt,
            verdict,
            max_retries,
            self._retry_config,
            sleep=self._sleep,
            operation_name=f"probe {name}",
        )

    def _aggregate_failure(
        self, failures: list[ProbeResult], trace: DebugTrace
    ) -> ConnectionCheckResult:
        error_types = {f.error_type for f in failures}
        if error_types == {ProbeErrorType.NETWORK}:
            code = ErrorCode.NETWORK_ERROR
            message = "Network error: unable to reach the backend"
        elif error_types == {ProbeErrorType.AUTH}:
            code = ErrorCode.AUTH_ERROR
            message = AUTH_FAILED_MESSAGE
        else:
            code = ErrorCode.CONNECTION_ERROR
            message = "Unable to connect to the backend"

        summary = "; ".join(f"{f.probe}: {f.error}" for f in failures)
        logger.error(
            "All connection probes failed",
            extra={"error_code": code.value, "probes": summary},
        )
        return ConnectionCheckResult(
            success=False,
            error=ExecutionError(
                f"{message} ({summary})" if summary else message,
                code,
                details={f.probe: f.error_type.value if f.error_type else None for f in failures},
            ),
            debug_info=trace.finish("all-probes-failed"),
        )

    # =========================================================================
    # Probes
    # =========================================================================

    async def _probe_session(self) -> ProbeResult:
        return self._from_response("session", await self._client.get_user())

    async def _probe_rest(self) -> ProbeResult:
        return self._from_response("rest", await self._client.rest_root(), reachability=True)

    async def _probe_health(self) -> ProbeResult:
        return self._from_response("health", await self._client.health(), reachability=True)

    async def _probe_edge_function(self) -> ProbeResult:
        response = await self._client.preflight(self._config.edge_function)
        if 200 <= response.status < 300:
            return ProbeResult("edge-function", True, response.status, response.status_text)
        if response.is_auth_error:
            error_type = ProbeErrorType.AUTH
        elif response.status == 0 or response.status >= 500:
            error_type = ProbeErrorType.NETWORK
        else:
            error_type = ProbeErrorType.CORS
        return ProbeResult(
            "edge-function",
            False,
            response.status,
            response.status_text,
            error_type=error_type,
            error=response.error or f"Preflight failed with HTTP {response.status}",
        )

    async def _probe_exec_sql(self) -> ProbeResult:
        response = await self._client.rpc(self._config.exec_function, {"sql_text": "SELECT 1"})
        return self._from_response("exec-sql", response)

    @staticmethod
    def _from_response(
        probe: str,
        response: BackendResponse,
        reachability: bool = False,
    ) -> ProbeResult:
        # Reachability probes only care that a 2xx arrived, whatever the body
        succeeded = (
            200 <= response.status < 300 if reachability else response.ok
        )
        if succeeded:
            return ProbeResult(probe, True, response.status, response.status_text)
        return ProbeResult(
            probe,
            False,
            response.status,
            response.status_text,
            error_type=probe_error_type(response),
            error=response.error,
        )


__all__ = [
    "AUTH_FAILED_MESSAGE",
    "ConnectionProber",
    "probe_error_type",
]
