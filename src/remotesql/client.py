"""
HTTP transport for a Supabase-style backend.

BackendClient wraps ``httpx.AsyncClient`` and exposes the handful of
endpoints the migration subsystem talks to:

- ``/rest/v1/`` and ``/rest/v1/<table>``: PostgREST root, select and insert
- ``/rest/v1/rpc/<function>``: remote procedure calls
- ``/functions/v1/<name>``: edge function invocation and CORS preflight
- ``/auth/v1/user`` and ``/auth/v1/health``: session and health checks

Every call returns a BackendResponse. Transport failures are reported as
``status=0`` responses instead of exceptions so callers classify outcomes
uniformly.

Example:
    >>> async with BackendClient(config) as client:
    ...     response = await client.rpc("exec_sql", {"sql_text": "SELECT 1"})
    ...     if response.ok:
    ...         print(response.data)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from remotesql.config import ClientConfig
from remotesql.exceptions import ErrorCode
from remotesql.observability import Tracer, create_tracer
from remotesql.observability.attributes import (
    ATTR_HTTP_METHOD,
    ATTR_HTTP_STATUS_CODE,
    ATTR_URL_PATH,
)
from remotesql.observability.tracer import SpanKind

logger = logging.getLogger(__name__)

# Headers sent with an edge function preflight request
_PREFLIGHT_HEADERS = {
    "Origin": "http://localhost",
    "Access-Control-Request-Method": "POST",
    "Access-Control-Request-Headers": "authorization, apikey, content-type",
}


@dataclass(frozen=True)
class BackendResponse:
    """
    Normalised outcome of one backend request.

    Attributes:
        status: HTTP status code, 0 when no response was received
        status_text: HTTP reason phrase (or the transport error class name)
        data: Decoded JSON body, None when empty or undecodable
        error: Error message extracted from the body or transport failure
        error_code: Backend error code (e.g. PostgREST "PGRST202" or SQLSTATE)
        parse_error: True when a non-empty body could not be decoded
    """

    status: int
    status_text: str = ""
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    parse_error: bool = False

    @property
    def ok(self) -> bool:
        """True for a 2xx response with a decodable body and no error."""
        return 200 <= self.status < 300 and self.error is None and not self.parse_error

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403)

    @property
    def is_transport_error(self) -> bool:
        """True when the request never produced an HTTP response."""
        return self.status == 0

    def indicates_missing_function(self, function: str) -> bool:
        """True when the error says the database function does not exist."""
        if self.error is None:
            return False
        message = self.error.lower()
        if function.lower() not in message:
            return False
        return self.error_code in _MISSING_FUNCTION_CODES or (
            "does not exist" in message or "could not find the function" in message
        )

    def indicates_missing_table(self, table: str) -> bool:
        """True when the error says the table does not exist."""
        if self.error is None:
            return False
        message = self.error.lower()
        if table.lower() not in message:
            return False
        return self.error_code in _MISSING_TABLE_CODES or (
            "does not exist" in message or "could not find the table" in message
        )

    def classify(self, function: str | None = None) -> ErrorCode | None:
        """
        Map a failed response to an ErrorCode (None for a successful one).

        Args:
            function: Database function whose absence should be reported as
                FUNCTION_MISSING rather than SQL_ERROR
        """
        if self.ok:
            return None
        if self.is_auth_error:
            return ErrorCode.AUTH_ERROR
        if self.status in _NETWORK_STATUSES:
            return ErrorCode.NETWORK_ERROR
        if self.parse_error:
            return ErrorCode.PARSE_ERROR
        if function is not None and self.indicates_missing_function(function):
            return ErrorCode.FUNCTION_MISSING
        return ErrorCode.SQL_ERROR

    def attempt_fields(self, function: str | None = None) -> dict[str, Any]:
        """Keyword arguments describing this response for ``DebugTrace.record``."""
        return {
            "status_code": self.status,
            "status_text": self.status_text,
            "error": self.error,
            "error_code": self.classify(function),
        }


# PostgREST schema cache misses and the matching SQLSTATEs
_MISSING_FUNCTION_CODES = frozenset({"PGRST202", "42883"})
_MISSING_TABLE_CODES = frozenset({"PGRST205", "42P01"})

# No response, or the edge gateway's "origin unreachable"
_NETWORK_STATUSES = frozenset({0, 520})


def _extract_error(body: Any) -> tuple[str | None, str | None]:
    """
    Pull an error message and code out of a decoded response body.

    Understands PostgREST errors (``message``/``code``), edge function
    envelopes (``success``/``error``) and auth errors (``msg`` /
    ``error_description``).
    """
    if not isinstance(body, dict):
        return None, None

    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message") or error.get("msg") or str(error)
        code = error.get("code") or error.get("detail")
        return str(message), str(code) if code is not None else None
    if error:
        return str(error), None

    if body.get("success") is False:
        return "Operation reported failure without an error message", None

    return None, None


def _extract_failure_message(body: Any) -> tuple[str | None, str | None]:
    """Error message and code for a non-2xx response body."""
    message, code = _extract_error(body)
    if message is not None:
        return message, code
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "hint"):
            if body.get(key):
                raw_code = body.get("code")
                return str(body[key]), str(raw_code) if raw_code is not None else None
    return None, None


class BackendClient:
    """
    Async HTTP client for the hosted Postgres backend.

    The client is safe to share between concurrent operations. When no
    ``http_client`` is injected, one is created from the configuration and
    closed by ``aclose``.

    Args:
        config: Connection settings
        http_client: Optional pre-built httpx.AsyncClient (tests inject one
            backed by ``httpx.MockTransport``)
        tracer: Optional custom Tracer instance
    """

    def __init__(
        self,
        config: ClientConfig,
        http_client: httpx.AsyncClient | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._config = config
        self._tracer = tracer or create_tracer(__name__, config.enable_tracing)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def default_headers(self) -> dict[str, str]:
        return {
            "apikey": self._config.anon_key,
            "Authorization": f"Bearer {self._config.bearer_token}",
            "Content-Type": "application/json",
        }

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    # =========================================================================
    # Endpoints
    # =========================================================================

    async def rpc(self, function: str, params: dict[str, Any] | None = None) -> BackendResponse:
        """Call a database function through ``/rest/v1/rpc/<function>``."""
        return await self._request(
            "POST", f"{self._config.rest_url}/rpc/{function}", json=params or {}
        )

    async def invoke_function(self, name: str, body: dict[str, Any]) -> BackendResponse:
        """Invoke an edge function with a JSON body."""
        return await self._request("POST", f"{self._config.functions_url}/{name}", json=body)

    async def preflight(self, name: str) -> BackendResponse:
        """Send a CORS preflight (OPTIONS) request to an edge function."""
        return await self._request(
            "OPTIONS",
            f"{self._config.functions_url}/{name}",
            headers=_PREFLIGHT_HEADERS,
            parse=False,
        )

    async def get_user(self) -> BackendResponse:
        """Resolve the session owning the bearer token."""
        return await self._request("GET", f"{self._config.auth_url}/user")

    async def rest_root(self) -> BackendResponse:
        return await self._request("GET", f"{self._config.rest_url}/")

    async def health(self) -> BackendResponse:
        return await self._request("GET", f"{self._config.auth_url}/health")

    async def select(
        self,
        table: str,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
    ) -> BackendResponse:
        """
        Select rows from a table through PostgREST.

        Args:
            table: Table name
            columns: PostgREST ``select`` expression
            order: PostgREST ``order`` expression (e.g. "created_at.desc")
            limit: Maximum number of rows
        """
        params: dict[str, str] = {"select": columns}
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return await self._request("GET", f"{self._config.rest_url}/{table}", params=params)

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> BackendResponse:
        """Insert rows and return their stored representation."""
        return await self._request(
            "POST",
            f"{self._config.rest_url}/{table}",
            json=rows,
            headers={"Prefer": "return=representation"},
        )

    # =========================================================================
    # Helper methods
    # =========================================================================

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        parse: bool = True,
    ) -> BackendResponse:
        path = url[len(self._config.url) :]
        request_headers = {**self.default_headers, **(headers or {})}

        with self._tracer.span(
            f"remotesql.client.{method.lower()}",
            {ATTR_HTTP_METHOD: method, ATTR_URL_PATH: path},
            kind=SpanKind.CLIENT,
        ) as span:
            try:
                response = await self._http.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=request_headers,
                )
            except httpx.HTTPError as e:
                logger.debug(
                    "Backend request failed before a response was received",
                    extra={"method": method, "path": path, "error": str(e)},
                )
                return BackendResponse(
                    status=0,
                    status_text=type(e).__name__,
                    error=str(e) or type(e).__name__,
                )

            if span is not None:
                span.set_attribute(ATTR_HTTP_STATUS_CODE, response.status_code)

            result = self._to_backend_response(response, parse)
            logger.debug(
                "Backend request completed",
                extra={
                    "method": method,
                    "path": path,
                    "status": result.status,
                    "error": result.error,
                },
            )
            return result

    @staticmethod
    def _to_backend_response(response: httpx.Response, parse: bool) -> BackendResponse:
        status = response.status_code
        status_text = response.reason_phrase
        success = 200 <= status < 300

        data: Any = None
        parse_error = False
        if parse and response.content:
            try:
                data = response.json()
            except ValueError:
                parse_error = True

        if parse_error:
            return BackendResponse(
                status=status,
                status_text=status_text,
                error=f"Failed to parse response body (HTTP {status})",
                parse_error=True,
            )

        if success:
            message, code = _extract_error(data)
        else:
            message, code = _extract_failure_message(data)
            if message is None:
                message = status_text or f"HTTP {status}"

        return BackendResponse(
            status=status,
            status_text=status_text,
            data=data,
            error=message,
            error_code=code,
        )


__all__ = [
    "BackendResponse",
    "BackendClient",
]
