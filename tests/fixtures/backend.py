"""
Fake hosted-Postgres backend for unit tests.

FakeBackend routes ``httpx`` requests to per-endpoint handlers through
``httpx.MockTransport`` and records every request it receives. Handlers are
callables taking the request and returning an ``httpx.Response``; when
several handlers are registered for one route they are consumed in order
and the last one repeats.

Usage:
    backend = healthy_backend()
    backend.on("POST", "/functions/v1/execute-sql", edge_error("boom"), ok({"success": True}))

    async with backend.http_client() as http:
        api = MigrationsApi(config, http_client=http, log_store=store, sleep=sleep)
        ...

    assert backend.count("POST", "/functions/v1/execute-sql") == 2
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx

Handler = Callable[[httpx.Request], httpx.Response]

BASE_URL = "https://project.supabase.test"


def ok(body: Any = None, status: int = 200) -> Handler:
    """Respond with a JSON body (``null`` when ``body`` is None)."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=body)

    return handler


def empty(status: int = 200) -> Handler:
    """Respond with no body, like a CORS preflight."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status)

    return handler


def error(status: int, message: str, code: str | None = None) -> Handler:
    """PostgREST-style error body: ``{"message": ..., "code": ...}``."""

    def handler(request: httpx.Request) -> httpx.Response:
        body: dict[str, Any] = {"message": message}
        if code is not None:
            body["code"] = code
        return httpx.Response(status, json=body)

    return handler


def edge_error(message: str, status: int = 500) -> Handler:
    """Edge function failure envelope: ``{"success": false, "error": ...}``."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"success": False, "error": message})

    return handler


def missing_function(name: str = "exec_sql") -> Handler:
    """The error PostgREST returns for an unknown database function."""
    return error(
        404,
        f"Could not find the function public.{name}(sql_text) in the schema cache",
        "PGRST202",
    )


def missing_table(name: str = "migration_logs") -> Handler:
    """The error PostgREST returns for an unknown table."""
    return error(
        404,
        f"Could not find the table 'public.{name}' in the schema cache",
        "PGRST205",
    )


def garbage(status: int = 200) -> Handler:
    """A body that is not JSON."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=b"<html>gateway</html>")

    return handler


def connect_error(message: str = "connection refused") -> Handler:
    """Fail before any response is produced."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError(message, request=request)

    return handler


class FakeBackend:
    """
    Route table plus request log behind an ``httpx.MockTransport``.

    Unrouted requests get a 404 with a PostgREST-style error body.
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], list[Handler]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *handlers: Handler) -> FakeBackend:
        """Register handlers for ``method path``, replacing earlier ones."""
        if not handlers:
            raise ValueError("at least one handler is required")
        self._routes[(method.upper(), path)] = list(handlers)
        return self

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handlers = self._routes.get((request.method, request.url.path))
        if not handlers:
            return httpx.Response(
                404, json={"message": f"No route for {request.method} {request.url.path}"}
            )
        handler = handlers.pop(0) if len(handlers) > 1 else handlers[0]
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def calls(self, method: str | None = None, path: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if (method is None or r.method == method.upper())
            and (path is None or r.url.path == path)
        ]

    def count(self, method: str | None = None, path: str | None = None) -> int:
        return len(self.calls(method, path))

    def bodies(self, method: str, path: str) -> list[Any]:
        """Decoded JSON bodies of the matching requests."""
        return [json.loads(r.content) for r in self.calls(method, path) if r.content]

    def reset_requests(self) -> None:
        self.requests.clear()


def healthy_backend() -> FakeBackend:
    """A backend where every endpoint the library uses succeeds."""
    backend = FakeBackend()
    backend.on("GET", "/auth/v1/user", ok({"id": "user-1", "email": "admin@example.com"}))
    backend.on("GET", "/auth/v1/health", ok({"name": "GoTrue", "version": "v2"}))
    backend.on("GET", "/rest/v1/", ok({"swagger": "2.0"}))
    backend.on("OPTIONS", "/functions/v1/execute-sql", empty(204))
    backend.on(
        "POST",
        "/functions/v1/execute-sql",
        ok({"success": True, "data": [{"?column?": 1}]}),
    )
    backend.on("POST", "/functions/v1/sql-executor", ok({"success": True}))
    backend.on("POST", "/rest/v1/rpc/exec_sql", ok({"success": True}))
    backend.on("POST", "/rest/v1/rpc/pg_query", ok([]))
    backend.on("GET", "/rest/v1/migration_logs", ok([]))
    backend.on("POST", "/rest/v1/migration_logs", ok([]))
    return backend


class RecordingSleep:
    """Awaitable sleep that records the requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def delays_ms(self) -> list[float]:
        return [round(d * 1000.0, 3) for d in self.delays]


__all__ = [
    "BASE_URL",
    "Handler",
    "FakeBackend",
    "RecordingSleep",
    "healthy_backend",
    "ok",
    "empty",
    "error",
    "edge_error",
    "missing_function",
    "missing_table",
    "garbage",
    "connect_error",
]
