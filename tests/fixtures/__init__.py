"""
Shared test fixtures for the remotesql library.

This module provides reusable test helpers:
- FakeBackend: httpx MockTransport router recording every request
- healthy_backend: A FakeBackend where every endpoint succeeds
- Response handlers (ok, error, edge_error, missing_function, ...)
- RecordingSleep: Backoff sleep that records delays instead of waiting

Usage:
    from tests.fixtures import (
        FakeBackend,
        RecordingSleep,
        healthy_backend,
        ok,
        error,
    )
"""

from tests.fixtures.backend import (
    BASE_URL,
    FakeBackend,
    Handler,
    RecordingSleep,
    connect_error,
    edge_error,
    empty,
    error,
    garbage,
    healthy_backend,
    missing_function,
    missing_table,
    ok,
)

__all__ = [
    "BASE_URL",
    "FakeBackend",
    "Handler",
    "RecordingSleep",
    "connect_error",
    "edge_error",
    "empty",
    "error",
    "garbage",
    "healthy_backend",
    "missing_function",
    "missing_table",
    "ok",
]
