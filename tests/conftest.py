"""
Shared pytest fixtures for the remotesql library tests.

This module provides:
- Configuration fixtures (config, session_config)
- Backend fixtures (backend, http_client, client)
- Collaborator fixtures (sleep, tracer, log_store, recorder)
- Component fixtures (prober, fallback, bootstrapper, executor)
- Facade fixture (api)

Every component shares the same FakeBackend, so tests adjust routes on
``backend`` and assert on ``backend.requests``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from remotesql.api import MigrationsApi
from remotesql.audit import InMemoryMigrationLogStore, MigrationLogRecorder
from remotesql.bootstrap import SchemaBootstrapper
from remotesql.client import BackendClient
from remotesql.config import ClientConfig
from remotesql.direct import RpcDirectExecutor
from remotesql.executor import RemoteSqlExecutor
from remotesql.observability import MockTracer
from remotesql.prober import ConnectionProber
from tests.fixtures import BASE_URL, FakeBackend, RecordingSleep, healthy_backend

# ============================================================================
# Configuration
# ============================================================================


@pytest.fixture
def config() -> ClientConfig:
    """Configuration using the anonymous key only."""
    return ClientConfig(url=BASE_URL, anon_key="anon-key", enable_tracing=False)


@pytest.fixture
def session_config() -> ClientConfig:
    """Configuration carrying a user access token."""
    return ClientConfig(
        url=BASE_URL,
        anon_key="anon-key",
        access_token="user-token",
        enable_tracing=False,
    )


# ============================================================================
# Backend
# ============================================================================


@pytest.fixture
def backend() -> FakeBackend:
    """A backend where every endpoint succeeds; tests override routes."""
    return healthy_backend()


@pytest_asyncio.fixture
async def http_client(backend: FakeBackend) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with backend.http_client() as client:
        yield client


@pytest.fixture
def tracer() -> MockTracer:
    return MockTracer()


@pytest.fixture
def client(config: ClientConfig, http_client: httpx.AsyncClient, tracer: MockTracer) -> BackendClient:
    return BackendClient(config, http_client=http_client, tracer=tracer)


# ============================================================================
# Collaborators
# ============================================================================


@pytest.fixture
def sleep() -> RecordingSleep:
    """Backoff sleep that records delays instead of waiting."""
    return RecordingSleep()


@pytest.fixture
def log_store() -> InMemoryMigrationLogStore:
    return InMemoryMigrationLogStore(enable_tracing=False)


@pytest.fixture
def recorder(log_store: InMemoryMigrationLogStore, tracer: MockTracer) -> MigrationLogRecorder:
    return MigrationLogRecorder(log_store, tracer=tracer)


# ============================================================================
# Components
# ============================================================================


@pytest.fixture
def prober(client: BackendClient, sleep: RecordingSleep, tracer: MockTracer) -> ConnectionProber:
    return ConnectionProber(client, sleep=sleep, tracer=tracer)


@pytest.fixture
def fallback(client: BackendClient, tracer: MockTracer) -> RpcDirectExecutor:
    return RpcDirectExecutor(client, tracer=tracer)


@pytest.fixture
def bootstrapper(
    client: BackendClient,
    fallback: RpcDirectExecutor,
    recorder: MigrationLogRecorder,
    sleep: RecordingSleep,
    tracer: MockTracer,
) -> SchemaBootstrapper:
    return SchemaBootstrapper(client, fallback, recorder, sleep=sleep, tracer=tracer)


@pytest.fixture
def executor(
    client: BackendClient,
    prober: ConnectionProber,
    recorder: MigrationLogRecorder,
    fallback: RpcDirectExecutor,
    bootstrapper: SchemaBootstrapper,
    sleep: RecordingSleep,
    tracer: MockTracer,
) -> RemoteSqlExecutor:
    executor = RemoteSqlExecutor(
        client, prober, recorder, fallback, sleep=sleep, tracer=tracer
    )
    executor.bind_bootstrapper(bootstrapper)
    return executor


@pytest.fixture
def api(
    config: ClientConfig,
    http_client: httpx.AsyncClient,
    log_store: InMemoryMigrationLogStore,
    sleep: RecordingSleep,
    tracer: MockTracer,
) -> MigrationsApi:
    return MigrationsApi(
        config,
        http_client=http_client,
        log_store=log_store,
        sleep=sleep,
        tracer=tracer,
    )
