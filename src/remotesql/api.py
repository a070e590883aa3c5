"""
Public facade wiring every component together.

MigrationsApi builds the HTTP client, the audit store and recorder, the
connection prober, the bootstrapper, the executor, the migration catalog
and the status checker from one ClientConfig, and exposes the operations
admin tooling calls.

Example:
    >>> async with MigrationsApi.from_env() as api:
    ...     status = await api.check_migration_system_status()
    ...     if not status.success or status.status.missing_components:
    ...         await api.setup_migration_system()
    ...     result = await api.apply_migration("module_integrations_update")
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from remotesql._connection import create_engine_from_url
from remotesql.audit import (
    LogQueryResult,
    MigrationLogRecorder,
    MigrationLogStore,
    PostgreSQLMigrationLogStore,
    SupabaseMigrationLogStore,
)
from remotesql.bootstrap import SchemaBootstrapper
from remotesql.catalog import MigrationCatalog, MigrationDefinition
from remotesql.client import BackendClient
from remotesql.config import ClientConfig
from remotesql.direct import (
    ChainedDirectExecutor,
    DatabaseDirectExecutor,
    DirectSqlExecutor,
    RpcDirectExecutor,
)
from remotesql.executor import RemoteSqlExecutor
from remotesql.observability import Tracer, create_tracer
from remotesql.prober import ConnectionProber
from remotesql.results import (
    ConnectionCheckResult,
    ExecutionResult,
    ModuleIntegrationsColumns,
    SystemStatusResult,
)
from remotesql.retry import SleepFunc
from remotesql.status import SystemStatusChecker

logger = logging.getLogger(__name__)


class MigrationsApi:
    """
    Entry point for migrations, ad-hoc SQL and diagnostics.

    Collaborators not passed explicitly are built from ``config``:

    - log store: PostgreSQL (when an engine or ``database_url`` is
      available) or PostgREST
    - fallback: ``RpcDirectExecutor``, chained with
      ``DatabaseDirectExecutor`` when an engine is available

    Args:
        config: Connection settings
        http_client: Optional pre-built httpx.AsyncClient
        log_store: Optional audit store
        fallback: Optional direct executor
        engine: Optional SQLAlchemy engine for the direct database paths
        sleep: Awaitable sleep used by every retry loop
        tracer: Optional custom Tracer shared by every component
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        log_store: MigrationLogStore | None = None,
        fallback: DirectSqlExecutor | None = None,
        engine: AsyncEngine | None = None,
        sleep: SleepFunc | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._config = config
        self._tracer = tracer or create_tracer(__name__, config.enable_tracing)
        self._client = BackendClient(config, http_client=http_client, tracer=self._tracer)

        self._owns_engine = engine is None and config.database_url is not None
        if engine is None and config.database_url is not None:
            engine = create_engine_from_url(config.database_url)
        self._engine = engine

        if log_store is None:
            if engine is not None:
                log_store = PostgreSQLMigrationLogStore(
                    engine, config.log_table, tracer=self._tracer
                )
            else:
                log_store = SupabaseMigrationLogStore(self._client, tracer=self._tracer)

        if fallback is None:
            rpc = RpcDirectExecutor(self._client, tracer=self._tracer)
            if engine is not None:
                fallback = ChainedDirectExecutor(
                    [rpc, DatabaseDirectExecutor(engine, tracer=self._tracer)]
                )
            else:
                fallback = rpc

        retry = config.retry
        self._recorder = MigrationLogRecorder(log_store, tracer=self._tracer)
        self._prober = ConnectionProber(
            self._client, retry_config=retry, sleep=sleep, tracer=self._tracer
        )
        self._bootstrapper = SchemaBootstrapper(
            self._client,
            fallback,
            self._recorder,
            retry_config=retry,
            sleep=sleep,
            tracer=self._tracer,
        )
        self._executor = RemoteSqlExecutor(
            self._client,
            self._prober,
            self._recorder,
            fallback,
            retry_config=retry,
            sleep=sleep,
            tracer=self._tracer,
        )
        self._executor.bind_bootstrapper(self._bootstrapper)
        self._catalog = MigrationCatalog(self._executor, tracer=self._tracer)
        self._status = SystemStatusChecker(self._client, tracer=self._tracer)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **kwargs: object,
    ) -> MigrationsApi:
        """Build an API from ``ClientConfig.from_env``."""
        return cls(ClientConfig.from_env(environ), **kwargs)  # type: ignore[arg-type]

    async def __aenter__(self) -> MigrationsApi:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client and any engine this instance created."""
        await self._client.aclose()
        if self._owns_engine and self._engine is not None:
            await self._engine.dispose()

    # =========================================================================
    # Components
    # =========================================================================

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def client(self) -> BackendClient:
        return self._client

    @property
    def recorder(self) -> MigrationLogRecorder:
        return self._recorder

    @property
    def prober(self) -> ConnectionProber:
        return self._prober

    @property
    def bootstrapper(self) -> SchemaBootstrapper:
        return self._bootstrapper

    @property
    def executor(self) -> RemoteSqlExecutor:
        return self._executor

    @property
    def catalog(self) -> MigrationCatalog:
        return self._catalog

    @property
    def status_checker(self) -> SystemStatusChecker:
        return self._status

    # =========================================================================
    # Operations
    # =========================================================================

    async def get_migration_logs(self, limit: int | None = None) -> LogQueryResult:
        return await self._recorder.get_migration_logs(limit)

    async def create_migration_logs_table(self) -> ExecutionResult:
        return await self._bootstrapper.create_migration_logs_table()

    async def apply_migration(self, name: str) -> ExecutionResult:
        return await self._catalog.apply_migration(name, self._config.max_retries)

    async def run_custom_sql(self, sql: str, max_retries: int | None = None) -> ExecutionResult:
        """
        Execute ad-hoc SQL.

        Args:
            sql: SQL text
            max_retries: Edge function retry budget (defaults to
                ``config.max_retries``)
        """
        retries = self._config.max_retries if max_retries is None else max_retries
        return await self._executor.execute_sql(sql, retries)

    async def check_module_integrations_table(self) -> ModuleIntegrationsColumns:
        return await self._status.check_module_integrations_table()

    async def check_connection(self, max_retries: int = 2) -> ConnectionCheckResult:
        return await self._prober.check_connection(max_retries)

    async def setup_exec_sql_function(
        self,
        max_retries: int = 2,
        log_results: bool = True,
    ) -> ExecutionResult:
        return await self._bootstrapper.setup_exec_sql_function(max_retries, log_results)

    async def check_migration_system_status(self) -> SystemStatusResult:
        return await self._status.check_migration_system_status()

    async def setup_migration_system(self) -> ExecutionResult:
        return await self._bootstrapper.setup_migration_system()

    def list_migrations(self) -> list[MigrationDefinition]:
        return self._catalog.list_migrations()


__all__ = ["MigrationsApi"]
