"""
remotesql - Client-driven SQL migrations for hosted Postgres backends.

This library provides:
- Remote SQL execution through an edge function with retry, backoff and
  direct-execution fallback
- Connection probing with authentication short-circuit
- Idempotent bootstrapping of the server-side exec_sql function, audit
  table and status function
- An audit log of every executed operation
- A versioned catalog of named migrations
- A diagnostic report of the installed server-side components
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("remotesql-py")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Facade
from remotesql.api import MigrationsApi

# Audit log
from remotesql.audit import (
    InMemoryMigrationLogStore,
    LogQueryResult,
    LogStatus,
    MigrationLogEntry,
    MigrationLogRecorder,
    MigrationLogStore,
    OperationData,
    PostgreSQLMigrationLogStore,
    SupabaseMigrationLogStore,
)

# Components
from remotesql.bootstrap import SchemaBootstrapper
from remotesql.catalog import (
    AppliedMigration,
    DuplicateMigrationError,
    MigrationCatalog,
    MigrationDefinition,
)
from remotesql.client import BackendClient, BackendResponse
from remotesql.config import ClientConfig
from remotesql.direct import (
    ChainedDirectExecutor,
    DatabaseDirectExecutor,
    DirectSqlExecutor,
    RpcDirectExecutor,
)

# Exceptions and error codes
from remotesql.exceptions import (
    ConfigurationError,
    ErrorCode,
    LogStoreError,
    MigrationNotFoundError,
    RemoteSqlError,
    TemplateNotFoundError,
)
from remotesql.executor import RemoteSqlExecutor
from remotesql.prober import ConnectionProber

# Results
from remotesql.results import (
    AttemptRecord,
    ConnectionCheckResult,
    DebugTrace,
    ExecutionError,
    ExecutionResult,
    ModuleIntegrationsColumns,
    ProbeErrorType,
    ProbeResult,
    SystemStatus,
    SystemStatusReport,
    SystemStatusResult,
)

# Retry
from remotesql.retry import (
    AttemptContext,
    AttemptVerdict,
    RetryConfig,
    RetryOutcome,
    calculate_backoff_ms,
    retry_with_backoff,
    verdict_for,
)
from remotesql.status import SystemStatusChecker

__all__ = [
    "__version__",
    # Facade
    "MigrationsApi",
    # Configuration
    "ClientConfig",
    "RetryConfig",
    # Components
    "BackendClient",
    "BackendResponse",
    "ConnectionProber",
    "RemoteSqlExecutor",
    "SchemaBootstrapper",
    "MigrationCatalog",
    "SystemStatusChecker",
    # Direct execution
    "DirectSqlExecutor",
    "RpcDirectExecutor",
    "DatabaseDirectExecutor",
    "ChainedDirectExecutor",
    # Audit log
    "LogStatus",
    "MigrationLogEntry",
    "OperationData",
    "LogQueryResult",
    "MigrationLogStore",
    "MigrationLogRecorder",
    "SupabaseMigrationLogStore",
    "PostgreSQLMigrationLogStore",
    "InMemoryMigrationLogStore",
    # Catalog
    "MigrationDefinition",
    "AppliedMigration",
    "DuplicateMigrationError",
    # Results
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
    # Retry
    "AttemptContext",
    "AttemptVerdict",
    "RetryOutcome",
    "calculate_backoff_ms",
    "retry_with_backoff",
    "verdict_for",
    # Exceptions
    "ErrorCode",
    "RemoteSqlError",
    "ConfigurationError",
    "MigrationNotFoundError",
    "LogStoreError",
    "TemplateNotFoundError",
]
