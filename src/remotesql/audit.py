"""
Migration audit log: entries, stores and the recorder.

Every SQL operation the library executes leaves one row in the
``migration_logs`` table. Writing that row is best effort: a failing store
is reported through the library logger and never turns a successful
operation into a failed one.

This module provides:
- LogStatus: Outcome recorded for an operation
- MigrationLogEntry: Pydantic model of one audit row
- OperationData: What the caller knows about an operation before it runs
- LogQueryResult: Outcome of reading the audit log
- MigrationLogStore: Protocol for audit persistence
- SupabaseMigrationLogStore: PostgREST-backed store
- PostgreSQLMigrationLogStore: SQLAlchemy-backed store for direct DSNs
- InMemoryMigrationLogStore: Store for tests and local use
- MigrationLogRecorder: Builds entries from results and writes them safely

Usage:
    >>> store = SupabaseMigrationLogStore(client)
    >>> recorder = MigrationLogRecorder(store)
    >>>
    >>> start = utc_now()
    >>> result = await executor.execute_sql("SELECT 1")
    >>> await recorder.safely_log_operation(
    ...     OperationData("op-1", "custom_sql", "SELECT 1", "edge-function"),
    ...     start,
    ...     result,
    ... )
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy import text

from remotesql._connection import DatabaseBind, execute_with_connection
from remotesql.client import BackendClient
from remotesql.exceptions import ErrorCode, LogStoreError
from remotesql.observability import Tracer, create_tracer
from remotesql.observability.attributes import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    ATTR_OPERATION_ID,
    ATTR_OPERATION_TYPE,
    ATTR_SQL_METHOD,
)
from remotesql.results import ExecutionError, ExecutionResult, utc_now
from remotesql.serialization import json_dumps, json_loads, to_jsonable

logger = logging.getLogger(__name__)

SQL_PREVIEW_LENGTH = 150
EMPTY_SQL_PREVIEW = "[Empty SQL]"
EMPTY_SQL_HASH = "empty"

TABLE_MISSING_MESSAGE = "Migration logs table does not exist"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def build_sql_preview(sql: str) -> str:
    """First 150 characters of ``sql`` (plus "..."), or "[Empty SQL]"."""
    if not sql:
        return EMPTY_SQL_PREVIEW
    if len(sql) > SQL_PREVIEW_LENGTH:
        return f"{sql[:SQL_PREVIEW_LENGTH]}..."
    return sql


def compute_sql_hash(sql: str) -> str:
    """Stable SHA-256 hex digest of ``sql``, or "empty" for empty SQL."""
    if not sql:
        return EMPTY_SQL_HASH
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


class LogStatus(Enum):
    """Outcome recorded in ``migration_logs.status``."""

    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


class MigrationLogEntry(BaseModel):
    """
    One row of the ``migration_logs`` audit table.

    ``sql_preview`` and ``sql_hash`` are derived from ``sql_content`` when
    not supplied. ``id`` and ``created_at`` are assigned by the store.

    Attributes:
        id: Store-assigned identifier
        operation_id: Correlation id of the logical operation
        operation_type: e.g. "custom_sql", "setup_exec_sql", "migration:<name>"
        sql_content: Full SQL text
        sql_preview: Display preview of the SQL
        sql_hash: Digest of the SQL for deduplication
        status: success, failed or error
        method_used: Strategy that produced the result
        execution_time_ms: Wall time of the operation
        details: JSON diagnostics (final method, attempts, error)
        created_at: When the row was written
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = Field(default=None, description="Store-assigned identifier")
    operation_id: str = Field(..., min_length=1)
    operation_type: str = Field(..., min_length=1)
    sql_content: str = ""
    sql_preview: str = ""
    sql_hash: str = ""
    status: LogStatus
    method_used: str = "unknown"
    execution_time_ms: int = Field(default=0, ge=0)
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_sql_fields(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            data = dict(data)
            sql = data.get("sql_content") or ""
            if not data.get("sql_preview"):
                data["sql_preview"] = build_sql_preview(sql)
            if not data.get("sql_hash"):
                data["sql_hash"] = compute_sql_hash(sql)
        return data

    @field_validator("details", mode="before")
    @classmethod
    def _parse_details(cls, value: Any) -> Any:
        # Stores hand JSONB back as text or as a decoded object
        if value is None:
            return {}
        if isinstance(value, str):
            decoded = json_loads(value) if value else {}
            return decoded if isinstance(decoded, dict) else {"value": decoded}
        return value

    def to_row(self) -> dict[str, Any]:
        """Column values for an INSERT (``id`` and an unset ``created_at`` omitted)."""
        row = self.model_dump(mode="json", exclude={"id"})
        row["details"] = to_jsonable(self.details)
        if self.created_at is None:
            row.pop("created_at")
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> MigrationLogEntry:
        return cls.model_validate(dict(row))


@dataclass(frozen=True)
class OperationData:
    """
    Identity of an operation being logged.

    Attributes:
        operation_id: Correlation id
        operation_type: Audit operation type
        sql_content: SQL that was executed
        method_used: Strategy that produced the result
    """

    operation_id: str
    operation_type: str
    sql_content: str
    method_used: str


@dataclass
class LogQueryResult:
    """Outcome of ``MigrationLogRecorder.get_migration_logs``."""

    success: bool
    data: list[MigrationLogEntry] = field(default_factory=list)
    error: ExecutionError | None = None


@runtime_checkable
class MigrationLogStore(Protocol):
    """
    Protocol for audit log persistence.

    Implementations must ensure:
    - Entries are append-only; nothing is updated or deleted
    - ``list_entries`` returns newest first (``created_at`` descending)
    - Failures raise LogStoreError, with ``missing_table=True`` when the
      audit table does not exist
    """

    async def append(self, entry: MigrationLogEntry) -> MigrationLogEntry:
        """
        Persist an entry.

        Returns:
            The stored entry, with ``id`` and ``created_at`` when the store
            reports them
        """
        ...

    async def list_entries(self, limit: int | None = None) -> list[MigrationLogEntry]:
        """All entries ordered by ``created_at`` descending."""
        ...

    async def table_exists(self) -> bool:
        """
        Check whether the audit table exists.

        Raises:
            LogStoreError: If existence cannot be determined
        """
        ...


class SupabaseMigrationLogStore:
    """
    Audit store backed by the PostgREST ``/rest/v1/<table>`` endpoint.

    Example:
        >>> store = SupabaseMigrationLogStore(client)
        >>> await store.table_exists()
        True
    """

    def __init__(
        self,
        client: BackendClient,
        table: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._client = client
        self._table = table or client.config.log_table
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def table(self) -> str:
        return self._table

    async def append(self, entry: MigrationLogEntry) -> MigrationLogEntry:
        with self._tracer.span(
            "remotesql.audit_store.append",
            {ATTR_DB_TABLE: self._table, ATTR_OPERATION_ID: entry.operation_id},
        ):
            response = await self._client.insert(self._table, [entry.to_row()])
            if not response.ok:
                raise LogStoreError(
                    f"Failed to insert audit entry: {response.error}",
                    missing_table=response.indicates_missing_table(self._table),
                    status=response.status,
                )
            if isinstance(response.data, list) and response.data:
                return MigrationLogEntry.from_row(response.data[0])
            return entry

    async def list_entries(self, limit: int | None = None) -> list[MigrationLogEntry]:
        with self._tracer.span(
            "remotesql.audit_store.list_entries",
            {ATTR_DB_TABLE: self._table},
        ):
            response = await self._client.select(
                self._table, "*", order="created_at.desc", limit=limit
            )
            if not response.ok:
                raise LogStoreError(
                    f"Failed to read audit entries: {response.error}",
                    missing_table=response.indicates_missing_table(self._table),
                    status=response.status,
                )
            rows = response.data if isinstance(response.data, list) else []
            return [MigrationLogEntry.from_row(row) for row in rows]

    async def table_exists(self) -> bool:
        response = await self._client.select(self._table, "id", limit=1)
        if response.ok:
            return True
        if response.indicates_missing_table(self._table) or response.status == 404:
            return False
        raise LogStoreError(
            f"Could not determine whether {self._table} exists: {response.error}",
            status=response.status,
        )


class PostgreSQLMigrationLogStore:
    """
    Audit store writing through a direct SQLAlchemy connection.

    Used when ``ClientConfig.database_url`` is configured.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://...")
        >>> store = PostgreSQLMigrationLogStore(engine)
        >>> stored = await store.append(entry)
        >>> stored.id
        42
    """

    def __init__(
        self,
        conn: DatabaseBind,
        table: str = "migration_logs",
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        self._conn = conn
        self._table = table
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def append(self, entry: MigrationLogEntry) -> MigrationLogEntry:
        with self._tracer.span(
            "remotesql.audit_store.append",
            {
                ATTR_OPERATION_ID: entry.operation_id,
                ATTR_DB_SYSTEM: "postgresql",
                ATTR_DB_OPERATION: "INSERT",
                ATTR_DB_TABLE: self._table,
            },
        ):
            # Table name validated against _IDENTIFIER in __init__
            query = text(f"""
                INSERT INTO {self._table} (
                    operation_id, operation_type, sql_content, sql_preview,
                    sql_hash, status, method_used, execution_time_ms, details,
                    created_at
                ) VALUES (
                    :operation_id, :operation_type, :sql_content, :sql_preview,
                    :sql_hash, :status, :method_used, :execution_time_ms,
                    CAST(:details AS JSONB), COALESCE(:created_at, NOW())
                )
                RETURNING id, created_at
            """)  # nosec B608 - identifier validated

            params = {
                "operation_id": entry.operation_id,
                "operation_type": entry.operation_type,
                "sql_content": entry.sql_content,
                "sql_preview": entry.sql_preview,
                "sql_hash": entry.sql_hash,
                "status": entry.status.value,
                "method_used": entry.method_used,
                "execution_time_ms": entry.execution_time_ms,
                "details": json_dumps(entry.details),
                "created_at": entry.created_at,
            }

            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    result = await conn.execute(query, params)
                    row = result.fetchone()
            except Exception as e:
                raise LogStoreError(
                    f"Failed to insert audit entry: {e}",
                    missing_table=_looks_like_missing_table(e, self._table),
                ) from e

            if row is None:
                raise LogStoreError("Failed to insert audit entry - no row returned")
            return entry.model_copy(update={"id": int(row[0]), "created_at": row[1]})

    async def list_entries(self, limit: int | None = None) -> list[MigrationLogEntry]:
        with self._tracer.span(
            "remotesql.audit_store.list_entries",
            {
                ATTR_DB_SYSTEM: "postgresql",
                ATTR_DB_OPERATION: "SELECT",
                ATTR_DB_TABLE: self._table,
            },
        ):
            limit_clause = f"LIMIT {int(limit)}" if limit else ""
            query = text(f"""
                SELECT
                    id, operation_id, operation_type, sql_content, sql_preview,
                    sql_hash, status, method_used, execution_time_ms, details,
                    created_at
                FROM {self._table}
                ORDER BY created_at DESC
                {limit_clause}
            """)  # nosec B608 - identifier validated, limit is an integer

            try:
                async with execute_with_connection(self._conn, transactional=False) as conn:
                    result = await conn.execute(query)
                    rows = result.fetchall()
            except Exception as e:
                raise LogStoreError(
                    f"Failed to read audit entries: {e}",
                    missing_table=_looks_like_missing_table(e, self._table),
                ) from e

            return [self._row_to_entry(row) for row in rows]

    async def table_exists(self) -> bool:
        query = text("""
            SELECT EXISTS (
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = 'public' AND table_name = :table
            )
        """)
        try:
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"table": self._table})
                row = result.fetchone()
        except Exception as e:
            raise LogStoreError(f"Could not determine whether {self._table} exists: {e}") from e
        return bool(row[0]) if row is not None else False

    def _row_to_entry(self, row: Sequence[Any]) -> MigrationLogEntry:
        return MigrationLogEntry(
            id=row[0],
            operation_id=row[1],
            operation_type=row[2],
            sql_content=row[3] or "",
            sql_preview=row[4] or "",
            sql_hash=row[5] or "",
            status=LogStatus(row[6]),
            method_used=row[7],
            execution_time_ms=row[8],
            details=row[9],
            created_at=row[10],
        )


def _looks_like_missing_table(error: Exception, table: str) -> bool:
    message = str(error).lower()
    return table.lower() in message and "does not exist" in message


class InMemoryMigrationLogStore:
    """
    In-memory audit store for testing and local use.

    All data is lost when the process terminates. The store can simulate a
    missing audit table: with ``table_present=False`` every operation except
    ``table_exists`` raises LogStoreError until ``create_table`` is called.

    Example:
        >>> store = InMemoryMigrationLogStore()
        >>> await store.append(entry)
        >>> len(store.entries)
        1
    """

    def __init__(
        self,
        table_present: bool = True,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._table_present = table_present
        self._entries: list[MigrationLogEntry] = []
        self._next_id = 1
        self._lock: asyncio.Lock = asyncio.Lock()

    @property
    def entries(self) -> list[MigrationLogEntry]:
        """Stored entries in insertion order."""
        return list(self._entries)

    def create_table(self) -> None:
        self._table_present = True

    async def append(self, entry: MigrationLogEntry) -> MigrationLogEntry:
        with self._tracer.span(
            "remotesql.audit_store.append",
            {ATTR_OPERATION_ID: entry.operation_id},
        ):
            async with self._lock:
                self._require_table()
                stored = entry.model_copy(
                    update={"id": self._next_id, "created_at": entry.created_at or utc_now()}
                )
                self._next_id += 1
                self._entries.append(stored)
                return stored

    async def list_entries(self, limit: int | None = None) -> list[MigrationLogEntry]:
        async with self._lock:
            self._require_table()
            # Stable sort keeps insertion order for identical timestamps
            ordered = sorted(
                reversed(self._entries),
                key=lambda e: e.created_at or utc_now(),
                reverse=True,
            )
            return ordered[:limit] if limit else ordered

    async def table_exists(self) -> bool:
        return self._table_present

    def _require_table(self) -> None:
        if not self._table_present:
            raise LogStoreError(TABLE_MISSING_MESSAGE, missing_table=True)


class MigrationLogRecorder:
    """
    Writes audit entries for executed SQL operations.

    Writes are awaited so the row lands before the logged operation
    returns, but their failures are only reported through the library
    logger.

    Args:
        store: Audit persistence
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        store: MigrationLogStore,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def store(self) -> MigrationLogStore:
        return self._store

    async def log_migration_operation(self, entry: MigrationLogEntry) -> None:
        """
        Persist ``entry``; store failures are logged, not raised.

        Args:
            entry: The entry to write
        """
        with self._tracer.span(
            "remotesql.audit.record",
            {
                ATTR_OPERATION_ID: entry.operation_id,
                ATTR_OPERATION_TYPE: entry.operation_type,
                ATTR_SQL_METHOD: entry.method_used,
            },
        ):
            try:
                await self._store.append(entry)
            except Exception as e:
                logger.error(
                    "Failed to log migration operation",
                    extra={
                        "operation_id": entry.operation_id,
                        "operation_type": entry.operation_type,
                        "error": str(e),
                    },
                )
                return

            logger.debug(
                "Logged migration operation",
                extra={
                    "operation_id": entry.operation_id,
                    "status": entry.status.value,
                    "method_used": entry.method_used,
                },
            )

    async def safely_log_operation(
        self,
        operation_data: OperationData,
        start_time: datetime,
        result: ExecutionResult,
    ) -> None:
        """
        Build an entry from an operation result and write it.

        ``execution_time_ms`` is measured from ``start_time``. ``status`` is
        "success" for successful results, "error" for UNEXPECTED_ERROR
        results and "failed" otherwise. ``details`` carries the trace summary
        and the error message. This method never raises, whatever the shape
        of the result's error payload.

        Args:
            operation_data: Identity of the operation
            start_time: When the operation started
            result: Outcome of the operation
        """
        try:
            entry = self.build_entry(operation_data, start_time, result)
        except Exception as e:
            logger.warning(
                "Failed to build migration log entry (non-critical)",
                extra={"operation_id": operation_data.operation_id, "error": repr(e)},
            )
            return
        await self.log_migration_operation(entry)

    def build_entry(
        self,
        operation_data: OperationData,
        start_time: datetime,
        result: ExecutionResult,
    ) -> MigrationLogEntry:
        elapsed = utc_now() - start_time
        execution_time_ms = max(0, int(elapsed.total_seconds() * 1000))

        if result.success:
            status = LogStatus.SUCCESS
        elif result.error_code is ErrorCode.UNEXPECTED_ERROR:
            status = LogStatus.ERROR
        else:
            status = LogStatus.FAILED

        trace = result.debug_info
        details: dict[str, Any] = {
            "final_method": trace.final_method,
            "total_attempts": trace.total_attempts,
            "methods": list(trace.methods),
        }
        if trace.warnings:
            details["warnings"] = list(trace.warnings)
        if result.error is not None:
            details["error"] = _error_text(result.error)
            details["error_code"] = result.error.code.value
            if result.error.details is not None:
                details["error_details"] = to_jsonable(result.error.details)

        return MigrationLogEntry(
            operation_id=operation_data.operation_id,
            operation_type=operation_data.operation_type,
            sql_content=operation_data.sql_content,
            status=status,
            method_used=operation_data.method_used,
            execution_time_ms=execution_time_ms,
            details=to_jsonable(details),
        )

    async def get_migration_logs(self, limit: int | None = None) -> LogQueryResult:
        """
        Read the audit log, newest first.

        The table's existence is checked first; when it is absent the result
        fails with "Migration logs table does not exist" and nothing is
        written.
        """
        try:
            if not await self._store.table_exists():
                logger.warning(TABLE_MISSING_MESSAGE)
                return LogQueryResult(
                    success=False,
                    error=ExecutionError(TABLE_MISSING_MESSAGE, ErrorCode.TABLE_MISSING),
                )
            entries = await self._store.list_entries(limit)
        except LogStoreError as e:
            code = ErrorCode.TABLE_MISSING if e.missing_table else ErrorCode.SQL_ERROR
            message = TABLE_MISSING_MESSAGE if e.missing_table else str(e)
            logger.error(
                "Error fetching migration logs",
                extra={"error": str(e), "status": e.status},
            )
            return LogQueryResult(
                success=False,
                error=ExecutionError(message, code, status=e.status),
            )
        except Exception as e:
            logger.exception("Unexpected error fetching migration logs")
            return LogQueryResult(
                success=False,
                error=ExecutionError(f"Unexpected error: {e}", ErrorCode.UNEXPECTED_ERROR),
            )

        return LogQueryResult(success=True, data=entries)


def _error_text(error: ExecutionError) -> str:
    message = error.message
    if isinstance(message, str):
        return message
    return json_dumps(message)


__all__ = [
    "SQL_PREVIEW_LENGTH",
    "TABLE_MISSING_MESSAGE",
    "build_sql_preview",
    "compute_sql_hash",
    "LogStatus",
    "MigrationLogEntry",
    "OperationData",
    "LogQueryResult",
    "MigrationLogStore",
    "SupabaseMigrationLogStore",
    "PostgreSQLMigrationLogStore",
    "InMemoryMigrationLogStore",
    "MigrationLogRecorder",
]
