"""
Named, versioned migrations dispatched through the remote executor.

The catalog maps migration names to literal SQL payloads. Applying a
migration sends its SQL unchanged to ``RemoteSqlExecutor.execute_sql`` with
the operation type ``migration:<name>``. Unknown names fail locally without
touching the network or the audit log.

Usage:
    # Default catalog with the bundled migrations
    catalog = MigrationCatalog(executor)
    result = await catalog.apply_migration("module_integrations_update")

    # Custom migrations
    catalog.register(MigrationDefinition("add_index", 3, "CREATE INDEX ..."))

    # Checksums of applied payloads are remembered
    catalog.has_drifted("module_integrations_update")
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

from remotesql.exceptions import ErrorCode, MigrationNotFoundError
from remotesql.executor import RemoteSqlExecutor
from remotesql.observability import Tracer, create_tracer
from remotesql.observability.attributes import ATTR_MIGRATION_NAME, ATTR_SQL_METHOD
from remotesql.results import DebugTrace, ExecutionResult, utc_now
from remotesql.schemas import get_schema

logger = logging.getLogger(__name__)

MIGRATION_OPERATION_PREFIX = "migration:"


class DuplicateMigrationError(ValueError):
    """
    Raised when registering a different payload under an existing name.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Migration '{name}' is already registered with a different payload. "
            f"Register it under a new name or bump its version."
        )


@dataclass(frozen=True)
class MigrationDefinition:
    """
    A named SQL payload.

    Attributes:
        name: Unique migration name
        version: Monotonic version number, used for ordering
        sql: Literal SQL, sent to the backend unchanged
        description: Human-readable summary
    """

    name: str
    version: int
    sql: str
    description: str = ""

    @property
    def checksum(self) -> str:
        """SHA-256 hex digest of the SQL payload."""
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AppliedMigration:
    """A successful application of a migration."""

    name: str
    version: int
    checksum: str
    operation_id: str | None = None
    applied_at: datetime = field(default_factory=utc_now)


def default_migrations() -> list[MigrationDefinition]:
    """The migrations bundled with the library."""
    return [
        MigrationDefinition(
            name="module_integrations_update",
            version=1,
            sql=get_schema("module_integrations_update"),
            description="Add timestamp columns, indexes, stats view and "
            "updated_at trigger to module_integrations",
        ),
        MigrationDefinition(
            name="fix_bilingual_descriptions",
            version=2,
            sql=get_schema("fix_bilingual_descriptions"),
            description="Add bilingual comments to support_tickets columns that exist",
        ),
    ]


class MigrationCatalog:
    """
    Registry of migrations with application history.

    Thread-Safety:
        Registration and history updates use an internal lock.

    Args:
        executor: Executor that runs migration SQL
        definitions: Migrations to register (defaults to the bundled ones)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> catalog = MigrationCatalog(executor)
        >>> [m.name for m in catalog.list_migrations()]
        ['module_integrations_update', 'fix_bilingual_descriptions']
    """

    def __init__(
        self,
        executor: RemoteSqlExecutor,
        definitions: Iterable[MigrationDefinition] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._executor = executor
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._definitions: dict[str, MigrationDefinition] = {}
        self._applied: dict[str, list[AppliedMigration]] = {}
        self._lock = threading.RLock()

        for definition in default_migrations() if definitions is None else definitions:
            self.register(definition)

    def register(self, definition: MigrationDefinition) -> MigrationDefinition:
        """
        Add a migration to the catalog.

        Re-registering an identical definition is a no-op.

        Raises:
            DuplicateMigrationError: If the name is taken by a different payload
        """
        with self._lock:
            existing = self._definitions.get(definition.name)
            if existing is not None:
                if existing == definition:
                    return existing
                raise DuplicateMigrationError(definition.name)
            self._definitions[definition.name] = definition
            logger.debug(
                "Registered migration",
                extra={"migration": definition.name, "version": definition.version},
            )
            return definition

    def get(self, name: str) -> MigrationDefinition:
        """
        Look up a migration by name.

        Raises:
            MigrationNotFoundError: If the name is not registered
        """
        with self._lock:
            definition = self._definitions.get(name)
            if definition is None:
                raise MigrationNotFoundError(name, sorted(self._definitions))
            return definition

    def list_migrations(self) -> list[MigrationDefinition]:
        """Registered migrations ordered by version."""
        with self._lock:
            return sorted(self._definitions.values(), key=lambda d: (d.version, d.name))

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._definitions

    def __iter__(self) -> Iterator[MigrationDefinition]:
        return iter(self.list_migrations())

    def __len__(self) -> int:
        with self._lock:
            return len(self._definitions)

    async def apply_migration(self, name: str, max_retries: int = 2) -> ExecutionResult:
        """
        Apply a registered migration.

        Args:
            name: Migration name
            max_retries: Retry budget handed to the executor

        Returns:
            The executor's result, or a failed result with
            UNKNOWN_MIGRATION for unregistered names (no network call, no
            audit entry). Never raises.
        """
        with self._lock:
            definition = self._definitions.get(name)
        if definition is None:
            logger.error("Unknown migration requested", extra={"migration": name})
            return ExecutionResult.failure(
                f"Unknown migration: {name}",
                ErrorCode.UNKNOWN_MIGRATION,
                details={"available": sorted(self._definitions)},
                debug_info=DebugTrace().finish(),
            )

        logger.info(
            "Applying migration",
            extra={"migration": name, "version": definition.version},
        )
        with self._tracer.span(
            "remotesql.catalog.apply_migration",
            {ATTR_MIGRATION_NAME: name},
        ) as span:
            result = await self._executor.execute_sql(
                definition.sql,
                max_retries,
                operation_type=f"{MIGRATION_OPERATION_PREFIX}{name}",
            )
            if span is not None and result.debug_info.final_method:
                span.set_attribute(ATTR_SQL_METHOD, result.debug_info.final_method)

        if result.success:
            applied = AppliedMigration(
                name=name,
                version=definition.version,
                checksum=definition.checksum,
                operation_id=result.debug_info.operation_id,
            )
            with self._lock:
                self._applied.setdefault(name, []).append(applied)
            logger.info(
                "Migration applied",
                extra={"migration": name, "method": result.debug_info.final_method},
            )
        else:
            logger.error(
                "Migration failed",
                extra={
                    "migration": name,
                    "error": result.error.message if result.error else None,
                },
            )
        return result

    def applied(self, name: str | None = None) -> list[AppliedMigration]:
        """Application history, oldest first, optionally for one migration."""
        with self._lock:
            if name is not None:
                return list(self._applied.get(name, []))
            history = [a for entries in self._applied.values() for a in entries]
        return sorted(history, key=lambda a: a.applied_at)

    def has_drifted(self, name: str) -> bool:
        """
        True when the last applied payload differs from the registered one.

        A migration that has never been applied has not drifted.

        Raises:
            MigrationNotFoundError: If the name is not registered
        """
        definition = self.get(name)
        history = self.applied(name)
        if not history:
            return False
        return history[-1].checksum != definition.checksum

    def replace(self, definition: MigrationDefinition) -> None:
        """Swap in a new payload for an existing migration name."""
        with self._lock:
            if definition.name not in self._definitions:
                raise MigrationNotFoundError(definition.name, sorted(self._definitions))
            self._definitions[definition.name] = definition


__all__ = [
    "MIGRATION_OPERATION_PREFIX",
    "DuplicateMigrationError",
    "MigrationDefinition",
    "AppliedMigration",
    "default_migrations",
    "MigrationCatalog",
]
