"""
Unit tests for MigrationCatalog.
"""

from __future__ import annotations

import pytest

from remotesql.audit import LogStatus
from remotesql.catalog import (
    DuplicateMigrationError,
    MigrationCatalog,
    MigrationDefinition,
    default_migrations,
)
from remotesql.exceptions import ErrorCode, MigrationNotFoundError
from tests.fixtures import edge_error, error, missing_function

EDGE = "/functions/v1/execute-sql"


@pytest.fixture
def catalog(executor, tracer):
    return MigrationCatalog(executor, tracer=tracer)


class TestDefaultMigrations:
    def test_bundled_migrations(self):
        names = [m.name for m in default_migrations()]
        assert names == ["module_integrations_update", "fix_bilingual_descriptions"]

    def test_payloads_are_idempotent_sql(self):
        migrations = {m.name: m for m in default_migrations()}
        update = migrations["module_integrations_update"].sql
        assert "ADD COLUMN IF NOT EXISTS" in update
        assert "CREATE INDEX IF NOT EXISTS" in update
        assert "support_tickets" in migrations["fix_bilingual_descriptions"].sql

    def test_checksum_tracks_payload(self):
        a = MigrationDefinition("m", 1, "SELECT 1")
        b = MigrationDefinition("m", 1, "SELECT 2")
        assert a.checksum == MigrationDefinition("other", 9, "SELECT 1").checksum
        assert a.checksum != b.checksum


class TestRegistration:
    def test_default_catalog(self, catalog):
        assert len(catalog) == 2
        assert "module_integrations_update" in catalog
        assert [m.version for m in catalog] == [1, 2]

    def test_register_orders_by_version(self, executor):
        catalog = MigrationCatalog(
            executor,
            [MigrationDefinition("b", 2, "SELECT 2"), MigrationDefinition("a", 1, "SELECT 1")],
            enable_tracing=False,
        )
        assert [m.name for m in catalog.list_migrations()] == ["a", "b"]

    def test_identical_registration_is_noop(self, catalog):
        definition = MigrationDefinition("extra", 3, "SELECT 3")
        catalog.register(definition)
        catalog.register(definition)
        assert len(catalog) == 3

    def test_conflicting_registration_rejected(self, catalog):
        catalog.register(MigrationDefinition("extra", 3, "SELECT 3"))
        with pytest.raises(DuplicateMigrationError, match="extra"):
            catalog.register(MigrationDefinition("extra", 3, "SELECT 4"))

    def test_get_unknown(self, catalog):
        with pytest.raises(MigrationNotFoundError) as exc_info:
            catalog.get("nope")
        assert exc_info.value.available == [
            "fix_bilingual_descriptions",
            "module_integrations_update",
        ]


class TestApplyMigration:
    @pytest.mark.asyncio
    async def test_sends_payload_unchanged(self, catalog, backend, log_store):
        definition = catalog.get("module_integrations_update")

        result = await catalog.apply_migration("module_integrations_update")

        assert result.success
        [body] = backend.bodies("POST", EDGE)
        assert body["sql"] == definition.sql
        [entry] = log_store.entries
        assert entry.operation_type == "migration:module_integrations_update"
        assert entry.status is LogStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_unknown_migration_touches_nothing(self, catalog, backend, log_store):
        result = await catalog.apply_migration("drop_everything")

        assert not result.success
        assert result.error.message == "Unknown migration: drop_everything"
        assert result.error.code is ErrorCode.UNKNOWN_MIGRATION
        assert backend.count() == 0
        assert log_store.entries == []

    @pytest.mark.asyncio
    async def test_records_history(self, catalog):
        await catalog.apply_migration("fix_bilingual_descriptions")

        [applied] = catalog.applied("fix_bilingual_descriptions")
        assert applied.version == 2
        assert applied.checksum == catalog.get("fix_bilingual_descriptions").checksum
        assert applied.operation_id is not None
        assert catalog.applied() == [applied]

    @pytest.mark.asyncio
    async def test_failure_not_recorded(self, catalog, backend):
        backend.on("POST", EDGE, error(401, "JWT expired"))

        result = await catalog.apply_migration("fix_bilingual_descriptions", max_retries=0)

        assert result.error.code is ErrorCode.AUTH_ERROR
        assert catalog.applied() == []

    @pytest.mark.asyncio
    async def test_failure_surfaces_backend_error(self, catalog, backend):
        backend.on("POST", EDGE, edge_error('column "priority" does not exist'))
        backend.on("POST", "/rest/v1/rpc/exec_sql", missing_function())
        backend.on(
            "POST", "/rest/v1/rpc/pg_query", error(400, 'column "priority" does not exist', "42703")
        )

        result = await catalog.apply_migration("fix_bilingual_descriptions", max_retries=0)

        assert result.error.message == 'column "priority" does not exist'

    @pytest.mark.asyncio
    async def test_drift_detection(self, catalog):
        assert catalog.has_drifted("module_integrations_update") is False

        await catalog.apply_migration("module_integrations_update")
        assert catalog.has_drifted("module_integrations_update") is False

        original = catalog.get("module_integrations_update")
        catalog.replace(MigrationDefinition(original.name, original.version, original.sql + "\n-- v2"))
        assert catalog.has_drifted("module_integrations_update") is True

    def test_replace_unknown(self, catalog):
        with pytest.raises(MigrationNotFoundError):
            catalog.replace(MigrationDefinition("nope", 1, "SELECT 1"))

    @pytest.mark.asyncio
    async def test_traced(self, catalog, tracer):
        await catalog.apply_migration("module_integrations_update")

        attrs = tracer.attributes_for("remotesql.catalog.apply_migration")
        assert attrs["remotesql.migration.name"] == "module_integrations_update"
