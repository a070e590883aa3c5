"""
Diagnostic status of the bootstrapped server-side components.

The checker prefers the remote ``check_migration_system_status()`` function,
which inspects the catalog from inside the database. When that function is
missing or fails, the components that can be observed from the client are
probed one by one and the rest are reported as unknown (None).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from remotesql.client import BackendClient, BackendResponse
from remotesql.exceptions import ErrorCode
from remotesql.observability import Tracer, create_tracer
from remotesql.observability.attributes import ATTR_ERROR_TYPE
from remotesql.results import (
    ExecutionError,
    ModuleIntegrationsColumns,
    SystemStatusReport,
    SystemStatusResult,
    utc_now,
)

logger = logging.getLogger(__name__)

SOURCE_REMOTE_FUNCTION = "remote_function"
SOURCE_MANUAL_PROBE = "manual_probe"

COMPONENTS = (
    "exec_sql",
    "pg_query",
    "check_migration_system_status",
    "migration_logs",
    "rls_enabled",
    "policies_exist",
)

_MODULE_INTEGRATIONS_COLUMNS_SQL = (
    "SELECT column_name FROM information_schema.columns "
    "WHERE table_schema = 'public' AND table_name = 'module_integrations'"
)


class SystemStatusChecker:
    """
    Reports which migration system components are installed.

    Args:
        client: Backend transport
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        client: BackendClient,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._client = client
        self._config = client.config
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def check_migration_system_status(self) -> SystemStatusResult:
        """
        Build a SystemStatusReport. Never raises.

        Returns:
            SystemStatusResult; ``success=False`` only when nothing could be
            checked (network or authentication failure on every probe)
        """
        with self._tracer.span("remotesql.status.check", {}) as span:
            try:
                result = await self._check()
            except Exception as e:
                logger.exception("Unexpected error checking migration system status")
                result = SystemStatusResult(
                    success=False,
                    error=ExecutionError(
                        f"Unexpected error checking migration system status: {e}",
                        ErrorCode.UNEXPECTED_ERROR,
                    ),
                )
            if span is not None and result.error is not None:
                span.set_attribute(ATTR_ERROR_TYPE, result.error.code.value)
            return result

    async def _check(self) -> SystemStatusResult:
        response = await self._client.rpc(self._config.status_function)
        if response.ok:
            report = _report_from_remote(response.data)
            if report is not None:
                logger.debug(
                    "Migration system status retrieved",
                    extra={"status": report.status.value, "missing": report.missing_components},
                )
                return SystemStatusResult(success=True, status=report)
            logger.warning("Status function returned an unexpected payload")
        elif response.is_auth_error:
            return _auth_failure(response)
        else:
            logger.warning(
                "Status function unavailable, probing components manually",
                extra={"error": response.error, "status": response.status},
            )

        return await self._manual_probe()

    async def _manual_probe(self) -> SystemStatusResult:
        exec_response = await self._client.rpc(
            self._config.exec_function, {"sql_text": "SELECT 1"}
        )
        table_response = await self._client.select(self._config.log_table, "id", limit=1)

        responses = (exec_response, table_response)
        if all(r.is_auth_error for r in responses):
            return _auth_failure(exec_response)
        if all(r.is_transport_error for r in responses):
            logger.error(
                "Unable to reach the backend to check migration system status",
                extra={"error": exec_response.error},
            )
            return SystemStatusResult(
                success=False,
                error=ExecutionError(
                    f"Network error checking migration system status: {exec_response.error}",
                    ErrorCode.NETWORK_ERROR,
                ),
            )

        # Only exec_sql and the audit table can be checked without the status function
        components: dict[str, bool | None] = dict.fromkeys(COMPONENTS)
        components["exec_sql"] = _present(exec_response)
        components["migration_logs"] = _present(table_response)
        report = SystemStatusReport(components=components, source=SOURCE_MANUAL_PROBE)
        logger.info(
            "Migration system status probed manually",
            extra={"status": report.status.value, "missing": report.missing_components},
        )
        return SystemStatusResult(success=True, status=report)

    async def check_module_integrations_table(self) -> ModuleIntegrationsColumns:
        """
        Which timestamp columns exist on ``module_integrations``.

        Both flags are False when the columns cannot be listed.
        """
        try:
            response = await self._client.rpc("pg_query", {"query": _MODULE_INTEGRATIONS_COLUMNS_SQL})
        except Exception:
            logger.exception("Error checking module_integrations table")
            return ModuleIntegrationsColumns()

        if not response.ok:
            logger.error(
                "Error checking module_integrations table",
                extra={"error": response.error, "status": response.status},
            )
            return ModuleIntegrationsColumns()

        columns = _column_names(response.data)
        return ModuleIntegrationsColumns(
            has_created_at="created_at" in columns,
            has_updated_at="updated_at" in columns,
        )


def _present(response: BackendResponse) -> bool | None:
    """True if reachable, False if reported missing, None if undeterminable."""
    if response.ok:
        return True
    if response.is_auth_error or response.is_transport_error:
        return None
    return False


def _auth_failure(response: BackendResponse) -> SystemStatusResult:
    logger.error(
        "Authentication failed checking migration system status",
        extra={"status": response.status},
    )
    return SystemStatusResult(
        success=False,
        error=ExecutionError(
            "Authentication failed. Please log in again.",
            ErrorCode.AUTH_ERROR,
            status=response.status,
        ),
    )


def _report_from_remote(data: Any) -> SystemStatusReport | None:
    if not isinstance(data, dict) or not isinstance(data.get("components"), dict):
        return None

    components: dict[str, bool | None] = {}
    for name, value in data["components"].items():
        components[str(name)] = None if value is None else bool(value)

    return SystemStatusReport(
        components=components,
        timestamp=_parse_timestamp(data.get("timestamp")),
        source=SOURCE_REMOTE_FUNCTION,
    )


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.debug("Unparseable status timestamp", extra={"value": value})
    return utc_now()


def _column_names(data: Any) -> set[str]:
    rows = data if isinstance(data, list) else []
    names: set[str] = set()
    for row in rows:
        if isinstance(row, dict) and "column_name" in row:
            names.add(str(row["column_name"]))
        elif isinstance(row, str):
            names.add(row)
    return names


__all__ = [
    "COMPONENTS",
    "SOURCE_REMOTE_FUNCTION",
    "SOURCE_MANUAL_PROBE",
    "SystemStatusChecker",
]
