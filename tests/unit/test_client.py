"""
Unit tests for the HTTP transport.
"""

from __future__ import annotations

import pytest

from remotesql.client import BackendClient, BackendResponse
from remotesql.exceptions import ErrorCode
from remotesql.observability import SpanKind
from tests.fixtures import (
    connect_error,
    edge_error,
    error,
    garbage,
    missing_function,
    missing_table,
    ok,
)


class TestBackendResponse:
    def test_ok_requires_2xx_without_error(self):
        assert BackendResponse(200, data={"x": 1}).ok
        assert not BackendResponse(200, error="failed").ok
        assert not BackendResponse(500).ok
        assert not BackendResponse(200, parse_error=True).ok

    @pytest.mark.parametrize(
        ("response", "expected"),
        [
            (BackendResponse(401, error="jwt expired"), ErrorCode.AUTH_ERROR),
            (BackendResponse(403, error="forbidden"), ErrorCode.AUTH_ERROR),
            (BackendResponse(0, error="refused"), ErrorCode.NETWORK_ERROR),
            (BackendResponse(520, error="origin"), ErrorCode.NETWORK_ERROR),
            (BackendResponse(200, error="bad", parse_error=True), ErrorCode.PARSE_ERROR),
            (BackendResponse(400, error="syntax error"), ErrorCode.SQL_ERROR),
            (BackendResponse(200), None),
        ],
    )
    def test_classify(self, response, expected):
        assert response.classify() is expected

    def test_missing_function_needs_name_in_message(self):
        response = BackendResponse(
            404, error="Could not find the function public.exec_sql(sql_text)", error_code="PGRST202"
        )
        assert response.indicates_missing_function("exec_sql")
        assert response.classify("exec_sql") is ErrorCode.FUNCTION_MISSING
        assert not response.indicates_missing_function("pg_query")

    def test_missing_function_from_sqlstate_message(self):
        response = BackendResponse(500, error="function exec_sql(text) does not exist")
        assert response.indicates_missing_function("exec_sql")

    def test_missing_table(self):
        response = BackendResponse(
            404, error='relation "migration_logs" does not exist', error_code="42P01"
        )
        assert response.indicates_missing_table("migration_logs")
        assert not response.indicates_missing_table("other")

    def test_attempt_fields(self):
        fields = BackendResponse(500, "Internal Server Error", error="boom").attempt_fields()
        assert fields == {
            "status_code": 500,
            "status_text": "Internal Server Error",
            "error": "boom",
            "error_code": ErrorCode.SQL_ERROR,
        }


class TestBackendClient:
    def test_default_headers(self, client):
        headers = client.default_headers
        assert headers["apikey"] == "anon-key"
        assert headers["Authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_rpc_posts_params(self, client, backend):
        backend.on("POST", "/rest/v1/rpc/exec_sql", ok({"success": True}))

        response = await client.rpc("exec_sql", {"sql_text": "SELECT 1"})

        assert response.ok
        assert response.data == {"success": True}
        assert backend.bodies("POST", "/rest/v1/rpc/exec_sql") == [{"sql_text": "SELECT 1"}]
        request = backend.calls("POST", "/rest/v1/rpc/exec_sql")[0]
        assert request.headers["apikey"] == "anon-key"

    @pytest.mark.asyncio
    async def test_postgrest_error_body(self, client, backend):
        backend.on("POST", "/rest/v1/rpc/exec_sql", missing_function())

        response = await client.rpc("exec_sql", {"sql_text": "SELECT 1"})

        assert response.status == 404
        assert response.error_code == "PGRST202"
        assert response.indicates_missing_function("exec_sql")

    @pytest.mark.asyncio
    async def test_edge_function_failure_envelope(self, client, backend):
        backend.on("POST", "/functions/v1/execute-sql", edge_error("syntax error at or near"))

        response = await client.invoke_function("execute-sql", {"sql": "SELEC"})

        assert response.status == 500
        assert response.error == "syntax error at or near"

    @pytest.mark.asyncio
    async def test_success_status_with_error_body_is_not_ok(self, client, backend):
        backend.on("POST", "/functions/v1/execute-sql", ok({"success": False, "error": "nope"}))

        response = await client.invoke_function("execute-sql", {})

        assert response.status == 200
        assert not response.ok
        assert response.error == "nope"

    @pytest.mark.asyncio
    async def test_unparseable_body(self, client, backend):
        backend.on("POST", "/functions/v1/execute-sql", garbage())

        response = await client.invoke_function("execute-sql", {})

        assert response.parse_error
        assert response.classify() is ErrorCode.PARSE_ERROR

    @pytest.mark.asyncio
    async def test_transport_error_becomes_status_zero(self, client, backend):
        backend.on("GET", "/rest/v1/", connect_error("connection refused"))

        response = await client.rest_root()

        assert response.status == 0
        assert response.is_transport_error
        assert response.status_text == "ConnectError"
        assert "connection refused" in (response.error or "")

    @pytest.mark.asyncio
    async def test_preflight_is_not_parsed(self, client, backend):
        response = await client.preflight("execute-sql")

        assert response.status == 204
        request = backend.calls("OPTIONS", "/functions/v1/execute-sql")[0]
        assert request.headers["Access-Control-Request-Method"] == "POST"

    @pytest.mark.asyncio
    async def test_select_builds_query(self, client, backend):
        await client.select("migration_logs", "id", order="created_at.desc", limit=5)

        request = backend.calls("GET", "/rest/v1/migration_logs")[0]
        assert request.url.params["select"] == "id"
        assert request.url.params["order"] == "created_at.desc"
        assert request.url.params["limit"] == "5"

    @pytest.mark.asyncio
    async def test_select_missing_table(self, client, backend):
        backend.on("GET", "/rest/v1/migration_logs", missing_table())

        response = await client.select("migration_logs")

        assert response.indicates_missing_table("migration_logs")

    @pytest.mark.asyncio
    async def test_insert_requests_representation(self, client, backend):
        backend.on("POST", "/rest/v1/migration_logs", ok([{"id": 1}], status=201))

        response = await client.insert("migration_logs", [{"operation_id": "op"}])

        assert response.ok
        request = backend.calls("POST", "/rest/v1/migration_logs")[0]
        assert request.headers["Prefer"] == "return=representation"

    @pytest.mark.asyncio
    async def test_auth_error(self, client, backend):
        backend.on("GET", "/auth/v1/user", error(401, "invalid JWT"))

        response = await client.get_user()

        assert response.is_auth_error
        assert response.error == "invalid JWT"

    @pytest.mark.asyncio
    async def test_requests_are_traced_as_client_spans(self, client, tracer):
        await client.health()

        assert tracer.span_names == ["remotesql.client.get"]
        assert tracer.find("remotesql.client.get").kind is SpanKind.CLIENT
        assert tracer.attributes_for("remotesql.client.get")["url.path"] == "/auth/v1/health"
        assert tracer.attributes_for("remotesql.client.get")["http.response.status_code"] == 200

    @pytest.mark.asyncio
    async def test_session_token_is_sent(self, session_config, http_client, backend):
        client = BackendClient(session_config, http_client=http_client)

        await client.get_user()

        request = backend.calls("GET", "/auth/v1/user")[0]
        assert request.headers["Authorization"] == "Bearer user-token"
        assert request.headers["apikey"] == "anon-key"

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self, config, http_client):
        async with BackendClient(config, http_client=http_client):
            pass
        assert not http_client.is_closed
