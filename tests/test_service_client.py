"""Tests for QueryClient request building and result mapping."""

import json

import httpx
import pytest

from hookline.core.errors import InvalidResponseError
from hookline.core.query_types import Statement
from hookline.runtime.context import QueryEntry
from hookline.runtime.service_client import QueryClient

from .conftest import RecordingTransport


class TestQueryClient:
    @pytest.mark.asyncio
    async def test_single_database_body(self, make_options, transport):
        client = QueryClient(make_options())
        query = {"get": {"account": {}}}

        [result] = await client.run([QueryEntry(query=query)])

        assert transport.bodies == [{"queries": [query]}]
        request = transport.requests[0]
        assert request.url.host == "data.ronin.co"
        assert request.headers["Authorization"] == "Bearer takashitoken"
        assert "Cache-Control" not in request.headers
        assert result == {"query": query}

    @pytest.mark.asyncio
    async def test_writes_are_not_cached(self, make_options, transport):
        client = QueryClient(make_options())
        await client.run([QueryEntry(query={"set": {"account": {"with": {"id": "1"}, "to": {"a": 1}}}})])
        assert transport.requests[0].headers["Cache-Control"] == "no-store"

    @pytest.mark.asyncio
    async def test_multiple_databases(self, make_options, transport):
        client = QueryClient(make_options())
        entries = [
            QueryEntry(query={"get": {"account": {}}}),
            QueryEntry(query={"get": {"member": {}}}, database="team"),
            QueryEntry(query={"get": {"space": {}}}),
        ]

        results = await client.run(entries)

        assert transport.bodies == [{
            "default": {"queries": [{"get": {"account": {}}}, {"get": {"space": {}}}]},
            "team": {"queries": [{"get": {"member": {}}}]},
        }]
        assert [result["query"] for result in results] == [entry.query for entry in entries]

    @pytest.mark.asyncio
    async def test_native_statements(self, make_options):
        def handler(request):
            body = json.loads(request.content)
            assert body == {"nativeQueries": [{"query": "SELECT 1", "values": []}]}
            return httpx.Response(200, json={"results": [{"records": [{"1": 1}]}]})

        client = QueryClient(make_options(mock=RecordingTransport(handler)))
        [result] = await client.run([QueryEntry(statement=Statement(statement="SELECT 1"))])
        assert result == [{"1": 1}]

    @pytest.mark.asyncio
    async def test_compiles_queries_with_local_models(self, make_options, transport):
        calls = []

        def compiler(queries, models):
            calls.append((queries, models))
            return [{"statement": "SELECT * FROM accounts", "params": []}]

        def handler(request):
            body = json.loads(request.content)
            assert body == {"nativeQueries": [{"query": "SELECT * FROM accounts", "values": []}]}
            return httpx.Response(200, json={"results": [{"records": []}]})

        client = QueryClient(make_options(mock=RecordingTransport(handler), models=["account"], compiler=compiler))
        [result] = await client.run([QueryEntry(query={"get": {"accounts": {}}})])

        assert result == []
        assert calls == [([{"get": {"accounts": {}}}], ["account"])]

    @pytest.mark.asyncio
    async def test_fetch_callable_replaces_transport(self, make_options, transport):
        seen = []

        async def fetch(request):
            seen.append(request)
            return httpx.Response(200, json={"results": [{"amount": 7}]})

        client = QueryClient(make_options(fetch=fetch))
        assert await client.run([QueryEntry(query={"count": {"accounts": {}}})]) == [7]
        assert len(seen) == 1
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_fetch_options_are_merged(self, make_options, transport):
        client = QueryClient(make_options(fetch={"headers": {"X-Trace": "abc"}}))
        await client.run([QueryEntry(query={"get": {"account": {}}})])
        assert transport.requests[0].headers["X-Trace"] == "abc"

    @pytest.mark.asyncio
    async def test_error_response(self, make_options):
        transport = RecordingTransport(
            lambda request: httpx.Response(400, json={"error": {"message": "Invalid token", "code": "AUTH_INVALID"}})
        )
        client = QueryClient(make_options(mock=transport))
        with pytest.raises(InvalidResponseError) as exc_info:
            await client.run([QueryEntry(query={"get": {"account": {}}})])
        assert exc_info.value.code == "AUTH_INVALID"

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        from hookline.config import ClientOptions

        client = QueryClient(ClientOptions(token="t"))
        http_client = await client._get_client()
        await client.close()
        assert http_client.is_closed
