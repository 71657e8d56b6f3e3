"""
HTTP client for the query and storage endpoints.

Makes POST calls with batches of queries (grouped per database) and returns
formatted results in the order the queries were given.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx

from ..config import ClientOptions
from ..core.errors import InvalidResponseError, get_response_body
from ..core.query_types import Statement, WRITE_QUERY_TYPES, get_query_type
from .context import QueryEntry
from .formatter import ResultFormatter


logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "default"


class QueryClient:
    """
    HTTP client for executing queries.

    Usage:
        client = QueryClient(ClientOptions(token="..."))
        results = await client.run([QueryEntry(query={"get": {"accounts": {}}})])
        await client.close()

    A ``fetch`` callable in the options replaces the HTTP client entirely; a
    ``fetch`` mapping is merged into every request instead.
    """

    def __init__(self, options: ClientOptions, formatter: ResultFormatter | None = None):
        """
        Initialize query client.

        Args:
            options: Client options (token, endpoints, transport)
            formatter: Formatter for result envelopes
        """
        self.options = options
        self.formatter = formatter or ResultFormatter()
        self._client: httpx.AsyncClient | None = options.http_client
        self._owns_client = False

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.options.timeout)
            self._owns_client = True
        return self._client

    async def close(self):
        """Close the HTTP client if we created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
            self._owns_client = False

    def build_request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        **kwargs: Any,
    ) -> httpx.Request:
        """Build a request, merging any request options passed as ``fetch``."""
        fetch = self.options.fetch
        extra = dict(fetch) if isinstance(fetch, dict) else {}

        merged_headers = {**headers, **(extra.pop("headers", None) or {})}
        timeout = extra.pop("timeout", self.options.timeout)
        extensions = {"timeout": httpx.Timeout(timeout).as_dict(), **(extra.pop("extensions", None) or {})}

        return httpx.Request(
            method,
            url,
            headers=merged_headers,
            extensions=extensions,
            **extra,
            **kwargs,
        )

    async def send(self, request: httpx.Request) -> httpx.Response:
        """
        Send a request through the configured transport.

        Raises:
            InvalidResponseError: If the request could not be sent at all
        """
        fetch = self.options.fetch
        try:
            if callable(fetch):
                response = await fetch(request)
            else:
                client = await self._get_client()
                response = await client.send(request)
            await response.aread()
            return response
        except httpx.RequestError as e:
            raise InvalidResponseError(
                f"Request to {request.url} failed: {e}",
                code="REQUEST_ERROR",
                status_code=0,
            ) from e

    async def run(self, entries: Sequence[QueryEntry]) -> list[Any]:
        """
        Execute queries (or native statements) against the query endpoint.

        Args:
            entries: Entries to execute; ``database=None`` is the default database

        Returns:
            Formatted results, aligned with ``entries``

        Raises:
            InvalidResponseError: If the endpoint rejects the request
            QueryError: If a single query failed
        """
        if not entries:
            return []

        payloads, positions, sent_queries = self._build_payloads(entries)
        single_database = list(payloads) == [DEFAULT_DATABASE]
        body = payloads[DEFAULT_DATABASE] if single_database else payloads

        has_write_query = any(
            entry.query is not None and get_query_type(entry.query) in WRITE_QUERY_TYPES
            for entry in entries
        )

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.options.token}",
        }
        # Writes must always reach the endpoint
        if has_write_query:
            headers["Cache-Control"] = "no-store"

        request = self.build_request("POST", self.options.data_url, headers, json=body)
        logger.debug(
            f"Sending {len(entries)} queries to {self.options.data_url} "
            f"(databases: {', '.join(payloads)})"
        )

        response = await self.send(request)
        data = get_response_body(response)

        if "results" in data:
            raw_results = {DEFAULT_DATABASE: data["results"]}
        else:
            raw_results = {database: data[database]["results"] for database in payloads}

        formatted = {
            database: self.formatter.format_results(raw_results[database], sent_queries[database])
            for database in payloads
        }
        return [formatted[database][position] for database, position in positions]

    def _build_payloads(
        self,
        entries: Sequence[QueryEntry],
    ) -> tuple[dict[str, dict[str, list]], list[tuple[str, int]], dict[str, list]]:
        """
        Group entries into one payload per database.

        Results for a database come back as its ``queries`` followed by its
        ``nativeQueries``, which the returned positions account for.
        """
        grouped: dict[str, list[QueryEntry]] = {}
        for entry in entries:
            grouped.setdefault(entry.database or DEFAULT_DATABASE, []).append(entry)

        payloads: dict[str, dict[str, list]] = {}
        sent_queries: dict[str, list] = {}
        slots: dict[int, tuple[str, int]] = {}

        for database, database_entries in grouped.items():
            queries = [entry for entry in database_entries if entry.statement is None]
            statements = [entry for entry in database_entries if entry.statement is not None]

            native = [entry.statement for entry in statements]

            # With local models, queries are compiled and sent as native statements
            if queries and self.options.models is not None and self.options.compiler is not None:
                native = self._compile([entry.query for entry in queries]) + native
                statements = queries + statements
                queries = []

            payload: dict[str, list] = {}
            if queries:
                payload["queries"] = [entry.query for entry in queries]
            if native:
                payload["nativeQueries"] = [statement.to_native_query() for statement in native]
            payloads[database] = payload

            ordered = queries + statements
            sent_queries[database] = [entry.query for entry in ordered]
            for position, entry in enumerate(ordered):
                slots[id(entry)] = (database, position)

        positions = [slots[id(entry)] for entry in entries]
        return payloads, positions, sent_queries

    def _compile(self, queries: list[dict]) -> list[Statement]:
        """Compile queries into native statements with the configured compiler."""
        statements = self.options.compiler(queries, models=self.options.models)
        return [
            statement if isinstance(statement, Statement) else Statement.model_validate(statement)
            for statement in statements
        ]
