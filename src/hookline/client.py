"""
Hookline client - main entry point for executing queries.

Usage:
    from hookline import Client

    async with Client({"token": "...", "effects": {"account": {...}}}) as client:
        accounts = await client.query({"get": {"accounts": {}}})
        account, members = await client.batch([
            {"get": {"account": {"with": {"handle": "elaine"}}}},
            {"query": {"get": {"members": {}}}, "options": {"implicit": False}},
        ])
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from .config import ClientOptions, OptionsInput, merge_options
from .core.query_types import Query, Statement
from .runtime.context import InvocationContext
from .runtime.handlers import queries_handler, query_handler


logger = logging.getLogger(__name__)


class Client:
    """
    Executes queries with a fixed set of options and a shared HTTP client.

    Options passed to a single call are merged on top of the client's own
    options for that call only.
    """

    def __init__(self, options: OptionsInput = None, **kwargs: Any):
        """
        Initialize client.

        Args:
            options: ClientOptions, a dict of options or an option factory
            **kwargs: Individual options, taking precedence over ``options``
        """
        self._options = options
        self._overrides = kwargs
        self._http_client: httpx.AsyncClient | None = None
        self._owns_client = False

    def _resolve_options(self, options: OptionsInput = None) -> ClientOptions:
        merged = merge_options(self._options, self._overrides, options)

        if merged.http_client is None and not callable(merged.fetch):
            if self._http_client is None:
                self._http_client = httpx.AsyncClient(timeout=merged.timeout)
                self._owns_client = True
            merged.http_client = self._http_client

        return merged

    async def close(self):
        """Close the HTTP client if we created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_client = False

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def run(
        self,
        queries: Sequence[Query],
        options: OptionsInput = None,
        context: InvocationContext = InvocationContext(),
    ) -> list[Any]:
        """
        Execute a list of queries.

        Args:
            queries: Queries to execute, in order
            options: Options for this call only
            context: Passed on from ``HandlerOptions.context`` when called
                from inside an extension

        Returns:
            One result per query
        """
        return await queries_handler(list(queries), self._resolve_options(options), context)

    async def query(
        self,
        query: Query,
        options: OptionsInput = None,
        context: InvocationContext = InvocationContext(),
    ) -> Any:
        """Execute a single query and return its result."""
        return await query_handler(query, self._resolve_options(options), context)

    async def batch(
        self,
        items: Sequence[Query | dict[str, Any]],
        options: OptionsInput = None,
        context: InvocationContext = InvocationContext(),
    ) -> list[Any]:
        """
        Execute queries in a single request.

        Items are either plain queries or ``{"query": ..., "options": ...}``
        pairs. The options of all items are merged, in order, on top of
        ``options``.
        """
        queries: list[Query] = []
        item_options: list[OptionsInput] = []

        for item in items:
            if "query" in item:
                queries.append(item["query"])
                item_options.append(item.get("options"))
            else:
                queries.append(item)

        merged = merge_options(self._options, self._overrides, options, *item_options)
        logger.debug(f"Running batch of {len(queries)} queries")
        return await queries_handler(queries, self._resolve_options(merged), context)

    async def run_statements(
        self,
        statements: Sequence[Statement | dict[str, Any]],
        options: OptionsInput = None,
    ) -> list[Any]:
        """Execute native statements, bypassing storage and extensions."""
        payload = [
            statement.model_dump() if isinstance(statement, Statement) else statement
            for statement in statements
        ]
        return await queries_handler({"statements": payload}, self._resolve_options(options))

