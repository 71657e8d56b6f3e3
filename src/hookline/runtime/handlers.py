"""
Query handlers - entry points tying storage, extensions and execution together.

Usage:
    results = await queries_handler(
        [
            {"get": {"accounts": {}}},
            {"get": {"account": {"with": {"email": "mike@gmail.com"}}}},
        ],
        ClientOptions(token="..."),
    )
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional, Union

from ..config import ClientOptions, resolve_token
from ..core.errors import ConfigurationError
from ..core.query_types import Query, Statement
from .context import InvocationContext, QueryEntry
from .executor import BatchExecutor
from .extensions import EFFECTS, HOOKS, TRIGGERS, ExtensionRegistry
from .service_client import DEFAULT_DATABASE, QueryClient
from .storage import process_storable_objects, upload_storable_objects


logger = logging.getLogger(__name__)

QueriesInput = Union[list[Query], Mapping[str, list[Query]]]


def build_registry(options: ClientOptions) -> Optional[ExtensionRegistry]:
    """
    Build the extension registry for the configured hooks, effects or triggers.

    Raises:
        ConfigurationError: If more than one kind is configured, or the
            configuration cannot run in the current runtime
    """
    configured = [
        (getattr(options, policy.name), policy)
        for policy in (HOOKS, EFFECTS, TRIGGERS)
        if getattr(options, policy.name) is not None
    ]

    if options.require_triggers and not options.triggers:
        raise ConfigurationError("The `require_triggers` option requires `triggers` to be set.")

    if not configured:
        return None

    if len(configured) > 1:
        names = ", ".join(f"`{policy.name}`" for _, policy in configured)
        raise ConfigurationError(f"Only one of {names} may be provided.")

    mapping, policy = configured[0]

    if options.is_edge and options.wait_until is None:
        raise ConfigurationError(
            f"In the case that hookline receives a value for its `{policy.name}` option,"
            " it must also receive a value for its `wait_until` option. This requirement"
            " only applies when using an edge runtime and ensures that the edge worker"
            f" continues to execute until all \"following\" {policy.name} have been executed."
        )

    if policy is TRIGGERS:
        policy = policy.with_requirement(options.require_triggers)

    return ExtensionRegistry.from_mapping(mapping, policy)


def clone_query(value: Any) -> Any:
    """
    Copy the dict/list structure of a query, keeping leaf values as they are.

    Binary values (e.g. open files) cannot be deep-copied, but must not be
    replaced inside the caller's own query either.
    """
    if isinstance(value, dict):
        return {key: clone_query(item) for key, item in value.items()}
    if isinstance(value, list):
        return [clone_query(item) for item in value]
    return value


async def run_queries_with_extensions(
    entries: list[QueryEntry],
    client: QueryClient,
    registry: Optional[ExtensionRegistry] = None,
    context: InvocationContext = InvocationContext(),
) -> list[QueryEntry]:
    """
    Execute entries, running extensions if a registry is given.

    Returns:
        The entries with their results set, synthetic ones removed
    """
    if registry is None:
        results = await client.run(entries)
        for entry, result in zip(entries, results):
            entry.result = result
        return entries

    executor = BatchExecutor(registry, client, wait_until=client.options.wait_until)
    return await executor.execute(entries, context)


async def run_queries_with_storage_and_extensions(
    queries: QueriesInput,
    client: QueryClient,
    context: InvocationContext = InvocationContext(),
) -> Union[list[Any], dict[str, list[Any]]]:
    """
    Upload binary values, then execute queries with extensions.

    Args:
        queries: A list of queries for the default database, or a dict of
            database name -> queries
        client: Client used for uploads and execution
        context: Extension calls active in the caller

    Returns:
        A list of results for a list input, a dict of database -> results
        for a dict input
    """
    registry = build_registry(client.options)

    single_database = isinstance(queries, list)
    normalized: Mapping[str, list[Query]] = {DEFAULT_DATABASE: queries} if single_database else queries

    async def upload(objects):
        return await upload_storable_objects(objects, client)

    populated = await asyncio.gather(*(
        process_storable_objects(database_queries, upload)
        for database_queries in normalized.values()
    ))

    entries = [
        QueryEntry(
            query=query,
            database=None if database == DEFAULT_DATABASE else database,
            implicit=client.options.implicit,
        )
        for database, database_queries in zip(normalized, populated)
        for query in database_queries
    ]

    entries = await run_queries_with_extensions(entries, client, registry, context)

    if single_database:
        return [entry.result for entry in entries if entry.database is None]

    grouped: dict[str, list[Any]] = {database: [] for database in normalized}
    for entry in entries:
        grouped.setdefault(entry.database or DEFAULT_DATABASE, []).append(entry.result)
    return grouped


async def queries_handler(
    queries: Union[list[Query], Mapping[str, list[Statement]]],
    options: ClientOptions,
    context: InvocationContext = InvocationContext(),
) -> list[Any]:
    """
    Execute a list of queries (or ``{"statements": [...]}``) and return their results.

    The ``HOOKLINE_TOKEN`` environment variable is used if the ``token``
    option is not set.

    Raises:
        ConfigurationError: If no token is available
    """
    options = resolve_token(options)
    client = QueryClient(options)

    try:
        if isinstance(queries, Mapping) and "statements" in queries:
            entries = [
                QueryEntry(statement=Statement.model_validate(statement), database=options.database)
                for statement in queries["statements"]
            ]
            return await client.run(entries)

        queries = [clone_query(query) for query in queries]

        if options.database:
            results = await run_queries_with_storage_and_extensions(
                {options.database: queries}, client, context,
            )
            return results[options.database]

        return await run_queries_with_storage_and_extensions(queries, client, context)
    finally:
        await client.close()


async def query_handler(
    query: Query,
    options: ClientOptions,
    context: InvocationContext = InvocationContext(),
) -> Any:
    """Execute a single query (or ``{"statement": ...}``) and return its result."""
    if "statement" in query:
        results = await queries_handler({"statements": [query["statement"]]}, options, context)
    else:
        results = await queries_handler([query], options, context)
    return results[0]
