"""
Batch executor - runs queries through the extension stages.

Handles:
- Inserting queries returned by "before" and "after" extensions
- Replacing (or resolving) queries in the "during" stage
- Diff queries capturing records before they are modified
- Short-circuiting queries resolved by "resolving" extensions
- Executing the remaining queries via QueryClient
- Scheduling "following" extensions without awaiting them
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from ..core.errors import ExtensionRequiredError
from ..core.query_types import READ_QUERY_TYPES, WRITE_QUERY_TYPES, Query, get_query_type
from .context import EMPTY, InvocationContext, QueryEntry
from .extensions import (
    ExtensionRegistry,
    Stage,
    StageOutcome,
    invoke_extension,
    lookup_model,
)
from .service_client import QueryClient


logger = logging.getLogger(__name__)

# Keeps "following" tasks alive when no wait_until callback was provided.
_background_tasks: set[asyncio.Task] = set()


class BatchExecutor:
    """
    Executes a list of queries with extensions.

    Usage:
        executor = BatchExecutor(registry, client)
        entries = await executor.execute([QueryEntry(query=...)], context)
        results = [entry.result for entry in entries]
    """

    def __init__(
        self,
        registry: ExtensionRegistry,
        client: QueryClient,
        wait_until: Optional[Callable[[Awaitable[None]], Any]] = None,
    ):
        """
        Initialize executor.

        Args:
            registry: Registered extensions and their policy
            client: Client executing the queries that remain unresolved
            wait_until: Receives the task of every "following" extension call
        """
        self.registry = registry
        self.client = client
        self.wait_until = wait_until

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self.registry.policy.stages

    async def execute(
        self,
        entries: list[QueryEntry],
        context: InvocationContext = InvocationContext(),
    ) -> list[QueryEntry]:
        """
        Run all stages and execute the queries.

        Args:
            entries: Queries to execute, in order
            context: Extension calls active in the caller, if this is a nested execution

        Returns:
            The given (non-synthetic) entries with their results set, in order

        Raises:
            ExtensionRequiredError: If a query lacks a required extension
            ExtensionError: If an extension of a blocking stage fails
        """
        self._check_required_extensions(entries)
        entries = list(entries)

        if Stage.BEFORE in self.stages:
            entries = await self._run_insertion_stage(Stage.BEFORE, entries, context)

        if Stage.DURING in self.stages:
            await self._run_during_stage(entries, context)

        if Stage.AFTER in self.stages:
            entries = await self._run_insertion_stage(Stage.AFTER, entries, context)

        # Diffs only serve "following" extensions
        if Stage.FOLLOWING in self.stages:
            entries = self._insert_diff_queries(entries)

        if Stage.RESOLVING in self.stages:
            await self._run_resolving_stage(entries, context)

        await self._execute_unresolved(entries)

        if Stage.FOLLOWING in self.stages:
            self._schedule_following_stage(entries, context)

        return [entry for entry in entries if not entry.is_synthetic]

    def _check_required_extensions(self, entries: list[QueryEntry]) -> None:
        require = self.registry.policy.require
        if not require:
            return

        for entry in entries:
            if entry.query is None:
                continue
            query_type = get_query_type(entry.query)
            if require == "read" and query_type not in READ_QUERY_TYPES:
                continue
            if require == "write" and query_type not in WRITE_QUERY_TYPES:
                continue

            model = lookup_model(entry.query, entry.database)
            if not self.registry.has_handler_for(model, query_type):
                raise ExtensionRequiredError(query_type, model)

    async def _invoke(
        self,
        stage: Stage,
        entry: QueryEntry,
        context: InvocationContext,
        **kwargs: Any,
    ) -> StageOutcome:
        if entry.query is None:
            return StageOutcome()
        return await invoke_extension(
            stage,
            entry.query,
            self.registry,
            database=entry.database,
            implicit=entry.implicit,
            context=context,
            **kwargs,
        )

    async def _run_insertion_stage(
        self,
        stage: Stage,
        entries: list[QueryEntry],
        context: InvocationContext,
    ) -> list[QueryEntry]:
        """Run "before" or "after" and splice the returned queries around their origin."""
        targets = [index for index, entry in enumerate(entries) if not entry.is_synthetic]
        outcomes = await asyncio.gather(
            *(self._invoke(stage, entries[index], context) for index in targets)
        )
        inserted = dict(zip(targets, outcomes))

        result: list[QueryEntry] = []
        for index, entry in enumerate(entries):
            outcome = inserted.get(index)
            auxiliary = [
                QueryEntry(
                    query=query,
                    database=entry.database,
                    auxiliary_for_index=index,
                    implicit=True,
                )
                for query in (outcome.queries if outcome else [])
            ]

            if stage is Stage.BEFORE:
                result.extend(auxiliary)
                result.append(entry)
            else:
                result.append(entry)
                result.extend(auxiliary)

        added = len(result) - len(entries)
        if added:
            logger.debug(f"Stage '{stage.value}' added {added} auxiliary queries")
        return result

    async def _run_during_stage(self, entries: list[QueryEntry], context: InvocationContext) -> None:
        outcomes = await asyncio.gather(
            *(self._invoke(Stage.DURING, entry, context) for entry in entries)
        )
        for entry, outcome in zip(entries, outcomes):
            if outcome.result is not EMPTY:
                entry.result = outcome.result
            elif outcome.queries:
                entry.query = outcome.queries[0]

    def _insert_diff_queries(self, entries: list[QueryEntry]) -> list[QueryEntry]:
        """
        Insert a read before every ``set`` and ``alter`` query.

        The modified records are already returned by the write itself, but the
        records as they were before need a separate query.
        """
        result: list[QueryEntry] = []
        for entry in entries:
            diff_query = self._build_diff_query(entry.query) if entry.query else None
            if diff_query is not None:
                result.append(QueryEntry(
                    query=diff_query,
                    database=entry.database,
                    diff_for_index=len(result) + 1,
                ))
            result.append(entry)
        return result

    def _build_diff_query(self, query: Query) -> Optional[Query]:
        query_type = get_query_type(query)

        if query_type == "set":
            key = next(iter(query["set"]))
            instructions = query["set"][key] or {}
            diff_instructions = {"with": instructions["with"]} if "with" in instructions else {}
            return {"get": {key: diff_instructions}}

        if query_type == "alter":
            return {"list": {"model": (query["alter"] or {}).get("model")}}

        return None

    async def _run_resolving_stage(self, entries: list[QueryEntry], context: InvocationContext) -> None:
        outcomes = await asyncio.gather(
            *(self._invoke(Stage.RESOLVING, entry, context) for entry in entries)
        )
        for entry, outcome in zip(entries, outcomes):
            if outcome.result is not EMPTY:
                entry.result = outcome.result

    async def _execute_unresolved(self, entries: list[QueryEntry]) -> None:
        unresolved = [entry for entry in entries if not entry.is_resolved]
        if not unresolved:
            logger.debug("All queries were resolved by extensions")
            return

        results = await self.client.run(unresolved)
        for entry, result in zip(unresolved, results):
            entry.result = result

    def _schedule_following_stage(self, entries: list[QueryEntry], context: InvocationContext) -> None:
        """Start "following" extensions for every write, without awaiting them."""
        for index, entry in enumerate(entries):
            if entry.query is None:
                continue
            query_type = get_query_type(entry.query)
            if query_type not in WRITE_QUERY_TYPES:
                continue

            model = lookup_model(entry.query, entry.database)
            if self.registry.get(model, Stage.FOLLOWING, query_type) is None:
                continue

            diff = next((item for item in entries if item.diff_for_index == index), None)
            result_before = diff.result if diff else EMPTY
            result_after = entry.result

            # The record no longer exists afterwards, so it is exposed as "before"
            if query_type in ("remove", "drop"):
                result_before = entry.result
                result_after = EMPTY

            task = asyncio.ensure_future(self._run_following(
                entry, context, result_before=result_before, result_after=result_after,
            ))

            if self.wait_until is not None:
                self.wait_until(task)
            else:
                _background_tasks.add(task)
                task.add_done_callback(_on_following_done)

    async def _run_following(self, entry: QueryEntry, context: InvocationContext, **kwargs: Any) -> None:
        # Only failures are surfaced, never the handler's return value
        await self._invoke(Stage.FOLLOWING, entry, context, **kwargs)


def _on_following_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Following extension failed: {error}", exc_info=error)
