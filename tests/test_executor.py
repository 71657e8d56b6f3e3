"""Tests for BatchExecutor stage ordering, diffs and following extensions."""

import asyncio
import logging

import pytest

from hookline.core.errors import ExtensionError, ExtensionRequiredError
from hookline.runtime.context import QueryEntry
from hookline.runtime import executor as executor_module
from hookline.runtime.executor import BatchExecutor
from hookline.runtime.extensions import EFFECTS, HOOKS, TRIGGERS, ExtensionRegistry
from hookline.runtime.service_client import QueryClient


def make_executor(mapping, policy, options, wait_until=None) -> BatchExecutor:
    registry = ExtensionRegistry.from_mapping(mapping, policy)
    return BatchExecutor(registry, QueryClient(options), wait_until=wait_until)


def results_of(entries):
    return [entry.result for entry in entries]


class TestInsertionStages:
    @pytest.mark.asyncio
    async def test_before_queries_precede_origin(self, make_options, transport):
        query = {"get": {"account": {}}}
        executor = make_executor(
            {"account": {"beforeGet": lambda instructions, multiple, options: [{"get": {"space": {}}}]}},
            EFFECTS,
            make_options(),
        )

        entries = await executor.execute([QueryEntry(query=query)])

        assert transport.bodies == [{"queries": [{"get": {"space": {}}}, query]}]
        assert results_of(entries) == [{"query": query}]

    @pytest.mark.asyncio
    async def test_after_queries_follow_origin(self, make_options, transport):
        query = {"add": {"account": {"to": {"handle": "elaine"}}}}
        executor = make_executor(
            {"account": {"afterAdd": lambda instructions, multiple, options: [{"add": {"log": {"to": {}}}}]}},
            EFFECTS,
            make_options(),
        )

        entries = await executor.execute([QueryEntry(query=query)])

        assert transport.bodies == [{"queries": [query, {"add": {"log": {"to": {}}}}]}]
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_auxiliary_queries_are_implicit_for_triggers(self, make_options):
        seen = {}

        def resolving_add(instructions, multiple, options):
            seen["implicit"] = options.implicit
            return {"id": "member"}

        executor = make_executor(
            {
                "account": {"beforeAdd": lambda instructions, multiple, options: [{"add": {"member": {"to": {}}}}]},
                "member": {"resolvingAdd": resolving_add},
            },
            TRIGGERS,
            make_options(),
        )

        await executor.execute([QueryEntry(query={"add": {"account": {"to": {}}}})])
        assert seen["implicit"] is True


class TestResolution:
    @pytest.mark.asyncio
    async def test_resolving_skips_network(self, make_options, transport):
        executor = make_executor(
            {"account": {"resolvingGet": lambda instructions, multiple, options: {"id": "1"}}},
            EFFECTS,
            make_options(),
        )

        entries = await executor.execute([QueryEntry(query={"get": {"account": {}}})])

        assert results_of(entries) == [{"id": "1"}]
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_hooks_during_resolves(self, make_options, transport):
        executor = make_executor(
            {"account": {"get": lambda instructions, multiple, options: {"id": "hooked"}}},
            HOOKS,
            make_options(),
        )

        entries = await executor.execute([
            QueryEntry(query={"get": {"account": {}}}),
            QueryEntry(query={"get": {"space": {}}}),
        ])

        assert results_of(entries) == [{"id": "hooked"}, {"query": {"get": {"space": {}}}}]
        assert transport.bodies == [{"queries": [{"get": {"space": {}}}]}]

    @pytest.mark.asyncio
    async def test_effects_during_replaces_query(self, make_options, transport):
        executor = make_executor(
            {"account": {"get": lambda instructions, multiple, options: {"with": {"handle": "leo"}}}},
            EFFECTS,
            make_options(),
        )

        await executor.execute([QueryEntry(query={"get": {"account": {}}})])
        assert transport.bodies == [{"queries": [{"get": {"account": {"with": {"handle": "leo"}}}}]}]

    @pytest.mark.asyncio
    async def test_nested_hooks_are_suppressed(self, make_options, transport):
        calls = []
        options = make_options()

        async def before_get(instructions, multiple, handler_options):
            calls.append(instructions)
            nested = make_executor({"account": {"beforeGet": before_get}}, HOOKS, options)
            await nested.execute([QueryEntry(query={"get": {"account": {"with": {"id": "2"}}}})], handler_options.context)
            return []

        executor = make_executor({"account": {"beforeGet": before_get}}, HOOKS, options)
        await executor.execute([QueryEntry(query={"get": {"account": {}}})])

        assert len(calls) == 1
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_handler_failure_aborts_batch(self, make_options, transport):
        def before_get(instructions, multiple, options):
            raise RuntimeError("denied")

        executor = make_executor({"account": {"beforeGet": before_get}}, EFFECTS, make_options())
        with pytest.raises(ExtensionError):
            await executor.execute([QueryEntry(query={"get": {"account": {}}})])
        assert transport.requests == []


class TestRequiredTriggers:
    @pytest.mark.asyncio
    async def test_missing_trigger(self, make_options, transport):
        registry = ExtensionRegistry.from_mapping(
            {"account": {"followingAdd": lambda *args: None}},
            TRIGGERS.with_requirement("all"),
        )
        executor = BatchExecutor(registry, QueryClient(make_options()))

        with pytest.raises(ExtensionRequiredError) as exc_info:
            await executor.execute([QueryEntry(query={"get": {"space": {}}})])

        assert exc_info.value.code == "TRIGGER_REQUIRED"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_write_requirement_ignores_reads(self, make_options):
        registry = ExtensionRegistry.from_mapping({}, TRIGGERS.with_requirement("write"))
        executor = BatchExecutor(registry, QueryClient(make_options()))

        entries = await executor.execute([QueryEntry(query={"get": {"space": {}}})])
        assert len(entries) == 1

        with pytest.raises(ExtensionRequiredError):
            await executor.execute([QueryEntry(query={"add": {"space": {"to": {}}}})])


class TestFollowing:
    @pytest.mark.asyncio
    async def test_set_receives_diff_and_result(self, make_options, transport):
        calls = []
        tasks = []
        query = {"set": {"account": {"with": {"id": "1"}, "to": {"handle": "leo"}}}}

        def following_set(instructions, multiple, before, after, options):
            calls.append((before, after))

        executor = make_executor(
            {"account": {"followingSet": following_set}},
            EFFECTS,
            make_options(),
            wait_until=tasks.append,
        )

        entries = await executor.execute([QueryEntry(query=query)])
        await asyncio.gather(*tasks)

        diff_query = {"get": {"account": {"with": {"id": "1"}}}}
        assert transport.bodies == [{"queries": [diff_query, query]}]
        assert results_of(entries) == [{"query": query}]
        assert calls == [([{"query": diff_query}], [{"query": query}])]

    @pytest.mark.asyncio
    async def test_remove_exposes_removed_record_as_before(self, make_options, transport):
        calls = []
        tasks = []
        query = {"remove": {"account": {"with": {"id": "1"}}}}

        executor = make_executor(
            {"account": {"followingRemove": lambda i, m, before, after, o: calls.append((before, after))}},
            EFFECTS,
            make_options(),
            wait_until=tasks.append,
        )

        await executor.execute([QueryEntry(query=query)])
        await asyncio.gather(*tasks)

        assert transport.bodies == [{"queries": [query]}]
        assert calls == [([{"query": query}], [])]

    @pytest.mark.asyncio
    async def test_alter_diff_lists_models(self, make_options, transport):
        query = {"alter": {"model": "account", "to": {"name": "Accounts"}}}
        tasks = []

        executor = make_executor(
            {"model": {"followingAlter": lambda *args: None}},
            TRIGGERS,
            make_options(),
            wait_until=tasks.append,
        )

        await executor.execute([QueryEntry(query=query)])
        await asyncio.gather(*tasks)

        assert transport.bodies == [{"queries": [{"list": {"model": "account"}}, query]}]

    @pytest.mark.asyncio
    async def test_following_failure_stays_in_task(self, make_options):
        tasks = []

        def following_add(instructions, multiple, before, after, options):
            raise RuntimeError("late failure")

        executor = make_executor(
            {"account": {"followingAdd": following_add}},
            EFFECTS,
            make_options(),
            wait_until=tasks.append,
        )

        entries = await executor.execute([QueryEntry(query={"add": {"account": {"to": {}}}})])
        assert len(entries) == 1

        with pytest.raises(ExtensionError):
            await tasks[0]

    @pytest.mark.asyncio
    async def test_sink_handles_other_databases(self, make_options, transport):
        seen = []
        tasks = []

        def following_add(instructions, multiple, before, after, options):
            seen.append((options.model, options.database, after))

        executor = make_executor(
            {"sink": {"followingAdd": following_add}},
            TRIGGERS,
            make_options(),
            wait_until=tasks.append,
        )

        query = {"add": {"members": {"to": {"handle": "elaine"}}}}
        await executor.execute([
            QueryEntry(query=query, database="team"),
            QueryEntry(query={"add": {"account": {"to": {}}}}),
        ])
        await asyncio.gather(*tasks)

        assert seen == [("members", "team", [{"query": query}])]

    @pytest.mark.asyncio
    async def test_following_without_wait_until_is_retained_and_logged(self, make_options, caplog):
        caplog.set_level(logging.ERROR, logger="hookline.runtime.executor")
        release = asyncio.Event()

        async def following_add(instructions, multiple, before, after, options):
            await release.wait()
            raise RuntimeError("late failure")

        executor = make_executor({"account": {"followingAdd": following_add}}, EFFECTS, make_options())
        existing = set(executor_module._background_tasks)

        entries = await executor.execute([QueryEntry(query={"add": {"account": {"to": {}}}})])
        assert len(entries) == 1

        [task] = executor_module._background_tasks - existing
        assert not task.done()

        release.set()
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

        assert task not in executor_module._background_tasks
        assert "Following extension failed" in caplog.text
        assert "late failure" in caplog.text
