"""
Extension registry and stage invoker.

Extensions are plain (or async) functions registered per model under a
method name made of the stage and the query type:

    {
        "account": {
            "beforeGet": ...,     # or "before_get"
            "set": ...,           # "during" stage uses the bare query type
            "followingAdd": ...,
        },
        "sink": {...},            # catches queries for non-default databases
    }

The stages that exist, and how their return values are treated, depend on
the ExtensionPolicy (HOOKS, EFFECTS or TRIGGERS).
"""

from __future__ import annotations

import inspect
import logging
from copy import deepcopy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from ..core.errors import ConfigurationError, ExtensionError
from ..core.models import resolve_model
from ..core.query_types import QUERY_TYPES, Query, get_query_type
from ..core.utils import capitalize
from .context import EMPTY, InvocationContext


logger = logging.getLogger(__name__)

# Registry key for extensions handling queries routed to non-default databases.
SINK_MODEL = "sink"


class Stage(str, Enum):
    BEFORE = "before"
    DURING = "during"
    AFTER = "after"
    RESOLVING = "resolving"
    FOLLOWING = "following"


@dataclass(frozen=True)
class ExtensionPolicy:
    """
    Stage set and behaviour of one extension configuration.

    Attributes:
        name: Option name the registry is passed under
        stages: Stages that run, in order
        resolve_during: "during" return values are results, not replacement queries
        suppress_recursion: Skip extensions already active for the same model
        expose_implicit: Tell handlers whether their query was generated by an extension
        require: Query class ("all", "read", "write") that must have an extension
    """
    name: str
    stages: tuple[Stage, ...]
    resolve_during: bool = False
    suppress_recursion: bool = False
    expose_implicit: bool = False
    require: Optional[str] = None

    def stage_index(self, stage: Stage) -> int:
        return self.stages.index(stage)

    def with_requirement(self, require: Optional[str]) -> "ExtensionPolicy":
        if require not in (None, "all", "read", "write"):
            raise ConfigurationError(f"Invalid `require_triggers` value: {require!r}")
        return replace(self, require=require)


ALL_STAGES = (Stage.BEFORE, Stage.DURING, Stage.AFTER, Stage.RESOLVING, Stage.FOLLOWING)

HOOKS = ExtensionPolicy(
    name="hooks",
    stages=(Stage.BEFORE, Stage.DURING, Stage.AFTER),
    resolve_during=True,
    suppress_recursion=True,
)
EFFECTS = ExtensionPolicy(name="effects", stages=ALL_STAGES)
TRIGGERS = ExtensionPolicy(name="triggers", stages=ALL_STAGES, expose_implicit=True)


# =============================================================================
# Method names
# =============================================================================


def get_method_name(stage: Stage, query_type: str) -> str:
    """
    Build the method name for a stage and query type.

    Examples:
        (FOLLOWING, "add") -> "followingAdd"
        (DURING, "add") -> "add"
    """
    if stage is Stage.DURING:
        return query_type
    return stage.value + capitalize(query_type)


def parse_method_name(name: str) -> tuple[Stage, str]:
    """
    Parse a method name into (stage, query_type).

    Accepts camelCase (``beforeGet``), snake_case (``before_get``) and bare
    query types for the "during" stage.

    Raises:
        ConfigurationError: If the name does not describe a known stage and query type
    """
    if name in QUERY_TYPES:
        return Stage.DURING, name

    for stage in ALL_STAGES:
        if stage is Stage.DURING:
            continue
        for query_type in QUERY_TYPES:
            if name in (get_method_name(stage, query_type), f"{stage.value}_{query_type}"):
                return stage, query_type

    raise ConfigurationError(f"Unknown extension method: {name!r}")


# =============================================================================
# Registry
# =============================================================================


class ExtensionRegistry:
    """
    Table of extension handlers, keyed by model and (stage, query type).

    Usage:
        registry = ExtensionRegistry.from_mapping({"account": {"beforeGet": fn}}, EFFECTS)
        handler = registry.get("account", Stage.BEFORE, "get")
    """

    def __init__(self, policy: ExtensionPolicy):
        self.policy = policy
        self._handlers: dict[str, dict[tuple[Stage, str], Callable]] = {}

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[str, Mapping[str, Callable]],
        policy: ExtensionPolicy,
    ) -> "ExtensionRegistry":
        registry = cls(policy)
        for model, methods in mapping.items():
            for method, handler in methods.items():
                registry.register(model, method, handler)
        return registry

    def register(self, model: str, method: str, handler: Callable) -> None:
        """
        Register a handler.

        Raises:
            ConfigurationError: If the method name is unknown, its stage is not
                part of this registry's policy, or the handler is not callable
        """
        stage, query_type = parse_method_name(method)
        if stage not in self.policy.stages:
            raise ConfigurationError(
                f"Extension method {model}.{method} uses stage '{stage.value}', "
                f"which is not available for `{self.policy.name}`"
            )
        if not callable(handler):
            raise ConfigurationError(f"Extension {model}.{method} is not callable")

        self._handlers.setdefault(model, {})[(stage, query_type)] = handler
        logger.debug(f"Registered {self.policy.name} extension {model}.{method}")

    def get(self, model: str, stage: Stage, query_type: str) -> Optional[Callable]:
        return self._handlers.get(model, {}).get((stage, query_type))

    def has_during_handler(self, model: str) -> bool:
        return any(stage is Stage.DURING for stage, _ in self._handlers.get(model, {}))

    def has_handler_for(self, model: str, query_type: str) -> bool:
        """True if the model has a handler for the query type at any stage."""
        return any(registered == query_type for _, registered in self._handlers.get(model, {}))

    @property
    def models(self) -> list[str]:
        return list(self._handlers)


# =============================================================================
# Invocation
# =============================================================================


@dataclass
class HandlerOptions:
    """
    Options passed to every handler as its last argument.

    ``model`` and ``database`` are only set for sink extensions. ``context``
    must be passed on to any queries the handler runs itself.
    """
    model: Optional[str] = None
    database: Optional[str] = None
    implicit: Optional[bool] = None
    context: InvocationContext = field(default_factory=InvocationContext)


@dataclass
class StageOutcome:
    """Queries and/or result produced by a stage for one query."""
    queries: list[Query] = field(default_factory=list)
    result: Any = EMPTY


def normalize_results(result: Any) -> list[Any]:
    """Normalize a result into a list copy, so handlers need not special-case it."""
    if result is EMPTY:
        return []
    value = result if isinstance(result, list) else [result]
    return deepcopy(list(value))


def lookup_model(query: Query, database: Optional[str]) -> str:
    """Registry key for a query: the model slug, or the sink for other databases."""
    return SINK_MODEL if database else resolve_model(query).model


async def invoke_extension(
    stage: Stage,
    query: Query,
    registry: ExtensionRegistry,
    *,
    database: Optional[str] = None,
    implicit: bool = False,
    context: InvocationContext = InvocationContext(),
    result_before: Any = EMPTY,
    result_after: Any = EMPTY,
) -> StageOutcome:
    """
    Invoke the extension for one stage and query, and interpret its output.

    Args:
        stage: Stage being run
        query: The query as it currently stands
        registry: Registered extensions
        database: Database the query is routed to, None for the default
        implicit: Whether the query was generated by another extension
        context: Extension calls already active for this execution
        result_before: Records before a write ("following" only)
        result_after: Records after a write ("following" only)

    Returns:
        StageOutcome; empty if no extension is registered or it was suppressed

    Raises:
        ExtensionError: If the handler raises
    """
    policy = registry.policy
    model = resolve_model(query)
    lookup = SINK_MODEL if database else model.model

    handler = registry.get(lookup, stage, model.query_type)
    if handler is None:
        return StageOutcome()

    stage_index = policy.stage_index(stage)
    if (
        policy.suppress_recursion
        and context.is_active(stage_index, lookup)
        and not registry.has_during_handler(lookup)
    ):
        logger.debug(f"Skipping {policy.name} extension {lookup}.{stage.value} (already active)")
        return StageOutcome()

    # Handlers receive copies and may modify them freely
    instructions = deepcopy(model.instructions) if model.instructions else {}

    options = HandlerOptions(context=context.push(stage_index, lookup))
    if lookup == SINK_MODEL:
        options.model = model.key
        options.database = database
    if policy.expose_implicit:
        options.implicit = implicit

    method = get_method_name(stage, model.query_type)
    try:
        if stage is Stage.FOLLOWING:
            value = handler(
                instructions,
                model.multiple_records,
                normalize_results(result_before),
                normalize_results(result_after),
                options,
            )
        else:
            value = handler(instructions, model.multiple_records, options)

        if inspect.isawaitable(value):
            value = await value
    except Exception as e:
        raise ExtensionError(stage.value, lookup, method, e) from e

    if stage in (Stage.BEFORE, Stage.AFTER):
        return StageOutcome(queries=list(value or []))

    if stage is Stage.DURING:
        if policy.resolve_during:
            return StageOutcome(result=value)
        return StageOutcome(queries=[_as_query(value, model.query_type, model.key)])

    if stage is Stage.RESOLVING:
        return StageOutcome(result=value)

    # "following" handlers run in the background and return nothing
    return StageOutcome()


def _as_query(value: Any, query_type: str, key: str) -> Query:
    """Use a returned full query as-is, or wrap returned instructions."""
    if isinstance(value, dict) and len(value) == 1 and get_query_type(value) in QUERY_TYPES:
        return value
    return {query_type: {key: value}}
