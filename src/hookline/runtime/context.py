"""
Execution state passed through the query pipeline.

Contains:
- EMPTY: sentinel for "no result yet"
- QueryEntry: one item of the list the orchestrator works on
- InvocationContext: chain of active extension calls, threaded explicitly
  through nested query executions
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..core.query_types import Query, Statement


class _Empty:
    """Marker for a query whose result has not been determined yet."""

    _instance: Optional["_Empty"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EMPTY"

    def __bool__(self) -> bool:
        return False

    def __deepcopy__(self, memo):
        return self

    def __copy__(self):
        return self


EMPTY = _Empty()


@dataclass
class QueryEntry:
    """
    A query together with its execution state.

    ``diff_for_index`` and ``auxiliary_for_index`` mark synthetic entries,
    which are executed but never returned to the caller.
    """
    query: Optional[Query] = None
    statement: Optional[Statement] = None
    database: Optional[str] = None
    result: Any = EMPTY
    diff_for_index: Optional[int] = None
    auxiliary_for_index: Optional[int] = None
    implicit: bool = False

    @property
    def is_synthetic(self) -> bool:
        return self.diff_for_index is not None or self.auxiliary_for_index is not None

    @property
    def is_resolved(self) -> bool:
        return self.result is not EMPTY


@dataclass(frozen=True)
class InvocationFrame:
    """An extension call that is currently running."""
    stage_index: int
    model: str


@dataclass(frozen=True)
class InvocationContext:
    """
    Chain of extension calls leading to the current query execution.

    A handler receives the context of its own call in ``options.context`` and
    passes it on to any queries it runs, which is how nested executions know
    which extensions are already active.
    """
    frames: tuple[InvocationFrame, ...] = field(default_factory=tuple)

    def push(self, stage_index: int, model: str) -> "InvocationContext":
        return InvocationContext(self.frames + (InvocationFrame(stage_index, model),))

    def is_active(self, stage_index: int, model: str) -> bool:
        """True if ``model`` has an active call at ``stage_index`` or later."""
        return any(
            frame.model == model and frame.stage_index >= stage_index
            for frame in self.frames
        )
