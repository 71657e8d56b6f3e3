"""
Model-key resolution for queries.

Works out which model a query addresses, whether it targets one or many
records, and the dash-cased slug under which extensions for that model are
registered.

Usage:
    model = resolve_model({"get": {"subscriptionItems": {"with": {...}}}})
    model.key               # "subscriptionItems"
    model.model             # "subscription-item"
    model.multiple_records  # True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .query_types import DDL_MODEL_KEY, DDL_QUERY_TYPES, Query, get_query_type
from .utils import to_dash_case


@dataclass(frozen=True)
class ModelKey:
    """Model addressed by a query."""
    query_type: str
    key: str
    model: str
    multiple_records: bool
    instructions: Optional[Any] = None


def get_model(instruction_map: dict[str, Any]) -> tuple[str, str, bool]:
    """
    Resolve the model of a DML instruction map (``{"accounts": {...}}``).

    Returns:
        Tuple of (key, dash-cased model slug, multiple_records)
    """
    key = next(iter(instruction_map))
    model = key
    multiple_records = False

    if model.endswith("s"):
        model = model[:-1]
        multiple_records = True

    return key, to_dash_case(model), multiple_records


def resolve_model(query: Query) -> ModelKey:
    """Resolve the model and instructions addressed by a full query."""
    query_type = get_query_type(query)
    payload = query[query_type]

    # DDL queries address the schema, so their payload is the instruction itself
    if query_type in DDL_QUERY_TYPES:
        return ModelKey(
            query_type=query_type,
            key=DDL_MODEL_KEY,
            model=DDL_MODEL_KEY,
            multiple_records=False,
            instructions=payload,
        )

    key, model, multiple_records = get_model(payload)
    return ModelKey(
        query_type=query_type,
        key=key,
        model=model,
        multiple_records=multiple_records,
        instructions=payload[key],
    )
