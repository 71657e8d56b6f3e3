"""
Result formatter - turns raw result envelopes into caller-facing values.

Handles:
- Counts (``amount``) -> numbers
- Single records (``record``) -> dict or None
- Record lists (``records``) -> RecordList with pagination cursors
- Expanded results (``models``) -> dict of model -> formatted result
- Date fields declared in ``modelFields`` -> datetime
- Per-query ``error`` envelopes -> QueryError
"""

from __future__ import annotations

import json
import logging
import time
from copy import deepcopy
from datetime import datetime
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from ..core.errors import QueryError, get_dot_notated_path
from ..core.query_types import Query, RecordList, ResultError
from ..core.utils import get_property, set_property


logger = logging.getLogger(__name__)

_datetime_adapter = TypeAdapter(datetime)


def format_date_fields(record: dict, date_fields: list[str]) -> None:
    """Convert the given (possibly dotted) date fields of a record in place."""
    for field_path in date_fields:
        value = get_property(record, field_path)
        if value is None or isinstance(value, datetime):
            continue
        try:
            set_property(record, field_path, _datetime_adapter.validate_python(value))
        except ValidationError:
            logger.warning(f"Could not parse date field '{field_path}': {value!r}")


class ResultFormatter:
    """
    Formats result envelopes returned by the query endpoint.

    Usage:
        formatter = ResultFormatter()
        results = formatter.format_results(envelopes, queries)
    """

    def format_results(
        self,
        results: list[dict[str, Any]],
        queries: Optional[list[Optional[Query]]] = None,
    ) -> list[Any]:
        """
        Format a list of result envelopes.

        Args:
            results: Raw envelopes, in the order of the queries that produced them
            queries: The queries that were sent, used to enrich error messages

        Returns:
            Formatted results, aligned with ``results``

        Raises:
            QueryError: If any envelope carries an error
        """
        start = time.perf_counter()
        formatted: list[Any] = []

        for index, result in enumerate(results):
            query = queries[index] if queries and index < len(queries) else None

            # Results combining several models are keyed by model
            if "models" in result:
                formatted.append({
                    model: self.format_individual_result(model_result, query)
                    for model, model_result in result["models"].items()
                })
                continue

            formatted.append(self.format_individual_result(result, query))

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Formatting {len(results)} result(s) took {elapsed_ms:.2f}ms")
        return formatted

    def format_individual_result(self, result: dict[str, Any], query: Optional[Query] = None) -> Any:
        """Format a single result envelope."""
        if "error" in result and result["error"]:
            raise self.build_error(result["error"], query)

        amount = result.get("amount")
        if amount is not None:
            return self._to_number(amount)

        date_fields = [
            slug
            for slug, field_type in (result.get("modelFields") or {}).items()
            if field_type == "date"
        ]

        if "record" in result:
            # No record matched a singular query
            if result["record"] is None:
                return None

            record = deepcopy(result["record"])
            format_date_fields(record, date_fields)
            return record

        if "records" in result:
            records = deepcopy(result["records"])
            for record in records:
                format_date_fields(record, date_fields)

            return RecordList(
                records,
                more_before=result.get("moreBefore"),
                more_after=result.get("moreAfter"),
            )

        return result

    def build_error(self, error: dict[str, Any], query: Optional[Query] = None) -> QueryError:
        """
        Build a QueryError from an ``error`` envelope.

        The first structured issue decides the path; the instruction found at
        that path inside the query is appended to the message.
        """
        details = ResultError.model_validate(error)

        path = details.path
        segments: list[str | int] = []
        if details.issues and details.issues[0].path:
            segments = list(details.issues[0].path)
            path = get_dot_notated_path(segments)

        instruction = None
        message = details.message
        if query is not None and (segments or path):
            instruction = self._find_instruction(query, segments or path)
            if instruction is not None:
                message = f"{message} Offending instruction at `{path}`: {json.dumps(instruction, default=str)}"

        return QueryError(
            message,
            query=query,
            path=path,
            details=details.details if details.details is not None else details.issues or None,
            code=details.code,
            fields=details.fields,
            instruction=instruction,
        )

    def _find_instruction(self, query: Query, path: list[str | int] | str) -> Any:
        """Look up the offending instruction inside the query that failed."""
        if isinstance(path, str):
            segments: list[Any] = path.replace("[", ".").replace("]", "").split(".")
        else:
            segments = list(path)

        # Paths reported for a batch start at the query list itself
        if len(segments) >= 2 and segments[0] == "queries" and str(segments[1]).isdigit():
            segments = segments[2:]

        if not segments:
            return None
        return get_property(query, ".".join(str(segment) for segment in segments))

    def _to_number(self, amount: Any) -> int | float:
        if isinstance(amount, (int, float)):
            return amount
        number = float(amount)
        return int(number) if number.is_integer() else number
