"""
Query constants and pydantic models for the wire format.

Queries themselves stay plain dicts (``{"get": {"accounts": {...}}}``) since
they are produced by the query-builder layer and sent as-is. Only the
payloads hookline creates or parses are modelled here.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


Query = Dict[str, Any]

# --- Query types ---

DML_QUERY_TYPES = ("get", "set", "add", "remove", "count")
DDL_QUERY_TYPES = ("create", "alter", "drop", "list")
QUERY_TYPES = DML_QUERY_TYPES + DDL_QUERY_TYPES

READ_QUERY_TYPES = ("get", "count", "list")
WRITE_QUERY_TYPES = ("set", "add", "remove", "create", "alter", "drop")

# Model key used by DDL queries, which address the schema itself.
DDL_MODEL_KEY = "model"


def get_query_type(query: Query) -> str:
    """Return the verb of a query (its single top-level key)."""
    return next(iter(query))


# --- Native statements ---

class Statement(BaseModel):
    """
    A native statement produced by a query compiler.

    Sent as ``{"query": statement, "values": params}`` inside ``nativeQueries``.
    """
    statement: str
    params: List[Any] = Field(default_factory=list)

    def to_native_query(self) -> dict[str, Any]:
        return {"query": self.statement, "values": self.params}


# --- Storage types ---

class StoredObjectMeta(BaseModel):
    size: int
    type: str
    width: Optional[int] = None
    height: Optional[int] = None


class StoredObjectPlaceholder(BaseModel):
    base64: Optional[str] = None


class StoredObject(BaseModel):
    """
    Reference to a binary object that was uploaded to the storage endpoint.

    Replaces the raw binary value inside the query that is sent to the
    query endpoint.
    """
    key: str
    src: str
    name: Optional[str] = None
    meta: StoredObjectMeta
    placeholder: Optional[StoredObjectPlaceholder] = None


# --- Result envelopes ---

class ResultIssue(BaseModel):
    """A structured validation issue reported for a query."""
    model_config = ConfigDict(extra="allow")

    message: Optional[str] = None
    path: List[Union[str, int]] = Field(default_factory=list)


class ResultError(BaseModel):
    """Error reported for a single query inside a successful batch response."""
    model_config = ConfigDict(extra="allow")

    message: str
    code: Optional[str] = None
    path: Optional[str] = None
    issues: List[ResultIssue] = Field(default_factory=list)
    details: Any = None
    fields: Optional[List[str]] = None


class RecordList(list):
    """
    List of records with pagination cursors.

    ``more_before`` and ``more_after`` hold the cursors for retrieving the
    previous or next page, if the endpoint provided them.
    """

    def __init__(
        self,
        records=(),
        more_before: Optional[str] = None,
        more_after: Optional[str] = None,
    ):
        super().__init__(records)
        self.more_before = more_before
        self.more_after = more_after

    def __deepcopy__(self, memo):
        return RecordList(
            [deepcopy(record, memo) for record in self],
            more_before=self.more_before,
            more_after=self.more_after,
        )


RequireTriggers = Literal["all", "read", "write"]
