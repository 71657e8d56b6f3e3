"""Core types: errors, query constants, model resolution and path utilities."""

from .errors import (
    ConfigurationError,
    ExtensionError,
    ExtensionRequiredError,
    HooklineError,
    InvalidResponseError,
    QueryError,
    UploadError,
    get_dot_notated_path,
    get_response_body,
)
from .models import ModelKey, get_model, resolve_model
from .query_types import (
    DDL_QUERY_TYPES,
    DML_QUERY_TYPES,
    QUERY_TYPES,
    READ_QUERY_TYPES,
    WRITE_QUERY_TYPES,
    Query,
    RecordList,
    ResultError,
    Statement,
    StoredObject,
    get_query_type,
)
from .utils import get_property, set_property, to_dash_case

__all__ = [
    # Errors
    "HooklineError",
    "ConfigurationError",
    "InvalidResponseError",
    "UploadError",
    "QueryError",
    "ExtensionError",
    "ExtensionRequiredError",
    "get_dot_notated_path",
    "get_response_body",
    # Models
    "ModelKey",
    "get_model",
    "resolve_model",
    # Query types
    "Query",
    "DML_QUERY_TYPES",
    "DDL_QUERY_TYPES",
    "QUERY_TYPES",
    "READ_QUERY_TYPES",
    "WRITE_QUERY_TYPES",
    "get_query_type",
    "Statement",
    "StoredObject",
    "ResultError",
    "RecordList",
    # Utils
    "to_dash_case",
    "get_property",
    "set_property",
]
