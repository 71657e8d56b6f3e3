"""
Hookline - client-side query execution with lifecycle extensions.

Runs batches of queries against a remote data endpoint, with:
- Binary values uploaded to a storage endpoint before execution
- Hooks, effects or triggers running before, during and after each query
- Results normalized (dates, pagination, per-query errors)

Usage:
    from hookline import Client

    async with Client(token="...") as client:
        accounts = await client.query({"get": {"accounts": {}}})
"""

from __future__ import annotations

from .client import Client
from .config import ClientOptions, load_config, merge_options
from .core import (
    ConfigurationError,
    ExtensionError,
    ExtensionRequiredError,
    HooklineError,
    InvalidResponseError,
    QueryError,
    RecordList,
    Statement,
    StoredObject,
    UploadError,
    get_dot_notated_path,
)
from .runtime import (
    EMPTY,
    Blob,
    HandlerOptions,
    InvocationContext,
    queries_handler,
    query_handler,
    run_queries_with_storage_and_extensions,
)

__version__ = "0.1.0"

__all__ = [
    # Client
    "Client",
    "ClientOptions",
    "merge_options",
    "load_config",
    # Errors
    "HooklineError",
    "ConfigurationError",
    "InvalidResponseError",
    "UploadError",
    "QueryError",
    "ExtensionError",
    "ExtensionRequiredError",
    "get_dot_notated_path",
    # Types
    "Statement",
    "StoredObject",
    "RecordList",
    "Blob",
    "EMPTY",
    "HandlerOptions",
    "InvocationContext",
    # Handlers
    "queries_handler",
    "query_handler",
    "run_queries_with_storage_and_extensions",
]
