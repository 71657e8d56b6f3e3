"""
Runtime: query execution with storage uploads and extensions.
"""

from .context import EMPTY, InvocationContext, QueryEntry
from .executor import BatchExecutor
from .extensions import (
    EFFECTS,
    HOOKS,
    SINK_MODEL,
    TRIGGERS,
    ExtensionPolicy,
    ExtensionRegistry,
    HandlerOptions,
    Stage,
    invoke_extension,
)
from .formatter import ResultFormatter
from .handlers import (
    build_registry,
    queries_handler,
    query_handler,
    run_queries_with_extensions,
    run_queries_with_storage_and_extensions,
)
from .service_client import QueryClient
from .storage import (
    Blob,
    StorableObject,
    extract_storable_objects,
    process_storable_objects,
    upload_storable_objects,
)

__all__ = [
    "EMPTY",
    "QueryEntry",
    "InvocationContext",
    "BatchExecutor",
    "Stage",
    "ExtensionPolicy",
    "HOOKS",
    "EFFECTS",
    "TRIGGERS",
    "SINK_MODEL",
    "ExtensionRegistry",
    "HandlerOptions",
    "invoke_extension",
    "ResultFormatter",
    "QueryClient",
    "Blob",
    "StorableObject",
    "extract_storable_objects",
    "upload_storable_objects",
    "process_storable_objects",
    "build_registry",
    "run_queries_with_extensions",
    "run_queries_with_storage_and_extensions",
    "queries_handler",
    "query_handler",
]
