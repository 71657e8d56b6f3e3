"""
Binary object handling for ``add`` and ``set`` queries.

Binary values inside the ``to`` instructions are extracted, uploaded to the
storage endpoint, and replaced with references to the stored objects before
the queries are executed. Only the reference ends up in the database.
"""

from __future__ import annotations

import asyncio
import io
import logging
import mimetypes
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence
from urllib.parse import quote

from ..core.errors import UPLOAD_ERROR_PREFIX, UploadError, get_response_body
from ..core.query_types import Query, StoredObject
from .service_client import QueryClient


logger = logging.getLogger(__name__)

STORABLE_QUERY_TYPES = ("add", "set")


@dataclass
class Blob:
    """
    In-memory binary value with an optional content type and file name.

    Usage:
        {"add": {"account": {"to": {"avatar": Blob(data, "image/png", "me.png")}}}}
    """
    data: bytes
    content_type: Optional[str] = None
    name: Optional[str] = None


@dataclass
class StorableObject:
    """A binary value found in a query, together with its location."""
    query_index: int
    query_type: str
    model_key: str
    field: str
    value: Any
    content_type: Optional[str] = None
    name: Optional[str] = None


def is_storable(value: Any) -> bool:
    """Check whether a value should be uploaded instead of stored inline."""
    if isinstance(value, (bytes, bytearray, memoryview, Blob)):
        return True
    # Text streams are stored inline like any other string
    return isinstance(value, (io.BufferedIOBase, io.RawIOBase)) and value.readable()


def _describe(value: Any) -> tuple[Optional[str], Optional[str]]:
    """Derive (content_type, name) for a storable value, where possible."""
    if isinstance(value, Blob):
        return value.content_type, value.name

    raw_name = getattr(value, "name", None)
    if isinstance(raw_name, str):
        name = os.path.basename(raw_name)
        content_type, _ = mimetypes.guess_type(name)
        return content_type, name

    return None, None


async def _read_body(value: Any) -> bytes:
    if isinstance(value, Blob):
        return value.data
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, io.IOBase):
        return await asyncio.to_thread(value.read)
    return value


def extract_storable_objects(queries: Sequence[Query]) -> list[StorableObject]:
    """
    Find binary values in the ``to`` instructions of ``add`` and ``set`` queries.

    Args:
        queries: Queries that might contain binary values

    Returns:
        The binary values with their coordinates inside ``queries``
    """
    objects: list[StorableObject] = []

    for query_index, query in enumerate(queries):
        for query_type, instruction_map in query.items():
            if query_type not in STORABLE_QUERY_TYPES or not isinstance(instruction_map, dict):
                continue

            for model_key, instructions in instruction_map.items():
                fields = (instructions or {}).get("to") or {}
                for field_name, value in fields.items():
                    if not is_storable(value):
                        continue

                    content_type, name = _describe(value)
                    objects.append(StorableObject(
                        query_index=query_index,
                        query_type=query_type,
                        model_key=model_key,
                        field=field_name,
                        value=value,
                        content_type=content_type,
                        name=name,
                    ))

    return objects


async def upload_storable_objects(
    objects: Sequence[StorableObject],
    client: QueryClient,
) -> list[StoredObject]:
    """
    Upload binary values to the storage endpoint, concurrently.

    Args:
        objects: Values returned by ``extract_storable_objects``
        client: Client whose options and transport are used for the uploads

    Returns:
        Stored object references, aligned with ``objects``

    Raises:
        UploadError: If any upload fails
    """
    async def upload(storable: StorableObject) -> StoredObject:
        headers = {"Authorization": f"Bearer {client.options.token}"}
        if storable.content_type:
            headers["Content-Type"] = storable.content_type
        if storable.name:
            headers["Content-Disposition"] = f'form-data; filename="{quote(storable.name, safe="")}"'

        request = client.build_request(
            "PUT",
            client.options.storage_url,
            headers,
            content=await _read_body(storable.value),
        )
        response = await client.send(request)
        body = get_response_body(response, error_prefix=UPLOAD_ERROR_PREFIX, error_class=UploadError)
        return StoredObject.model_validate(body)

    logger.debug(f"Uploading {len(objects)} binary object(s) to {client.options.storage_url}")
    return list(await asyncio.gather(*(upload(storable) for storable in objects)))


async def process_storable_objects(
    queries: list[Query],
    upload: Callable[[list[StorableObject]], Awaitable[list[StoredObject]]],
) -> list[Query]:
    """
    Replace binary values in ``queries`` with stored object references, in place.

    Args:
        queries: Queries that might contain binary values
        upload: Uploads the extracted values and returns their references

    Returns:
        The same list of queries
    """
    objects = extract_storable_objects(queries)
    if not objects:
        return queries

    stored_objects = await upload(objects)

    for storable, stored in zip(objects, stored_objects):
        query = queries[storable.query_index]
        fields = query[storable.query_type][storable.model_key]["to"]
        fields[storable.field] = stored.model_dump(exclude_unset=True)

    return queries
