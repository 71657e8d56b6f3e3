"""
Custom exceptions for hookline.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx


class HooklineError(Exception):
    """Base exception for all hookline errors."""
    pass


class ConfigurationError(HooklineError):
    """Raised when the client is configured in a way that cannot run."""
    pass


class InvalidResponseError(HooklineError):
    """Raised when the query or storage endpoint returns an error."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class UploadError(InvalidResponseError):
    """Raised when uploading a binary object to the storage endpoint fails."""
    pass


class QueryError(InvalidResponseError):
    """
    Raised when a single query inside a batch was rejected by the endpoint.

    Carries the query that failed and, when the endpoint reported one, the
    dotted path of the offending instruction inside that query.
    """

    def __init__(
        self,
        message: str,
        *,
        query: Optional[dict] = None,
        path: Optional[str] = None,
        details: Any = None,
        code: Optional[str] = None,
        fields: Optional[list[str]] = None,
        instruction: Any = None,
    ):
        self.query = query
        self.path = path
        self.details = details
        self.fields = fields
        self.instruction = instruction
        super().__init__(message, code=code)


class ExtensionError(HooklineError):
    """Raised when an extension handler fails during a blocking stage."""

    def __init__(self, stage: str, model: str, method: str, cause: BaseException):
        self.stage = stage
        self.model = model
        self.method = method
        self.cause = cause
        super().__init__(f"Extension '{model}.{method}' failed in stage '{stage}': {cause}")


class ExtensionRequiredError(HooklineError):
    """Raised when a query has no extension although one is required for it."""

    code = "TRIGGER_REQUIRED"

    def __init__(self, query_type: str, model: str):
        self.query_type = query_type
        self.model = model
        super().__init__(
            f"Please define a \"{query_type}\" extension for the \"{model}\" model."
        )


UPLOAD_ERROR_PREFIX = (
    "An error occurred while uploading the binary objects included in the provided queries. Error:"
)


def get_dot_notated_path(segments: list[str | int]) -> Optional[str]:
    """
    Join path segments into dot notation, rendering list indexes as ``[n]``.

    Examples:
        ["get", "account", "with"] -> "get.account.with"
        ["queries", 0, "get"] -> "queries[0].get"
        [] -> None
    """
    if not segments:
        return None

    path = ""
    for segment in segments:
        if isinstance(segment, int):
            path += f"[{segment}]"
        elif path:
            path += f".{segment}"
        else:
            path = str(segment)
    return path


def get_response_body(
    response: httpx.Response,
    error_prefix: Optional[str] = None,
    error_class: type[InvalidResponseError] = InvalidResponseError,
) -> Any:
    """
    Parse a response as JSON or raise the error it describes.

    Args:
        response: A response that has already been read
        error_prefix: Text prepended to the message of any raised error
        error_class: Error type to raise for non-successful responses

    Returns:
        The decoded JSON body

    Raises:
        InvalidResponseError: If the status is not successful
    """
    if response.is_success:
        return response.json()

    prefix = f"{error_prefix} " if error_prefix else ""
    text = response.text

    try:
        body = json.loads(text)
    except ValueError:
        raise error_class(
            f"{prefix}{text}",
            code="JSON_PARSE_ERROR",
            status_code=response.status_code,
        )

    error = body.get("error") if isinstance(body, dict) else None
    if error:
        raise error_class(
            f"{prefix}{error.get('message', '')}",
            code=error.get("code"),
            status_code=response.status_code,
        )

    return body
