"""
Client configuration: option container, merging, environment and YAML loading.

Usage:
    options = ClientOptions(token="...", effects={"account": {...}})
    options = merge_options(load_config(), {"database": "analytics"})
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Literal, Mapping, Optional, Union

import httpx
import yaml
from pydantic import BaseModel, ConfigDict

from .core.errors import ConfigurationError
from .core.query_types import RequireTriggers


DEFAULT_DATA_URL = "https://data.ronin.co"
DEFAULT_STORAGE_URL = "https://storage.ronin.co/"
DEFAULT_TIMEOUT = 30.0

Runtime = Literal["process", "edge"]

# A replacement for the HTTP client, or extra options merged into each request.
FetchOption = Union[
    Callable[[httpx.Request], Awaitable[httpx.Response]],
    Mapping[str, Any],
]


class ClientOptions(BaseModel):
    """
    Options controlling how queries are executed.

    Only one of ``hooks``, ``effects`` and ``triggers`` may be set; each is a
    mapping of model slug to a mapping of method name to handler.

    Options passed to the constructor are tracked in ``model_fields_set``, so
    merging only carries over what was set explicitly.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    token: Optional[str] = None
    fetch: Optional[FetchOption] = None
    database: Optional[str] = None

    hooks: Optional[Mapping[str, Mapping[str, Callable]]] = None
    effects: Optional[Mapping[str, Mapping[str, Callable]]] = None
    triggers: Optional[Mapping[str, Mapping[str, Callable]]] = None
    require_triggers: Optional[RequireTriggers] = None

    # Keeps request-scoped runtimes alive until "following" handlers finish.
    wait_until: Optional[Callable[[Awaitable[None]], Any]] = None
    implicit: bool = False
    runtime: Runtime = "process"

    models: Optional[Any] = None
    compiler: Optional[Callable[..., Any]] = None

    data_url: str = DEFAULT_DATA_URL
    storage_url: str = DEFAULT_STORAGE_URL
    timeout: float = DEFAULT_TIMEOUT
    http_client: Optional[httpx.AsyncClient] = None

    @property
    def is_edge(self) -> bool:
        return self.runtime == "edge"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClientOptions":
        """Create options from a dictionary, rejecting unknown keys."""
        unknown = set(data) - set(cls.model_fields)
        if unknown:
            raise ConfigurationError(f"Unknown client options: {sorted(unknown)}")
        return cls(**dict(data))

    @classmethod
    def from_env(cls) -> "ClientOptions":
        """Create options from ``HOOKLINE_*`` environment variables."""
        data: dict[str, Any] = {}
        env_map = {
            "HOOKLINE_TOKEN": "token",
            "HOOKLINE_DATABASE": "database",
            "HOOKLINE_DATA_URL": "data_url",
            "HOOKLINE_STORAGE_URL": "storage_url",
            "HOOKLINE_RUNTIME": "runtime",
        }
        for env_name, option in env_map.items():
            value = os.getenv(env_name)
            if value:
                data[option] = value
        return cls(**data)

    def explicit_values(self) -> dict[str, Any]:
        """Return the options that were set explicitly, even to their default value."""
        return {name: getattr(self, name) for name in self.model_fields_set}


OptionsInput = Union[
    None,
    ClientOptions,
    Mapping[str, Any],
    Callable[[], Union[ClientOptions, Mapping[str, Any], None]],
]


def merge_options(*options: OptionsInput) -> ClientOptions:
    """
    Merge option objects, dicts and option factories into one ``ClientOptions``.

    Later arguments win. Factories are called at merge time, which allows for
    configuration that must be generated whenever queries are executed.
    """
    merged: dict[str, Any] = {}
    for option in options:
        resolved = option() if callable(option) else option
        if resolved is None:
            continue
        if isinstance(resolved, ClientOptions):
            merged.update(resolved.explicit_values())
        else:
            merged.update({key: value for key, value in resolved.items() if value is not None})
    return ClientOptions.from_dict(merged)


def resolve_token(options: ClientOptions) -> ClientOptions:
    """
    Ensure a token is available, falling back to ``HOOKLINE_TOKEN``.

    The environment is only consulted in process runtimes; request-scoped
    runtimes must pass the token explicitly.

    Raises:
        ConfigurationError: If no token can be found
    """
    if options.token:
        return options

    if options.is_edge:
        raise ConfigurationError(
            "When invoking hookline from an edge runtime, the `token` option must be set."
        )

    token = os.getenv("HOOKLINE_TOKEN")
    if not token or token == "undefined":
        raise ConfigurationError(
            "Please specify the `HOOKLINE_TOKEN` environment variable"
            " or set the `token` option when invoking hookline."
        )
    return options.model_copy(update={"token": token})


def load_config(path: Path | str = "hookline.yaml") -> ClientOptions | None:
    """Load options from a YAML file, or None if it does not exist."""
    path = Path(path)
    if not path.exists():
        return None

    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping of options")
    return ClientOptions.from_dict(data)
