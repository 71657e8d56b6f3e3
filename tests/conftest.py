"""Shared fixtures: a recording mock transport for the query and storage endpoints."""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

import httpx
import pytest

from hookline.config import ClientOptions


class RecordingTransport:
    """
    httpx.MockTransport wrapper that records requests and answers them.

    By default every query is answered with ``{"record": {...}}`` echoing the
    query, which makes the order of sent queries visible in the results.
    """

    def __init__(self, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: list[httpx.Request] = []
        self._handler = handler or self.default_handler
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    @staticmethod
    def default_handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if "queries" in body:
            return httpx.Response(200, json={"results": [{"record": {"query": q}} for q in body["queries"]]})
        return httpx.Response(200, json={
            database: {"results": [{"record": {"query": q}} for q in payload["queries"]]}
            for database, payload in body.items()
        })

    @property
    def bodies(self) -> list[Any]:
        return [json.loads(request.content) for request in self.requests if request.method == "POST"]


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def make_options(transport: RecordingTransport) -> Callable[..., ClientOptions]:
    def factory(**kwargs: Any) -> ClientOptions:
        kwargs.setdefault("token", "takashitoken")
        kwargs.setdefault("http_client", httpx.AsyncClient(transport=kwargs.pop("mock", transport).transport))
        return ClientOptions(**kwargs)

    return factory
