from __future__ import annotations

import asyncio
import contextlib
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import pytest

from manage_sql_database.azure_core import azure_identity


@pytest.fixture(autouse=True)
def reset_azure_identity() -> None:
    """Credentials and cached subscription ids are process-wide, don't leak them"""
    azure_identity.configure_credential(None, None, None, None)


def make_future(result: Any) -> asyncio.Future:
    future: asyncio.Future = asyncio.Future()
    future.set_result(result)
    return future


class FakeResponse:
    """Just enough of aiohttp.ClientResponse for azure_core"""

    def __init__(
        self,
        status: int,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status = status
        self.ok = status < 400
        self._json_body = json_body
        self.headers = dict(headers or {})
        if json_body is None:
            self.content_length: Optional[int] = 0
            self.content_type = "application/octet-stream"
        else:
            self.content_length = None
            self.content_type = "application/json"
            self.headers.setdefault("Content-Type", "application/json; charset=utf-8")

    async def json(self) -> Any:
        return self._json_body

    async def text(self) -> str:
        return "" if self._json_body is None else str(self._json_body)


class FakeRequests:
    """
    Stands in for aiohttp.request, returning the given responses in order and recording
    (method, url, kwargs) for each request
    """

    def __init__(self, responses: List[FakeResponse]):
        self._responses = list(responses)
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    def __call__(self, method: str, url: str, **kwargs: Any) -> Any:
        self.calls.append((method, url, kwargs))
        response = self._responses.pop(0)

        @contextlib.asynccontextmanager
        async def context_manager() -> AsyncIterator[FakeResponse]:
            yield response

        return context_manager()
