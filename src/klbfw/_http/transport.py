"""HTTP transport implementations for sync and async contexts."""

from __future__ import annotations

import abc
from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from ..errors import HTTPError, RequestBuildError, URLParseError


@dataclass(frozen=True, slots=True)
class BytesBody:
    """Raw bytes request body with explicit content type."""

    data: bytes
    content_type: str = "application/octet-stream"


RequestBody = BytesBody | None


def _prepare(
    body: RequestBody,
    headers: Mapping[str, str] | None,
) -> tuple[bytes | None, dict[str, str]]:
    request_headers = dict(headers or {})
    if body is None:
        return None, request_headers
    request_headers.setdefault("Content-Type", body.content_type)
    return body.data, request_headers


def _translate(exc: Exception) -> Exception:
    if isinstance(exc, httpx.UnsupportedProtocol):
        return RequestBuildError(str(exc))
    if isinstance(exc, httpx.InvalidURL):
        return URLParseError(str(exc))
    return HTTPError(None, str(exc))


class BaseTransport(abc.ABC):
    """Abstract transport with an async interface over an httpx client."""

    @abc.abstractmethod
    async def send(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        body: RequestBody = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request to an absolute URL and return the response."""
        ...


class BlockingTransport(BaseTransport):
    """
    Synchronous transport using httpx.Client.

    ``send`` is declared async but never awaits anything, so it can be
    driven with ``iter_coroutine()``. The client is shared and safe to use
    from several threads at once.
    """

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @property
    def client(self) -> httpx.Client:
        return self._client

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        body: RequestBody = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        content, request_headers = _prepare(body, headers)
        try:
            return self._client.request(
                method,
                url,
                params=dict(params) if params else None,
                content=content,
                headers=request_headers,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise _translate(exc) from exc

    def close(self) -> None:
        self._client.close()


class AsyncTransport(BaseTransport):
    """Asynchronous transport using httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        body: RequestBody = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        content, request_headers = _prepare(body, headers)
        try:
            return await self._client.request(
                method,
                url,
                params=dict(params) if params else None,
                content=content,
                headers=request_headers,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise _translate(exc) from exc

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "BaseTransport",
    "BlockingTransport",
    "AsyncTransport",
    "BytesBody",
    "RequestBody",
]
