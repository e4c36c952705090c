"""REST contexts: build, authenticate, send and decode envelope requests."""

from __future__ import annotations

import contextlib
import copy
import time
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from types import TracebackType
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError
from pydantic_core import PydanticSerializationError, to_json

from ._http import (
    AsyncTransport,
    BaseTransport,
    BlockingTransport,
    BytesBody,
    Config,
    RequestBody,
    create_rest_async_client,
    create_rest_client,
    debug,
    iter_coroutine,
)
from .apikey import ApiKey
from .envelope import Envelope
from .errors import (
    APIError,
    HTTPError,
    JSONError,
    LoginRequiredError,
    NoClientIdError,
    NoRefreshTokenError,
    RequestBuildError,
)
from .token import Token
from .types import Param, Time

T = TypeVar("T")
_C = TypeVar("_C", bound="_BaseRestContext")

QUERY_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
BODY_METHODS = frozenset({"PUT", "POST", "PATCH"})
SUPPORTED_METHODS = QUERY_METHODS | BODY_METHODS | {"DELETE"}

TOKEN_RENEW_PATH = "OAuth2:token"
LOGIN_EXCEPTION = "Exception\\Login"


def _json_fallback(value: Any) -> Any:
    if isinstance(value, Time):
        return value.to_json()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_param(param: Param | None) -> bytes:
    """Compact JSON encoding of request parameters."""
    try:
        return to_json(param if param is not None else {}, fallback=_json_fallback)
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise JSONError(str(exc)) from exc


def _is_token_expired(envelope: Envelope) -> bool:
    return envelope.token == "invalid_request_token" and envelope.extra == "token_expired"


class _BaseRestContext:
    """Request lifecycle shared by the blocking and async contexts.

    A context is cheap to fork: forks share the transport, the ``Token`` object
    and the ``ApiKey``, so a token renewed through one fork is seen by all.
    """

    def __init__(
        self,
        transport: BaseTransport,
        config: Config,
        *,
        token: Token | None = None,
        api_key: ApiKey | None = None,
        owns_transport: bool = True,
    ) -> None:
        self._transport = transport
        self._config = config
        self._token = token
        self._api_key = api_key
        self._owns_transport = owns_transport
        self._allow_renew = True

    @property
    def config(self) -> Config:
        return self._config

    @property
    def token(self) -> Token | None:
        return self._token

    @property
    def api_key(self) -> ApiKey | None:
        return self._api_key

    def _fork(self, **changes: Any) -> Any:
        clone = copy.copy(self)
        clone._owns_transport = False
        for name, value in changes.items():
            setattr(clone, f"_{name}", value)
        return clone

    def with_config(self: _C, config: Config) -> _C:
        return self._fork(config=config)

    def with_token(self: _C, token: Token | None) -> _C:
        return self._fork(token=token)

    def with_api_key(self: _C, api_key: ApiKey | None) -> _C:
        return self._fork(api_key=api_key)

    def with_debug(self: _C, enabled: bool) -> _C:
        config = self._config.with_debug(enabled)
        return self._fork(config=config)

    def _build(
        self, path: str, method: str, param: Param | None
    ) -> tuple[dict[str, str], RequestBody, dict[str, str]]:
        if method not in SUPPORTED_METHODS:
            raise RequestBuildError(f"unsupported HTTP method {method!r}")

        query: dict[str, str] = {}
        body: RequestBody = None
        payload = b""
        if method in QUERY_METHODS:
            query["_"] = encode_param(param).decode("utf-8")
        elif method in BODY_METHODS:
            payload = encode_param(param)
            body = BytesBody(payload, "application/json")

        headers = {"Sec-Rest-Http": "false"}
        if self._api_key is not None:
            self._api_key.apply_params(method, path, query, payload)
        elif self._token is not None:
            headers["Authorization"] = f"Bearer {self._token.access_token}"
        return query, body, headers

    async def _do_request(self, path: str, method: str, param: Param | None = None) -> Envelope:
        query, body, headers = self._build(path, method, param)
        sent_access_token = self._token.access_token if self._token is not None else None

        started = time.monotonic()
        response = await self._transport.send(
            method,
            self._config.rest_url(path),
            params=query,
            body=body,
            headers=headers,
        )
        debug(
            self._config,
            f"{method} {path} => {time.monotonic() - started:.3f}s "
            f"(status: {response.status_code})",
        )

        envelope = self._parse(response)

        if self._token is not None and self._allow_renew and _is_token_expired(envelope):
            await self._renew_token(sent_access_token)
            retry: _BaseRestContext = self._fork(allow_renew=False)
            return await retry._do_request(path, method, param)

        if envelope.result == "redirect":
            if envelope.exception == LOGIN_EXCEPTION:
                raise LoginRequiredError(envelope)
            raise APIError(envelope)
        if envelope.result == "error":
            raise APIError(envelope)
        return envelope

    @staticmethod
    def _parse(response: httpx.Response) -> Envelope:
        try:
            return Envelope.parse(response.content, response.headers.get("X-Request-Id"))
        except ValidationError as exc:
            if 400 <= response.status_code < 600:
                raise HTTPError(response.status_code, response.text) from exc
            raise JSONError(str(exc)) from exc

    def _renewal_lock(self, token: Token) -> AbstractAsyncContextManager[Any]:
        raise NotImplementedError

    async def _renew_token(self, expired_access_token: str | None) -> None:
        """Refresh the shared token unless another caller already did.

        ``expired_access_token`` is the access token the rejected request
        carried; concurrent callers that find it replaced skip the refresh.
        """
        token = self._token
        assert token is not None
        if not token.has_client_id():
            raise NoClientIdError()
        if not token.has_refresh_token():
            raise NoRefreshTokenError()

        async with self._renewal_lock(token):
            if token.access_token != expired_access_token:
                debug(self._config, "access token already renewed")
                return

            debug(self._config, "access token expired, renewing")
            renewer = self._fork(token=None, api_key=None)
            envelope = await renewer._do_request(
                TOKEN_RENEW_PATH,
                "POST",
                {
                    "grant_type": "refresh_token",
                    "client_id": token.client_id,
                    "refresh_token": token.refresh_token,
                    "noraw": "true",
                },
            )
            token.update_from(envelope.apply(Token))

class RestContext(_BaseRestContext):
    """Blocking REST context.

    Example:
        >>> with RestContext(token=token) as ctx:
        ...     user = ctx.apply("User:get", "GET", into=dict)
    """

    _transport: BlockingTransport

    def __init__(
        self,
        config: Config | None = None,
        *,
        token: Token | None = None,
        api_key: ApiKey | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        config = config or Config()
        owns_transport = client is None
        if client is None:
            client = create_rest_client(config)
        super().__init__(
            BlockingTransport(client),
            config,
            token=token,
            api_key=api_key,
            owns_transport=owns_transport,
        )

    @contextlib.asynccontextmanager
    async def _renewal_lock(self, token: Token) -> AsyncIterator[None]:
        with token.renewal_lock:
            yield

    def do_request(self, path: str, method: str, param: Param | None = None) -> Envelope:
        return iter_coroutine(self._do_request(path, method, param))

    def apply(
        self,
        path: str,
        method: str,
        param: Param | None = None,
        into: type[T] | Any = Any,
    ) -> T:
        return self.do_request(path, method, param).apply(into)  # type: ignore[no-any-return]

    def close(self) -> None:
        """Close the underlying client if this context family created it."""
        if self._owns_transport:
            self._transport.close()

    def __enter__(self) -> RestContext:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class AsyncRestContext(_BaseRestContext):
    """Async REST context; mirrors ``RestContext`` with coroutines."""

    _transport: AsyncTransport

    def __init__(
        self,
        config: Config | None = None,
        *,
        token: Token | None = None,
        api_key: ApiKey | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        config = config or Config()
        owns_transport = client is None
        if client is None:
            client = create_rest_async_client(config)
        super().__init__(
            AsyncTransport(client),
            config,
            token=token,
            api_key=api_key,
            owns_transport=owns_transport,
        )

    def _renewal_lock(self, token: Token) -> AbstractAsyncContextManager[Any]:
        return token.async_renewal_lock

    async def do_request(self, path: str, method: str, param: Param | None = None) -> Envelope:
        return await self._do_request(path, method, param)

    async def apply(
        self,
        path: str,
        method: str,
        param: Param | None = None,
        into: type[T] | Any = Any,
    ) -> T:
        envelope = await self.do_request(path, method, param)
        return envelope.apply(into)  # type: ignore[no-any-return]

    async def aclose(self) -> None:
        if self._owns_transport:
            await self._transport.aclose()

    async def __aenter__(self) -> AsyncRestContext:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def do_request(
    path: str,
    method: str,
    param: Param | None = None,
    *,
    config: Config | None = None,
) -> Envelope:
    """Run a single request on a fresh, unauthenticated context."""
    with RestContext(config) as ctx:
        return ctx.do_request(path, method, param)


def apply(
    path: str,
    method: str,
    param: Param | None = None,
    into: type[T] | Any = Any,
    *,
    config: Config | None = None,
) -> T:
    return do_request(path, method, param, config=config).apply(into)  # type: ignore[no-any-return]


__all__ = [
    "RestContext",
    "AsyncRestContext",
    "do_request",
    "apply",
    "encode_param",
]
