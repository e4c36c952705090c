"""Shared HTTP infrastructure for REST contexts and uploaders."""

from .clients import (
    create_rest_async_client,
    create_rest_client,
    create_upload_async_client,
    create_upload_client,
)
from .config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_HOST,
    DEFAULT_POOL_SIZE,
    DEFAULT_SCHEME,
    DEFAULT_TIMEOUT,
    DEFAULT_UPLOAD_TIMEOUT,
    REST_PREFIX,
    Config,
    debug,
)
from .iter_coroutine import iter_coroutine
from .transport import (
    AsyncTransport,
    BaseTransport,
    BlockingTransport,
    BytesBody,
    RequestBody,
)

__all__ = [
    "Config",
    "DEFAULT_SCHEME",
    "DEFAULT_HOST",
    "DEFAULT_TIMEOUT",
    "DEFAULT_UPLOAD_TIMEOUT",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_POOL_SIZE",
    "REST_PREFIX",
    "debug",
    "iter_coroutine",
    "BaseTransport",
    "BlockingTransport",
    "AsyncTransport",
    "BytesBody",
    "RequestBody",
    "create_rest_client",
    "create_rest_async_client",
    "create_upload_client",
    "create_upload_async_client",
]
