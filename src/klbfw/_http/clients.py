"""Factories for the pooled httpx clients used by contexts and uploaders."""

from __future__ import annotations

import httpx

from .config import Config


def _build_timeout(total: float, connect: float) -> httpx.Timeout:
    return httpx.Timeout(total, connect=connect)


def _build_limits(pool_size: int) -> httpx.Limits:
    return httpx.Limits(max_keepalive_connections=pool_size)


def create_rest_client(config: Config | None = None) -> httpx.Client:
    """Create a sync httpx client for regular REST calls.

    Args:
        config: Connection settings. Defaults to ``Config()``.

    Returns:
        An httpx.Client with the REST timeout and keep-alive pool applied.
    """
    config = config or Config()
    return httpx.Client(
        timeout=_build_timeout(config.timeout, config.connect_timeout),
        limits=_build_limits(config.pool_size),
    )


def create_rest_async_client(config: Config | None = None) -> httpx.AsyncClient:
    """Async counterpart of :func:`create_rest_client`."""
    config = config or Config()
    return httpx.AsyncClient(
        timeout=_build_timeout(config.timeout, config.connect_timeout),
        limits=_build_limits(config.pool_size),
    )


def create_upload_client(config: Config | None = None) -> httpx.Client:
    """Create a sync httpx client for payload transfers.

    Uploads go straight to storage endpoints and may take far longer than a
    REST call, so this client uses ``config.upload_timeout``.
    """
    config = config or Config()
    return httpx.Client(
        timeout=_build_timeout(config.upload_timeout, config.connect_timeout),
        limits=_build_limits(config.pool_size),
    )


def create_upload_async_client(config: Config | None = None) -> httpx.AsyncClient:
    """Async counterpart of :func:`create_upload_client`."""
    config = config or Config()
    return httpx.AsyncClient(
        timeout=_build_timeout(config.upload_timeout, config.connect_timeout),
        limits=_build_limits(config.pool_size),
    )


__all__ = [
    "create_rest_client",
    "create_rest_async_client",
    "create_upload_client",
    "create_upload_async_client",
]
