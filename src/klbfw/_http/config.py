"""Connection settings for the REST backend."""

from __future__ import annotations

import dataclasses
import os
import sys
from dataclasses import dataclass

DEFAULT_SCHEME = "https"
DEFAULT_HOST = "www.atonline.com"
DEFAULT_TIMEOUT = 300.0
DEFAULT_UPLOAD_TIMEOUT = 3600.0
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_POOL_SIZE = 50

REST_PREFIX = "/_special/rest/"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Config:
    """Where requests go and how long they may take."""

    scheme: str = DEFAULT_SCHEME
    host: str = DEFAULT_HOST
    debug: bool = False
    timeout: float = DEFAULT_TIMEOUT
    upload_timeout: float = DEFAULT_UPLOAD_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    pool_size: int = DEFAULT_POOL_SIZE

    @classmethod
    def from_env(cls) -> Config:
        """Build a config from KLBFW_SCHEME, KLBFW_HOST and KLBFW_DEBUG."""
        debug_env = os.getenv("KLBFW_DEBUG", "")
        return cls(
            scheme=os.getenv("KLBFW_SCHEME") or DEFAULT_SCHEME,
            host=os.getenv("KLBFW_HOST") or DEFAULT_HOST,
            debug=debug_env.strip().lower() in _TRUTHY,
        )

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"

    def rest_url(self, path: str) -> str:
        """Absolute URL of a REST endpoint, e.g. ``Misc/Debug:fixedString``."""
        return f"{self.base_url}{REST_PREFIX}{path}"

    def with_debug(self, debug: bool) -> Config:
        return dataclasses.replace(self, debug=debug)

    def debug_enabled(self) -> bool:
        return self.debug or "klbfw" in os.getenv("DEBUG", "")


def debug(config: Config, message: str) -> None:
    """Print a diagnostic line when debugging is switched on."""
    if config.debug_enabled():
        print(f"klbfw: {message}", file=sys.stderr)


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
]
