from __future__ import annotations

import threading

import anyio
from pydantic import BaseModel, Field, PrivateAttr


class Token(BaseModel):
    """OAuth2 access token with what is needed to renew it.

    ``client_id`` is kept locally for renewal and is never serialized.
    Renewals of one token are serialized through its locks, one for worker
    threads and one for tasks.
    """

    access_token: str
    refresh_token: str = ""
    token_type: str = "Bearer"
    client_id: str = Field(default="", exclude=True)
    expires_in: int = 0

    _renewal_lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)
    _async_renewal_lock: anyio.Lock = PrivateAttr(default_factory=anyio.Lock)

    @property
    def renewal_lock(self) -> threading.Lock:
        return self._renewal_lock

    @property
    def async_renewal_lock(self) -> anyio.Lock:
        return self._async_renewal_lock

    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def has_client_id(self) -> bool:
        return bool(self.client_id)

    def update_from(self, renewed: Token) -> None:
        """Take over the credentials of a freshly issued token."""
        self.access_token = renewed.access_token
        self.refresh_token = renewed.refresh_token
        self.expires_in = renewed.expires_in


__all__ = ["Token"]
