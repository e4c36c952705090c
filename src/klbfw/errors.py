"""Exceptions raised by the REST client and the uploader."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .envelope import Envelope


class RestError(Exception):
    """Base class for every failure surfaced by klbfw."""

    def is_permission_denied(self) -> bool:
        return False

    def is_not_found(self) -> bool:
        return False

    @property
    def status_code(self) -> int | None:
        return None


class APIError(RestError):
    """The backend answered with an ``error`` or ``redirect`` envelope."""

    def __init__(self, response: Envelope) -> None:
        self.message = response.error or "unknown error"
        self.code = response.code
        self.request_id = response.request_id
        self.response = response
        super().__init__(f"REST API error: {self.message}")

    def is_permission_denied(self) -> bool:
        return self.code == 403

    def is_not_found(self) -> bool:
        return self.code == 404

    @property
    def status_code(self) -> int | None:
        return self.code


class HTTPError(RestError):
    """Non-2xx response that is not an envelope, or a transport failure.

    ``status`` is None when no response was received at all.
    """

    def __init__(self, status: int | None, body: str) -> None:
        self.status = status
        self.body = body
        if status is None:
            super().__init__(f"HTTP transport error: {body}")
        else:
            super().__init__(f"HTTP error {status}: {body}")

    @property
    def status_code(self) -> int | None:
        return self.status


class LoginRequiredError(RestError):
    """The backend redirected to its login page."""

    def __init__(self, response: Envelope | None = None) -> None:
        self.response = response
        super().__init__("login required")


class NoClientIdError(RestError):
    def __init__(self) -> None:
        super().__init__("no client_id provided for token renewal")


class NoRefreshTokenError(RestError):
    def __init__(self) -> None:
        super().__init__("no refresh token available and access token has expired")


class RequestBuildError(RestError, ValueError):
    """The verb or URL handed to the context cannot form a request."""

    def __init__(self, message: str) -> None:
        super().__init__(f"failed to build request: {message}")


class JSONError(RestError, ValueError):
    """A payload could not be encoded to or decoded from JSON."""

    def __init__(self, message: str) -> None:
        super().__init__(f"JSON error: {message}")


class Base64DecodeError(RestError, ValueError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Base64 decode error: {message}")


class URLParseError(RestError, ValueError):
    def __init__(self, message: str) -> None:
        super().__init__(f"URL parse error: {message}")


class RestIOError(RestError, OSError):
    """Reading the upload source or spooling a part failed."""

    def __init__(self, message: str) -> None:
        super().__init__(f"IO error: {message}")


class InvalidKeyError(RestError, ValueError):
    """Decoded API key material is not a usable Ed25519 key."""


class UploadError(RestError):
    """An upload precondition failed or storage sent something unexpected."""


__all__ = [
    "RestError",
    "APIError",
    "HTTPError",
    "LoginRequiredError",
    "NoClientIdError",
    "NoRefreshTokenError",
    "RequestBuildError",
    "JSONError",
    "Base64DecodeError",
    "URLParseError",
    "RestIOError",
    "InvalidKeyError",
    "UploadError",
]
