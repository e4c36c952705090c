"""
API-key authentication with Ed25519 request signatures.

A signed request carries four extra query parameters: ``_key`` (the key id),
``_time`` (Unix seconds), ``_nonce`` (a fresh UUIDv4) and ``_sign``. The
signature covers the NUL-separated string::

    METHOD \\0 path \\0 sorted-query \\0 sha256(body)

where the query is form-urlencoded (``%20`` for spaces), sorted by key and
excludes ``_sign`` itself. The signature is sent base64url without padding.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
import time
import uuid
from collections.abc import Iterable, Mapping, MutableMapping
from urllib.parse import quote

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .errors import Base64DecodeError, InvalidKeyError

ED25519_SECRET_LENGTH = 32
ED25519_KEYPAIR_LENGTH = 64
SIGN_PARAM = "_sign"

QueryPairs = Mapping[str, str] | Iterable[tuple[str, str]]

_URLSAFE_UNPADDED = re.compile(r"^[A-Za-z0-9_-]*$")


def _decode_secret(secret: str) -> bytes:
    # base64url without padding first, then standard base64
    if _URLSAFE_UNPADDED.match(secret):
        try:
            return base64.urlsafe_b64decode(secret + "=" * (-len(secret) % 4))
        except (binascii.Error, ValueError):
            pass
    try:
        return base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise Base64DecodeError(str(exc)) from exc


def _form_quote(value: str) -> str:
    # application/x-www-form-urlencoded leaves only alphanumerics and *-._ as is
    return quote(value, safe="*").replace("~", "%7E")


def canonical_query(query: QueryPairs) -> str:
    """Serialize query pairs for signing: drop ``_sign``, sort by key, encode."""
    pairs = query.items() if isinstance(query, Mapping) else query
    kept = [(str(k), str(v)) for k, v in pairs if k != SIGN_PARAM]
    kept.sort(key=lambda pair: pair[0])
    return "&".join(f"{_form_quote(k)}={_form_quote(v)}" for k, v in kept)


def canonical_request(method: str, path: str, query: QueryPairs, body: bytes) -> bytes:
    """Build the byte string that gets signed."""
    return b"\x00".join(
        [
            method.encode("utf-8"),
            path.encode("utf-8"),
            canonical_query(query).encode("ascii"),
            hashlib.sha256(body).digest(),
        ]
    )


class ApiKey:
    """An API key id and its Ed25519 secret.

    ``secret`` may be base64url (unpadded) or standard base64, and may decode
    to either the 32-byte secret or the 64-byte secret||public pair. The public
    half is always derived from the secret.
    """

    __slots__ = ("key_id", "_private_key")

    def __init__(self, key_id: str, secret: str) -> None:
        decoded = _decode_secret(secret)
        if len(decoded) not in (ED25519_SECRET_LENGTH, ED25519_KEYPAIR_LENGTH):
            raise InvalidKeyError(
                f"Invalid key length: expected {ED25519_SECRET_LENGTH} or "
                f"{ED25519_KEYPAIR_LENGTH} bytes, got {len(decoded)}"
            )
        try:
            private_key = Ed25519PrivateKey.from_private_bytes(
                decoded[:ED25519_SECRET_LENGTH]
            )
        except ValueError as exc:
            raise InvalidKeyError("Invalid Ed25519 secret key") from exc
        self.key_id = key_id
        self._private_key = private_key

    @classmethod
    def from_private_key(cls, key_id: str, private_key: Ed25519PrivateKey) -> ApiKey:
        key = cls.__new__(cls)
        key.key_id = key_id
        key._private_key = private_key
        return key

    @property
    def public_key(self) -> Ed25519PublicKey:
        return self._private_key.public_key()

    def public_key_bytes(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def generate_signature(
        self,
        method: str,
        path: str,
        query: QueryPairs,
        body: bytes = b"",
    ) -> str:
        """Sign a request and return the base64url-unpadded signature."""
        signature = self._private_key.sign(canonical_request(method, path, query, body))
        return base64.urlsafe_b64encode(signature).rstrip(b"=").decode("ascii")

    def apply_params(
        self,
        method: str,
        path: str,
        params: MutableMapping[str, str],
        body: bytes = b"",
        *,
        now: float | None = None,
        nonce: str | None = None,
    ) -> None:
        """Add ``_key``, ``_time``, ``_nonce`` and ``_sign`` to ``params``.

        Call this once every business parameter is in ``params`` and before
        the URL is built. ``now`` and ``nonce`` pin the otherwise fresh values.
        """
        params["_key"] = self.key_id
        params["_time"] = str(int(time.time() if now is None else now))
        params["_nonce"] = nonce if nonce is not None else str(uuid.uuid4())
        params[SIGN_PARAM] = self.generate_signature(method, path, params, body)

    def __repr__(self) -> str:
        return f"ApiKey(key_id={self.key_id!r}, secret=<redacted>)"


__all__ = ["ApiKey", "canonical_query", "canonical_request", "SIGN_PARAM"]
