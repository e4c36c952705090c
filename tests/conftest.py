"""Shared fixtures for all tests."""

import base64
from collections.abc import Generator

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from support import SIGNING_SEED, TEST_HOST

from klbfw import ApiKey, Config, Token


@pytest.fixture
def mock_env_clear(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Clear klbfw-related environment variables for testing."""
    for var in ("KLBFW_SCHEME", "KLBFW_HOST", "KLBFW_DEBUG", "DEBUG"):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def config(mock_env_clear) -> Config:
    return Config(host=TEST_HOST)


@pytest.fixture
def token() -> Token:
    return Token(
        access_token="access-1",
        refresh_token="refresh-1",
        client_id="client-abc",
        expires_in=3600,
    )


@pytest.fixture
def signing_secret() -> str:
    """Base64url, unpadded, as handed out by the backend."""
    return base64.urlsafe_b64encode(SIGNING_SEED).rstrip(b"=").decode()


@pytest.fixture
def api_key(signing_secret: str) -> ApiKey:
    return ApiKey("key-test-1", signing_secret)


@pytest.fixture
def public_key():
    return Ed25519PrivateKey.from_private_bytes(SIGNING_SEED).public_key()
