"""Helpers shared by test modules; ``tests`` is on the pytest path."""

import base64

TEST_HOST = "rest.klb.test"
SIGNING_SEED = bytes(range(32))


def rest_url(path: str) -> str:
    """Absolute URL of a REST endpoint on the test host."""
    return f"https://{TEST_HOST}/_special/rest/{path}"


def envelope(data=None, **fields) -> dict:
    """A success envelope; pass ``result=...`` for any other shape."""
    body = {"result": "success", **fields}
    if data is not None:
        body["data"] = data
    return body


def decode_signature(signature: str) -> bytes:
    return base64.urlsafe_b64decode(signature + "=" * (-len(signature) % 4))
