"""The JSON envelope wrapping every REST response."""

from __future__ import annotations

import copy
from typing import Any, TypeVar

from pydantic import BaseModel, PrivateAttr, TypeAdapter, ValidationError

from .errors import JSONError

T = TypeVar("T")

_METADATA_FIELDS = frozenset(
    {"error", "code", "extra", "token", "paging", "job", "time", "access", "exception"}
)


class Envelope(BaseModel):
    """A decoded REST response.

    ``result`` is ``"success"``, ``"error"`` or ``"redirect"``; the payload
    lives in ``data``. The ``X-Request-Id`` response header is kept in
    ``request_id`` and is never serialized.
    """

    result: str
    data: Any = None
    error: str | None = None
    code: int | None = None
    extra: str | None = None
    token: str | None = None
    paging: Any = None
    job: Any = None
    time: Any = None
    access: Any = None
    exception: str | None = None
    redirect_url: str | None = None
    redirect_code: int | None = None

    _request_id: str | None = PrivateAttr(default=None)

    @classmethod
    def parse(cls, body: bytes | str, request_id: str | None = None) -> Envelope:
        """Decode a response body; raises pydantic's ValidationError on bad input."""
        envelope = cls.model_validate_json(body)
        envelope._request_id = request_id
        return envelope

    @property
    def request_id(self) -> str | None:
        return self._request_id

    def raw(self) -> Any:
        return self.data

    def apply(self, into: type[T] | Any = Any) -> T:
        """Validate ``data`` into ``into`` (a model, dataclass, TypedDict, ...).

        Absent data is validated as ``None``.
        """
        try:
            return TypeAdapter(into).validate_python(self.data)
        except ValidationError as exc:
            raise JSONError(str(exc)) from exc

    def get(self, path: str) -> Any:
        """Look up a ``/``-separated path inside ``data``.

        Objects are descended by key and arrays by non-negative index; empty
        segments are skipped. Returns None when the path does not resolve.
        """
        current = self.data
        if current is None:
            return None
        for segment in path.split("/"):
            if not segment:
                continue
            if isinstance(current, dict):
                if segment not in current:
                    return None
                current = current[segment]
            elif isinstance(current, list):
                if not (segment.isascii() and segment.isdigit()):
                    return None
                index = int(segment)
                if index >= len(current):
                    return None
                current = current[index]
            else:
                return None
        return current

    def get_string(self, path: str) -> str | None:
        value = self.get(path)
        return value if isinstance(value, str) else None

    def offset_get(self, key: str) -> Any:
        """Read ``@error``-style metadata, or a data path for any other key."""
        if key.startswith("@"):
            name = key[1:]
            if name not in _METADATA_FIELDS:
                return None
            return copy.deepcopy(getattr(self, name))
        return copy.deepcopy(self.get(key))

    def __getitem__(self, key: str) -> Any:
        return self.offset_get(key)

    def full_raw(self) -> dict[str, Any]:
        """Every present top-level field, ``result`` included."""
        return self.model_dump(exclude_none=True)

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


__all__ = ["Envelope"]
