from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import GetCoreSchemaHandler
from pydantic_core import core_schema

Param = dict[str, Any]

UploadProgressFn = Callable[[int], None]
AsyncUploadProgressFn = Callable[[int], None] | Callable[[int], Awaitable[None]]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ISO_FORMAT = "%Y-%m-%d %H:%M:%S"


@functools.total_ordering
class Time:
    """A UTC moment with microsecond resolution, in the backend's wire format.

    On the wire a time is an object such as::

        {"unix": 1597242491, "us": 747497, "tz": "UTC",
         "iso": "2020-08-12 14:28:11", "full": "1597242491747497",
         "unixms": "1597242491747"}

    Only ``unix`` and ``us`` are read back; everything else is derived.
    ``Time`` can be used as a field type in pydantic models.
    """

    __slots__ = ("_dt",)

    def __init__(self, dt: datetime) -> None:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        self._dt = dt.astimezone(timezone.utc)

    @classmethod
    def from_unix(cls, unix: int, usec: int = 0) -> Time:
        return cls(_EPOCH + timedelta(seconds=unix, microseconds=usec))

    @classmethod
    def now(cls) -> Time:
        return cls(datetime.now(timezone.utc))

    @classmethod
    def from_json(cls, value: Mapping[str, Any]) -> Time:
        unix = value.get("unix")
        usec = value.get("us")
        for name, field in (("unix", unix), ("us", usec)):
            if not isinstance(field, int) or isinstance(field, bool):
                raise ValueError(f"time object requires an integer {name!r} field")
        return cls.from_unix(unix, usec)  # type: ignore[arg-type]

    def to_datetime(self) -> datetime:
        return self._dt

    def unix(self) -> int:
        return self.unix_micro() // 1_000_000

    def usec(self) -> int:
        return self._dt.microsecond

    def unix_micro(self) -> int:
        delta = self._dt - _EPOCH
        return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds

    def unix_milli(self) -> int:
        return self.unix_micro() // 1_000

    def iso(self) -> str:
        return self._dt.strftime(_ISO_FORMAT)

    def to_json(self) -> dict[str, Any]:
        return {
            "unix": self.unix(),
            "us": self.usec(),
            "tz": "UTC",
            "iso": self.iso(),
            "full": str(self.unix_micro()),
            "unixms": str(self.unix_milli()),
        }

    @classmethod
    def _validate(cls, value: Any) -> Time:
        if isinstance(value, Time):
            return value
        if isinstance(value, datetime):
            return cls(value)
        if isinstance(value, Mapping):
            return cls.from_json(value)
        raise ValueError(f"cannot interpret {type(value).__name__} as a time")

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda t: t.to_json()
            ),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Time):
            return NotImplemented
        return self._dt == other._dt

    def __lt__(self, other: Time) -> bool:
        return self._dt < other._dt

    def __hash__(self) -> int:
        return hash(self._dt)

    def __repr__(self) -> str:
        return f"Time({self._dt.isoformat()})"


__all__ = ["Time", "Param", "UploadProgressFn", "AsyncUploadProgressFn"]
