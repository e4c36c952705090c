"""Drive a never-suspending coroutine to completion without an event loop."""

from __future__ import annotations

from collections.abc import Coroutine
from typing import Any, TypeVar

_T = TypeVar("_T")


def iter_coroutine(coro: Coroutine[Any, Any, _T]) -> _T:
    """
    Return the result of ``coro`` after stepping it exactly once.

    The blocking context shares its request logic with the async context by
    writing it as ``async def`` over a transport that never awaits. Stepping
    such a coroutine once runs it to the end, and its result travels out on
    ``StopIteration``.

    Raises:
        RuntimeError: If the coroutine yields, which means something in it
            really awaited and needs an event loop.
    """
    try:
        coro.send(None)
    except StopIteration as stop:
        return stop.value  # type: ignore[no-any-return]
    finally:
        coro.close()
    raise RuntimeError(f"{coro!r} suspended; it needs an event loop to finish")


__all__ = ["iter_coroutine"]
