"""One-shot async execution shared by every caller."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class RunOnce(Generic[T]):
    """Run an async factory at most once and share its outcome.

    Concurrent callers wait on the same lock; later callers get the cached
    result, or the cached exception re-raised.
    """

    def __init__(self, factory: Callable[[], Awaitable[T]]) -> None:
        self._factory = factory
        self._lock = asyncio.Lock()
        self._done = False
        self._result: Optional[T] = None
        self._error: Optional[BaseException] = None

    @property
    def done(self) -> bool:
        return self._done

    async def __call__(self) -> T:
        async with self._lock:
            if not self._done:
                try:
                    self._result = await self._factory()
                except Exception as exc:
                    self._error = exc
                self._done = True
        if self._error is not None:
            raise self._error
        return self._result  # type: ignore[return-value]


__all__ = ["RunOnce"]
