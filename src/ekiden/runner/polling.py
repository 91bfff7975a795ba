"""Bounded polling that honours a graceful stop request."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ekiden.exceptions import ShutdownRequested, TimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_POLL_TIMEOUT = 300.0


async def sleep_unless_stopped(
    seconds: float, stop_event: Optional[asyncio.Event]
) -> bool:
    """Sleep for ``seconds``; return True early if ``stop_event`` fires."""
    if stop_event is None:
        await asyncio.sleep(seconds)
        return False
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


async def poll_until(
    probe: Callable[[], Awaitable[Optional[T]]],
    *,
    what: str,
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float = DEFAULT_POLL_TIMEOUT,
    stop_event: Optional[asyncio.Event] = None,
) -> T:
    """Call ``probe`` every ``interval`` seconds until it returns non-None.

    Raises ``TimeoutError`` once ``timeout`` seconds have elapsed and
    ``ShutdownRequested`` as soon as ``stop_event`` is set.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = 0
    while True:
        if stop_event is not None and stop_event.is_set():
            raise ShutdownRequested(f"shutdown requested while waiting for {what}")
        attempts += 1
        value = await probe()
        if value is not None:
            logger.debug("%s ready after %s attempt(s)", what, attempts)
            return value
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise TimeoutError(f"timeout waiting for {what} after {timeout:.0f}s")
        if await sleep_unless_stopped(min(interval, remaining), stop_event):
            raise ShutdownRequested(f"shutdown requested while waiting for {what}")


__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_POLL_TIMEOUT",
    "poll_until",
    "sleep_unless_stopped",
]
