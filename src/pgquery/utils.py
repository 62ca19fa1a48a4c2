"""Clock and timer helpers."""

from __future__ import annotations

import asyncio
import inspect
import math
import time
from collections.abc import Callable
from typing import Any


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


def running_loop() -> asyncio.AbstractEventLoop | None:
    """The running event loop, or ``None`` when called from plain sync code."""
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def schedule(delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle | None:
    """Run ``callback`` after ``delay_ms`` on the running loop.

    Returns ``None`` (nothing scheduled) for infinite delays or when called
    outside a running event loop.
    """
    if math.isinf(delay_ms):
        return None
    loop = running_loop()
    if loop is None:
        return None
    return loop.call_later(max(delay_ms, 0) / 1000, callback)


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, so hooks may be plain or async."""
    if inspect.isawaitable(value):
        return await value
    return value


def consume_task_exception(task: asyncio.Task[Any]) -> None:
    """Done-callback marking a background task's exception as retrieved.

    The exception itself has already been recorded in query/mutation state.
    """
    if not task.cancelled():
        task.exception()
