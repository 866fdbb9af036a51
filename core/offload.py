"""
core/offload.py -- Run blocking calls off the event loop with a time bound.

Stores are written synchronously against SQLAlchemy Core (one short
transaction per call). Request handlers are coroutines, so every store call
goes through run_bounded(): the blocking function runs on a worker thread and
the awaiting coroutine gives up after `timeout` seconds with StoreUnavailable
instead of hanging the request.

A timed-out worker thread is abandoned, not killed. Each store operation is a
single transaction, so it either commits completely or not at all.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from concurrent.futures import Executor
from typing import TypeVar

from core.errors import StoreUnavailable

T = TypeVar("T")


async def run_bounded(
    func: Callable[..., T],
    *args,
    timeout: float,
    operation: str,
    executor: Executor | None = None,
) -> T:
    """Run func(*args) on `executor` (loop default when None), bounded by timeout.

    Raises StoreUnavailable on timeout. Exceptions raised by func propagate
    unchanged -- stores translate driver errors themselves.
    """
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(executor, functools.partial(func, *args))
    try:
        return await asyncio.wait_for(future, timeout)
    except asyncio.TimeoutError as exc:
        raise StoreUnavailable(f"{operation} timed out after {timeout:.1f}s") from exc
