"""Bridging the async engine into synchronous callers."""

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Drive ``coro`` to completion on a fresh event loop.

    Only for callers with no loop of their own (the CLI, scripts). Inside a
    running loop, such as the HTTP server, await the *_async method instead.

    Raises:
        RuntimeError: If an event loop is already running in this thread
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    coro.close()
    raise RuntimeError(
        "run_async() cannot be used from a running event loop; "
        "await the async API (e.g. search_async) directly."
    )
