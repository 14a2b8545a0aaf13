"""convmem shared utilities library.

- async_utils: sync wrappers around the async API
- deadline: per-request deadline checked between storage round-trips
"""

from convmem.lib.async_utils import run_async
from convmem.lib.deadline import Deadline

__all__ = [
    "Deadline",
    "run_async",
]
