"""Bounded store calls from the event loop."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


async def call_store(func: Callable[..., T], *args: Any, timeout: Optional[float]) -> T:
    """Run a synchronous store method off the loop with a hard timeout.

    Raises ``asyncio.TimeoutError`` on timeout and re-raises store errors;
    callers decide whether a failure is absorbed or fatal. A ``timeout`` of
    None waits for the call to finish.
    """

    return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
