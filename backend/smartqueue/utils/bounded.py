"""Timeouts for calls to external collaborators (stores, notifiers)."""

import asyncio
from typing import Awaitable, TypeVar

from smartqueue.exceptions import UpstreamUnavailable

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await `awaitable`, giving up after `timeout` seconds.

    Raises:
        UpstreamUnavailable: the call did not finish in time
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise UpstreamUnavailable(f"{operation} timed out after {timeout}s") from None
