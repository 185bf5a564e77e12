"""
Per-queue serialization.

Every mutation of a queue's tickets, open slots or statistics runs while
holding that queue's lock. Different queues never contend.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from smartqueue.exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


class QueueLocks:
    """Registry of one `asyncio.Lock` per queue ID."""

    def __init__(self, timeout_seconds: float = 2.0):
        self.timeout_seconds = timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, queue_id: str) -> asyncio.Lock:
        lock = self._locks.get(queue_id)
        if lock is None:
            lock = self._locks[queue_id] = asyncio.Lock()
        return lock

    def is_locked(self, queue_id: str) -> bool:
        lock = self._locks.get(queue_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, queue_id: str) -> AsyncIterator[None]:
        """
        Hold the queue's lock for the duration of the block.

        Raises UpstreamUnavailable if the lock cannot be taken within the
        timeout; nothing inside the block has run at that point.
        """
        lock = self._lock_for(queue_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for lock on queue %s", queue_id)
            raise UpstreamUnavailable(
                f"Queue {queue_id} is busy, try again", queue_id
            ) from None
        try:
            yield
        finally:
            lock.release()
