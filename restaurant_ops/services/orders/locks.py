"""
Per-order mutual exclusion.

One asyncio.Lock per order id, created on demand and dropped once no
coroutine holds a reference to it. Different orders never share a lock.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class OrderLockRegistry:
    """Hands out the lock guarding a single order aggregate."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, order_id: int) -> asyncio.Lock:
        lock = self._locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[order_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, order_id: int) -> AsyncIterator[None]:
        lock = self.lock_for(order_id)
        if lock.locked():
            logger.debug(f"Waiting for lock on order #{order_id}")
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)
