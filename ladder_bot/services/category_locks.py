"""
Per-category coordination for rank mutations.

Every operation that reads and then rewrites ranks in a category holds that
category's lock for the whole transaction, including the commit. The unique
constraints on ladder_rankings stay in place as the backstop for writers in
other processes.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable
import logging

logger = logging.getLogger(__name__)

class CategoryLockRegistry:
    """One asyncio.Lock per ladder category.

    Locks are not reentrant: an operation that receives a caller's session
    assumes the caller already holds the category lock.
    """

    def __init__(self):
        self._locks = defaultdict(asyncio.Lock)

    def get(self, category_id: int) -> asyncio.Lock:
        return self._locks[category_id]

    def is_locked(self, category_id: int) -> bool:
        return category_id in self._locks and self._locks[category_id].locked()

    @asynccontextmanager
    async def hold(self, category_id: int) -> AsyncIterator[None]:
        """Hold the lock for a single category"""
        lock = self._locks[category_id]
        async with lock:
            logger.debug(f"Acquired category lock {category_id}")
            yield

    @asynccontextmanager
    async def hold_many(self, category_ids: Iterable[int]) -> AsyncIterator[None]:
        """Hold several category locks, always acquired in ascending id order"""
        ordered = sorted(set(category_ids))
        acquired = []
        try:
            for category_id in ordered:
                lock = self._locks[category_id]
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
