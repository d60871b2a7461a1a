"""
Pair-scoped locks.

One asyncio.Lock per unordered user pair, created on first use and dropped
once nobody holds or waits on it. Independent pairs never contend.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from app.infrastructure.observability.logging import get_logger
from app.models.domain.proposal_domain import PairKey, pair_key

logger = get_logger(__name__)


class PairLockManager:
    """Hands out the mutual-exclusion lock for a user pair."""

    def __init__(self):
        self._locks: dict[PairKey, asyncio.Lock] = {}
        self._users: dict[PairKey, int] = {}

    @asynccontextmanager
    async def acquire(self, user_a: str, user_b: str) -> AsyncIterator[PairKey]:
        """
        Hold the lock for {user_a, user_b} for the duration of the block.

        Released on every exit path, including exceptions and cancellation.
        """
        key = pair_key(user_a, user_b)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1

        try:
            async with lock:
                logger.debug("Pair lock acquired", pair=key)
                yield key
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, user_a: str, user_b: str) -> bool:
        lock = self._locks.get(pair_key(user_a, user_b))
        return bool(lock and lock.locked())

    def active_pairs(self) -> int:
        """Number of pairs that currently have a holder or waiter."""
        return len(self._locks)
