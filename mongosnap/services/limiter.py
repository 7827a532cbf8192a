"""
Per-user bound on concurrent query executions.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ConcurrencyLimitExceeded(Exception):
    """The user already has the maximum number of executions in flight."""

    def __init__(self, user_id: str, limit: int) -> None:
        self.user_id = user_id
        self.limit = limit
        super().__init__(f"Too many concurrent queries (limit {limit})")


class UserConcurrencyLimiter:
    """
    Rejects, rather than queues, executions beyond ``max_concurrent`` per user.

    Usage::

        async with limiter.slot(user_id):
            await executor.execute(query, database)
    """

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max_concurrent = max_concurrent
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._in_flight: dict[str, int] = {}

    def in_flight(self, user_id: str) -> int:
        return self._in_flight.get(user_id, 0)

    @asynccontextmanager
    async def slot(self, user_id: str) -> AsyncIterator[None]:
        semaphore = self._semaphores.setdefault(user_id, asyncio.Semaphore(self._max_concurrent))
        if semaphore.locked():
            raise ConcurrencyLimitExceeded(user_id, self._max_concurrent)

        async with semaphore:
            self._in_flight[user_id] = self.in_flight(user_id) + 1
            try:
                yield
            finally:
                self._in_flight[user_id] -= 1
                if not self._in_flight[user_id]:
                    del self._in_flight[user_id]
                    self._semaphores.pop(user_id, None)
