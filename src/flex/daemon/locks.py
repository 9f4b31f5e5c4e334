"""Per-container advisory locks for mutating operations."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class ContainerLocks:
    """Name-keyed registry of ``asyncio.Lock`` objects.

    Mutating requests for one container name run one at a time; requests for
    different names never wait on each other. Idle locks are dropped so the
    registry does not grow with every name ever seen.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._waiters[name] = self._waiters.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[name] -= 1
            if self._waiters[name] == 0:
                del self._waiters[name]
                del self._locks[name]

    def locked(self, name: str) -> bool:
        lock = self._locks.get(name)
        return lock is not None and lock.locked()
