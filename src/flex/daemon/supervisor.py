"""Supervision of the daemon's long-lived background tasks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class StopRequested(Exception):
    """Reason recorded when the daemon is stopped on purpose."""


class TaskSupervisor:
    """Tracks long-lived tasks and the first reason any of them had to die.

    ``kill(reason)`` records why the group is going down (only the first
    reason sticks) and flips :attr:`dying`; a supervised task that raises
    kills the group with its exception. ``wait()`` blocks until every task
    has exited and returns the recorded reason.
    """

    def __init__(self) -> None:
        self._tasks: list[asyncio.Task[None]] = []
        self._reason: BaseException | None = None
        self.dying = asyncio.Event()

    @property
    def reason(self) -> BaseException | None:
        return self._reason

    def __len__(self) -> int:
        return len(self._tasks)

    def go(self, coro: Coroutine[Any, Any, None], *, name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(self._watch(coro, name), name=name)
        self._tasks.append(task)
        return task

    def kill(self, reason: BaseException) -> None:
        if self._reason is None:
            self._reason = reason
        self.dying.set()

    async def wait(self) -> BaseException | None:
        await asyncio.gather(*self._tasks, return_exceptions=True)
        return self._reason

    async def _watch(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            self.kill(StopRequested(f"{name} cancelled"))
            raise
        except Exception as exc:
            logger.error("%s failed: %s", name, exc)
            self.kill(exc)
            return
        logger.debug("%s exited", name)
