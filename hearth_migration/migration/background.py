"""Tracked fire-and-forget tasks for verification and compensation work."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional, Set

from hearth_migration.logging_utils import get_logger

logger = get_logger(__name__)


class BackgroundTaskRunner:
    """
    Owns side-effect tasks that must not block the caller.

    Tasks are held by strong reference until they finish, failures are
    logged from a done-callback, and `drain()` lets shutdown code wait for
    outstanding work instead of dropping it.
    """

    def __init__(self, name: str = "dual-write"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def spawn(self, coro: Coroutine[Any, Any, Any], *, label: str = "task") -> asyncio.Task:
        if self._closed:
            coro.close()
            raise RuntimeError(f"BackgroundTaskRunner {self.name!r} is shut down")

        task = asyncio.get_running_loop().create_task(coro, name=f"{self.name}:{label}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def try_spawn(self, coro: Coroutine[Any, Any, Any], *, label: str = "task") -> Optional[asyncio.Task]:
        """Like `spawn`, but a shut-down runner drops the work with a warning instead of raising."""
        if self._closed:
            coro.close()
            logger.warning(
                "[MIGRATION][BACKGROUND] Runner %r is shut down; dropped %s", self.name, label
            )
            return None
        return self.spawn(coro, label=label)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("[MIGRATION][BACKGROUND] Task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "[MIGRATION][BACKGROUND] Task %s failed: %r",
                task.get_name(),
                exc,
                exc_info=exc,
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until every task spawned so far (and any they spawn) has finished."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            done, pending = await asyncio.wait(set(self._tasks), timeout=remaining)
            self._tasks.difference_update(done)
            if pending and deadline is not None and loop.time() >= deadline:
                logger.warning(
                    "[MIGRATION][BACKGROUND] Drain timed out with %d task(s) pending",
                    len(pending),
                )
                return

    async def shutdown(self, timeout: float | None = 10.0) -> None:
        """Stop accepting work, wait for in-flight tasks, then cancel stragglers."""
        self._closed = True
        await self.drain(timeout=timeout)
        stragglers = list(self._tasks)
        for task in stragglers:
            task.cancel()
        if stragglers:
            await asyncio.gather(*stragglers, return_exceptions=True)


__all__ = ["BackgroundTaskRunner"]
