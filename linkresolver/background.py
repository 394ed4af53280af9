"""Tracking for fire-and-forget work spawned while serving a request.

Cache warms and analytics publishes run as detached asyncio tasks. The tracker
holds a strong reference to each task until it finishes, logs whatever it
raised, and lets shutdown drain the remainder instead of dropping them.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

__all__ = ["BackgroundTaskTracker"]

logger = logging.getLogger(__name__)


class BackgroundTaskTracker:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        """Schedule ``coro`` without waiting for it."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding tasks; cancel whatever is still running after ``timeout``."""
        if not self._tasks:
            return

        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"Cancelling {len(pending)} background task(s) still running after drain timeout")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        logger.debug(f"Drained {len(done)} background task(s)")

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {task.get_name()} failed: {exc!r}", exc_info=exc)
