"""Cancellable timers for chat pacing and delayed phase transitions."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Owns the asyncio tasks started on behalf of one lab session.

    Every delayed callback and tracked coroutine is kept until it finishes,
    so ``cancel_all`` can stop whatever is still pending when the session
    is reset or torn down.
    """

    def __init__(self, name: str = "scheduler") -> None:
        self.name = name
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of tasks that have not finished yet."""
        return sum(1 for task in self._tasks if not task.done())

    @property
    def closed(self) -> bool:
        return self._closed

    async def sleep(self, seconds: float) -> None:
        """Pacing delay; a non-positive delay still yields to the loop once."""
        await asyncio.sleep(max(0.0, seconds))

    def track(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a coroutine as a task owned by this scheduler.

        Raises:
            RuntimeError: If the scheduler has been closed.
        """
        if self._closed:
            coro.close()
            raise RuntimeError(f"{self.name} is closed")

        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.Task:
        """Invoke ``callback(*args)`` after ``delay`` seconds.

        The callback may be a plain function or a coroutine function.
        """

        async def _run() -> Any:
            await self.sleep(delay)
            result = callback(*args)
            if inspect.isawaitable(result):
                result = await result
            return result

        return self.track(_run())

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("%s task failed: %s", self.name, error, exc_info=error)

    def cancel_all(self) -> int:
        """Cancel every pending task.

        Returns:
            Number of tasks cancelled.
        """
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None

        cancelled = 0
        for task in list(self._tasks):
            if task is not current and not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.debug("%s cancelled %d pending tasks", self.name, cancelled)
        return cancelled

    def close(self) -> int:
        """Cancel pending work and refuse new tasks."""
        self._closed = True
        return self.cancel_all()
