"""Single-timeline scheduling on the asyncio event loop.

Every event handler and every delayed callback in bt-autoplay runs on
one event loop, so session state is never mutated concurrently.  The
:class:`LoopScheduler` is the only place that touches the loop's timer
API; the retry logic receives it as a collaborator and tests swap in a
virtual clock.

Delayed callbacks are never cancelled to stop a retry session.  Each
one captures the session generation it was scheduled for and checks it
on firing.  Handles are still returned so the wake lease can cancel its
own expiry timer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

_LOGGER = logging.getLogger(__name__)


class LoopScheduler:
    """Schedule callbacks and background tasks on an asyncio loop.

    Parameters
    ----------
    loop:
        The loop to schedule on.  Defaults to the running loop at the
        time of the first call.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def pending_tasks(self) -> int:
        """Return how many spawned tasks have not finished yet."""
        return len(self._tasks)

    def time(self) -> float:
        """Return the current monotonic time in seconds."""
        if self._loop is None:
            return time.monotonic()
        return self._loop.time()

    def call_later(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> asyncio.TimerHandle:
        """Run ``callback(*args)`` on the loop after *delay* seconds."""
        return self.loop.call_later(delay, callback, *args)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Start *coro* as a fire-and-forget task.

        The task is tracked until it finishes so :meth:`cancel_all` can
        stop in-flight work on shutdown.  An exception escaping the
        coroutine is logged, never re-raised into the loop.
        """
        task = self.loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.error(
                "Background task %r failed", task.get_name(), exc_info=exc
            )

    async def cancel_all(self) -> None:
        """Cancel every spawned task that is still running and wait for it."""
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
