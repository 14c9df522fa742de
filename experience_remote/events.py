"""Multi-subscriber event notification."""

import asyncio
import inspect
import logging
from typing import Callable

logger = logging.getLogger("events")


class Subscribers:
    """An ordered list of callbacks for one event.

    Unlike a single callback slot, subscribing never replaces an earlier
    subscriber. Callbacks may be plain functions or coroutine functions;
    coroutines are scheduled on the running loop. A failing subscriber is
    logged and does not stop delivery to the others.
    """

    def __init__(self, name: str):
        self.name = name
        self._callbacks: list[Callable] = []
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, callback: Callable) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._callbacks.append(callback)

        def unsubscribe():
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def __len__(self) -> int:
        return len(self._callbacks)

    def emit(self, *args):
        for callback in list(self._callbacks):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._task_done)
            except Exception as e:
                logger.error(f"[{self.name}] subscriber failed: {e}")

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception():
            logger.error(f"[{self.name}] subscriber failed: {task.exception()}")

    async def drain(self):
        """Wait for coroutine subscribers scheduled so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
