# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

log = logging.getLogger("relay.scheduler")


class DebounceScheduler:
    """Keyed one-shot timers with cancel-and-replace semantics.

    ``schedule_once(key, delay, action)`` cancels any timer already pending
    under *key* before installing the new one, so there is at most one
    pending action per key.  *action* may be a plain callable or a
    coroutine function; coroutines run as tasks tracked until completion.
    """

    def __init__(self, name: str = "debounce"):
        self.name = name
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def schedule_once(self, key: str, delay: float, action: Callable[[], Any]) -> None:
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key, action)
        log.debug("%s: scheduled %s in %.2fs", self.name, key, delay)

    def cancel(self, key: str) -> bool:
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        log.debug("%s: cancelled %s", self.name, key)
        return True

    def pending(self, key: str) -> bool:
        return key in self._timers

    def cancel_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for task in self._tasks:
            task.cancel()

    async def drain(self) -> None:
        """Wait for actions that are already running (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def __len__(self) -> int:
        return len(self._timers)

    def _fire(self, key: str, action: Callable[[], Any]) -> None:
        self._timers.pop(key, None)
        try:
            result = action()
        except Exception as e:
            log.error("%s: action for %s failed: %s", self.name, key, e, exc_info=True)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("%s: scheduled action failed: %s", self.name, exc, exc_info=exc)
