"""
clock.py — Time and Timers

The heartbeat of the worker. A `Periodic` is one independently
scheduled activity: sleep, fire, repeat. The loop owns three of them
(poll, mock tasks, report) and nothing else keeps time.

Callbacks may be plain functions or coroutines. An exception from a
callback is logged and the timer keeps going; only cancel() stops it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Union

log = logging.getLogger(__name__)

Clock = Callable[[], float]
Callback = Callable[[], Union[Awaitable[Any], Any]]


def system_clock() -> float:
    """Wall-clock seconds. The default clock everywhere."""
    return time.time()


class Periodic:
    """Fires a callback every `interval` seconds until cancelled.

    The first firing happens one interval after start(). A slow callback
    delays the next firing of the same timer, never the other timers.
    """

    def __init__(self, name: str, interval: float, callback: Callback):
        if interval <= 0:
            raise ValueError(f"{name}: interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._fired = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fired(self) -> int:
        return self._fired

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        log.debug("Timer '%s' started (every %ss)", self.name, self.interval)

    def cancel(self):
        if self._task and not self._task.done():
            self._task.cancel()

    async def stop(self, grace: float = 5.0):
        """Cancel and wait up to `grace` seconds for the task to unwind."""
        task = self._task
        if task is None:
            return
        self.cancel()
        done, _ = await asyncio.wait({task}, timeout=grace)
        if not done:
            log.warning("Timer '%s' did not stop within %.1fs", self.name, grace)

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            self._fired += 1
            try:
                result = self._callback()
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error("Timer '%s' callback failed: %s", self.name, e, exc_info=True)
