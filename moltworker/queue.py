"""Local FIFO of tasks waiting for a poll cycle.

Synthesized tasks land here and are drained one per cycle before the
task source is asked for anything. No external dependencies. Just
asyncio.Queue.
"""

from __future__ import annotations

import asyncio
import logging

from moltworker.platform.tasks import Task, TaskStatus

log = logging.getLogger(__name__)


class TaskQueue:
    """Tasks held locally, at most until a poll cycle consumes them."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Task] = asyncio.Queue()

    def push(self, task: Task) -> None:
        task.status = TaskStatus.QUEUED
        self._queue.put_nowait(task)
        log.debug("[queue] +#%s (%d pending)", task.id, self._queue.qsize())

    def pop(self) -> Task | None:
        """Oldest queued task, or None when the queue is empty."""
        try:
            task = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        log.debug("[queue] -#%s (%d pending)", task.id, self._queue.qsize())
        return task

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def __len__(self) -> int:
        return self._queue.qsize()
