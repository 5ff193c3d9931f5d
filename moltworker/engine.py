"""
engine.py — Execution Engine

Does the work. For now "the work" is a bounded random delay followed
by a rating drawn from the configured range: [70, 95] for realistic
simulated work, [90, 100] for a premium profile. The delay is a plain
asyncio.sleep, so shutdown can cancel it mid-task.

Also keeps a short in-memory record of what it has done this process,
for the shutdown summary and the heartbeat stats.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable

from moltworker.platform.tasks import Task

log = logging.getLogger(__name__)

DEFAULT_RATING_RANGE = (70, 95)
DEFAULT_WORK_DELAY = (2.0, 5.0)
MAX_HISTORY = 100


@dataclass
class WorkRecord:
    task_id: str
    description: str
    payout: float
    rating: int
    completed_at: float


class ExecutionEngine:

    def __init__(
        self,
        rating_range: tuple[int, int] = DEFAULT_RATING_RANGE,
        work_delay: tuple[float, float] = DEFAULT_WORK_DELAY,
        *,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        lo, hi = rating_range
        if not 0 <= lo <= hi <= 100:
            raise ValueError(f"rating_range must lie within [0, 100], got {rating_range}")
        dlo, dhi = work_delay
        if not 0 <= dlo <= dhi:
            raise ValueError(f"work_delay must be a non-negative range, got {work_delay}")

        self.rating_range = (lo, hi)
        self.work_delay = (dlo, dhi)
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._history: deque[WorkRecord] = deque(maxlen=MAX_HISTORY)
        self._executed = 0
        self._earnings = 0.0
        self._rating_sum = 0

    async def execute(self, task: Task) -> int:
        """Work on `task` and return its rating. Cancellable."""
        delay = self._rng.uniform(*self.work_delay)
        log.debug("Working on #%s for %.1fs", task.id, delay)
        await self._sleep(delay)

        rating = self._rng.randint(*self.rating_range)
        self._record(task, rating)
        return rating

    def _record(self, task: Task, rating: int):
        self._executed += 1
        self._earnings += task.payout
        self._rating_sum += rating
        self._history.append(WorkRecord(
            task_id=task.id,
            description=task.description,
            payout=task.payout,
            rating=rating,
            completed_at=time.time(),
        ))

    @property
    def history(self) -> list[WorkRecord]:
        return list(self._history)

    def stats(self) -> dict:
        return {
            "executed": self._executed,
            "total_earnings": round(self._earnings, 2),
            "average_rating": (
                round(self._rating_sum / self._executed, 1) if self._executed else 0.0
            ),
        }
