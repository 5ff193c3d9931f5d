"""
loop.py — Loop Controller

The worker's main loop. Owns every timer and every piece of mutable
state, and drives each task through

    discovered → queued → accepted → executing → completed
                        ↘ accept_failed        ↘ complete_failed

Three independent timers:

    poll         every 30s   one task per cycle, queue first
    mock-tasks   every 90s   synthesize a task into the local queue
    report       every 30m   heartbeat + broadcast via Moltbook

At most one task is in flight. A poll that fires while the slot is
taken is skipped, not queued. Counters are mutated and persisted in
the same synchronous step, so a crash can never land between them.
No adapter call can kill a timer: adapters hand back Results, and the
controller decides what each failure means.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from moltworker import reputation
from moltworker.clock import Clock, Periodic, system_clock
from moltworker.config import Settings
from moltworker.engine import ExecutionEngine
from moltworker.platform.http import ErrorKind
from moltworker.platform.ledger import ReputationLedger
from moltworker.platform.moltbook import Moltbook, SendOutcome
from moltworker.platform.tasks import Task, TaskSource, TaskStatus
from moltworker.queue import TaskQueue
from moltworker.state import Snapshot, StateStore

log = logging.getLogger(__name__)


class AgentLoop:
    """One worker. Holds the snapshot; adapters get what they need passed in."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: StateStore,
        source: TaskSource,
        ledger: ReputationLedger,
        channel: Moltbook,
        engine: ExecutionEngine,
        clock: Clock = system_clock,
    ):
        self.settings = settings
        self.identity = settings.identity
        self.store = store
        self.source = source
        self.ledger = ledger
        self.channel = channel
        self.engine = engine
        self._clock = clock

        self.state = Snapshot.fresh(self.identity, now=clock())
        self.queue = TaskQueue()
        self.current: Task | None = None
        self._slot = asyncio.Lock()
        self._timers: list[Periodic] = []
        self._stop_requested = asyncio.Event()
        self._started = False
        self._loaded = False
        self._shut_down = False

    # ── lifecycle ────────────────────────────────────────────────────

    async def start(self):
        """Load state, register, prime reputation, start timers, work once."""
        if self._started:
            return
        self._started = True

        self._load_state()
        self._log_banner()

        await self.channel.register()
        await self._register_with_ledger()
        await self._prime_reputation()
        self._persist()

        s = self.settings
        self._timers = [
            Periodic("poll", s.poll_interval, self.poll_cycle),
            Periodic("mock-tasks", s.mock_task_interval, self.inject_mock_task),
            Periodic("report", s.report_interval, self.maybe_report),
        ]
        for timer in self._timers:
            timer.start()
        log.info("Starting autonomous loop...")

        await self.poll_cycle()
        self.inject_mock_task()

    async def run(self):
        """start(), then idle until stop() is called, then shutdown()."""
        starter = asyncio.create_task(self.start(), name="agent-start")
        starter.add_done_callback(self._on_start_done)

        await self._stop_requested.wait()

        if not starter.done():
            log.info("Stop requested during start-up, abandoning it")
            starter.cancel()
            await asyncio.gather(starter, return_exceptions=True)
        await self.shutdown()

    def _on_start_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Start-up failed: %s", exc, exc_info=exc)
            self.stop()

    def stop(self):
        """Ask the loop to shut down. Safe to call repeatedly and from signal handlers."""
        self._stop_requested.set()

    @property
    def stopping(self) -> bool:
        return self._stop_requested.is_set()

    async def shutdown(self):
        """Cancel timers, send a last heartbeat, log totals, persist. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        self._stop_requested.set()
        grace = self.settings.shutdown_grace

        if self.current is not None:
            log.warning("Task #%s abandoned mid-flight", self.current.id)
        for timer in self._timers:
            timer.cancel()
        if self._timers:
            await asyncio.gather(*(t.stop(grace) for t in self._timers))

        if self.channel.registered:
            try:
                await asyncio.wait_for(self.channel.heartbeat(self._report_stats()), timeout=grace)
            except asyncio.TimeoutError:
                log.warning("Final heartbeat timed out after %.1fs", grace)

        self._log_final_stats()
        self._persist()

    # ── the work ─────────────────────────────────────────────────────

    async def poll_cycle(self) -> Task | None:
        """Process at most one task. Returns it, or None if nothing ran."""
        if self._slot.locked():
            log.info("Task #%s still in flight, skipping poll",
                     self.current.id if self.current else "?")
            return None

        async with self._slot:
            task = self.queue.pop()
            if task is not None:
                log.info("Task from queue: #%s", task.id)
            else:
                found = await self.source.list_available(self.identity)
                if not found.ok:
                    log.warning("Poll error: %s", found)
                    return None
                if not found.value:
                    log.info("Polling tasks... (none available)")
                    return None
                log.info("Found %d task(s)", len(found.value))
                task = found.value[0]

            self.current = task
            try:
                await self.accept_and_complete(task)
            finally:
                self.current = None
            return task

    async def accept_and_complete(self, task: Task) -> bool:
        """Run one task through its lifecycle. True if it was counted."""
        log.info("Accepting task #%s...", task.id)
        accepted = await self.source.accept(task.id, self.identity)
        if not accepted.ok:
            task.status = TaskStatus.ACCEPT_FAILED
            log.warning("Accept failed for task #%s: %s", task.id, accepted)
            return False
        task.status = TaskStatus.ACCEPTED
        log.info("Task #%s accepted", task.id)

        task.status = TaskStatus.EXECUTING
        rating = await self.engine.execute(task)
        log.info("Task #%s completed with rating %d/100", task.id, rating)

        completed = await self.source.complete(task.id, rating)
        if completed.ok:
            task.status = TaskStatus.COMPLETED
            log.info("Task #%s marked complete", task.id)
        else:
            task.status = TaskStatus.COMPLETE_FAILED
            log.warning("Complete request for task #%s failed: %s", task.id, completed)

        old, change = self._apply_rating(rating)

        written = await self.ledger.write_score(self.identity, self.state.reputation)
        if not written.ok and written.error is not ErrorKind.UNCONFIGURED:
            log.warning("Reputation update failed: %s", written)
        log.info(
            "Reputation: %d -> %d (%+d)", old, self.state.reputation, change,
        )
        log.info("Task #%s complete! Payout: %.2f USDC", task.id, task.payout)

        sent = await self.channel.comment(
            task.id, f"Completed '{task.description}' with rating {rating}/100",
        )
        if sent is not SendOutcome.SKIPPED:
            self._persist()
        return True

    def _apply_rating(self, rating: int) -> tuple[int, int]:
        # mutation and persistence in one step: no await in here
        old = self.state.reputation
        new, change = reputation.apply(old, rating)
        self.state.reputation = new
        self.state.total_rep_gained += new - old
        self.state.tasks_completed += 1
        self._persist()
        return old, change

    def inject_mock_task(self) -> Task:
        task = self.source.synthesize()
        self.queue.push(task)
        log.info("[Mock Task Generated] Task #%s: %s", task.id, task.description)
        self._persist()
        return task

    async def maybe_report(self) -> SendOutcome:
        """Hand progress to Moltbook. The channel decides if it's time."""
        outcome = await self.channel.report(self._report_stats(), self._progress_message())
        if outcome is not SendOutcome.SKIPPED:
            self._persist()
        return outcome

    def _progress_message(self) -> str:
        return (
            f"Agent Update: Completed {self.state.tasks_completed} tasks. "
            f"Reputation: {self.state.reputation}/100 "
            f"({self.state.total_rep_gained:+d} total) #AgentScore #SkillBond"
        )

    def _report_stats(self) -> dict[str, Any]:
        return {
            "tasksCompleted": self.state.tasks_completed,
            "reputation": self.state.reputation,
        }

    # ── start-up helpers ─────────────────────────────────────────────

    def _load_state(self):
        snap = self.store.load()
        if snap is not None and snap.identity != self.identity:
            log.warning(
                "Snapshot belongs to %s, not %s; starting fresh",
                snap.identity, self.identity,
            )
            snap = None
        if snap is None:
            snap = Snapshot.fresh(self.identity, now=self._clock())
        self.state = snap
        self._loaded = True
        self.channel.restore(snap.api_key, snap.last_broadcast, snap.last_comment)
        self.source.restore_counter(snap.next_task_id)

    async def _register_with_ledger(self):
        result = await self.ledger.register_agent(self.identity)
        if result.ok:
            log.info("Agent registered with ledger")
        elif result.error is ErrorKind.CONFLICT:
            log.info("Agent already registered with ledger")
        elif result.error is not ErrorKind.UNCONFIGURED:
            log.warning("Ledger registration failed: %s", result)

    async def _prime_reputation(self):
        result = await self.ledger.read_score(self.identity)
        if result.ok:
            self.state.reputation = result.value
        elif result.error is not ErrorKind.UNCONFIGURED:
            log.warning("Could not fetch reputation, keeping %d: %s",
                        self.state.reputation, result)
        log.info("Current Reputation: %d/100", self.state.reputation)

    # ── persistence ──────────────────────────────────────────────────

    def _persist(self):
        if not self._loaded:
            return
        limits = self.channel.rate_limits
        self.state.api_key = self.channel.api_key
        self.state.last_broadcast = limits.broadcast.last
        self.state.last_comment = limits.comment.last
        self.state.next_task_id = self.source.next_task_id
        try:
            self.store.save(self.state)
        except OSError as e:
            log.error("Could not save state: %s", e)

    # ── reporting ────────────────────────────────────────────────────

    def stats(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "reputation": self.state.reputation,
            "tasks_completed": self.state.tasks_completed,
            "total_rep_gained": self.state.total_rep_gained,
            "queued": self.queue.pending,
            "moltbook": self.channel.snapshot(),
            "work": self.engine.stats(),
            "uptime": round(self._clock() - self.state.started_at),
        }

    def _log_banner(self):
        s = self.settings
        log.info("=" * 60)
        log.info("AGENT STARTUP")
        log.info("Agent Address: %s", self.identity)
        log.info("API Endpoint: %s", s.api_url or "(local tasks only)")
        log.info("Poll Interval: %ss", s.poll_interval)
        log.info("Mock Task Generation: %ss", s.mock_task_interval)
        log.info("Moltbook Heartbeat: %ss", s.report_interval)
        log.info("Resuming: %d tasks, reputation %d/100",
                 self.state.tasks_completed, self.state.reputation)
        log.info("=" * 60)

    def _log_final_stats(self):
        stats = self.stats()
        log.info("=" * 60)
        log.info("AGENT SHUTDOWN")
        log.info("Tasks Completed: %d", stats["tasks_completed"])
        log.info("Final Reputation: %d/100", stats["reputation"])
        log.info("Total Reputation Gained: %+d", stats["total_rep_gained"])
        log.info("Moltbook Posts: %d", stats["moltbook"]["broadcasts"])
        log.info("Earnings this run: %.2f USDC (avg rating %.1f)",
                 stats["work"]["total_earnings"], stats["work"]["average_rating"])
        log.info("=" * 60)
