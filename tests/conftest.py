"""Shared fixtures: a controllable clock, scripted adapters, a fake wire."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from moltworker.config import Settings
from moltworker.engine import ExecutionEngine
from moltworker.loop import AgentLoop
from moltworker.platform.http import ErrorKind, Result
from moltworker.platform.ledger import ReputationLedger
from moltworker.platform.moltbook import Moltbook
from moltworker.platform.tasks import Task, TaskSource
from moltworker.state import StateStore

IDENTITY = "0xabc0000000000000000000000000000000000def"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTransport:
    """Stands in for call_api. Responses are keyed by URL suffix."""

    def __init__(self):
        self.calls: list[tuple[str, str, dict | None]] = []
        self.responses: dict[str, Result] = {}

    async def __call__(self, method, url, *, api_key="", body=None, timeout=0):
        self.calls.append((method, url, body))
        path = url.split("?", 1)[0]
        for suffix, result in self.responses.items():
            if path.endswith(suffix):
                return result
        return Result.success({})

    def paths(self) -> list[str]:
        return [url.split("?", 1)[0].split("/api/v1", 1)[-1] for _, url, _ in self.calls]


class FakeSource(TaskSource):
    def __init__(self, tasks=None, *, fail_list=False, fail_accept=(), fail_complete=False):
        super().__init__()
        self.listing: list[Task] = list(tasks or [])
        self.fail_list = fail_list
        self.fail_accept = set(fail_accept)
        self.fail_complete = fail_complete
        self.accepted: list[str] = []
        self.completed: list[tuple[str, int]] = []

    async def list_available(self, identity):
        if self.fail_list:
            return Result.failure(ErrorKind.TRANSIENT, "Connection failed: refused")
        return Result.success(list(self.listing))

    async def accept(self, task_id, identity):
        if task_id in self.fail_accept:
            return Result.failure(ErrorKind.TRANSIENT, "HTTP 500", status=500)
        self.accepted.append(task_id)
        return Result.success({"taskId": task_id})

    async def complete(self, task_id, rating):
        if self.fail_complete:
            return Result.failure(ErrorKind.TRANSIENT, "HTTP 503", status=503)
        self.completed.append((task_id, rating))
        return Result.success({"taskId": task_id, "rating": rating})


class ScriptedEngine(ExecutionEngine):
    """Hands out ratings from a list, instantly."""

    def __init__(self, ratings):
        super().__init__(work_delay=(0.0, 0.0))
        self._ratings = list(ratings)

    async def execute(self, task):
        rating = self._ratings.pop(0)
        self._record(task, rating)
        return rating


class GatedEngine(ExecutionEngine):
    """Blocks inside execute() until released."""

    def __init__(self, rating: int = 80):
        super().__init__(work_delay=(0.0, 0.0))
        self.rating = rating
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def execute(self, task):
        self.entered.set()
        await self.release.wait()
        self._record(task, self.rating)
        return self.rating


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport(monkeypatch) -> FakeTransport:
    fake = FakeTransport()
    fake.responses["/agents/register"] = Result.success({"apiKey": "mb_live_0123456789abcdef"})
    monkeypatch.setattr("moltworker.platform.moltbook.call_api", fake)
    return fake


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        identity=IDENTITY,
        api_url="",
        state_file=tmp_path / "state.json",
        poll_interval=3600,
        mock_task_interval=3600,
        report_interval=3600,
        shutdown_grace=1.0,
    )


@pytest_asyncio.fixture
async def make_agent(settings, clock, transport):
    """Factory for an AgentLoop over fakes. Shuts every agent down afterwards."""
    agents: list[AgentLoop] = []

    def _make(*, ratings=(80,), source=None, engine=None, dry_run=False, ledger=None):
        agent = AgentLoop(
            settings,
            store=StateStore(settings.state_file),
            source=source or FakeSource(),
            ledger=ledger or ReputationLedger(""),
            channel=Moltbook(
                settings.identity,
                broadcast_spacing=settings.broadcast_spacing,
                comment_spacing=settings.comment_spacing,
                dry_run=dry_run,
                clock=clock,
            ),
            engine=engine or ScriptedEngine(ratings),
            clock=clock,
        )
        agents.append(agent)
        return agent

    yield _make

    for agent in agents:
        await agent.shutdown()
