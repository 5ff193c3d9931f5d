"""
tasks.py — Task Source

Where work comes from. The task service exposes three calls:

    GET  /tasks?agent=<address>        → {"tasks": [...], "total": n}
    POST /tasks/<id>/accept            {"agentAddress": ...}
    POST /tasks/<id>/complete          {"rating": 0-100}

Every source can also synthesize tasks locally from a fixed catalog,
so the loop always has something to chew on even when the service is
down or was never configured. Synthesized tasks never touch the wire.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from moltworker.platform.http import (
    DEFAULT_TIMEOUT,
    ErrorKind,
    Result,
    build_url,
    call_api,
)

if TYPE_CHECKING:
    from moltworker.config import Settings

log = logging.getLogger(__name__)

# ── constants ───────────────────────────────────────────────────────

FIRST_TASK_ID = 1000
DEFAULT_PAYOUT = 0.50
DEFAULT_TIER = "STANDARD"

CATALOG = (
    "Analyze market sentiment from Reddit posts",
    "Classify sentiment in customer reviews",
    "Extract entities from news articles",
    "Validate data quality in CSV file",
    "Transcribe audio recording segment",
    "Label training images for ML model",
    "Translate text from EN to ES",
    "Summarize research paper abstract",
    "Check code for security vulnerabilities",
    "Generate alt text for image",
)


# ── data types ──────────────────────────────────────────────────────

class TaskStatus(Enum):
    DISCOVERED = "discovered"
    QUEUED = "queued"
    ACCEPTED = "accepted"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ACCEPT_FAILED = "accept_failed"
    COMPLETE_FAILED = "complete_failed"

    @property
    def terminal(self) -> bool:
        return self in (
            TaskStatus.COMPLETED,
            TaskStatus.ACCEPT_FAILED,
            TaskStatus.COMPLETE_FAILED,
        )


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_payout(raw: Any) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return DEFAULT_PAYOUT


@dataclass
class Task:
    """A unit of work. Only `status` changes after creation."""
    id: str
    description: str
    title: str = ""
    payout: float = DEFAULT_PAYOUT
    required_tier: str = DEFAULT_TIER
    created_at: str = field(default_factory=_utcnow_iso)
    synthetic: bool = False
    status: TaskStatus = TaskStatus.DISCOVERED

    @classmethod
    def from_api(cls, data: dict) -> "Task":
        task_id = str(data.get("id", ""))
        return cls(
            id=task_id,
            description=data.get("description", ""),
            title=data.get("title", "") or f"Task #{task_id}",
            payout=_parse_payout(data.get("payoutAmount", DEFAULT_PAYOUT)),
            required_tier=data.get("requiredTier", DEFAULT_TIER) or DEFAULT_TIER,
            created_at=data.get("createdAt", "") or _utcnow_iso(),
        )


# ── the contract ────────────────────────────────────────────────────

class TaskSource(ABC):
    """Abstract interface for wherever tasks come from."""

    def __init__(self, *, first_id: int = FIRST_TASK_ID, rng: random.Random | None = None):
        self._next_id = first_id
        self._rng = rng or random.Random()
        self._synthesized: set[str] = set()

    @abstractmethod
    async def list_available(self, identity: str) -> Result:
        """Result whose value is a list of Tasks (possibly empty)."""
        ...

    @abstractmethod
    async def accept(self, task_id: str, identity: str) -> Result:
        ...

    @abstractmethod
    async def complete(self, task_id: str, rating: int) -> Result:
        ...

    @property
    def next_task_id(self) -> int:
        return self._next_id

    def restore_counter(self, next_id: int):
        """Resume id assignment after a restart. Never moves backwards."""
        self._next_id = max(self._next_id, next_id)

    def synthesize(self) -> Task:
        task_id = str(self._next_id)
        self._next_id += 1
        self._synthesized.add(task_id)
        return Task(
            id=task_id,
            title=f"Task #{task_id}",
            description=self._rng.choice(CATALOG),
            synthetic=True,
        )

    def _is_local(self, task_id: str) -> bool:
        return task_id in self._synthesized

    def _settle_local(self, task_id: str) -> Result:
        self._synthesized.discard(task_id)
        return Result.success({"taskId": task_id, "local": True})


class LocalTaskSource(TaskSource):
    """No task service configured. Only synthesized work exists."""

    async def list_available(self, identity: str) -> Result:
        return Result.success([])

    async def accept(self, task_id: str, identity: str) -> Result:
        return Result.success({"taskId": task_id, "local": True})

    async def complete(self, task_id: str, rating: int) -> Result:
        return self._settle_local(task_id)


class HttpTaskSource(TaskSource):
    """Task service reached over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        tier: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        first_id: int = FIRST_TASK_ID,
        rng: random.Random | None = None,
    ):
        super().__init__(first_id=first_id, rng=rng)
        self.base_url = base_url
        self.tier = tier
        self._timeout = timeout

    async def list_available(self, identity: str) -> Result:
        url = build_url(self.base_url, "/tasks", {"agent": identity, "tier": self.tier})
        result = await call_api("GET", url, timeout=self._timeout)
        if not result.ok:
            log.warning("Task listing failed: %s", result)
            return result

        data = result.value
        raw = data if isinstance(data, list) else (data or {}).get("tasks", [])
        if not isinstance(raw, list):
            log.warning("Task listing returned unexpected payload: %r", raw)
            return Result.failure(ErrorKind.TRANSIENT, "tasks is not a list")

        tasks = [Task.from_api(t) for t in raw if isinstance(t, dict) and "id" in t]
        return Result.success(tasks)

    async def accept(self, task_id: str, identity: str) -> Result:
        if self._is_local(task_id):
            return Result.success({"taskId": task_id, "local": True})
        url = build_url(self.base_url, f"/tasks/{task_id}/accept")
        result = await call_api(
            "POST", url, body={"agentAddress": identity}, timeout=self._timeout,
        )
        if not result.ok:
            log.warning("Accept #%s failed: %s", task_id, result)
        return result

    async def complete(self, task_id: str, rating: int) -> Result:
        if self._is_local(task_id):
            return self._settle_local(task_id)
        url = build_url(self.base_url, f"/tasks/{task_id}/complete")
        result = await call_api("POST", url, body={"rating": rating}, timeout=self._timeout)
        if not result.ok:
            log.warning("Complete #%s failed: %s", task_id, result)
        return result


def create_task_source(settings: "Settings") -> TaskSource:
    """HTTP source when an API URL is configured, local-only otherwise."""
    if settings.api_url:
        log.info("Task source: %s", settings.api_url)
        return HttpTaskSource(
            settings.api_url,
            tier=settings.tier,
            timeout=settings.api_timeout,
        )
    log.info("Task source: local only (no api_url configured)")
    return LocalTaskSource()
