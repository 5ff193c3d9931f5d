"""
moltbook.py — Reporting Channel

The worker's voice on Moltbook. Registers once, checks in with a
heartbeat, broadcasts a progress update every half hour and drops a
short comment on tasks it finishes.

Two independent fixed windows guard the outbound traffic:

    broadcast   1 per 30 minutes
    comment     1 per 20 seconds

A window opens when the spacing has elapsed since the last *attempt*.
No credit builds up while idle, and nothing bursts. Checks happen
before sending, so a closed window never costs an API call.

Registration never blocks the worker: if Moltbook is unreachable we
carry on with a locally minted fallback key and stay in degraded mode
for the life of the process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from moltworker import __version__
from moltworker.clock import Clock, system_clock
from moltworker.platform.http import ErrorKind, Result, build_url, call_api

log = logging.getLogger(__name__)

# ── constants ───────────────────────────────────────────────────────

API_BASE = "https://www.moltbook.com/api/v1"

# rate limits (seconds)
BROADCAST_SPACING = 30 * 60    # 1 post per 30 minutes
COMMENT_SPACING = 20           # 1 comment per 20 seconds

DEFAULT_TIMEOUT = 5
NETWORK = "base-sepolia"

PLACEHOLDER_PREFIX = "demo-key-"
EXISTING_KEY = f"{PLACEHOLDER_PREFIX}existing"


def is_placeholder(api_key: str | None) -> bool:
    return not api_key or api_key.startswith(PLACEHOLDER_PREFIX)


def _issued_key(payload: Any) -> str | None:
    """The credential in a registration response, if it carries a usable one."""
    if not isinstance(payload, dict):
        return None
    agent = payload.get("agent", payload)
    if not isinstance(agent, dict):
        return None
    for name in ("apiKey", "api_key"):
        key = agent.get(name)
        if isinstance(key, str) and key.strip():
            return key.strip()
    return None


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── states & outcomes ───────────────────────────────────────────────

class Registration(Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    DEGRADED = "degraded"           # running on a fallback credential


class SendOutcome(Enum):
    SENT = "sent"
    SKIPPED = "skipped"             # window closed, nothing happened
    FAILED = "failed"               # attempted, provider said no


# ── rate limiter ────────────────────────────────────────────────────

@dataclass
class FixedWindow:
    """One action allowed per `spacing` seconds since the last attempt."""
    spacing: float
    last: float = 0.0

    def remaining(self, now: float) -> float:
        if not self.last:
            return 0.0
        return max(0.0, self.spacing - (now - self.last))

    def allows(self, now: float) -> bool:
        return not self.last or (now - self.last) >= self.spacing

    def record(self, now: float):
        self.last = now


class RateLimiter:
    """Broadcast and comment windows, driven by an injectable clock."""

    def __init__(
        self,
        broadcast_spacing: float = BROADCAST_SPACING,
        comment_spacing: float = COMMENT_SPACING,
        clock: Clock = system_clock,
    ):
        self.broadcast = FixedWindow(broadcast_spacing)
        self.comment = FixedWindow(comment_spacing)
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def can_broadcast(self) -> bool:
        return self.broadcast.allows(self.now())

    def can_comment(self) -> bool:
        return self.comment.allows(self.now())

    def restore(self, last_broadcast: float = 0.0, last_comment: float = 0.0):
        self.broadcast.last = last_broadcast
        self.comment.last = last_comment

    def snapshot(self) -> dict:
        now = self.now()
        return {
            "can_broadcast": self.broadcast.allows(now),
            "can_comment": self.comment.allows(now),
            "broadcast_cooldown_remaining": round(self.broadcast.remaining(now)),
            "comment_cooldown_remaining": round(self.comment.remaining(now)),
        }


# ── the channel ─────────────────────────────────────────────────────

class Moltbook:
    """Moltbook client for the worker.

    Usage:
        mb = Moltbook("0xabc...", base_url=API_BASE)
        await mb.register()
        await mb.report({"tasksCompleted": 3, "reputation": 53}, "Update ...")
        await mb.comment("1004", "Done, rated 91/100.")
    """

    def __init__(
        self,
        identity: str,
        *,
        base_url: str = API_BASE,
        name: str = "",
        description: str = "",
        broadcast_spacing: float = BROADCAST_SPACING,
        comment_spacing: float = COMMENT_SPACING,
        timeout: float = DEFAULT_TIMEOUT,
        dry_run: bool = False,
        clock: Clock = system_clock,
    ):
        self.identity = identity
        self.base_url = base_url
        self.name = name or f"Moltworker {identity[:8]}"
        self.description = description or "Autonomous task worker"
        self.dry_run = dry_run
        self.api_key: str | None = None
        self.state = Registration.UNREGISTERED
        self.broadcasts = 0
        self.comments = 0
        self._timeout = timeout
        self._rate = RateLimiter(broadcast_spacing, comment_spacing, clock=clock)

    @property
    def rate_limits(self) -> RateLimiter:
        return self._rate

    @property
    def registered(self) -> bool:
        return self.state is not Registration.UNREGISTERED

    def restore(self, api_key: str | None, last_broadcast: float, last_comment: float):
        """Seed credential and windows from a persisted snapshot."""
        self.api_key = api_key
        self._rate.restore(last_broadcast, last_comment)

    async def _post(self, path: str, body: dict) -> Result:
        return await call_api(
            "POST",
            build_url(self.base_url, path),
            api_key=self.api_key or "",
            body=body,
            timeout=self._timeout,
        )

    # ── lifecycle ────────────────────────────────────────────────────

    async def register(self) -> str:
        """Obtain a credential. Never raises, never leaves us unregistered."""
        if self.registered:
            return self.api_key

        if not is_placeholder(self.api_key):
            self.state = Registration.REGISTERED
            log.info("Moltbook: reusing stored credential (%s...)", self.api_key[:16])
            return self.api_key

        log.info("Registering with Moltbook as '%s'...", self.name)
        result = await self._post("/agents/register", {
            "agentAddress": self.identity,
            "name": self.name,
            "description": self.description,
            "network": NETWORK,
        })

        if result.ok:
            self.api_key = (
                _issued_key(result.value)
                or f"{PLACEHOLDER_PREFIX}{int(self._rate.now())}"
            )
            self.state = Registration.REGISTERED
            log.info("Registered on Moltbook (API key: %s...)", self.api_key[:16])
        elif result.error is ErrorKind.CONFLICT:
            self.api_key = EXISTING_KEY
            self.state = Registration.REGISTERED
            log.info("Already registered on Moltbook")
        else:
            self.api_key = f"{PLACEHOLDER_PREFIX}fallback-{int(self._rate.now())}"
            self.state = Registration.DEGRADED
            log.warning("Moltbook registration failed, continuing in demo mode: %s", result)

        return self.api_key

    # ── heartbeat ────────────────────────────────────────────────────

    async def heartbeat(self, stats: dict[str, Any]) -> Result:
        """Best-effort check-in. Failures are logged and returned, not retried."""
        if not self.registered:
            return Result.failure(ErrorKind.UNCONFIGURED, "not registered")

        result = await self._post("/agents/heartbeat", {
            "agentAddress": self.identity,
            "apiKey": self.api_key,
            "stats": {
                "tasksCompleted": stats.get("tasksCompleted", 0),
                "reputation": stats.get("reputation", 0),
                "lastActive": _iso_now(),
            },
        })
        if result.ok:
            log.info("Moltbook heartbeat sent")
        else:
            log.warning("Moltbook heartbeat failed: %s", result)
        return result

    # ── posting ──────────────────────────────────────────────────────

    async def broadcast(self, message: str) -> SendOutcome:
        """Publish a progress update, at most once per broadcast window."""
        if not self.registered:
            return SendOutcome.SKIPPED

        now = self._rate.now()
        if not self._rate.broadcast.allows(now):
            log.info(
                "Moltbook: rate limit active (next post in %.0fs)",
                self._rate.broadcast.remaining(now),
            )
            return SendOutcome.SKIPPED

        if self.dry_run:
            log.info("[Moltbook Post] %s", message)
            result = Result.success()
        else:
            result = await self._post("/agents/updates", {
                "agentAddress": self.identity,
                "apiKey": self.api_key,
                "message": message,
                "timestamp": _iso_now(),
                "metadata": {"source": "moltworker", "version": __version__},
            })
        self._rate.broadcast.record(now)

        if not result.ok:
            log.warning("Moltbook post failed: %s", result)
            return SendOutcome.FAILED
        self.broadcasts += 1
        log.info("Posted update to Moltbook")
        return SendOutcome.SENT

    async def comment(self, task_id: str, text: str) -> SendOutcome:
        """Comment on a task, at most once per comment window."""
        if not self.registered:
            return SendOutcome.SKIPPED

        now = self._rate.now()
        if not self._rate.comment.allows(now):
            log.debug(
                "Moltbook: comment on #%s skipped (%.0fs cooldown)",
                task_id, self._rate.comment.remaining(now),
            )
            return SendOutcome.SKIPPED

        if self.dry_run:
            log.info("[Moltbook Comment] Task #%s: %s", task_id, text)
            result = Result.success()
        else:
            result = await self._post("/tasks/comments", {
                "agentAddress": self.identity,
                "apiKey": self.api_key,
                "taskId": task_id,
                "comment": text,
                "timestamp": _iso_now(),
            })
        self._rate.comment.record(now)

        if not result.ok:
            log.warning("Moltbook comment failed: %s", result)
            return SendOutcome.FAILED
        self.comments += 1
        return SendOutcome.SENT

    # ── reporting cycle ──────────────────────────────────────────────

    async def report(self, stats: dict[str, Any], message: str) -> SendOutcome:
        """Heartbeat plus broadcast, gated by the broadcast window."""
        if not self.registered:
            return SendOutcome.SKIPPED
        if not self._rate.can_broadcast():
            log.info(
                "Moltbook: report skipped (next post in %.0fs)",
                self._rate.broadcast.remaining(self._rate.now()),
            )
            return SendOutcome.SKIPPED

        await self.heartbeat(stats)
        return await self.broadcast(message)

    def snapshot(self) -> dict:
        return {
            "agent_name": self.name,
            "registration": self.state.value,
            "broadcasts": self.broadcasts,
            "comments": self.comments,
            "rate_limits": self._rate.snapshot(),
        }
