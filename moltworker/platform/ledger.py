"""
ledger.py — Reputation Ledger

Reads and writes the agent's reputation score on the scoring service:

    GET  /reputation/<address>         → {"reputation": 0-100}
    PUT  /reputation/<address>         {"score": 0-100}
    POST /agents/<address>/register    (409 when already registered)

The ledger is a mirror of the worker's own count, not its source of
truth between restarts. Every failure comes back as a Result.
"""

from __future__ import annotations

import logging

from moltworker import reputation
from moltworker.platform.http import (
    DEFAULT_TIMEOUT,
    ErrorKind,
    Result,
    build_url,
    call_api,
)

log = logging.getLogger(__name__)


class ReputationLedger:

    def __init__(self, base_url: str = "", *, timeout: float = DEFAULT_TIMEOUT):
        self.base_url = base_url
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _unconfigured(self) -> Result:
        return Result.failure(ErrorKind.UNCONFIGURED, "no ledger api_url configured")

    async def read_score(self, identity: str) -> Result:
        if not self.configured:
            return self._unconfigured()
        result = await call_api(
            "GET", build_url(self.base_url, f"/reputation/{identity}"), timeout=self._timeout,
        )
        if not result.ok:
            return result

        data = result.value if isinstance(result.value, dict) else {}
        raw = data.get("reputation")
        if raw is None:
            raw = reputation.BOOTSTRAP_SCORE
        try:
            score = reputation.clamp(int(raw))
        except (TypeError, ValueError, OverflowError):
            return Result.failure(ErrorKind.TRANSIENT, f"unreadable reputation {raw!r}")
        return Result.success(score)

    async def write_score(self, identity: str, score: int) -> Result:
        if not self.configured:
            return self._unconfigured()
        return await call_api(
            "PUT",
            build_url(self.base_url, f"/reputation/{identity}"),
            body={"score": score},
            timeout=self._timeout,
        )

    async def register_agent(self, identity: str) -> Result:
        if not self.configured:
            return self._unconfigured()
        return await call_api(
            "POST", build_url(self.base_url, f"/agents/{identity}/register"), timeout=self._timeout,
        )
