"""
http.py — Transport and Results

Every external collaborator (task source, reputation ledger, Moltbook)
speaks JSON over HTTP. This module owns the wire: a blocking stdlib
request, the exceptions it raises, and `call_api()` which runs it off
the event loop and folds every failure into a `Result`.

Adapters return Results. They never raise into the loop.

Zero external dependencies. Pure stdlib.
"""

from __future__ import annotations

import asyncio
import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from enum import Enum
from typing import Any

from moltworker import __version__

log = logging.getLogger(__name__)

USER_AGENT = f"moltworker/{__version__}"
DEFAULT_TIMEOUT = 10


# ── results ─────────────────────────────────────────────────────────

class ErrorKind(Enum):
    TRANSIENT = "transient"          # network, timeout, non-2xx, bad body
    CONFLICT = "conflict"            # 409, e.g. already registered
    RATE_LIMITED = "rate_limited"    # 429 from the provider
    UNCONFIGURED = "unconfigured"    # no base URL for this collaborator


@dataclass
class Result:
    """Outcome of one adapter call."""
    value: Any = None
    error: ErrorKind | None = None
    message: str = ""
    status: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None, status: int = 200) -> "Result":
        return cls(value=value, status=status)

    @classmethod
    def failure(cls, error: ErrorKind, message: str, status: int = 0) -> "Result":
        return cls(error=error, message=message, status=status)

    def __str__(self) -> str:
        if self.ok:
            return "ok"
        if self.status:
            return f"{self.error.value} (HTTP {self.status}): {self.message}"
        return f"{self.error.value}: {self.message}"


# ── errors ──────────────────────────────────────────────────────────

class ApiError(Exception):
    """API error with status code and hint."""
    def __init__(self, message: str, status: int = 0, hint: str = ""):
        super().__init__(message)
        self.status = status
        self.hint = hint


class RateLimitError(ApiError):
    """429 — too many requests."""
    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message, status=429)
        self.retry_after = retry_after


# ── wire ────────────────────────────────────────────────────────────

def build_url(base_url: str, path: str, query: dict[str, Any] | None = None) -> str:
    url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    if query:
        params = {k: v for k, v in query.items() if v not in (None, "")}
        if params:
            url += "?" + urllib.parse.urlencode(params)
    return url


def request_json(
    method: str,
    url: str,
    *,
    api_key: str = "",
    body: dict | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Any:
    """Make a blocking JSON request. Raises ApiError on any failure."""
    data = json.dumps(body).encode() if body is not None else None

    headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    req = urllib.request.Request(url, data=data, headers=headers, method=method)

    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
    except urllib.error.HTTPError as e:
        try:
            err_data = json.loads(e.read() or b"{}") if e.fp else {}
        except (OSError, http.client.HTTPException, ValueError):
            # ValueError covers JSONDecodeError and UnicodeDecodeError
            err_data = {}
        if not isinstance(err_data, dict):
            err_data = {}

        msg = str(err_data.get("error") or f"HTTP {e.code}")
        hint = str(err_data.get("hint") or "")

        if e.code == 429:
            retry = _seconds(err_data.get("retry_after_minutes")) * 60
            retry = retry or _seconds(err_data.get("retry_after_seconds"))
            raise RateLimitError(msg, retry_after=retry)

        raise ApiError(msg, status=e.code, hint=hint)
    except urllib.error.URLError as e:
        raise ApiError(f"Connection failed: {e.reason}")
    except OSError as e:
        # socket timeouts during read surface as bare OSError
        raise ApiError(f"Connection failed: {e}")
    except http.client.HTTPException as e:
        # IncompleteRead, BadStatusLine, RemoteDisconnected
        raise ApiError(f"Connection failed: {e!r}")

    try:
        return json.loads(raw.decode()) if raw else {}
    except ValueError:
        raise ApiError(f"Malformed response body from {url}")


def _seconds(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return value if 0 <= value < float("inf") else 0.0


async def call_api(
    method: str,
    url: str,
    *,
    api_key: str = "",
    body: dict | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Result:
    """Run request_json in the default executor and wrap the outcome."""
    loop = asyncio.get_running_loop()
    try:
        data = await loop.run_in_executor(
            None,
            lambda: request_json(method, url, api_key=api_key, body=body, timeout=timeout),
        )
    except RateLimitError as e:
        return Result.failure(ErrorKind.RATE_LIMITED, str(e), status=429)
    except ApiError as e:
        kind = ErrorKind.CONFLICT if e.status == 409 else ErrorKind.TRANSIENT
        return Result.failure(kind, str(e), status=e.status)
    return Result.success(data)
