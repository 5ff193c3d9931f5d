"""
config.py — Settings

Three layers, later wins:

    1. built-in defaults
    2. YAML file (config/default.yaml unless --config says otherwise)
    3. environment variables

The CLI applies its own flags on top via dataclasses.replace().
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from moltworker.engine import DEFAULT_RATING_RANGE, DEFAULT_WORK_DELAY
from moltworker.platform import moltbook

log = logging.getLogger(__name__)

# ── defaults ────────────────────────────────────────────────────────

DEFAULT_CONFIG = Path("config/default.yaml")
DEFAULT_STATE_DIR = Path.home() / ".moltworker"
DEFAULT_IDENTITY = "0xf94b361a541301f572c1f832e5afbda4731e864f"
DEFAULT_API_URL = "http://localhost:3003"

ENV_VARS = {
    "identity": "AGENT_ADDRESS",
    "api_url": "AGENT_API_URL",
    "moltbook_url": "MOLTBOOK_API_URL",
    "dry_run": "MOLTBOOK_DRY_RUN",
    "state_file": "AGENT_STATE_FILE",
    "poll_interval": "POLL_INTERVAL",
    "mock_task_interval": "MOCK_TASK_INTERVAL",
    "report_interval": "REPORT_INTERVAL",
    "broadcast_spacing": "BROADCAST_SPACING",
    "comment_spacing": "COMMENT_SPACING",
}


class ConfigError(ValueError):
    """Configuration that cannot be run."""


# ── config loading ──────────────────────────────────────────────────

def load_config(path: str | Path) -> dict:
    """Load YAML config, falling back to defaults."""
    p = Path(path)
    if p.exists():
        with open(p) as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ConfigError(f"{p}: top level must be a mapping")
        log.info("Config loaded from %s", p)
        return config

    log.warning("Config not found at %s, using defaults", p)
    return {}


def _as_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return bool(raw)


def _as_range(raw: Any, default: tuple, cast: type, name: str) -> tuple:
    if raw is None:
        return default
    try:
        lo, hi = raw
        return cast(lo), cast(hi)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a [low, high] pair, got {raw!r}")


@dataclass
class Settings:
    identity: str = DEFAULT_IDENTITY
    api_url: str = DEFAULT_API_URL
    tier: str = ""
    moltbook_url: str = moltbook.API_BASE
    agent_name: str = ""
    agent_description: str = ""
    dry_run: bool = False
    state_file: Path = DEFAULT_STATE_DIR / "state.json"
    poll_interval: float = 30.0
    mock_task_interval: float = 90.0
    report_interval: float = 30 * 60.0
    broadcast_spacing: float = float(moltbook.BROADCAST_SPACING)
    comment_spacing: float = float(moltbook.COMMENT_SPACING)
    rating_range: tuple[int, int] = DEFAULT_RATING_RANGE
    work_delay: tuple[float, float] = DEFAULT_WORK_DELAY
    api_timeout: float = 10.0
    moltbook_timeout: float = float(moltbook.DEFAULT_TIMEOUT)
    shutdown_grace: float = 5.0

    @classmethod
    def from_config(
        cls,
        config: dict | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "Settings":
        config = config or {}
        environ = os.environ if environ is None else environ

        mb = config.get("moltbook", {}) or {}
        intervals = config.get("intervals", {}) or {}
        limits = config.get("rate_limits", {}) or {}
        execution = config.get("execution", {}) or {}
        timeouts = config.get("timeouts", {}) or {}
        d = cls()

        raw: dict[str, Any] = {
            "identity": config.get("identity", d.identity),
            "api_url": config.get("api_url", d.api_url),
            "tier": config.get("tier", d.tier),
            "moltbook_url": mb.get("api_url", d.moltbook_url),
            "agent_name": mb.get("name", d.agent_name),
            "agent_description": mb.get("description", d.agent_description),
            "dry_run": mb.get("dry_run", d.dry_run),
            "state_file": config.get("state_file", d.state_file),
            "poll_interval": intervals.get("poll", d.poll_interval),
            "mock_task_interval": intervals.get("mock_tasks", d.mock_task_interval),
            "report_interval": intervals.get("report", d.report_interval),
            "broadcast_spacing": limits.get("broadcast", d.broadcast_spacing),
            "comment_spacing": limits.get("comment", d.comment_spacing),
            "api_timeout": timeouts.get("api", d.api_timeout),
            "moltbook_timeout": timeouts.get("moltbook", d.moltbook_timeout),
            "shutdown_grace": config.get("shutdown_grace", d.shutdown_grace),
        }

        for key, var in ENV_VARS.items():
            if var in environ:
                raw[key] = environ[var]

        try:
            settings = cls(
                identity=str(raw["identity"]).strip(),
                api_url=str(raw["api_url"] or "").strip(),
                tier=str(raw["tier"] or ""),
                moltbook_url=str(raw["moltbook_url"]).strip(),
                agent_name=str(raw["agent_name"] or ""),
                agent_description=str(raw["agent_description"] or ""),
                dry_run=_as_bool(raw["dry_run"]),
                state_file=Path(raw["state_file"]).expanduser(),
                poll_interval=float(raw["poll_interval"]),
                mock_task_interval=float(raw["mock_task_interval"]),
                report_interval=float(raw["report_interval"]),
                broadcast_spacing=float(raw["broadcast_spacing"]),
                comment_spacing=float(raw["comment_spacing"]),
                rating_range=_as_range(
                    execution.get("rating_range"), d.rating_range, int, "execution.rating_range",
                ),
                work_delay=_as_range(
                    execution.get("work_delay"), d.work_delay, float, "execution.work_delay",
                ),
                api_timeout=float(raw["api_timeout"]),
                moltbook_timeout=float(raw["moltbook_timeout"]),
                shutdown_grace=float(raw["shutdown_grace"]),
            )
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigError):
                raise
            raise ConfigError(f"invalid setting: {e}") from e

        settings.validate()
        return settings

    def validate(self):
        if not self.identity:
            raise ConfigError("identity must not be empty")
        for name in (
            "poll_interval", "mock_task_interval", "report_interval",
            "api_timeout", "moltbook_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        for name in ("broadcast_spacing", "comment_spacing", "shutdown_grace"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        lo, hi = self.rating_range
        if not 0 <= lo <= hi <= 100:
            raise ConfigError(f"rating_range must lie within [0, 100], got {self.rating_range}")
        dlo, dhi = self.work_delay
        if not 0 <= dlo <= dhi:
            raise ConfigError(f"work_delay must be a non-negative range, got {self.work_delay}")
