"""
state.py — Durable Snapshot

Everything the worker needs to pick up exactly where it left off:
identity, reputation, counters, the two rate-limit timestamps, the
Moltbook credential and the next synthetic task id.

One small JSON document, overwritten in place (temp file + replace)
after every state-affecting event. A missing or unreadable snapshot is
never fatal: load() returns None and the caller starts fresh.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

from moltworker import reputation
from moltworker.platform.tasks import FIRST_TASK_ID

log = logging.getLogger(__name__)

VERSION = 1


class SnapshotError(ValueError):
    """Snapshot document present but not usable."""


@dataclass
class Snapshot:
    identity: str
    reputation: int = reputation.BOOTSTRAP_SCORE
    tasks_completed: int = 0
    total_rep_gained: int = 0
    last_broadcast: float = 0.0
    last_comment: float = 0.0
    started_at: float = field(default_factory=time.time)
    api_key: str | None = None
    next_task_id: int = FIRST_TASK_ID

    @classmethod
    def fresh(cls, identity: str, now: float | None = None) -> "Snapshot":
        if now is None:
            return cls(identity=identity)
        return cls(identity=identity, started_at=now)

    def to_dict(self) -> dict:
        return {"version": VERSION, **asdict(self)}

    @classmethod
    def from_dict(cls, d: dict) -> "Snapshot":
        if not isinstance(d, dict):
            raise SnapshotError(f"expected an object, got {type(d).__name__}")
        known = {f.name for f in fields(cls)}
        data = {k: d[k] for k in d if k in known}
        if not isinstance(data.get("identity"), str) or not data["identity"]:
            raise SnapshotError("missing identity")

        try:
            for name in ("reputation", "tasks_completed", "total_rep_gained", "next_task_id"):
                if name in data:
                    data[name] = int(data[name])
            for name in ("last_broadcast", "last_comment", "started_at"):
                if name in data:
                    data[name] = float(data[name])
        except (TypeError, ValueError, OverflowError) as e:
            raise SnapshotError(f"bad field type: {e}") from e

        if data.get("api_key") is not None and not isinstance(data["api_key"], str):
            raise SnapshotError("api_key must be a string")

        snap = cls(**data)
        snap.reputation = reputation.clamp(snap.reputation)
        return snap


class StateStore:
    """Load/save a Snapshot at a fixed path."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def load(self) -> Snapshot | None:
        """The stored snapshot, or None if absent or corrupt."""
        if not self.path.exists():
            log.info("No snapshot at %s, starting fresh", self.path)
            return None
        try:
            snap = Snapshot.from_dict(json.loads(self.path.read_text()))
        except (OSError, ValueError) as e:
            # json.JSONDecodeError and SnapshotError are both ValueErrors
            log.warning("Snapshot at %s unreadable (%s), starting fresh", self.path, e)
            return None
        log.info("State loaded from %s", self.path)
        return snap

    def save(self, snapshot: Snapshot):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(snapshot.to_dict(), indent=2))
        tmp.replace(self.path)
