"""
run.py — Moltworker Entry Point

Wires settings + state store + task source + ledger + Moltbook +
execution engine together and runs the loop until interrupted.

Usage:
    python -m moltworker.run                           # uses config/default.yaml
    python -m moltworker.run --config my_config.yaml   # custom config
    python -m moltworker.run --dry-run -v              # log Moltbook posts, don't send
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path

from moltworker.config import DEFAULT_CONFIG, ConfigError, Settings, load_config
from moltworker.engine import ExecutionEngine
from moltworker.loop import AgentLoop
from moltworker.platform.ledger import ReputationLedger
from moltworker.platform.moltbook import Moltbook
from moltworker.platform.tasks import create_task_source
from moltworker.state import StateStore

log = logging.getLogger("moltworker")


# ── assembly ────────────────────────────────────────────────────────

def build_agent(settings: Settings) -> AgentLoop:
    """A fully assembled worker, not yet started."""
    return AgentLoop(
        settings,
        store=StateStore(settings.state_file),
        source=create_task_source(settings),
        ledger=ReputationLedger(settings.api_url, timeout=settings.api_timeout),
        channel=Moltbook(
            settings.identity,
            base_url=settings.moltbook_url,
            name=settings.agent_name,
            description=settings.agent_description,
            broadcast_spacing=settings.broadcast_spacing,
            comment_spacing=settings.comment_spacing,
            timeout=settings.moltbook_timeout,
            dry_run=settings.dry_run,
        ),
        engine=ExecutionEngine(settings.rating_range, settings.work_delay),
    )


async def serve(agent: AgentLoop):
    """Run the agent with SIGINT/SIGTERM wired to a graceful stop."""
    loop = asyncio.get_running_loop()

    def shutdown(*_):
        log.info("Shutdown signal received.")
        agent.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown)
        except NotImplementedError:
            # no add_signal_handler on Windows event loops
            signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(shutdown))

    await agent.run()


# ── CLI ─────────────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Moltworker — an unattended task worker",
    )
    parser.add_argument(
        "--config", "-c",
        default=str(DEFAULT_CONFIG),
        help="Path to config YAML (default: config/default.yaml)",
    )
    parser.add_argument(
        "--state-file",
        type=Path,
        help="Override the snapshot location",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log Moltbook posts and comments instead of sending them",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    # logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        settings = Settings.from_config(load_config(args.config))
    except ConfigError as e:
        log.error("Bad configuration: %s", e)
        return 2

    overrides = {}
    if args.state_file:
        overrides["state_file"] = args.state_file.expanduser()
    if args.dry_run:
        overrides["dry_run"] = True
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    agent = build_agent(settings)
    asyncio.run(serve(agent))
    return 0


if __name__ == "__main__":
    sys.exit(main())
