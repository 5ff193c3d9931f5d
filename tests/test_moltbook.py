"""
Tests for the Moltbook reporting channel

Covers:
- Fixed-window limits for broadcasts (30 min) and comments (20 s)
- Send-then-record on failed attempts
- Registration: success, conflict, fallback, stored credentials
- Heartbeat best-effort behaviour
- Dry-run mode
"""

import pytest

from moltworker.platform.http import ErrorKind, Result
from moltworker.platform.moltbook import (
    EXISTING_KEY,
    FixedWindow,
    Moltbook,
    RateLimiter,
    Registration,
    SendOutcome,
    is_placeholder,
)

from conftest import IDENTITY


@pytest.fixture
def channel(clock, transport):
    return Moltbook(IDENTITY, clock=clock)


async def _registered(channel):
    await channel.register()
    return channel


# -----------------------------------------------------------------------------
# Windows
# -----------------------------------------------------------------------------

def test_window_open_before_first_attempt():
    w = FixedWindow(spacing=20)
    assert w.allows(1_000.0)
    assert w.remaining(1_000.0) == 0.0


def test_window_boundaries():
    w = FixedWindow(spacing=20)
    w.record(1_000.0)
    assert not w.allows(1_019.9)
    assert w.remaining(1_010.0) == pytest.approx(10.0)
    assert w.allows(1_020.0)


def test_window_does_not_accumulate_credit():
    w = FixedWindow(spacing=20)
    w.record(1_000.0)
    # a long silence buys exactly one action, not several
    assert w.allows(5_000.0)
    w.record(5_000.0)
    assert not w.allows(5_001.0)


def test_rate_limiter_restore_and_snapshot(clock):
    limits = RateLimiter(clock=clock)
    limits.restore(last_broadcast=clock.now - 60, last_comment=clock.now - 5)

    snap = limits.snapshot()

    assert snap["can_broadcast"] is False
    assert snap["can_comment"] is False
    assert snap["broadcast_cooldown_remaining"] == 30 * 60 - 60
    assert snap["comment_cooldown_remaining"] == 15


# -----------------------------------------------------------------------------
# Broadcast and comment laws
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_broadcast_within_30_minutes_is_skipped(channel, clock, transport):
    await _registered(channel)

    assert await channel.broadcast("first") is SendOutcome.SENT
    clock.advance(30 * 60 - 1)
    sent_before = len(transport.calls)

    assert await channel.broadcast("second") is SendOutcome.SKIPPED
    assert len(transport.calls) == sent_before


@pytest.mark.asyncio
async def test_broadcast_after_30_minutes_is_sent(channel, clock):
    await _registered(channel)

    assert await channel.broadcast("first") is SendOutcome.SENT
    clock.advance(30 * 60)

    assert await channel.broadcast("second") is SendOutcome.SENT
    assert channel.broadcasts == 2
    assert channel.rate_limits.broadcast.last == clock.now


@pytest.mark.asyncio
async def test_comment_within_20_seconds_is_skipped(channel, clock):
    await _registered(channel)

    assert await channel.comment("1000", "done") is SendOutcome.SENT
    clock.advance(19)

    assert await channel.comment("1001", "done") is SendOutcome.SKIPPED


@pytest.mark.asyncio
async def test_comment_after_20_seconds_is_sent(channel, clock, transport):
    await _registered(channel)

    assert await channel.comment("1000", "done") is SendOutcome.SENT
    clock.advance(20)

    assert await channel.comment("1001", "done again") is SendOutcome.SENT
    body = transport.calls[-1][2]
    assert body["taskId"] == "1001"
    assert body["apiKey"] == channel.api_key


@pytest.mark.asyncio
async def test_windows_are_independent(channel, clock):
    await _registered(channel)

    assert await channel.broadcast("update") is SendOutcome.SENT
    assert await channel.comment("1000", "done") is SendOutcome.SENT


@pytest.mark.asyncio
async def test_failed_attempt_still_closes_window(channel, clock, transport):
    await _registered(channel)
    transport.responses["/agents/updates"] = Result.failure(
        ErrorKind.TRANSIENT, "HTTP 502", status=502,
    )

    assert await channel.broadcast("update") is SendOutcome.FAILED
    clock.advance(60)
    assert await channel.broadcast("update") is SendOutcome.SKIPPED
    assert channel.broadcasts == 0


@pytest.mark.asyncio
async def test_unregistered_channel_sends_nothing(channel, transport):
    assert await channel.broadcast("hello") is SendOutcome.SKIPPED
    assert await channel.comment("1", "hi") is SendOutcome.SKIPPED
    assert not (await channel.heartbeat({})).ok
    assert transport.calls == []


@pytest.mark.asyncio
async def test_dry_run_logs_instead_of_sending(clock, transport):
    channel = Moltbook(IDENTITY, clock=clock, dry_run=True)
    await channel.register()
    calls = len(transport.calls)

    assert await channel.broadcast("update") is SendOutcome.SENT
    assert await channel.comment("1000", "done") is SendOutcome.SENT
    assert len(transport.calls) == calls


# -----------------------------------------------------------------------------
# Report cycle
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_report_sends_heartbeat_then_broadcast(channel, transport):
    await _registered(channel)

    outcome = await channel.report({"tasksCompleted": 4, "reputation": 58}, "Agent Update")

    assert outcome is SendOutcome.SENT
    assert transport.paths()[-2:] == ["/agents/heartbeat", "/agents/updates"]
    stats = transport.calls[-2][2]["stats"]
    assert stats["tasksCompleted"] == 4 and stats["reputation"] == 58


@pytest.mark.asyncio
async def test_report_survives_heartbeat_failure(channel, transport):
    await _registered(channel)
    transport.responses["/agents/heartbeat"] = Result.failure(
        ErrorKind.TRANSIENT, "Connection failed: reset",
    )

    assert await channel.report({}, "Agent Update") is SendOutcome.SENT


@pytest.mark.asyncio
async def test_report_skipped_skips_heartbeat_too(channel, clock, transport):
    await _registered(channel)
    await channel.report({}, "first")
    calls = len(transport.calls)

    clock.advance(10)

    assert await channel.report({}, "second") is SendOutcome.SKIPPED
    assert len(transport.calls) == calls


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_register_stores_returned_key(channel, transport):
    key = await channel.register()

    assert key == "mb_live_0123456789abcdef"
    assert channel.state is Registration.REGISTERED
    body = transport.calls[0][2]
    assert body["agentAddress"] == IDENTITY


@pytest.mark.asyncio
async def test_register_conflict_uses_placeholder(channel, transport):
    transport.responses["/agents/register"] = Result.failure(
        ErrorKind.CONFLICT, "already registered", status=409,
    )

    assert await channel.register() == EXISTING_KEY
    assert channel.state is Registration.REGISTERED


@pytest.mark.asyncio
async def test_register_failure_falls_back(channel, transport):
    transport.responses["/agents/register"] = Result.failure(
        ErrorKind.TRANSIENT, "Connection failed: timed out",
    )

    key = await channel.register()

    assert key.startswith("demo-key-fallback-")
    assert channel.state is Registration.DEGRADED
    assert channel.registered


@pytest.mark.asyncio
async def test_register_is_one_time(channel, transport):
    await channel.register()
    await channel.register()

    assert transport.paths().count("/agents/register") == 1


@pytest.mark.asyncio
async def test_stored_real_key_skips_network(channel, transport):
    channel.restore("mb_live_stored", 0.0, 0.0)

    assert await channel.register() == "mb_live_stored"
    assert transport.calls == []


@pytest.mark.asyncio
async def test_stored_placeholder_key_retries_registration(channel, transport):
    channel.restore("demo-key-fallback-1700000000", 0.0, 0.0)

    assert await channel.register() == "mb_live_0123456789abcdef"
    assert transport.paths() == ["/agents/register"]


def test_placeholder_detection():
    assert is_placeholder(None)
    assert is_placeholder("")
    assert is_placeholder(EXISTING_KEY)
    assert not is_placeholder("mb_live_abc")


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"agent": None},
    {"agent": "mb_live_not_a_mapping"},
    {"apiKey": 12345},
    {"agent": {"apiKey": ["mb_live"]}},
    {"apiKey": "   "},
    ["apiKey", "mb_live"],
])
async def test_register_with_unusable_key_falls_back_to_demo_key(channel, transport, payload):
    transport.responses["/agents/register"] = Result.success(payload)

    key = await channel.register()

    assert isinstance(key, str)
    assert key.startswith("demo-key-")
    assert channel.state is Registration.REGISTERED


@pytest.mark.asyncio
async def test_register_reads_nested_snake_case_key(channel, transport):
    transport.responses["/agents/register"] = Result.success({"agent": {"api_key": "mb_live_nested"}})

    assert await channel.register() == "mb_live_nested"
