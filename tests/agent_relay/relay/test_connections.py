import asyncio

import pytest

from agent_relay.relay.connections import ConnectionRegistry
from agent_relay.relay.errors import UpstreamUnavailable


@pytest.mark.asyncio
async def test_get_or_create_reuses_session(clock, agent):
    registry = ConnectionRegistry(agent, clock=clock)

    first = await registry.get_or_create("u1", "cred")
    second = await registry.get_or_create("u1", "other-cred")

    assert first is second
    assert first.conversation_id == "conv-1"
    assert first.last_activity == clock()
    assert agent.started == ["cred"]


@pytest.mark.asyncio
async def test_concurrent_creation_opens_one_conversation(clock, agent):
    registry = ConnectionRegistry(agent, clock=clock)
    agent.start_gate = asyncio.Event()

    first = asyncio.ensure_future(registry.get_or_create("u1", "cred"))
    second = asyncio.ensure_future(registry.get_or_create("u1", "cred"))
    await asyncio.sleep(0)
    agent.start_gate.set()
    a, b = await asyncio.gather(first, second)

    assert a is b
    assert len(agent.started) == 1
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_different_users_create_separately(clock, agent):
    registry = ConnectionRegistry(agent, clock=clock)

    a, b = await asyncio.gather(
        registry.get_or_create("u1", "cred"),
        registry.get_or_create("u2", "cred"),
    )

    assert a.conversation_id != b.conversation_id
    assert len(agent.started) == 2


@pytest.mark.asyncio
async def test_failed_creation_is_not_cached(clock, agent):
    registry = ConnectionRegistry(agent, clock=clock)
    agent.start_error = RuntimeError("agent down")

    with pytest.raises(UpstreamUnavailable):
        await registry.get_or_create("u1", "cred")
    assert "u1" not in registry

    session = await registry.get_or_create("u1", "cred")
    assert session.conversation_id == "conv-2"


@pytest.mark.asyncio
async def test_invalidate_and_touch(clock, agent):
    registry = ConnectionRegistry(agent, clock=clock)
    session = await registry.get_or_create("u1", "cred")

    clock.advance(100)
    registry.touch("u1")
    registry.touch("missing")
    assert session.last_activity == clock()

    assert registry.invalidate("u1") is True
    assert registry.invalidate("u1") is False
    assert registry.get("u1") is None


@pytest.mark.asyncio
async def test_sweep_removes_exactly_idle_sessions(clock, agent):
    registry = ConnectionRegistry(agent, clock=clock)
    await registry.get_or_create("old", "cred")
    clock.advance(50)
    await registry.get_or_create("boundary", "cred")
    clock.advance(50)
    await registry.get_or_create("fresh", "cred")

    # now - old = 100, now - boundary = 50, now - fresh = 0
    removed = registry.sweep(clock(), 50)

    assert removed == 1
    assert "old" not in registry
    assert "boundary" in registry
    assert "fresh" in registry


@pytest.mark.asyncio
async def test_stats_reports_sessions(clock, agent):
    registry = ConnectionRegistry(agent, clock=clock)
    await registry.get_or_create("u1", "cred")

    stats = registry.stats()

    assert stats["active_connections"] == 1
    entry = stats["connections"][0]
    assert entry["user_id"] == "u1"
    assert entry["has_conversation_id"] is True
    assert entry["last_activity"].startswith("2023-11-14")
    assert registry.last_activity("u1") == clock()
    assert registry.last_activity("nobody") is None


@pytest.mark.asyncio
async def test_invalidate_detaches_in_flight_creation(clock, agent):
    registry = ConnectionRegistry(agent, clock=clock)
    agent.start_gate = asyncio.Event()

    waiter = asyncio.ensure_future(registry.get_or_create("u1", "cred"))
    await asyncio.sleep(0)
    assert registry.invalidate("u1") is False
    agent.start_gate.set()
    session = await waiter

    assert session.conversation_id == "conv-1"
    assert "u1" not in registry

    fresh = await registry.get_or_create("u1", "cred")
    assert fresh.conversation_id == "conv-2"
