#!/usr/bin/env python3
"""
Tests for the sliding-window rate limiter and the session store.
"""

import asyncio

import pytest

from medchat_gateway.llm.rate_limiting import RateLimitConfig, SlidingWindowLimiter
from medchat_gateway.store import SessionStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_limit_within_window():
    """Requests beyond the limit are refused with a wait hint."""
    clock = FakeClock()
    limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=2, window_seconds=60), clock)

    assert limiter.check("1.2.3.4").allowed
    assert limiter.check("1.2.3.4").allowed

    clock.now += 10
    result = limiter.check("1.2.3.4")
    assert not result.allowed
    assert result.wait_time == pytest.approx(50.0)
    assert result.current_usage == 2
    assert result.limit_value == 2


def test_window_slides():
    """Old requests leave the window as time passes."""
    clock = FakeClock()
    limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=1, window_seconds=60), clock)

    assert limiter.check("a").allowed
    clock.now += 60
    assert limiter.check("a").allowed


def test_keys_are_independent_and_resettable():
    """Each key has its own window and can be reset."""
    limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=1, window_seconds=60))

    assert limiter.check("a").allowed
    assert limiter.check("b").allowed
    assert not limiter.check("a").allowed

    limiter.reset("a")
    assert limiter.check("a").allowed

    stats = limiter.get_statistics()
    assert stats["total_allowed"] == 3
    assert stats["total_rejected"] == 1


def test_prune_drops_expired_keys():
    """Keys with no requests left in the window are dropped."""
    clock = FakeClock()
    limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=5, window_seconds=30), clock)
    limiter.check("a")
    clock.now += 15
    limiter.check("b")
    clock.now += 20

    assert limiter.prune() == 1
    assert limiter.get_statistics()["tracked_clients"] == 1


@pytest.mark.asyncio
async def test_store_tracks_and_cancels_turns():
    """Unregistering cancels the connection's turns."""
    store = SessionStore()
    store.register("c1", "10.0.0.1")
    task = asyncio.create_task(asyncio.sleep(3600))

    store.track_turn("c1", task)
    assert store.get("c1").messages == 1
    assert store.count == 1

    store.unregister("c1")
    await asyncio.gather(task, return_exceptions=True)

    assert task.cancelled()
    assert store.count == 0
    assert store.unregister("c1") is None


@pytest.mark.asyncio
async def test_store_rejects_turn_for_unknown_connection():
    """A turn for an unknown connection is cancelled at once."""
    store = SessionStore()
    task = asyncio.create_task(asyncio.sleep(3600))

    store.track_turn("ghost", task)
    await asyncio.gather(task, return_exceptions=True)

    assert task.cancelled()


@pytest.mark.asyncio
async def test_store_snapshot_lists_connections():
    """Snapshot describes each live connection and its in-flight turns."""
    store = SessionStore()
    store.register("c1", "10.0.0.1", "Mozilla/5.0")
    store.register("c2", "10.0.0.2")
    task = asyncio.create_task(asyncio.sleep(3600))
    store.track_turn("c1", task)

    by_id = {entry["id"]: entry for entry in store.snapshot()}
    assert set(by_id) == {"c1", "c2"}
    assert by_id["c1"]["ip"] == "10.0.0.1"
    assert by_id["c1"]["userAgent"] == "Mozilla/5.0"
    assert by_id["c1"]["messages"] == 1
    assert by_id["c1"]["activeTurns"] == 1
    assert by_id["c2"]["activeTurns"] == 0
    assert by_id["c1"]["connectedAt"].endswith("+00:00")

    store.unregister("c1")
    await asyncio.gather(task, return_exceptions=True)
    assert [entry["id"] for entry in store.snapshot()] == ["c2"]
