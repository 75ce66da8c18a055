from __future__ import annotations

import pytest

from offerwise.services.cache_service import InMemoryAnalyticsCache, SQLAnalyticsCache


@pytest.fixture(params=["memory", "sql"])
def cache(request, clock, session_scope):
    if request.param == "memory":
        return InMemoryAnalyticsCache(clock=clock)
    return SQLAnalyticsCache(session_scope=session_scope, clock=clock)


def test_set_then_get_hits_within_ttl(cache, clock):
    cache.set("analytics_agent-1_abc", "agent-1", {"total": 3}, ttl_minutes=60)

    clock.advance(minutes=59)
    lookup = cache.get("analytics_agent-1_abc", "agent-1")

    assert lookup.hit is True
    assert lookup.value == {"total": 3}


def test_entry_expires_lazily(cache, clock):
    cache.set("analytics_agent-1_abc", "agent-1", {"total": 3}, ttl_minutes=60)

    clock.advance(minutes=60)

    assert cache.get("analytics_agent-1_abc", "agent-1").hit is False


def test_lookup_under_another_scope_misses(cache):
    cache.set("analytics_agent-1_abc", "agent-1", [1, 2], ttl_minutes=5)

    assert cache.get("analytics_agent-1_abc", "agent-2").hit is False
    assert cache.get("missing", "agent-1").hit is False


def test_set_overwrites_existing_entry(cache, clock):
    cache.set("recommendations_agent-1_x", "agent-1", ["old"], ttl_minutes=1)
    clock.advance(seconds=30)
    cache.set("recommendations_agent-1_x", "agent-1", ["new"], ttl_minutes=10)
    clock.advance(minutes=5)

    assert cache.get("recommendations_agent-1_x", "agent-1").value == ["new"]


def test_invalidate_removes_only_that_agent(cache):
    cache.set("analytics_agent-1_a", "agent-1", 1, ttl_minutes=5)
    cache.set("recommendations_agent-1_b", "agent-1", 2, ttl_minutes=5)
    cache.set("analytics_agent-2_a", "agent-2", 3, ttl_minutes=5)

    assert cache.invalidate("agent-1") == 2
    assert cache.get("analytics_agent-1_a", "agent-1").hit is False
    assert cache.get("analytics_agent-2_a", "agent-2").value == 3
    assert cache.invalidate("agent-1") == 0


def test_in_memory_cache_reports_size(clock):
    cache = InMemoryAnalyticsCache(clock=clock)
    cache.set("k1", "agent-1", 1, ttl_minutes=1)
    cache.set("k2", "agent-1", 2, ttl_minutes=1)

    assert len(cache) == 2
