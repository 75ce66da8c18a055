from __future__ import annotations

from datetime import timedelta

import pytest

from offerwise.core.exceptions import ValidationFailure
from offerwise.schemas.analytics import AnalyticsResult, DateRange, NegotiationRecord
from offerwise.services.cache_service import InMemoryAnalyticsCache
from offerwise.services.record_store import InMemoryRecordStore, SQLRecordStore


@pytest.fixture(params=["memory", "sql"])
def backend(request, clock, session_scope):
    cache = InMemoryAnalyticsCache(clock=clock)
    if request.param == "memory":
        return InMemoryRecordStore(cache=cache, clock=clock), cache
    return SQLRecordStore(session_scope=session_scope, cache=cache, clock=clock), cache


def _build_record(idx, created_at, agent_id="agent-1", **overrides) -> NegotiationRecord:
    payload = {
        "id": f"rec-{agent_id}-{idx}",
        "agent_id": agent_id,
        "client_id": f"client-{idx}",
        "property_id": f"prop-{idx}",
        "negotiation_id": f"neg-{idx}",
        "context": {"property_type": "condo", "market_conditions": "hot", "multiple_offers": True},
        "strategy": {"initial_offer_percentage": 97.5, "communication_tone": "warm"},
        "outcome": {"successful": True, "final_price": 410_000},
        "created_at": created_at,
        "updated_at": created_at,
    }
    payload.update(overrides)
    return NegotiationRecord.model_validate(payload)


def test_create_then_get_round_trips(backend, clock):
    store, _ = backend
    record = _build_record(1, clock.now)

    store.create(record)
    loaded = store.get(record.id)

    assert loaded == record
    assert loaded.created_at.tzinfo is not None
    assert store.get("nope") is None


def test_fetch_orders_newest_first_and_scopes_by_agent(backend, clock):
    store, _ = backend
    for idx in range(3):
        store.create(_build_record(idx, clock.now - timedelta(days=idx)))
    store.create(_build_record(9, clock.now, agent_id="agent-2"))

    records = store.fetch("agent-1")

    assert [r.id for r in records] == ["rec-agent-1-0", "rec-agent-1-1", "rec-agent-1-2"]
    assert [r.id for r in store.fetch("agent-1", limit=2)] == ["rec-agent-1-0", "rec-agent-1-1"]
    assert [r.id for r in store.fetch("agent-2")] == ["rec-agent-2-9"]


def test_fetch_honours_inclusive_date_range(backend, clock):
    store, _ = backend
    for idx in range(5):
        store.create(_build_record(idx, clock.now - timedelta(days=idx)))

    window = DateRange(start_date=clock.now - timedelta(days=3), end_date=clock.now - timedelta(days=1))

    assert [r.id for r in store.fetch("agent-1", date_range=window)] == [
        "rec-agent-1-1",
        "rec-agent-1-2",
        "rec-agent-1-3",
    ]


def test_writes_invalidate_agent_cache(backend, clock):
    store, cache = backend
    cache.set("analytics_agent-1_x", "agent-1", {"stale": True}, ttl_minutes=60)
    cache.set("analytics_agent-2_x", "agent-2", {"fresh": True}, ttl_minutes=60)

    store.create(_build_record(1, clock.now))

    assert cache.get("analytics_agent-1_x", "agent-1").hit is False
    assert cache.get("analytics_agent-2_x", "agent-2").hit is True


def test_update_merges_bumps_version_and_stamps_time(backend, clock):
    store, _ = backend
    record = store.create(_build_record(1, clock.now))
    clock.advance(hours=2)

    updated = store.update(record.id, {"outcome": {"successful": False}})

    assert updated.version == 2
    assert updated.updated_at == clock.now
    assert updated.outcome.successful is False
    assert store.get(record.id).version == 2


def test_update_rejects_unknown_record_and_frozen_fields(backend, clock):
    store, _ = backend
    record = store.create(_build_record(1, clock.now))

    with pytest.raises(ValidationFailure):
        store.update("missing", {"outcome": {"successful": True}})
    with pytest.raises(ValidationFailure):
        store.update(record.id, {"agent_id": "someone-else"})


def test_create_rejects_records_without_identity(backend, clock):
    store, _ = backend

    with pytest.raises(ValidationFailure) as exc_info:
        store.create(_build_record(1, clock.now, client_id=" "))

    assert "Client ID is required" in exc_info.value.errors
    assert store.fetch("agent-1") == []


def test_agent_analytics_snapshot_round_trips(backend, clock):
    store, _ = backend
    result = AnalyticsResult(
        agent_id="agent-1",
        total_negotiations=4,
        successful_negotiations=3,
        overall_success_rate=0.75,
        calculated_at=clock.now,
    )

    assert store.get_agent_analytics("agent-1") is None
    store.store_agent_analytics("agent-1", result)

    snapshot = store.get_agent_analytics("agent-1")
    assert snapshot.overall_success_rate == 0.75
    assert snapshot.calculated_at == clock.now
