from __future__ import annotations

from datetime import timedelta

from offerwise.auth.agent_context import AgentIdentity, StaticIdentityProvider
from offerwise.core.exceptions import UpstreamFailure
from offerwise.schemas.analytics import NegotiationRecord
from offerwise.services.analytics_service import NegotiationAnalyticsService, create_analytics_service
from offerwise.services.cache_service import InMemoryAnalyticsCache
from offerwise.services.record_store import InMemoryRecordStore

CONTEXT = {"property_type": "condo", "market_conditions": "hot", "multiple_offers": True}


class _BrokenStore(InMemoryRecordStore):
    def __init__(self, clock, error: Exception) -> None:
        super().__init__(clock=clock)
        self.error = error

    def fetch(self, agent_id, date_range=None, limit=None):
        raise self.error


def _build_record(idx, clock) -> NegotiationRecord:
    created = clock.now - timedelta(days=idx + 1)
    return NegotiationRecord.model_validate(
        {
            "id": f"rec-{idx}",
            "agent_id": "agent-1",
            "client_id": f"client-{idx}",
            "property_id": f"prop-{idx}",
            "negotiation_id": f"neg-{idx}",
            "context": CONTEXT,
            "strategy": {"initial_offer_percentage": 98, "communication_tone": "warm"},
            "outcome": {"successful": idx % 2 == 0},
            "created_at": created,
            "updated_at": created,
        }
    )


def _build_service(clock, records=(), store=None, agent_id: str | None = "agent-1"):
    cache = InMemoryAnalyticsCache(clock=clock)
    store = store or InMemoryRecordStore(cache=cache, clock=clock)
    for record in records:
        store.create(record)
    identity = StaticIdentityProvider(AgentIdentity(agent_id=agent_id) if agent_id else None)
    return NegotiationAnalyticsService(store, cache, identity, clock=clock), cache


def test_tracking_lifecycle_through_results(clock):
    service, _ = _build_service(clock)

    started = service.start_tracking("prop-7", "condo", "hot", {"competing_offers": 2})
    session_id = started.data["session_id"]
    offered = service.record_offer_event(session_id, "initial", 300_000, 320_000)
    documented = service.record_document_event(session_id, "email", "We can close quickly.")
    pending = service.finalize_outcome(session_id, "pending")
    accepted = service.finalize_outcome(session_id, "accepted", final_amount=315_000)

    assert started.success is True
    assert offered.data == {"recorded": True}
    assert documented.data == {"recorded": True}
    assert pending.success is True
    assert pending.data is None
    assert pending.metadata == {"persisted": False}
    assert accepted.metadata == {"persisted": True}
    assert accepted.data["outcome"]["successful"] is True
    assert accepted.data["context"]["competing_offers"] == 2


def test_start_tracking_without_identity_fails(clock):
    service, _ = _build_service(clock, agent_id=None)

    result = service.start_tracking("prop-7", "condo", "hot")

    assert result.success is False
    assert result.error_code == "not_authenticated"


def test_invalid_inputs_map_to_validation_failure(clock):
    service, _ = _build_service(clock)
    session_id = service.start_tracking("prop-7", "condo", "hot").data["session_id"]

    bad_query = service.compute_analytics("agent-1", {"filters": {"bogus": 1}})
    bad_kind = service.record_offer_event(session_id, "lowball", 1, 2)
    bad_outcome = service.finalize_outcome(session_id, "vanished")
    bad_report = service.generate_report("gossip", "agent-1")
    bad_options = service.generate_recommendations("agent-1", CONTEXT, {"min_confidence": 3})

    for result in (bad_query, bad_kind, bad_outcome, bad_report, bad_options):
        assert result.success is False
        assert result.error_code == "validation_failure"
    assert bad_query.metadata["errors"]


def test_unknown_session_is_a_successful_noop(clock):
    service, _ = _build_service(clock)

    result = service.record_document_event("missing", "email", "hello")

    assert result.success is True
    assert result.data == {"recorded": False}


def test_store_failures_keep_their_error_codes(clock):
    upstream, _ = _build_service(clock, store=_BrokenStore(clock, UpstreamFailure("Record store is unavailable.")))
    crashing, _ = _build_service(clock, store=_BrokenStore(clock, RuntimeError("disk on fire")))

    failed = upstream.compute_analytics("agent-1")
    crashed = crashing.compute_analytics("agent-1")

    assert failed.error_code == "upstream_failure"
    assert failed.error == "Record store is unavailable."
    assert crashed.error_code == "internal_error"
    assert crashed.error == "disk on fire"


def test_compute_analytics_reports_insufficient_data_as_advisory(clock):
    service, _ = _build_service(clock, [_build_record(i, clock) for i in range(2)])

    result = service.compute_analytics("agent-1")

    assert result.success is True
    assert result.data["total_negotiations"] == 2
    assert result.metadata["sufficient"] is False
    assert result.metadata["cache_status"] == "miss"
    assert result.metadata["message"] == "Need 3 more completed negotiations for reliable analysis"


def test_generate_report_wraps_analytics(clock):
    service, _ = _build_service(clock, [_build_record(i, clock) for i in range(6)])

    result = service.generate_report("executive_summary", "agent-1")

    assert result.success is True
    assert result.data["title"] == "Executive Summary Report"
    assert result.data["data"]["overall_stats"]["total_negotiations"] == 6
    assert result.metadata["sufficient"] is True


def test_health_status_levels(clock):
    empty, _ = _build_service(clock)
    limited, _ = _build_service(clock, [_build_record(i, clock) for i in range(2)])
    healthy, _ = _build_service(clock, [_build_record(i, clock) for i in range(5)])

    assert empty.health_status("agent-1").data["status"] == "insufficient"
    assert limited.health_status("agent-1").data["health_score"] == 50
    report = healthy.health_status("agent-1").data
    assert report["status"] == "healthy"
    assert report["health_score"] == 100
    assert report["active_sessions"] == 0
    assert report["timestamp"] == clock.now.isoformat()


def test_clear_cache_drops_analytics_and_recommendations(clock):
    service, cache = _build_service(clock, [_build_record(i, clock) for i in range(4)])
    service.compute_analytics("agent-1")
    service.generate_recommendations("agent-1", CONTEXT)

    result = service.clear_cache("agent-1")

    assert result.data == {"removed": 2}
    assert len(cache) == 0


def test_sweep_and_flush_operations(clock):
    service, _ = _build_service(clock)
    session_id = service.start_tracking("prop-7", "condo", "hot").data["session_id"]
    service.record_document_event(session_id, "email", "We love it")
    offer_only = service.start_tracking("prop-8", "condo", "hot").data["session_id"]
    service.record_offer_event(offer_only, "initial", 300_000, 320_000)

    assert service.flush_sessions().data == {"persisted": 1}
    clock.advance(hours=25)
    assert service.sweep_stale_sessions().data == {"removed": 1}
    assert service.tracker.get_session(offer_only) is None


def test_sql_backed_service_end_to_end(clock, session_scope):
    service = create_analytics_service(
        session_scope=session_scope,
        identity=StaticIdentityProvider(AgentIdentity(agent_id="agent-1")),
        clock=clock,
    )

    for idx in range(3):
        session_id = service.start_tracking(f"prop-{idx}", "condo", "hot").data["session_id"]
        service.record_offer_event(session_id, "initial", 490_000, 500_000)
        assert service.finalize_outcome(session_id, "accepted").metadata["persisted"] is True

    analytics = service.compute_analytics("agent-1")
    cached = service.compute_analytics("agent-1")
    recommendations = service.generate_recommendations("agent-1", CONTEXT)

    assert analytics.data["total_negotiations"] == 3
    assert analytics.data["overall_success_rate"] == 1.0
    assert cached.metadata["cache_status"] == "hit"
    assert recommendations.success is True
    assert recommendations.metadata["sufficient"] is True
