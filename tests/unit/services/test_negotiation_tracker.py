from __future__ import annotations

import threading

import pytest

from offerwise.auth.agent_context import AgentIdentity, StaticIdentityProvider
from offerwise.core.enums import (
    CommunicationTone,
    OfferPosition,
    SessionOutcome,
    SessionState,
    SignalCategory,
)
from offerwise.core.exceptions import NotAuthenticated, UpstreamFailure, ValidationFailure
from offerwise.services.negotiation_tracker import NegotiationTracker, extract_signals
from offerwise.services.record_store import InMemoryRecordStore


class _FailingStore(InMemoryRecordStore):
    def __init__(self, clock, failures: int = 1) -> None:
        super().__init__(clock=clock)
        self.failures = failures

    def create(self, record):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("store offline")
        return super().create(record)


def _build_tracker(clock, store=None, agent_id: str | None = "agent-1"):
    identity = StaticIdentityProvider(AgentIdentity(agent_id=agent_id) if agent_id else None)
    store = store or InMemoryRecordStore(clock=clock)
    return NegotiationTracker(store, identity, clock=clock), store


def _start(tracker, property_id: str = "prop-1", **factors):
    return tracker.start_session(property_id, "single_family", "hot", factors or None)


def test_extract_signals_emotional_and_competitive_scenario():
    text = "We love this home and it is perfect for our family. We want to make the best offer."

    signals = extract_signals(text)
    categories = [signal.category for signal in signals]

    assert SignalCategory.EMOTIONAL in categories
    assert SignalCategory.COMPETITIVE in categories
    assert categories.index(SignalCategory.EMOTIONAL) < categories.index(SignalCategory.COMPETITIVE)
    confidences = [signal.confidence for signal in signals]
    assert confidences == sorted(confidences, reverse=True)
    emotional = signals[0]
    assert set(emotional.keywords) == {"love", "perfect", "family"}
    assert "family" in emotional.evidence


def test_extract_signals_without_keywords_is_empty():
    assert extract_signals("Please find the signed addendum attached") == []


def test_start_session_requires_identity(clock):
    tracker, _ = _build_tracker(clock, agent_id=None)

    with pytest.raises(NotAuthenticated):
        _start(tracker)


def test_start_session_rejects_invalid_context(clock):
    tracker, _ = _build_tracker(clock)

    with pytest.raises(ValidationFailure):
        tracker.start_session("prop-1", "castle", "hot")
    with pytest.raises(ValidationFailure):
        tracker.start_session("prop-1", "condo", "hot", {"unexpected": 1})


def test_start_session_builds_context_from_factors(clock):
    tracker, _ = _build_tracker(clock)

    session_id = _start(
        tracker,
        buyer_agent="agent-1",
        seller_agent="listing-9",
        competing_offers=4,
        multiple_offers=True,
    )
    session = tracker.get_session(session_id)

    assert session_id.startswith("prop-1-")
    assert session.agent_id == "agent-1"
    assert session.state is SessionState.ACTIVE
    assert session.context.listing_agent == "listing-9"
    assert session.context.buyer_agent == "agent-1"
    assert session.context.competing_offers == 4
    assert session.context.multiple_offers is True


def test_same_property_started_twice_in_one_millisecond_keeps_both_sessions(clock):
    tracker, _ = _build_tracker(clock)

    first = _start(tracker)
    second = _start(tracker)
    tracker.record_document_event(first, "cover_letter", "We love this home")

    assert first != second
    assert second == f"{first}-2"
    assert len(tracker.active_sessions()) == 2
    assert len(tracker.get_session(first).document_history) == 1
    assert tracker.get_session(second).document_history == []


def test_invalid_offer_kind_or_outcome_raises_validation_failure(clock):
    tracker, store = _build_tracker(clock)
    session_id = _start(tracker)

    with pytest.raises(ValidationFailure):
        tracker.record_offer_event(session_id, "lowball", 100, 120)
    with pytest.raises(ValidationFailure):
        tracker.finalize(session_id, "vanished")

    assert tracker.get_session(session_id).offer_history == []
    assert store.fetch("agent-1") == []


def test_unknown_session_operations_are_noops(clock, caplog):
    tracker, store = _build_tracker(clock)

    assert tracker.record_document_event("missing", "cover_letter", "hello") is False
    assert tracker.record_offer_event("missing", "initial", 100, 120) is False
    assert tracker.update_context("missing", {"days_on_market": 3}) is False
    assert tracker.finalize("missing", "accepted") is None
    assert store.fetch("agent-1") == []
    assert any("tracker.session_not_found" in message for message in caplog.messages)


def test_update_context_merges_and_validates(clock):
    tracker, _ = _build_tracker(clock)
    session_id = _start(tracker)

    assert tracker.update_context(session_id, {"days_on_market": 12, "market_conditions": "cool"}) is True
    session = tracker.get_session(session_id)
    assert session.context.days_on_market == 12
    assert session.context.market_conditions.value == "cool"

    with pytest.raises(ValidationFailure):
        tracker.update_context(session_id, {"not_a_field": True})
    with pytest.raises(ValidationFailure):
        tracker.update_context(session_id, {"market_conditions": "scorching"})


def test_pending_outcome_keeps_session_active(clock):
    tracker, store = _build_tracker(clock)
    session_id = _start(tracker)

    assert tracker.finalize(session_id, "pending") is None

    session = tracker.get_session(session_id)
    assert session.state is SessionState.ACTIVE
    assert session.final_outcome is SessionOutcome.PENDING
    assert store.fetch("agent-1") == []


def test_accepted_outcome_persists_derived_record_and_releases_session(clock):
    tracker, store = _build_tracker(clock)
    session_id = _start(tracker)
    tracker.record_document_event(
        session_id,
        "cover_letter",
        "We love this home and it is perfect for our family. We can close quickly with an escalation clause.",
    )
    tracker.record_offer_event(session_id, "initial", 475_000, 500_000)
    tracker.record_offer_event(session_id, "counter", 490_000, 500_000)

    record = tracker.finalize(session_id, "accepted", final_amount=490_000, days_to_close=21)

    assert record is not None
    assert tracker.get_session(session_id) is None
    assert store.get(session_id) == record
    assert record.strategy.initial_offer_percentage == 95.0
    assert record.strategy.offer_position is OfferPosition.BELOW
    assert record.strategy.cover_letter_used is True
    assert record.strategy.personal_story_included is True
    assert record.strategy.escalation_clause.used is True
    assert record.strategy.tactics.quick_close is True
    assert record.strategy.communication_tone is CommunicationTone.PERSONAL
    assert record.outcome.successful is True
    assert record.outcome.final_price == 490_000
    assert record.outcome.days_to_acceptance == 21
    assert record.outcome.negotiation_rounds == 2


def test_rejected_outcome_is_unsuccessful(clock):
    tracker, _ = _build_tracker(clock)
    session_id = _start(tracker)

    record = tracker.finalize(session_id, "rejected")

    assert record.outcome.successful is False
    assert record.strategy.initial_offer_percentage == 100.0
    assert record.strategy.offer_position is OfferPosition.AT
    assert record.strategy.communication_tone is CommunicationTone.PROFESSIONAL


def test_persistence_failure_leaves_session_active_for_retry(clock):
    tracker, store = _build_tracker(clock, store=_FailingStore(clock))
    session_id = _start(tracker)

    with pytest.raises(UpstreamFailure):
        tracker.finalize(session_id, "accepted")

    session = tracker.get_session(session_id)
    assert session is not None
    assert session.state is SessionState.ACTIVE

    record = tracker.finalize(session_id, "accepted")
    assert record is not None
    assert store.get(session_id) is not None
    assert tracker.get_session(session_id) is None


def test_sweep_stale_discards_old_sessions_regardless_of_state(clock):
    tracker, _ = _build_tracker(clock)
    old = _start(tracker, "prop-old")
    tracker.finalize(old, "pending")
    clock.advance(hours=20)
    fresh = _start(tracker, "prop-new")
    clock.advance(hours=5)

    assert tracker.sweep_stale() == 1
    assert tracker.get_session(old) is None
    assert tracker.get_session(fresh) is not None
    assert tracker.sweep_stale(max_age_hours=1) == 1
    assert tracker.active_sessions() == {}


def test_flush_all_skips_sessions_with_only_offer_events(clock):
    tracker, store = _build_tracker(clock)
    with_document = _start(tracker, "prop-doc")
    tracker.record_document_event(with_document, "email", "We are flexible on closing.")
    offer_only = _start(tracker, "prop-offer")
    tracker.record_offer_event(offer_only, "initial", 400_000, 420_000)

    assert tracker.flush_all() == 1

    persisted = store.get(with_document)
    assert persisted is not None
    assert persisted.outcome is None
    assert persisted.strategy.communication_tone is CommunicationTone.WARM
    assert store.get(offer_only) is None
    assert tracker.get_session(offer_only) is not None


def test_concurrent_events_on_one_session_are_not_lost(clock):
    tracker, _ = _build_tracker(clock)
    session_id = _start(tracker)

    def _record(n: int) -> None:
        for i in range(25):
            tracker.record_offer_event(session_id, "counter", 1000 + n * 100 + i, 2000)

    threads = [threading.Thread(target=_record, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(tracker.get_session(session_id).offer_history) == 100


def test_snapshots_do_not_leak_mutations(clock):
    tracker, _ = _build_tracker(clock)
    session_id = _start(tracker)

    snapshot = tracker.get_session(session_id)
    snapshot.offer_history.append("bogus")

    assert tracker.get_session(session_id).offer_history == []
