"""Tracking session manager for negotiations still in progress."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import timedelta
from threading import Lock
from typing import Any

from pydantic import ValidationError

from offerwise.auth.agent_context import IdentityProvider, require_agent
from offerwise.core.enums import (
    CommunicationTone,
    MarketCondition,
    OfferEventKind,
    OfferPosition,
    PropertyType,
    SessionOutcome,
    SessionState,
    SignalCategory,
)
from offerwise.core.exceptions import OfferWiseException, SessionNotFound, UpstreamFailure, ValidationFailure
from offerwise.schemas.analytics import (
    CounterOfferPattern,
    EscalationClause,
    NegotiationContext,
    NegotiationOutcome,
    NegotiationRecord,
    NegotiationStrategy,
    PriceRange,
    StrategySignal,
    Tactics,
)
from offerwise.schemas.tracking import (
    ContextualFactors,
    DocumentEvent,
    OfferEvent,
    OutcomeEvent,
    TrackingSession,
)
from offerwise.services.record_store import RecordStore
from offerwise.utils.clock import Clock, utcnow
from offerwise.utils.ids import new_session_id
from offerwise.utils.validators import sanitize_text

logger = logging.getLogger(__name__)

KEYWORD_TABLE: dict[SignalCategory, tuple[str, ...]] = {
    SignalCategory.EMOTIONAL: ("personal", "story", "family", "dream", "love", "perfect", "emotional"),
    SignalCategory.COMPETITIVE: ("best", "highest", "compete", "better", "superior", "outbid", "competitive"),
    SignalCategory.VALUE_ADD: ("value", "benefit", "advantage", "improvement", "enhancement", "upgrade"),
    SignalCategory.PRICE_JUSTIFICATION: ("price", "cost", "worth", "value", "market", "comparable", "fair"),
    SignalCategory.TIME_CONSTRAINT: ("urgent", "deadline", "quickly", "soon", "time", "immediate", "fast"),
    SignalCategory.FLEXIBILITY: ("flexible", "negotiate", "work with", "accommodate", "adjust", "open to"),
}

SENTENCE_BREAK = re.compile(r"[.!?]+")
MAX_EVIDENCE_SENTENCES = 3

# Signal category -> tone, in tie-break order.
TONE_BY_SIGNAL = (
    (SignalCategory.EMOTIONAL, CommunicationTone.PERSONAL),
    (SignalCategory.COMPETITIVE, CommunicationTone.CONFIDENT),
    (SignalCategory.FLEXIBILITY, CommunicationTone.WARM),
)

COVER_LETTER_KIND = "cover_letter"
CONTEXT_FIELDS = frozenset(NegotiationContext.model_fields)


def _evidence(text: str, keywords: list[str]) -> str:
    sentences = []
    for sentence in SENTENCE_BREAK.split(text):
        lowered = sentence.lower()
        if any(keyword in lowered for keyword in keywords):
            sentences.append(sentence.strip())
    return ". ".join(sentences[:MAX_EVIDENCE_SENTENCES])


def extract_signals(text: str) -> list[StrategySignal]:
    """Scan free text against the keyword table.

    A category is emitted only when at least one of its keywords occurs.
    Confidence is the matched share of the category's keywords; the result
    is ordered by confidence, highest first, with table order kept on ties.
    """
    lowered = text.lower()
    signals = []
    for category, keywords in KEYWORD_TABLE.items():
        matched = [keyword for keyword in keywords if keyword in lowered]
        if not matched:
            continue
        signals.append(
            StrategySignal(
                category=category,
                confidence=min(len(matched) / len(keywords), 1.0),
                evidence=_evidence(text, matched),
                keywords=matched,
            )
        )
    return sorted(signals, key=lambda signal: signal.confidence, reverse=True)


def _initial_offer_percentage(session: TrackingSession) -> float:
    for offer in session.offer_history:
        if offer.kind is OfferEventKind.INITIAL and offer.listing_price > 0:
            return offer.amount / offer.listing_price * 100
    for document in session.document_history:
        if document.offer_amount and document.listing_price:
            return document.offer_amount / document.listing_price * 100
    return 100.0


def _offer_position(percentage: float) -> OfferPosition:
    rounded = round(percentage, 2)
    if rounded < 100:
        return OfferPosition.BELOW
    if rounded > 100:
        return OfferPosition.ABOVE
    return OfferPosition.AT


def _dominant_tone(session: TrackingSession) -> CommunicationTone:
    weights: dict[SignalCategory, float] = {}
    for document in session.document_history:
        for signal in document.signals:
            weights[signal.category] = weights.get(signal.category, 0.0) + signal.confidence

    best_tone = CommunicationTone.PROFESSIONAL
    best_weight = 0.0
    for category, tone in TONE_BY_SIGNAL:
        weight = weights.get(category, 0.0)
        if weight > best_weight:
            best_weight = weight
            best_tone = tone
    return best_tone


def derive_strategy(session: TrackingSession) -> NegotiationStrategy:
    """Summarise the approach taken from the session's document and offer history."""
    documents = session.document_history
    percentage = _initial_offer_percentage(session)
    counters = sum(1 for offer in session.offer_history if offer.kind is OfferEventKind.COUNTER)

    return NegotiationStrategy(
        initial_offer_percentage=round(percentage, 2),
        offer_position=_offer_position(percentage),
        escalation_clause=EscalationClause(used=any("escalation" in doc.text.lower() for doc in documents)),
        communication_tone=_dominant_tone(session),
        cover_letter_used=any(doc.kind == COVER_LETTER_KIND for doc in documents),
        personal_story_included=any(doc.has_signal(SignalCategory.EMOTIONAL) for doc in documents),
        tactics=Tactics(quick_close=any(doc.has_signal(SignalCategory.TIME_CONSTRAINT) for doc in documents)),
        counter_offer_pattern=CounterOfferPattern(negotiation_rounds=counters + 1),
    )


def derive_outcome(session: TrackingSession) -> NegotiationOutcome | None:
    if session.final_outcome is None or not session.final_outcome.is_terminal:
        return None
    last = session.outcome_history[-1]
    counters = sum(1 for offer in session.offer_history if offer.kind is OfferEventKind.COUNTER)
    return NegotiationOutcome(
        successful=session.final_outcome is SessionOutcome.ACCEPTED,
        final_price=last.final_amount,
        days_to_acceptance=last.days_to_close,
        negotiation_rounds=counters + 1,
        lesson_learned=last.notes,
    )


def build_context(
    property_type: PropertyType,
    market_condition: MarketCondition,
    factors: ContextualFactors,
) -> NegotiationContext:
    values: dict[str, Any] = {
        "property_type": property_type,
        "market_conditions": market_condition,
        "price_range": factors.price_range or PriceRange(min=0, max=0, label="Unknown"),
        "days_on_market": factors.days_on_market or 0,
        "multiple_offers": bool(factors.multiple_offers),
        "competing_offers": factors.competing_offers or 0,
        "listing_agent": factors.seller_agent or "",
        "buyer_agent": factors.buyer_agent or "",
    }
    if factors.location is not None:
        values["location"] = factors.location
    if factors.season is not None:
        values["seasonality"] = factors.season
    if factors.transaction_type is not None:
        values["transaction_type"] = factors.transaction_type
    if factors.market_trend is not None:
        values["market_trend"] = factors.market_trend
    return NegotiationContext(**values)


class NegotiationTracker:
    """Owns in-progress sessions and finalizes them into persisted records.

    Mutations to the same session id are serialised by a per-session lock;
    different sessions proceed independently.
    """

    def __init__(
        self,
        store: RecordStore,
        identity: IdentityProvider,
        clock: Clock = utcnow,
        max_age_hours: int = 24,
    ) -> None:
        self._store = store
        self._identity = identity
        self._clock = clock
        self._max_age_hours = max_age_hours
        self._sessions: dict[str, TrackingSession] = {}
        self._locks: dict[str, Lock] = {}
        self._registry_lock = Lock()

    extract_signals = staticmethod(extract_signals)

    @contextmanager
    def _locked(self, session_id: str) -> Iterator[TrackingSession]:
        """Hold the session's lock and yield it; raise SessionNotFound for an unknown id."""
        with self._registry_lock:
            lock = self._locks.get(session_id)
        if lock is None:
            raise SessionNotFound(session_id)
        with lock:
            with self._registry_lock:
                session = self._sessions.get(session_id)
            # released by a concurrent finalize or sweep while we waited
            if session is None:
                raise SessionNotFound(session_id)
            yield session

    def _warn_missing(self, session_id: str, operation: str) -> None:
        logger.warning(
            "tracker.session_not_found",
            extra={"event": "tracker.session_not_found", "session_id": session_id, "operation": operation},
        )

    def _drop(self, session_id: str) -> None:
        with self._registry_lock:
            self._sessions.pop(session_id, None)
            self._locks.pop(session_id, None)

    def start_session(
        self,
        property_id: str,
        property_type: PropertyType | str,
        market_condition: MarketCondition | str,
        contextual_factors: ContextualFactors | Mapping[str, Any] | None = None,
    ) -> str:
        identity = require_agent(self._identity)
        try:
            factors = ContextualFactors.model_validate(contextual_factors or {})
            context = build_context(PropertyType(property_type), MarketCondition(market_condition), factors)
        except (ValidationError, ValueError) as exc:
            raise ValidationFailure("Invalid tracking context.", errors=[str(exc)]) from exc

        now = self._clock()
        base_id = new_session_id(property_id, now)
        with self._registry_lock:
            # same property started twice within one millisecond
            session_id, suffix = base_id, 1
            while session_id in self._sessions:
                suffix += 1
                session_id = f"{base_id}-{suffix}"
            self._sessions[session_id] = TrackingSession(
                session_id=session_id,
                agent_id=identity.agent_id,
                property_id=property_id,
                context=context,
                created_at=now,
                updated_at=now,
            )
            self._locks[session_id] = Lock()
        logger.info(
            "tracker.session_started",
            extra={"event": "tracker.session_started", "session_id": session_id, "agent_id": identity.agent_id},
        )
        return session_id

    def record_document_event(
        self,
        session_id: str,
        kind: str,
        text: str,
        offer_amount: float | None = None,
        listing_price: float | None = None,
    ) -> bool:
        cleaned = sanitize_text(text)
        try:
            with self._locked(session_id) as session:
                now = self._clock()
                session.document_history.append(
                    DocumentEvent(
                        kind=kind,
                        text=cleaned,
                        signals=extract_signals(cleaned),
                        occurred_at=now,
                        offer_amount=offer_amount,
                        listing_price=listing_price,
                    )
                )
                session.updated_at = now
        except SessionNotFound:
            self._warn_missing(session_id, "record_document_event")
            return False
        logger.info("tracker.document_recorded", extra={"event": "tracker.document_recorded", "session_id": session_id})
        return True

    def record_offer_event(
        self,
        session_id: str,
        kind: OfferEventKind | str,
        amount: float,
        listing_price: float,
        response_time: float | None = None,
        notes: str | None = None,
    ) -> bool:
        try:
            offer_kind = OfferEventKind(kind)
        except ValueError as exc:
            raise ValidationFailure("Invalid offer event kind.", errors=[str(exc)]) from exc
        try:
            with self._locked(session_id) as session:
                now = self._clock()
                session.offer_history.append(
                    OfferEvent(
                        kind=offer_kind,
                        amount=amount,
                        listing_price=listing_price,
                        occurred_at=now,
                        response_time=response_time,
                        notes=notes,
                    )
                )
                session.updated_at = now
        except SessionNotFound:
            self._warn_missing(session_id, "record_offer_event")
            return False
        logger.info("tracker.offer_recorded", extra={"event": "tracker.offer_recorded", "session_id": session_id})
        return True

    def update_context(self, session_id: str, partial_context: Mapping[str, Any]) -> bool:
        """Shallow-merge ``partial_context`` into the session context."""
        unknown = set(partial_context) - CONTEXT_FIELDS
        if unknown:
            raise ValidationFailure(f"Unknown context fields: {', '.join(sorted(unknown))}")
        try:
            with self._locked(session_id) as session:
                merged = session.context.model_dump()
                merged.update(partial_context)
                try:
                    session.context = NegotiationContext.model_validate(merged)
                except ValidationError as exc:
                    raise ValidationFailure("Invalid context update.", errors=[str(exc)]) from exc
                session.updated_at = self._clock()
        except SessionNotFound:
            self._warn_missing(session_id, "update_context")
            return False
        logger.info("tracker.context_updated", extra={"event": "tracker.context_updated", "session_id": session_id})
        return True

    def finalize(
        self,
        session_id: str,
        outcome: SessionOutcome | str,
        final_amount: float | None = None,
        days_to_close: float | None = None,
        notes: str | None = None,
    ) -> NegotiationRecord | None:
        """Record an outcome; terminal outcomes persist the session and release it.

        Returns the persisted record, or None for a pending outcome or an
        unknown session. A failed write leaves the session active in memory
        so finalization can be retried.
        """
        try:
            resolved = SessionOutcome(outcome)
        except ValueError as exc:
            raise ValidationFailure("Invalid session outcome.", errors=[str(exc)]) from exc
        try:
            with self._locked(session_id) as session:
                now = self._clock()
                session.outcome_history.append(
                    OutcomeEvent(
                        outcome=resolved,
                        occurred_at=now,
                        final_amount=final_amount,
                        days_to_close=days_to_close,
                        notes=notes,
                    )
                )
                session.final_outcome = resolved
                session.updated_at = now

                if not resolved.is_terminal:
                    logger.info(
                        "tracker.outcome_pending",
                        extra={"event": "tracker.outcome_pending", "session_id": session_id},
                    )
                    return None

                session.state = SessionState.FINALIZING
                record = self._persist(session)
                self._drop(session_id)
        except SessionNotFound:
            self._warn_missing(session_id, "finalize")
            return None
        logger.info(
            "tracker.session_persisted",
            extra={"event": "tracker.session_persisted", "session_id": session_id, "agent_id": record.agent_id},
        )
        return record

    def _persist(self, session: TrackingSession) -> NegotiationRecord:
        record = NegotiationRecord(
            id=session.session_id,
            agent_id=session.agent_id,
            client_id=session.property_id,
            property_id=session.property_id,
            negotiation_id=session.session_id,
            context=session.context,
            strategy=derive_strategy(session),
            outcome=derive_outcome(session),
            created_at=session.created_at,
            updated_at=self._clock(),
        )
        try:
            if self._store.get(record.id) is not None:
                saved = self._store.update(
                    record.id,
                    {"context": record.context, "strategy": record.strategy, "outcome": record.outcome},
                )
            else:
                saved = self._store.create(record)
        except OfferWiseException:
            session.state = SessionState.ACTIVE
            logger.exception("tracker.persist_failed", extra={"event": "tracker.persist_failed", "session_id": session.session_id})
            raise
        except Exception as exc:
            session.state = SessionState.ACTIVE
            logger.exception("tracker.persist_failed", extra={"event": "tracker.persist_failed", "session_id": session.session_id})
            raise UpstreamFailure("Failed to persist negotiation record.") from exc
        session.state = SessionState.PERSISTED
        return saved

    def sweep_stale(self, max_age_hours: int | None = None) -> int:
        """Discard sessions created before the age threshold, whatever their state."""
        hours = self._max_age_hours if max_age_hours is None else max_age_hours
        threshold = self._clock() - timedelta(hours=hours)
        with self._registry_lock:
            stale = [sid for sid, session in self._sessions.items() if session.created_at < threshold]

        removed = 0
        for session_id in stale:
            try:
                with self._locked(session_id) as session:
                    session.state = SessionState.DISCARDED
                    self._drop(session_id)
                    removed += 1
            except SessionNotFound:
                continue
            logger.info("tracker.session_discarded", extra={"event": "tracker.session_discarded", "session_id": session_id})
        return removed

    def flush_all(self) -> int:
        """Persist every session that has at least one document event.

        Sessions holding only offer events stay in memory and are never
        written by this path; their count is logged.
        """
        with self._registry_lock:
            candidates = list(self._sessions.items())

        flushable = [sid for sid, session in candidates if session.document_history]
        skipped = len(candidates) - len(flushable)
        if skipped:
            logger.info(
                "tracker.flush_skipped_offer_only: %s",
                skipped,
                extra={"event": "tracker.flush_skipped_offer_only"},
            )

        persisted = 0
        failures = 0
        for session_id in flushable:
            try:
                with self._locked(session_id) as session:
                    session.state = SessionState.FINALIZING
                    try:
                        self._persist(session)
                    except OfferWiseException:
                        failures += 1
                        continue
                    self._drop(session_id)
                    persisted += 1
            except SessionNotFound:
                continue

        logger.info("tracker.flushed: %s", persisted, extra={"event": "tracker.flushed"})
        if failures:
            raise UpstreamFailure(f"Failed to flush {failures} of {len(flushable)} sessions.")
        return persisted

    def get_session(self, session_id: str) -> TrackingSession | None:
        with self._registry_lock:
            session = self._sessions.get(session_id)
            return session.snapshot() if session is not None else None

    def active_sessions(self) -> dict[str, TrackingSession]:
        with self._registry_lock:
            return {sid: session.snapshot() for sid, session in self._sessions.items()}
