"""Public operation boundary for negotiation tracking, analytics and recommendations.

Every operation returns an ``OperationResult``. Known failures keep their
error code; anything unexpected is logged and reported as ``internal_error``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError

from offerwise.auth.agent_context import ContextIdentityProvider, IdentityProvider
from offerwise.core.config import Config, get_config
from offerwise.core.enums import OfferEventKind, ReportKind, SessionOutcome
from offerwise.core.exceptions import OfferWiseException, ValidationFailure
from offerwise.schemas.analytics import AnalyticsQuery, NegotiationContext, RecommendationOptions
from offerwise.schemas.common import OperationResult
from offerwise.schemas.tracking import ContextualFactors
from offerwise.services.cache_service import AnalyticsCache, SQLAnalyticsCache
from offerwise.services.negotiation_tracker import NegotiationTracker
from offerwise.services.record_store import RecordStore, SessionScope, SQLRecordStore
from offerwise.services.report_service import generate_report
from offerwise.services.strategy_recommender import StrategyRecommender
from offerwise.services.success_rate_service import SuccessRateService
from offerwise.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

HEALTH_SCORES = {"healthy": 100, "limited": 50, "insufficient": 0}


def _parse(model: type, payload: Any, label: str) -> Any:
    if payload is None or isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailure(f"Invalid {label}.", errors=[err["msg"] for err in exc.errors()]) from exc


class NegotiationAnalyticsService:
    """Wires the tracker, aggregator and recommender over one store and cache."""

    def __init__(
        self,
        store: RecordStore,
        cache: AnalyticsCache,
        identity: IdentityProvider,
        clock: Clock = utcnow,
        config: Config | None = None,
    ) -> None:
        self.config = config or get_config()
        self.clock = clock
        self.tracker = NegotiationTracker(store, identity, clock=clock, max_age_hours=self.config.SESSION_MAX_AGE_HOURS)
        self.success_rates = SuccessRateService(store, cache, clock=clock, config=self.config)
        self.recommender = StrategyRecommender(self.success_rates, store, cache, clock=clock, config=self.config)
        self._cache = cache

    def _guard(self, event: str, operation: Callable[[], OperationResult], **log_fields: Any) -> OperationResult:
        try:
            return operation()
        except ValidationFailure as exc:
            logger.warning("%s.invalid: %s", event, exc, extra={"event": f"{event}.invalid", **log_fields})
            return OperationResult.fail(str(exc), exc.error_code, errors=exc.errors)
        except OfferWiseException as exc:
            logger.warning("%s.failed: %s", event, exc, extra={"event": f"{event}.failed", **log_fields})
            return OperationResult.fail(str(exc), exc.error_code)
        except Exception as exc:
            logger.exception("%s.unexpected_error", event, extra={"event": f"{event}.unexpected_error", **log_fields})
            return OperationResult.fail(str(exc) or exc.__class__.__name__)

    # ========== TRACKING ==========

    def start_tracking(
        self,
        property_id: str,
        property_type: str,
        market_condition: str,
        contextual_factors: ContextualFactors | Mapping[str, Any] | None = None,
    ) -> OperationResult:
        def run() -> OperationResult:
            session_id = self.tracker.start_session(property_id, property_type, market_condition, contextual_factors)
            return OperationResult.ok({"session_id": session_id})

        return self._guard("tracking.start", run)

    def record_document_event(
        self,
        session_id: str,
        kind: str,
        text: str,
        offer_amount: float | None = None,
        listing_price: float | None = None,
    ) -> OperationResult:
        def run() -> OperationResult:
            recorded = self.tracker.record_document_event(session_id, kind, text, offer_amount, listing_price)
            return OperationResult.ok({"recorded": recorded})

        return self._guard("tracking.document", run, session_id=session_id)

    def record_offer_event(
        self,
        session_id: str,
        kind: OfferEventKind | str,
        amount: float,
        listing_price: float,
        response_time: float | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        def run() -> OperationResult:
            recorded = self.tracker.record_offer_event(session_id, kind, amount, listing_price, response_time, notes)
            return OperationResult.ok({"recorded": recorded})

        return self._guard("tracking.offer", run, session_id=session_id)

    def update_context(self, session_id: str, partial_context: Mapping[str, Any]) -> OperationResult:
        def run() -> OperationResult:
            return OperationResult.ok({"updated": self.tracker.update_context(session_id, partial_context)})

        return self._guard("tracking.context", run, session_id=session_id)

    def finalize_outcome(
        self,
        session_id: str,
        outcome: SessionOutcome | str,
        final_amount: float | None = None,
        days_to_close: float | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        def run() -> OperationResult:
            record = self.tracker.finalize(session_id, outcome, final_amount, days_to_close, notes)
            return OperationResult.ok(
                record.model_dump(mode="json") if record else None,
                persisted=record is not None,
            )

        return self._guard("tracking.finalize", run, session_id=session_id)

    def sweep_stale_sessions(self, max_age_hours: int | None = None) -> OperationResult:
        return self._guard("tracking.sweep", lambda: OperationResult.ok({"removed": self.tracker.sweep_stale(max_age_hours)}))

    def flush_sessions(self) -> OperationResult:
        return self._guard("tracking.flush", lambda: OperationResult.ok({"persisted": self.tracker.flush_all()}))

    # ========== ANALYTICS ==========

    def compute_analytics(self, agent_id: str, query: AnalyticsQuery | Mapping[str, Any] | None = None) -> OperationResult:
        def run() -> OperationResult:
            computation = self.success_rates.compute_analytics(agent_id, _parse(AnalyticsQuery, query, "analytics query"))
            return OperationResult.ok(
                computation.result.model_dump(mode="json"),
                **computation.metadata.model_dump(),
            )

        return self._guard("analytics.compute", run, agent_id=agent_id)

    def generate_report(
        self,
        kind: ReportKind | str,
        agent_id: str,
        query: AnalyticsQuery | Mapping[str, Any] | None = None,
    ) -> OperationResult:
        def run() -> OperationResult:
            try:
                report_kind = ReportKind(kind)
            except ValueError as exc:
                raise ValidationFailure(f"Unknown report kind: {kind}") from exc
            parsed = _parse(AnalyticsQuery, query, "analytics query")
            computation = self.success_rates.compute_analytics(agent_id, parsed)
            report = generate_report(report_kind, computation.result, parsed, clock=self.clock)
            return OperationResult.ok(report.model_dump(mode="json"), **computation.metadata.model_dump())

        return self._guard("analytics.report", run, agent_id=agent_id)

    def check_data_sufficiency(self, agent_id: str) -> OperationResult:
        def run() -> OperationResult:
            return OperationResult.ok(self.success_rates.check_data_sufficiency(agent_id).model_dump())

        return self._guard("analytics.sufficiency", run, agent_id=agent_id)

    def clear_cache(self, agent_id: str) -> OperationResult:
        """Drop every cached analytics and recommendation entry for the agent."""

        def run() -> OperationResult:
            return OperationResult.ok({"removed": self.success_rates.clear_cache(agent_id)})

        return self._guard("analytics.clear_cache", run, agent_id=agent_id)

    def health_status(self, agent_id: str) -> OperationResult:
        def run() -> OperationResult:
            sufficiency = self.success_rates.check_data_sufficiency(agent_id)
            if sufficiency.sufficient:
                status = "healthy"
            elif sufficiency.current_count > 0:
                status = "limited"
            else:
                status = "insufficient"
            return OperationResult.ok(
                {
                    "status": status,
                    "health_score": HEALTH_SCORES[status],
                    "data_sufficiency": sufficiency.model_dump(),
                    "active_sessions": len(self.tracker.active_sessions()),
                    "timestamp": self.clock().isoformat(),
                }
            )

        return self._guard("analytics.health", run, agent_id=agent_id)

    # ========== RECOMMENDATIONS ==========

    def generate_recommendations(
        self,
        agent_id: str,
        context: NegotiationContext | Mapping[str, Any],
        options: RecommendationOptions | Mapping[str, Any] | None = None,
    ) -> OperationResult:
        def run() -> OperationResult:
            batch = self.recommender.generate_recommendations(
                agent_id,
                _parse(NegotiationContext, context, "negotiation context"),
                _parse(RecommendationOptions, options, "recommendation options"),
            )
            return OperationResult.ok(
                [rec.model_dump(mode="json") for rec in batch.recommendations],
                **batch.metadata.model_dump(),
            )

        return self._guard("recommendations.generate", run, agent_id=agent_id)


def create_analytics_service(
    config: Config | None = None,
    session_scope: SessionScope | None = None,
    identity: IdentityProvider | None = None,
    clock: Clock = utcnow,
) -> NegotiationAnalyticsService:
    """Build the service over the SQL-backed store and cache."""
    config = config or get_config()
    cache = SQLAnalyticsCache(session_scope=session_scope, clock=clock)
    store = SQLRecordStore(session_scope=session_scope, cache=cache, clock=clock)
    return NegotiationAnalyticsService(
        store,
        cache,
        identity or ContextIdentityProvider(),
        clock=clock,
        config=config,
    )
