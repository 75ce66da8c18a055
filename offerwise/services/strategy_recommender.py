"""Negotiation strategy recommendations from an agent's own history.

With enough completed negotiations the recommender mines records similar to
the target context; otherwise it falls back to fixed market, property and
competitive heuristics tagged with zero historical data points.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from offerwise.core.config import Config, get_config
from offerwise.core.enums import (
    CacheStatus,
    CommunicationTone,
    FacetKind,
    MarketCondition,
    PropertyType,
    RecommendationType,
)
from offerwise.schemas.analytics import (
    CONTINGENCY_TYPES,
    AnalyticsMetadata,
    AnalyticsResult,
    NegotiationContext,
    NegotiationRecord,
    RecommendationAlternative,
    RecommendationBasis,
    RecommendationDetail,
    RecommendationOptions,
    StrategyRecommendation,
)
from offerwise.services.cache_service import AnalyticsCache
from offerwise.services.record_store import RecordStore
from offerwise.services.success_rate_service import SuccessRateService
from offerwise.utils.clock import Clock, utcnow
from offerwise.utils.similarity import matches_context
from offerwise.utils.stats import clamp, mean, offer_consistency, sample_confidence, success_rate

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECOMMENDATIONS = 5
SPECIFIC_MAX_RECOMMENDATIONS = 10
MAX_ALTERNATIVES = 3
DEFAULT_ESCALATION_AMOUNT = 10_000.0
OFFER_FLOOR, OFFER_CEILING = 85.0, 100.0
MARKET_OFFER_ADJUSTMENT = {MarketCondition.HOT: 2.0, MarketCondition.COOL: -3.0}

OFFER_BRACKETS = (
    (85.0, 90.0, "aggressive"),
    (90.0, 95.0, "moderate"),
    (95.0, 100.0, "conservative"),
)

OFFER_FIELDS = ("property_type", "market_conditions", "price_range")
ESCALATION_FIELDS = ("property_type", "market_conditions", "multiple_offers")
PROPERTY_MARKET_FIELDS = ("property_type", "market_conditions")

FALLBACK_OFFERS = {
    MarketCondition.HOT: (98, "Hot market requires competitive offers close to asking price"),
    MarketCondition.COOL: (90, "Cool market allows for more aggressive initial offers"),
    MarketCondition.WARM: (95, "Balanced market suggests moderate initial offer"),
}
FALLBACK_CONTINGENCIES = {
    PropertyType.SINGLE_FAMILY: (
        ["inspection", "financing", "appraisal"],
        "Single family homes typically require comprehensive contingencies",
    ),
    PropertyType.CONDO: (["inspection", "financing"], "Condos usually need basic contingencies"),
    PropertyType.MULTI_FAMILY: (
        ["inspection", "financing", "appraisal"],
        "Multi-family properties require thorough due diligence",
    ),
}


@dataclass(frozen=True)
class RecommendationComputation:
    recommendations: list[StrategyRecommendation]
    metadata: AnalyticsMetadata


def recommendation_cache_key(agent_id: str, context: NegotiationContext) -> str:
    canonical = json.dumps(
        {
            "property_type": context.property_type.value,
            "market_conditions": context.market_conditions.value,
            "multiple_offers": context.multiple_offers,
            "price_range": context.price_range.model_dump(mode="json"),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]
    return f"recommendations_{agent_id}_{digest}"


def _pct(rate: float) -> int:
    return round(rate * 100)


def _rate(records: Sequence[NegotiationRecord]) -> float:
    return success_rate(sum(1 for r in records if r.is_successful), len(records))


def _alternative(strategy: str, expected: float, reasoning: str) -> RecommendationAlternative:
    return RecommendationAlternative(strategy=strategy, expected_success_rate=expected, reasoning=reasoning)


class StrategyRecommender:
    def __init__(
        self,
        analytics: SuccessRateService,
        store: RecordStore,
        cache: AnalyticsCache,
        clock: Clock = utcnow,
        config: Config | None = None,
    ) -> None:
        self._analytics = analytics
        self._store = store
        self._cache = cache
        self._clock = clock
        self._config = config or get_config()

    def minimum_data_requirements(self) -> dict[str, float]:
        return {
            "minimal": self._config.MIN_RECOMMENDATION_DATA_POINTS,
            "optimal": self._config.OPTIMAL_DATA_POINTS,
            "confidence_threshold": self._config.CONFIDENCE_THRESHOLD,
        }

    # ========== PUBLIC API ==========

    def generate_recommendations(
        self,
        agent_id: str,
        context: NegotiationContext,
        options: RecommendationOptions | None = None,
    ) -> RecommendationComputation:
        """Ranked recommendations for ``context``.

        The cache holds the full ranked list for the context; confidence
        filtering, truncation and alternative stripping are applied per call.
        """
        options = options or RecommendationOptions()
        cache_key = recommendation_cache_key(agent_id, context)

        cached = self._cache.get(cache_key, agent_id)
        if cached.hit:
            ranked = [StrategyRecommendation.model_validate(item) for item in cached.value]
            logger.info(
                "recommendations.cache_hit",
                extra={"event": "recommendations.cache_hit", "agent_id": agent_id, "cache_key": cache_key},
            )
            selected = self._select(ranked, options)
            return RecommendationComputation(
                recommendations=selected,
                metadata=AnalyticsMetadata(cache_status=CacheStatus.HIT.value, filtered_records=len(selected)),
            )

        started = time.perf_counter()
        analytics = self._analytics.compute_analytics(agent_id).result
        sufficient = analytics.total_negotiations >= self._config.MIN_RECOMMENDATION_DATA_POINTS
        if sufficient:
            ranked = self._data_driven(agent_id, context, analytics)
            message = f"Sufficient data ({analytics.total_negotiations} negotiations) for personalized recommendations"
        else:
            ranked = self._fallback(agent_id, context)
            message = f"Limited data ({analytics.total_negotiations} negotiations) - using general best practices"
        ranked.sort(key=lambda rec: rec.confidence, reverse=True)

        self._cache.set(
            cache_key,
            agent_id,
            [rec.model_dump(mode="json") for rec in ranked],
            self._config.RECOMMENDATION_CACHE_TTL_MINUTES,
        )
        selected = self._select(ranked, options)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "recommendations.generated: %s recommendations",
            len(selected),
            extra={"event": "recommendations.generated", "agent_id": agent_id, "cache_key": cache_key},
        )
        return RecommendationComputation(
            recommendations=selected,
            metadata=AnalyticsMetadata(
                total_records=analytics.total_negotiations,
                filtered_records=len(selected),
                calculation_time_ms=round(elapsed_ms, 3),
                cache_status=CacheStatus.MISS.value,
                sufficient=sufficient,
                message=message,
            ),
        )

    def generate_specific_recommendation(
        self,
        agent_id: str,
        context: NegotiationContext,
        recommendation_type: RecommendationType | str,
    ) -> StrategyRecommendation | None:
        recommendation_type = RecommendationType(recommendation_type)
        batch = self.generate_recommendations(
            agent_id,
            context,
            RecommendationOptions(max_recommendations=SPECIFIC_MAX_RECOMMENDATIONS),
        )
        return next((r for r in batch.recommendations if r.recommendation_type is recommendation_type), None)

    def find_similar(
        self,
        agent_id: str,
        context: NegotiationContext,
        fields: Iterable[str],
    ) -> list[NegotiationRecord]:
        return self._similar(self._pool(agent_id), context, fields)

    # ========== INTERNALS ==========

    def _select(self, ranked: list[StrategyRecommendation], options: RecommendationOptions) -> list[StrategyRecommendation]:
        min_confidence = options.min_confidence
        if min_confidence is None:
            min_confidence = self._config.CONFIDENCE_THRESHOLD
        limit = options.max_recommendations or DEFAULT_MAX_RECOMMENDATIONS
        selected = [rec for rec in ranked if rec.confidence >= min_confidence][:limit]
        if not options.include_alternatives:
            selected = [rec.model_copy(update={"alternatives": []}) for rec in selected]
        return selected

    def _pool(self, agent_id: str) -> list[NegotiationRecord]:
        return self._store.fetch(agent_id, limit=self._config.SIMILAR_RECORDS_LIMIT)

    @staticmethod
    def _similar(
        pool: Sequence[NegotiationRecord],
        context: NegotiationContext,
        fields: Iterable[str],
    ) -> list[NegotiationRecord]:
        fields = tuple(fields)
        return [record for record in pool if matches_context(record.context, context, fields)]

    def _build(
        self,
        agent_id: str,
        context: NegotiationContext,
        kind: RecommendationType,
        detail: RecommendationDetail,
        data_points: int,
        alternatives: Sequence[RecommendationAlternative] = (),
    ) -> StrategyRecommendation:
        generated_at: datetime = self._clock()
        return StrategyRecommendation(
            agent_id=agent_id,
            recommendation_type=kind,
            recommendation=detail,
            based_on=RecommendationBasis(
                property_type=context.property_type,
                market_conditions=context.market_conditions,
                price_range=context.price_range,
                competitive_environment=context.multiple_offers,
                historical_data_points=data_points,
            ),
            alternatives=list(alternatives)[:MAX_ALTERNATIVES],
            generated_at=generated_at,
            valid_until=generated_at + timedelta(days=self._config.RECOMMENDATION_VALIDITY_DAYS),
        )

    # ========== DATA-DRIVEN PATH ==========

    def _data_driven(
        self,
        agent_id: str,
        context: NegotiationContext,
        analytics: AnalyticsResult,
    ) -> list[StrategyRecommendation]:
        pool = self._pool(agent_id)
        candidates = (
            self._initial_offer(agent_id, context, self._similar(pool, context, OFFER_FIELDS)),
            self._escalation(agent_id, context, self._similar(pool, context, ESCALATION_FIELDS)),
            self._contingency(agent_id, context, self._similar(pool, context, PROPERTY_MARKET_FIELDS)),
            self._communication(agent_id, context, analytics, self._similar(pool, context, PROPERTY_MARKET_FIELDS)),
            self._overall(agent_id, context, analytics),
        )
        return [candidate for candidate in candidates if candidate is not None]

    def _initial_offer(
        self,
        agent_id: str,
        context: NegotiationContext,
        similar: list[NegotiationRecord],
    ) -> StrategyRecommendation | None:
        winners = [r for r in similar if r.is_successful]
        if not winners:
            return None

        percentages = [r.strategy.initial_offer_percentage for r in winners]
        adjusted = (mean(percentages) or 0.0) + MARKET_OFFER_ADJUSTMENT.get(context.market_conditions, 0.0)
        recommended = round(clamp(adjusted, OFFER_FLOOR, OFFER_CEILING))
        expected = success_rate(len(winners), len(similar))
        confidence = offer_consistency(percentages) * sample_confidence(len(winners), self._config.OPTIMAL_DATA_POINTS)

        alternatives = []
        for low, high, label in OFFER_BRACKETS:
            bracket = [r for r in similar if low <= r.strategy.initial_offer_percentage < high]
            if bracket:
                alternatives.append(
                    _alternative(f"{label}_offer", _rate(bracket), f"{label} approach ({low:g}-{high:g}% of asking price)")
                )

        detail = RecommendationDetail(
            strategy="initial_offer_percentage",
            value=recommended,
            confidence=confidence,
            reasoning=(
                f"Based on {len(winners)} similar successful negotiations, recommend offering {recommended}% "
                f"of asking price. This strategy has shown {_pct(expected)}% success rate in similar contexts."
            ),
            expected_success_rate=expected,
        )
        return self._build(agent_id, context, RecommendationType.INITIAL_OFFER, detail, len(similar), alternatives)

    def _escalation(
        self,
        agent_id: str,
        context: NegotiationContext,
        similar: list[NegotiationRecord],
    ) -> StrategyRecommendation | None:
        if not similar:
            return None

        with_clause = [r for r in similar if r.strategy.escalation_clause.used]
        without_clause = [r for r in similar if not r.strategy.escalation_clause.used]
        with_rate, without_rate = _rate(with_clause), _rate(without_clause)
        use_clause = with_rate > without_rate

        amounts = [
            r.strategy.escalation_clause.max_amount
            for r in with_clause
            if r.is_successful and r.strategy.escalation_clause.max_amount
        ]
        cap = mean(amounts) or DEFAULT_ESCALATION_AMOUNT

        if use_clause:
            reasoning = (
                f"Include escalation clause up to ${cap:,.0f}. Success rate with escalation: "
                f"{_pct(with_rate)}% vs {_pct(without_rate)}% without."
            )
            alternative = _alternative("no_escalation_clause", without_rate, "Alternative approach without escalation clause")
        else:
            reasoning = (
                f"Avoid escalation clause in this context. Success rate without escalation: "
                f"{_pct(without_rate)}% vs {_pct(with_rate)}% with escalation."
            )
            alternative = _alternative("escalation_clause", with_rate, "Alternative approach with escalation clause")

        detail = RecommendationDetail(
            strategy="escalation_clause",
            value={"use": use_clause, "max_amount": cap if use_clause else None},
            confidence=sample_confidence(len(similar), self._config.OPTIMAL_DATA_POINTS) * 0.8,
            reasoning=reasoning,
            expected_success_rate=with_rate if use_clause else without_rate,
        )
        return self._build(agent_id, context, RecommendationType.ESCALATION, detail, len(similar), [alternative])

    def _contingency(
        self,
        agent_id: str,
        context: NegotiationContext,
        similar: list[NegotiationRecord],
    ) -> StrategyRecommendation | None:
        if not similar:
            return None

        analysis: list[tuple[str, float, bool]] = []
        for name in CONTINGENCY_TYPES:
            with_it = [r for r in similar if getattr(r.strategy.contingencies, name)]
            without_it = [r for r in similar if not getattr(r.strategy.contingencies, name)]
            with_rate = _rate(with_it)
            recommended = with_rate > _rate(without_it) if with_it and without_it else True
            analysis.append((name, with_rate, recommended))

        included = [name for name, _, recommended in analysis if recommended]
        included_rates = [rate for _, rate, recommended in analysis if recommended]
        detail = RecommendationDetail(
            strategy="contingency_selection",
            value=included,
            confidence=sample_confidence(len(similar), self._config.OPTIMAL_DATA_POINTS) * 0.7,
            reasoning=(
                f"Based on {len(similar)} similar cases, recommend including: {', '.join(included)} contingencies. "
                "These have shown better success rates in similar contexts."
            ),
            expected_success_rate=sum(included_rates) / max(1, len(included_rates)),
        )
        alternatives = [
            _alternative(f"include_{name}_contingency", rate, f"Alternative: Include {name} contingency")
            for name, rate, recommended in analysis
            if not recommended
        ]
        return self._build(agent_id, context, RecommendationType.CONTINGENCY, detail, len(similar), alternatives)

    def _communication(
        self,
        agent_id: str,
        context: NegotiationContext,
        analytics: AnalyticsResult,
        similar: list[NegotiationRecord],
    ) -> StrategyRecommendation | None:
        if not similar:
            return None
        if not any(s.strategy_type is FacetKind.COMMUNICATION_TONE for s in analytics.by_strategy):
            return None

        tones: dict[str, list[NegotiationRecord]] = {}
        for record in similar:
            tones.setdefault(record.strategy.communication_tone.value, []).append(record)

        best_tone, best_rate = CommunicationTone.PROFESSIONAL.value, 0.0
        for tone, group in tones.items():
            rate = _rate(group)
            if len(group) >= 2 and rate > best_rate:
                best_tone, best_rate = tone, rate

        letter_rate = _rate([r for r in similar if r.strategy.cover_letter_used])
        no_letter_rate = _rate([r for r in similar if not r.strategy.cover_letter_used])
        use_letter = letter_rate > no_letter_rate

        detail = RecommendationDetail(
            strategy="communication_approach",
            value={
                "tone": best_tone,
                "cover_letter": use_letter,
                "personal_story": use_letter and context.property_type is PropertyType.SINGLE_FAMILY,
            },
            confidence=sample_confidence(len(similar), self._config.OPTIMAL_DATA_POINTS) * 0.8,
            reasoning=(
                f"Use {best_tone} communication tone ({_pct(best_rate)}% success rate). "
                f"{'Include' if use_letter else 'Skip'} cover letter "
                f"({_pct(letter_rate if use_letter else no_letter_rate)}% success rate)."
            ),
            expected_success_rate=best_rate,
        )
        alternatives = [
            _alternative(f"{tone}_communication", _rate(group), f"Alternative: Use {tone} communication tone")
            for tone, group in tones.items()
            if tone != best_tone
        ]
        return self._build(agent_id, context, RecommendationType.COMMUNICATION, detail, len(similar), alternatives)

    def _overall(
        self,
        agent_id: str,
        context: NegotiationContext,
        analytics: AnalyticsResult,
    ) -> StrategyRecommendation | None:
        if not analytics.by_strategy:
            return None

        top = analytics.by_strategy[0]
        market = next((m for m in analytics.by_market_conditions if m.market_condition == context.market_conditions), None)
        has_property = any(p.property_type == context.property_type for p in analytics.by_property_type)
        has_competitive = any(
            c.multiple_offers == context.multiple_offers for c in analytics.by_competitive_environment
        )
        terms = (top.confidence, 0.8 if market else 0.5, 0.8 if has_property else 0.5, 0.8 if has_competitive else 0.5)
        market_strategy = market.recommended_strategy if market else None

        detail = RecommendationDetail(
            strategy="comprehensive_approach",
            value={
                "primary_strategy": top.strategy_type.value,
                "market_adjustment": market_strategy or "standard",
                "competitive_response": "aggressive" if context.multiple_offers else "standard",
                "timeline": "urgent" if context.market_conditions is MarketCondition.HOT else "standard",
            },
            confidence=min(sum(terms) / len(terms), 1.0),
            reasoning=(
                f"Your most successful strategy is {top.strategy_type.value} ({_pct(top.success_rate)}% success rate). "
                f"In {context.market_conditions.value} markets like this, {market_strategy or 'standard approach'} "
                "works best. "
                + (
                    "With multiple offers expected, be prepared to act quickly and competitively."
                    if context.multiple_offers
                    else "Single offer situation allows for more deliberate negotiation."
                )
            ),
            expected_success_rate=top.success_rate,
        )
        alternatives = [
            _alternative(s.label, s.success_rate, f"Alternative: Focus on {s.strategy_type.value} approach")
            for s in analytics.by_strategy[1:3]
        ]
        return self._build(
            agent_id, context, RecommendationType.OVERALL, detail, analytics.total_negotiations, alternatives
        )

    # ========== FALLBACK PATH ==========

    def _fallback(self, agent_id: str, context: NegotiationContext) -> list[StrategyRecommendation]:
        offer, offer_reason = FALLBACK_OFFERS.get(context.market_conditions, (95, "Standard market approach"))
        contingencies, contingency_reason = FALLBACK_CONTINGENCIES.get(
            context.property_type,
            (["inspection", "financing"], "Standard contingencies for property type"),
        )
        competitive = context.multiple_offers

        fixed: list[tuple[RecommendationType, dict[str, Any], list[RecommendationAlternative]]] = [
            (
                RecommendationType.INITIAL_OFFER,
                {
                    "strategy": "market_based_offer",
                    "value": offer,
                    "confidence": 0.7,
                    "reasoning": offer_reason,
                    "expected_success_rate": 0.65,
                },
                [
                    _alternative("aggressive_offer", 0.5, "More aggressive approach with lower initial offer"),
                    _alternative("conservative_offer", 0.8, "Conservative approach with higher initial offer"),
                ],
            ),
            (
                RecommendationType.CONTINGENCY,
                {
                    "strategy": "property_based_contingencies",
                    "value": contingencies,
                    "confidence": 0.75,
                    "reasoning": contingency_reason,
                    "expected_success_rate": 0.7,
                },
                [
                    _alternative("minimal_contingencies", 0.6, "Minimal contingencies for competitive advantage"),
                    _alternative("comprehensive_contingencies", 0.8, "Comprehensive contingencies for maximum protection"),
                ],
            ),
            (
                RecommendationType.ESCALATION,
                {
                    "strategy": "competitive_escalation",
                    "value": competitive,
                    "confidence": 0.7,
                    "reasoning": (
                        "Multiple offers expected - escalation clause recommended for competitive advantage"
                        if competitive
                        else "Single offer situation - escalation clause not necessary"
                    ),
                    "expected_success_rate": 0.75 if competitive else 0.65,
                },
                [
                    _alternative("no_escalation", 0.6, "Alternative: Risk no escalation clause")
                    if competitive
                    else _alternative("include_escalation", 0.7, "Alternative: Include escalation clause for safety")
                ],
            ),
            (
                RecommendationType.OVERALL,
                {
                    "strategy": "conservative_approach",
                    "value": {
                        "communication_tone": CommunicationTone.PROFESSIONAL.value,
                        "cover_letter": True,
                        "personal_story": context.property_type is PropertyType.SINGLE_FAMILY,
                        "timeline": "standard",
                    },
                    "confidence": 0.8,
                    "reasoning": (
                        "Conservative approach with professional communication, cover letter, and appropriate "
                        "timeline. This balanced strategy works well when historical data is limited."
                    ),
                    "expected_success_rate": 0.7,
                },
                [
                    _alternative("aggressive_approach", 0.5, "More aggressive approach with higher risk/reward"),
                    _alternative("ultra_conservative", 0.8, "Ultra-conservative approach with minimal risk"),
                ],
            ),
        ]
        return [
            self._build(agent_id, context, kind, RecommendationDetail(**detail), 0, alternatives)
            for kind, detail, alternatives in fixed
        ]
