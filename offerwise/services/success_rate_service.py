"""Success-rate aggregation over historical negotiation records.

Every breakdown is a pure function of an immutable record slice, so the
dimension passes can run concurrently and merge into one result.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from offerwise.core.config import Config, get_config
from offerwise.core.enums import CacheStatus, CommunicationTone, FacetKind, OfferPosition, TrendDirection
from offerwise.core.exceptions import ValidationFailure
from offerwise.schemas.analytics import (
    AnalyticsDataRange,
    AnalyticsFilters,
    AnalyticsMetadata,
    AnalyticsQuery,
    AnalyticsResult,
    CompetitiveSuccessRate,
    DataSufficiency,
    DateRange,
    MarketConditionSuccessRate,
    NegotiationRecord,
    PerformanceTrend,
    PriceRange,
    PriceRangeSuccessRate,
    PropertyTypeSuccessRate,
    StrategySuccessRate,
)
from offerwise.services.cache_service import AnalyticsCache
from offerwise.services.record_store import RecordStore
from offerwise.utils.clock import Clock, utcnow
from offerwise.utils.stats import mean, most_common, sample_confidence, success_rate

logger = logging.getLogger(__name__)

STRATEGY_CONFIDENCE_SATURATION = 20
MIN_GROUP_SAMPLES = 2
TREND_THRESHOLD = 0.05
WINNING_FACTOR_SHARE = 0.5

PRICE_BUCKETS = (
    PriceRange(min=0, max=300_000, label="Under $300K"),
    PriceRange(min=300_000, max=500_000, label="$300K-$500K"),
    PriceRange(min=500_000, max=750_000, label="$500K-$750K"),
    PriceRange(min=750_000, max=1_000_000, label="$750K-$1M"),
    PriceRange(min=1_000_000, max=None, label="Above $1M"),
)

WINNING_FACTORS: tuple[tuple[str, Callable[[NegotiationRecord], bool]], ...] = (
    ("escalation clause", lambda r: r.strategy.escalation_clause.used),
    ("cover letter", lambda r: r.strategy.cover_letter_used),
    ("personal story", lambda r: r.strategy.personal_story_included),
    ("quick close", lambda r: r.strategy.tactics.quick_close),
    ("as-is offer", lambda r: r.strategy.tactics.as_is_offer),
)

STRATEGY_TYPE_PREDICATES: dict[str, Callable[[NegotiationRecord], bool]] = {
    "communication_tone": lambda r: r.strategy.communication_tone is not CommunicationTone.UNKNOWN,
    "offer_position": lambda r: r.strategy.offer_position is not OfferPosition.UNKNOWN,
    "escalation_clause": lambda r: r.strategy.escalation_clause.used,
    "cover_letter": lambda r: r.strategy.cover_letter_used,
    "personal_story": lambda r: r.strategy.personal_story_included,
    "quick_close": lambda r: r.strategy.tactics.quick_close,
    "as_is_offer": lambda r: r.strategy.tactics.as_is_offer,
}


@dataclass(frozen=True)
class AnalyticsComputation:
    result: AnalyticsResult
    metadata: AnalyticsMetadata


# ========== FILTERING ==========


def _matches_strategy_value(record: NegotiationRecord, value: str) -> bool:
    strategy = record.strategy
    if value in (strategy.communication_tone.value, strategy.offer_position.value):
        return True
    if value == "escalation_used":
        return strategy.escalation_clause.used
    if value == "cover_letter_used":
        return strategy.cover_letter_used
    if value == "personal_story_included":
        return strategy.personal_story_included
    return False


def _passes(record: NegotiationRecord, filters: AnalyticsFilters) -> bool:
    context = record.context
    if filters.property_types and context.property_type not in filters.property_types:
        return False
    if filters.market_conditions and context.market_conditions not in filters.market_conditions:
        return False
    if filters.price_ranges and not any(band.contains(context.price_range.min) for band in filters.price_ranges):
        return False
    if filters.successful is not None and record.is_successful != filters.successful:
        return False
    if filters.strategy_types:
        if not any(STRATEGY_TYPE_PREDICATES[name](record) for name in filters.strategy_types):
            return False
    if filters.strategy_values and not any(_matches_strategy_value(record, v) for v in filters.strategy_values):
        return False
    if filters.competitive_environment is not None and context.multiple_offers != filters.competitive_environment:
        return False
    if filters.date_range is not None:
        if not filters.date_range.start_date <= record.created_at <= filters.date_range.end_date:
            return False
    return True


def filter_records(
    records: Sequence[NegotiationRecord],
    filters: AnalyticsFilters | None,
) -> list[NegotiationRecord]:
    """Keep records matching every supplied filter; list-valued filters match any element."""
    if filters is None:
        return list(records)
    unknown = sorted(set(filters.strategy_types or ()) - STRATEGY_TYPE_PREDICATES.keys())
    if unknown:
        raise ValidationFailure(
            f"Unknown strategy types: {', '.join(unknown)}",
            errors=[f"strategy_types must be one of {', '.join(STRATEGY_TYPE_PREDICATES)}"],
        )
    return [record for record in records if _passes(record, filters)]


# ========== BREAKDOWNS ==========


def _successes(records: Iterable[NegotiationRecord]) -> int:
    return sum(1 for record in records if record.is_successful)


def _group(records: Iterable[NegotiationRecord], key: Callable[[NegotiationRecord], Any]) -> dict[Any, list[NegotiationRecord]]:
    groups: dict[Any, list[NegotiationRecord]] = {}
    for record in records:
        groups.setdefault(key(record), []).append(record)
    return groups


def _facets(record: NegotiationRecord) -> list[tuple[FacetKind, str | bool]]:
    strategy = record.strategy
    facets: list[tuple[FacetKind, str | bool]] = []
    if strategy.communication_tone is not CommunicationTone.UNKNOWN:
        facets.append((FacetKind.COMMUNICATION_TONE, strategy.communication_tone.value))
    if strategy.offer_position is not OfferPosition.UNKNOWN:
        facets.append((FacetKind.OFFER_POSITION, strategy.offer_position.value))
    facets.append((FacetKind.ESCALATION_CLAUSE, strategy.escalation_clause.used))
    facets.append((FacetKind.COVER_LETTER, strategy.cover_letter_used))
    return facets


def _average_offer_percentage(records: Sequence[NegotiationRecord]) -> float | None:
    return mean([r.strategy.initial_offer_percentage for r in records if r.strategy.initial_offer_percentage > 0])


def _best_tone(records: Sequence[NegotiationRecord], min_samples: int = MIN_GROUP_SAMPLES) -> tuple[str | None, float]:
    """Tone with the strictly highest non-zero success rate among tones with enough samples."""
    best: str | None = None
    best_rate = 0.0
    for tone, group in _group(records, lambda r: r.strategy.communication_tone.value).items():
        if len(group) < min_samples:
            continue
        rate = success_rate(_successes(group), len(group))
        if rate > best_rate:
            best, best_rate = tone, rate
    return best, best_rate


def _by_success_rate(items: list) -> list:
    return sorted(items, key=lambda item: item.success_rate, reverse=True)


def strategy_breakdown(records: Sequence[NegotiationRecord]) -> list[StrategySuccessRate]:
    groups: dict[tuple[FacetKind, str | bool], list[NegotiationRecord]] = {}
    for record in records:
        for facet in _facets(record):
            groups.setdefault(facet, []).append(record)

    rows = []
    for (kind, value), group in groups.items():
        priced = [r for r in group if r.outcome is not None and r.outcome.final_price]
        rows.append(
            StrategySuccessRate(
                strategy_type=kind,
                strategy_value=value,
                total_attempts=len(group),
                successful_attempts=_successes(group),
                success_rate=success_rate(_successes(group), len(group)),
                average_days_to_close=mean([r.outcome.days_to_acceptance or 0 for r in priced]),
                average_final_price=mean([r.outcome.final_price for r in priced]),
                confidence=sample_confidence(len(group), STRATEGY_CONFIDENCE_SATURATION),
            )
        )
    return _by_success_rate(rows)


def property_type_breakdown(records: Sequence[NegotiationRecord]) -> list[PropertyTypeSuccessRate]:
    rows = []
    for property_type, group in _group(records, lambda r: r.context.property_type).items():
        rows.append(
            PropertyTypeSuccessRate(
                property_type=property_type,
                total_attempts=len(group),
                successful_attempts=_successes(group),
                success_rate=success_rate(_successes(group), len(group)),
                average_offer_percentage=_average_offer_percentage(group),
                most_successful_strategy=_best_tone(group)[0],
            )
        )
    return _by_success_rate(rows)


def market_condition_breakdown(records: Sequence[NegotiationRecord]) -> list[MarketConditionSuccessRate]:
    rows = []
    for condition, group in _group(records, lambda r: r.context.market_conditions).items():
        closed = [r.outcome.days_to_acceptance for r in group if r.outcome is not None and r.outcome.days_to_acceptance]
        rows.append(
            MarketConditionSuccessRate(
                market_condition=condition,
                total_attempts=len(group),
                successful_attempts=_successes(group),
                success_rate=success_rate(_successes(group), len(group)),
                average_days_to_close=mean(closed),
                recommended_strategy=_best_tone(group)[0],
            )
        )
    return _by_success_rate(rows)


def price_bucket(price: float) -> PriceRange | None:
    for bucket in PRICE_BUCKETS:
        if bucket.contains(price):
            return bucket
    return None


def price_range_breakdown(records: Sequence[NegotiationRecord]) -> list[PriceRangeSuccessRate]:
    """Fixed buckets keyed by the record's minimum price; empty buckets are omitted."""
    rows = []
    for bucket in PRICE_BUCKETS:
        group = [r for r in records if bucket.contains(r.context.price_range.min)]
        if not group:
            continue
        rows.append(
            PriceRangeSuccessRate(
                price_range=bucket,
                total_attempts=len(group),
                successful_attempts=_successes(group),
                success_rate=success_rate(_successes(group), len(group)),
                average_offer_percentage=_average_offer_percentage(group),
                most_effective_strategy=_best_tone(group)[0],
            )
        )
    return rows


def competitive_breakdown(records: Sequence[NegotiationRecord]) -> list[CompetitiveSuccessRate]:
    rows = []
    for multiple_offers, group in _group(records, lambda r: r.context.multiple_offers).items():
        winners = [r for r in group if r.is_successful]
        threshold = max(1.0, len(winners) * WINNING_FACTOR_SHARE)
        factors = [
            label
            for label, present in WINNING_FACTORS
            if sum(1 for r in winners if present(r)) >= threshold
        ]
        rows.append(
            CompetitiveSuccessRate(
                multiple_offers=multiple_offers,
                average_competing_offers=mean([r.context.competing_offers for r in group]) or 0.0,
                total_attempts=len(group),
                successful_attempts=len(winners),
                success_rate=success_rate(len(winners), len(group)),
                winning_factors=factors,
            )
        )
    return rows


def performance_trends(records: Sequence[NegotiationRecord]) -> list[PerformanceTrend]:
    """Monthly success-rate series in chronological order."""
    months = _group(records, lambda r: r.created_at.strftime("%Y-%m"))
    trends: list[PerformanceTrend] = []
    previous_rate: float | None = None
    for period in sorted(months):
        group = months[period]
        rate = success_rate(_successes(group), len(group))
        change = None if previous_rate is None else rate - previous_rate
        if change is not None and change > TREND_THRESHOLD:
            direction = TrendDirection.IMPROVING
        elif change is not None and change < -TREND_THRESHOLD:
            direction = TrendDirection.DECLINING
        else:
            direction = TrendDirection.STABLE
        top_tone, top_rate = _best_tone(group, min_samples=1)
        trends.append(
            PerformanceTrend(
                period=period,
                total_negotiations=len(group),
                successful_negotiations=_successes(group),
                success_rate=rate,
                previous_period_success_rate=previous_rate,
                change_from_previous=change,
                trend=direction,
                top_strategy=top_tone or CommunicationTone.PROFESSIONAL.value,
                top_strategy_success_rate=top_rate,
                market_conditions=most_common((r.context.market_conditions.value for r in group), "unknown"),
            )
        )
        previous_rate = rate
    return trends


BREAKDOWNS: dict[str, Callable[[Sequence[NegotiationRecord]], list]] = {
    "by_strategy": strategy_breakdown,
    "by_property_type": property_type_breakdown,
    "by_market_conditions": market_condition_breakdown,
    "by_price_range": price_range_breakdown,
    "by_competitive_environment": competitive_breakdown,
    "trends": performance_trends,
}


def analytics_cache_key(agent_id: str, query: AnalyticsQuery | None) -> str:
    """Deterministic key over the agent and the normalized query."""
    query = query or AnalyticsQuery()
    canonical = json.dumps(
        {
            "agent_id": agent_id,
            "date_range": query.date_range.model_dump(mode="json") if query.date_range else None,
            "filters": query.filters.model_dump(mode="json", exclude_none=True) if query.filters else None,
            "group_by": query.group_by,
            "limit": query.limit,
            "sort_by": query.sort_by,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]
    return f"analytics_{agent_id}_{digest}"


class SuccessRateService:
    """Turns an agent's negotiation history into success-rate breakdowns."""

    def __init__(
        self,
        store: RecordStore,
        cache: AnalyticsCache,
        clock: Clock = utcnow,
        config: Config | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._clock = clock
        self._config = config or get_config()

    @property
    def minimum_data_points(self) -> int:
        return self._config.MIN_ANALYTICS_DATA_POINTS

    def minimum_data_requirements(self) -> int:
        return self.minimum_data_points

    def _sufficiency_message(self, count: int) -> str:
        if count >= self.minimum_data_points:
            return "Sufficient data available for reliable analytics"
        return f"Need {self.minimum_data_points - count} more completed negotiations for reliable analysis"

    def compute_analytics(self, agent_id: str, query: AnalyticsQuery | None = None) -> AnalyticsComputation:
        query = query or AnalyticsQuery()
        cache_key = analytics_cache_key(agent_id, query)

        cached = self._cache.get(cache_key, agent_id)
        if cached.hit:
            result = AnalyticsResult.model_validate(cached.value)
            logger.info(
                "analytics.cache_hit",
                extra={"event": "analytics.cache_hit", "agent_id": agent_id, "cache_key": cache_key, "cache_status": "hit"},
            )
            return AnalyticsComputation(
                result=result,
                metadata=AnalyticsMetadata(
                    cache_status=CacheStatus.HIT.value,
                    sufficient=result.total_negotiations >= self.minimum_data_points,
                    message=self._sufficiency_message(result.total_negotiations),
                ),
            )

        started = time.perf_counter()
        now = self._clock()
        date_range = query.date_range or DateRange(
            start_date=now - timedelta(days=self._config.DEFAULT_LOOKBACK_DAYS),
            end_date=now,
        )
        records = self._store.fetch(agent_id, date_range=date_range, limit=query.limit or self._config.ANALYTICS_FETCH_LIMIT)
        filtered = filter_records(records, query.filters)

        sufficient = len(filtered) >= self.minimum_data_points
        if not sufficient:
            logger.warning(
                "analytics.insufficient_data: %s records (minimum %s)",
                len(filtered),
                self.minimum_data_points,
                extra={"event": "analytics.insufficient_data", "agent_id": agent_id},
            )

        result = self.compute(agent_id, filtered, date_range)
        elapsed_ms = (time.perf_counter() - started) * 1000

        self._cache.set(cache_key, agent_id, result.model_dump(mode="json"), self._config.ANALYTICS_CACHE_TTL_MINUTES)
        self._store.store_agent_analytics(agent_id, result)

        logger.info(
            "analytics.computed",
            extra={"event": "analytics.computed", "agent_id": agent_id, "cache_key": cache_key, "cache_status": "miss"},
        )
        return AnalyticsComputation(
            result=result,
            metadata=AnalyticsMetadata(
                total_records=len(records),
                filtered_records=len(filtered),
                calculation_time_ms=round(elapsed_ms, 3),
                cache_status=CacheStatus.MISS.value,
                sufficient=sufficient,
                message=self._sufficiency_message(len(filtered)),
            ),
        )

    def compute(
        self,
        agent_id: str,
        records: Sequence[NegotiationRecord],
        date_range: DateRange | None = None,
    ) -> AnalyticsResult:
        """Build the full result from an already filtered record slice."""
        records = tuple(records)
        if self._config.ANALYTICS_PARALLEL_DIMENSIONS and records:
            with ThreadPoolExecutor(max_workers=len(BREAKDOWNS)) as executor:
                futures = {name: executor.submit(fn, records) for name, fn in BREAKDOWNS.items()}
                dimensions = {name: future.result() for name, future in futures.items()}
        else:
            dimensions = {name: fn(records) for name, fn in BREAKDOWNS.items()}

        successful = _successes(records)
        return AnalyticsResult(
            agent_id=agent_id,
            total_negotiations=len(records),
            successful_negotiations=successful,
            overall_success_rate=success_rate(successful, len(records)),
            calculated_at=self._clock(),
            data_range=AnalyticsDataRange(
                start_date=date_range.start_date if date_range else None,
                end_date=date_range.end_date if date_range else None,
                total_records=len(records),
            ),
            **dimensions,
        )

    def check_data_sufficiency(self, agent_id: str) -> DataSufficiency:
        records = self._store.fetch(agent_id, limit=self.minimum_data_points + 1)
        count = len(records)
        return DataSufficiency(
            sufficient=count >= self.minimum_data_points,
            current_count=count,
            minimum_required=self.minimum_data_points,
            message=self._sufficiency_message(count),
        )

    def clear_cache(self, agent_id: str) -> int:
        removed = self._cache.invalidate(agent_id)
        logger.info("analytics.cache_cleared", extra={"event": "analytics.cache_cleared", "agent_id": agent_id})
        return removed
