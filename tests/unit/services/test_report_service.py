from __future__ import annotations

from datetime import datetime, timezone

import pytest

from offerwise.core.enums import FacetKind, ReportKind, TrendDirection
from offerwise.schemas.analytics import (
    AnalyticsDataRange,
    AnalyticsQuery,
    AnalyticsResult,
    CompetitiveSuccessRate,
    MarketConditionSuccessRate,
    PerformanceTrend,
    PriceRange,
    PriceRangeSuccessRate,
    PropertyTypeSuccessRate,
    StrategySuccessRate,
)
from offerwise.services.report_service import (
    best_period,
    generate_report,
    performance_change,
    strategy_recommendations,
    trend_direction,
)
from offerwise.utils.clock import epoch_millis


def _build_trend(period, rate, trend=TrendDirection.STABLE):
    return PerformanceTrend(
        period=period,
        total_negotiations=10,
        successful_negotiations=round(rate * 10),
        success_rate=rate,
        trend=trend,
        top_strategy="warm",
        top_strategy_success_rate=rate,
        market_conditions="hot",
    )


def _build_strategy(kind, value, rate, attempts, confidence):
    return StrategySuccessRate(
        strategy_type=kind,
        strategy_value=value,
        total_attempts=attempts,
        successful_attempts=round(rate * attempts),
        success_rate=rate,
        average_days_to_close=20.0,
        average_final_price=450_000.0,
        confidence=confidence,
    )


def _build_analytics(clock, **overrides) -> AnalyticsResult:
    payload = {
        "agent_id": "agent-1",
        "total_negotiations": 20,
        "successful_negotiations": 14,
        "overall_success_rate": 0.7,
        "by_strategy": [
            _build_strategy(FacetKind.COMMUNICATION_TONE, "warm", 0.9, 18, 0.9),
            _build_strategy(FacetKind.ESCALATION_CLAUSE, True, 0.6, 6, 0.3),
            _build_strategy(FacetKind.OFFER_POSITION, "above", 0.2, 5, 0.25),
        ],
        "by_property_type": [
            PropertyTypeSuccessRate(
                property_type="condo", total_attempts=8, successful_attempts=7, success_rate=0.875
            ),
        ],
        "by_market_conditions": [
            MarketConditionSuccessRate(
                market_condition="cool", total_attempts=10, successful_attempts=8, success_rate=0.8
            ),
        ],
        "by_price_range": [
            PriceRangeSuccessRate(
                price_range=PriceRange(min=300_000, max=500_000, label="$300K-$500K"),
                total_attempts=12,
                successful_attempts=9,
                success_rate=0.75,
            ),
        ],
        "by_competitive_environment": [
            CompetitiveSuccessRate(
                multiple_offers=True, average_competing_offers=3, total_attempts=5, successful_attempts=2, success_rate=0.4
            ),
            CompetitiveSuccessRate(
                multiple_offers=False, average_competing_offers=0, total_attempts=15, successful_attempts=12, success_rate=0.8
            ),
        ],
        "trends": [
            _build_trend("2026-01", 0.5),
            _build_trend("2026-02", 0.7, TrendDirection.IMPROVING),
            _build_trend("2026-03", 0.9, TrendDirection.IMPROVING),
        ],
        "calculated_at": clock.now,
        "data_range": AnalyticsDataRange(
            start_date=datetime(2025, 12, 15, tzinfo=timezone.utc), end_date=clock.now, total_records=20
        ),
    }
    payload.update(overrides)
    return AnalyticsResult(**payload)


def test_trend_helpers():
    trends = [
        _build_trend("2026-01", 0.5),
        _build_trend("2026-02", 0.7, TrendDirection.IMPROVING),
        _build_trend("2026-03", 0.9, TrendDirection.IMPROVING),
    ]

    assert trend_direction(trends) is TrendDirection.IMPROVING
    assert trend_direction(trends[:1]) is TrendDirection.STABLE
    assert performance_change(trends) == "+40% improvement"
    assert performance_change(list(reversed(trends))) == "-40% decline"
    assert performance_change(trends[:1]) == "No comparison available"
    assert best_period(trends) == "2026-03 (90% success rate)"
    assert best_period([]) == "No data available"


def test_strategy_recommendations_flag_strong_weak_and_thin(clock):
    analytics = _build_analytics(clock)

    recommendations = strategy_recommendations(analytics.by_strategy)

    assert recommendations == [
        "Continue using communication_tone with warm - highest success rate at 90%",
        "Consider avoiding offer_position with above - low success rate",
        "Gather more data on escalation_clause strategies to improve confidence",
    ]


def test_strategy_effectiveness_report(clock):
    report = generate_report(ReportKind.STRATEGY_EFFECTIVENESS, _build_analytics(clock), clock=clock)

    assert report.id == f"strategy_effectiveness_{epoch_millis(clock.now)}"
    assert report.title == "Strategy Effectiveness Report"
    assert report.key_insights[0] == "Overall success rate: 70%"
    assert report.key_insights[1] == "Top strategy: communication_tone: warm (90% success rate)"
    assert report.key_insights[2] == "Most consistent strategy: communication_tone: warm"
    assert report.data["top_strategies"][0] == {
        "strategy": "communication_tone: warm",
        "success_rate": 90,
        "total_attempts": 18,
        "confidence": 90,
    }
    assert report.filters["date_range"]["start_date"] == "2025-12-15T00:00:00+00:00"
    assert report.data_as_of == clock.now


def test_performance_trends_report(clock):
    report = generate_report("performance_trends", _build_analytics(clock), clock=clock)

    assert report.summary == "3-month performance analysis showing improving trend"
    assert report.key_insights == [
        "Current trend: improving",
        "Performance change: +40% improvement",
        "Recent success rate: 90%",
        "Best performing month: 2026-03 (90% success rate)",
    ]
    assert [row["success_rate"] for row in report.data["monthly_breakdown"]] == [50, 70, 90]


def test_market_analysis_report(clock):
    report = generate_report(ReportKind.MARKET_ANALYSIS, _build_analytics(clock), clock=clock)

    assert report.key_insights == [
        "Best market condition: cool (80% success rate)",
        "Most profitable price range: $300K-$500K",
        "Competitive environment performance: 40% in multiple offer situations",
        "Single offer success rate: 80%",
    ]
    assert report.data["market_recommendations"] == [
        "Focus on cool market conditions where you have 80% success rate",
        "Your strongest performance is in the $300K-$500K price range",
    ]


def test_executive_summary_report(clock):
    report = generate_report(ReportKind.EXECUTIVE_SUMMARY, _build_analytics(clock), clock=clock)

    assert report.key_insights == [
        "Overall success rate: 70% (14/20 negotiations)",
        "Top performing strategy: communication_tone - warm",
        "Best property type: condo (88% success rate)",
        "Recent trend: improving (2026-03)",
    ]
    stats = report.data["quick_stats"]
    assert stats["avg_days_to_close"] == 20.0
    assert stats["highest_confidence_strategy"] == "communication_tone"


@pytest.mark.parametrize("kind", list(ReportKind))
def test_every_report_kind_handles_empty_analytics(clock, kind):
    analytics = AnalyticsResult(
        agent_id="agent-1",
        total_negotiations=0,
        successful_negotiations=0,
        overall_success_rate=0.0,
        calculated_at=clock.now,
    )

    report = generate_report(kind, analytics, clock=clock)

    assert report.report_type is kind
    assert report.agent_id == "agent-1"
    assert len(report.key_insights) == 4
    assert report.filters["date_range"] == {"start_date": None, "end_date": None}


def test_explicit_query_filters_are_echoed(clock):
    query = AnalyticsQuery.model_validate(
        {
            "date_range": {"start_date": "2026-01-01T00:00:00Z", "end_date": "2026-02-01T00:00:00Z"},
            "filters": {"property_types": ["condo"], "market_conditions": ["hot", "warm"]},
        }
    )

    report = generate_report(ReportKind.MARKET_ANALYSIS, _build_analytics(clock), query=query, clock=clock)

    assert report.filters["date_range"]["start_date"] == "2026-01-01T00:00:00+00:00"
    assert report.filters["property_types"] == ["condo"]
    assert report.filters["market_conditions"] == ["hot", "warm"]
    assert report.filters["price_ranges"] is None


def test_unknown_report_kind_is_rejected(clock):
    with pytest.raises(ValueError):
        generate_report("quarterly_gossip", _build_analytics(clock), clock=clock)
