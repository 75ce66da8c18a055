"""Report projections over a computed AnalyticsResult.

Reports only format figures already present on the result; percentages are
rounded to whole numbers.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from offerwise.core.enums import ReportKind, TrendDirection
from offerwise.schemas.analytics import (
    AnalyticsQuery,
    AnalyticsReport,
    AnalyticsResult,
    MarketConditionSuccessRate,
    PerformanceTrend,
    PriceRangeSuccessRate,
    StrategySuccessRate,
)
from offerwise.utils.clock import Clock, utcnow
from offerwise.utils.ids import new_report_id
from offerwise.utils.stats import mean, rate_consistency

TOP_STRATEGIES = 5
TREND_WINDOW = 6
DIRECTION_WINDOW = 3
CONSISTENT_CONFIDENCE_PCT = 80
HIGH_CONFIDENCE = 0.8


def pct(rate: float | None) -> int:
    return round((rate or 0.0) * 100)


# ========== HELPERS ==========


def trend_direction(trends: Sequence[PerformanceTrend]) -> TrendDirection:
    """Majority label over the last three periods."""
    if len(trends) < 2:
        return TrendDirection.STABLE
    recent = trends[-DIRECTION_WINDOW:]
    improving = sum(1 for t in recent if t.trend is TrendDirection.IMPROVING)
    declining = sum(1 for t in recent if t.trend is TrendDirection.DECLINING)
    if improving > declining:
        return TrendDirection.IMPROVING
    if declining > improving:
        return TrendDirection.DECLINING
    return TrendDirection.STABLE


def performance_change(trends: Sequence[PerformanceTrend]) -> str:
    if len(trends) < 2:
        return "No comparison available"
    change = pct(trends[-1].success_rate - trends[0].success_rate)
    if change > 0:
        return f"+{change}% improvement"
    if change < 0:
        return f"{change}% decline"
    return "0% change"


def best_period(trends: Sequence[PerformanceTrend]) -> str:
    if not trends:
        return "No data available"
    best = trends[0]
    for trend in trends[1:]:
        if trend.success_rate > best.success_rate:
            best = trend
    return f"{best.period} ({pct(best.success_rate)}% success rate)"


def consistency(trends: Sequence[PerformanceTrend]) -> float:
    if not trends:
        return 0.0
    return rate_consistency([t.success_rate for t in trends])


def strategy_recommendations(strategies: Sequence[StrategySuccessRate]) -> list[str]:
    recommendations: list[str] = []
    if strategies and strategies[0].confidence > 0.7:
        top = strategies[0]
        recommendations.append(
            f"Continue using {top.strategy_type.value} with {top.strategy_value} - "
            f"highest success rate at {pct(top.success_rate)}%"
        )
    weak = [s for s in strategies if s.success_rate < 0.3 and s.total_attempts > 2]
    if weak:
        recommendations.append(
            f"Consider avoiding {weak[0].strategy_type.value} with {weak[0].strategy_value} - low success rate"
        )
    thin = [s for s in strategies if s.confidence < 0.5]
    if thin:
        recommendations.append(f"Gather more data on {thin[0].strategy_type.value} strategies to improve confidence")
    return recommendations


def market_recommendations(
    markets: Sequence[MarketConditionSuccessRate],
    price_ranges: Sequence[PriceRangeSuccessRate],
) -> list[str]:
    recommendations: list[str] = []
    if markets:
        recommendations.append(
            f"Focus on {markets[0].market_condition.value} market conditions where you have "
            f"{pct(markets[0].success_rate)}% success rate"
        )
    if price_ranges:
        recommendations.append(
            f"Your strongest performance is in the {price_ranges[0].price_range.label} price range"
        )
    return recommendations


def _average_of(strategies: Sequence[StrategySuccessRate], attribute: str) -> float | None:
    return mean([getattr(s, attribute) for s in strategies if getattr(s, attribute) is not None])


def _dump(items: Sequence[Any]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


def _filters(analytics: AnalyticsResult, query: AnalyticsQuery | None) -> dict[str, Any]:
    explicit = query.date_range if query else None
    start = explicit.start_date if explicit else analytics.data_range.start_date
    end = explicit.end_date if explicit else analytics.data_range.end_date
    filters = query.filters if query else None
    return {
        "date_range": {
            "start_date": start.isoformat() if start else None,
            "end_date": end.isoformat() if end else None,
        },
        "property_types": [p.value for p in filters.property_types] if filters and filters.property_types else None,
        "market_conditions": (
            [m.value for m in filters.market_conditions] if filters and filters.market_conditions else None
        ),
        "price_ranges": _dump(filters.price_ranges) if filters and filters.price_ranges else None,
    }


# ========== PROJECTIONS ==========


def _strategy_effectiveness(analytics: AnalyticsResult) -> tuple[str, str, list[str], dict[str, Any]]:
    top = [
        {
            "strategy": s.label,
            "success_rate": pct(s.success_rate),
            "total_attempts": s.total_attempts,
            "confidence": pct(s.confidence),
        }
        for s in analytics.by_strategy[:TOP_STRATEGIES]
    ]
    leader = top[0] if top else None
    consistent = next((s["strategy"] for s in top if s["confidence"] > CONSISTENT_CONFIDENCE_PCT), "Needs more data")
    insights = [
        f"Overall success rate: {pct(analytics.overall_success_rate)}%",
        f"Top strategy: {leader['strategy'] if leader else 'N/A'} ({leader['success_rate'] if leader else 0}% success rate)",
        f"Most consistent strategy: {consistent}",
        f"Analyzed {analytics.total_negotiations} negotiations with "
        f"{analytics.successful_negotiations} successful outcomes",
    ]
    data = {
        "top_strategies": top,
        "strategy_summary": _dump(analytics.by_strategy),
        "recommendations": strategy_recommendations(analytics.by_strategy),
    }
    summary = f"Analysis of {analytics.total_negotiations} negotiations showing top-performing strategies"
    return "Strategy Effectiveness Report", summary, insights, data


def _performance_trends(analytics: AnalyticsResult) -> tuple[str, str, list[str], dict[str, Any]]:
    recent = analytics.trends[-TREND_WINDOW:]
    direction = trend_direction(recent)
    change = performance_change(recent)
    latest = recent[-1].success_rate if recent else 0.0
    insights = [
        f"Current trend: {direction.value}",
        f"Performance change: {change}",
        f"Recent success rate: {pct(latest)}%",
        f"Best performing month: {best_period(recent)}",
    ]
    data = {
        "trends": _dump(recent),
        "trend_analysis": {
            "direction": direction.value,
            "performance_change": change,
            "consistency": consistency(recent),
        },
        "monthly_breakdown": [
            {
                "period": t.period,
                "success_rate": pct(t.success_rate),
                "negotiations": t.total_negotiations,
                "top_strategy": t.top_strategy,
            }
            for t in recent
        ],
    }
    summary = f"{len(recent)}-month performance analysis showing {direction.value} trend"
    return "Performance Trends Report", summary, insights, data


def _market_analysis(analytics: AnalyticsResult) -> tuple[str, str, list[str], dict[str, Any]]:
    markets = analytics.by_market_conditions
    prices = analytics.by_price_range
    competitive = {c.multiple_offers: c for c in analytics.by_competitive_environment}
    multiple = competitive.get(True)
    single = competitive.get(False)
    best_market = markets[0] if markets else None
    insights = [
        f"Best market condition: {best_market.market_condition.value if best_market else 'N/A'} "
        f"({pct(best_market.success_rate if best_market else 0)}% success rate)",
        f"Most profitable price range: {prices[0].price_range.label if prices else 'N/A'}",
        f"Competitive environment performance: {pct(multiple.success_rate if multiple else 0)}% "
        "in multiple offer situations",
        f"Single offer success rate: {pct(single.success_rate if single else 0)}%",
    ]
    data = {
        "market_conditions": _dump(markets),
        "price_ranges": _dump(prices),
        "competitive_environment": _dump(analytics.by_competitive_environment),
        "market_recommendations": market_recommendations(markets, prices),
    }
    summary = f"Market conditions analysis across {analytics.total_negotiations} negotiations"
    return "Market Analysis Report", summary, insights, data


def _executive_summary(analytics: AnalyticsResult) -> tuple[str, str, list[str], dict[str, Any]]:
    top_strategy = analytics.by_strategy[0] if analytics.by_strategy else None
    top_property = analytics.by_property_type[0] if analytics.by_property_type else None
    top_market = analytics.by_market_conditions[0] if analytics.by_market_conditions else None
    recent = analytics.trends[-1] if analytics.trends else None
    confident = next((s for s in analytics.by_strategy if s.confidence > HIGH_CONFIDENCE), None)
    insights = [
        f"Overall success rate: {pct(analytics.overall_success_rate)}% "
        f"({analytics.successful_negotiations}/{analytics.total_negotiations} negotiations)",
        "Top performing strategy: "
        + (f"{top_strategy.strategy_type.value} - {top_strategy.strategy_value}" if top_strategy else "N/A - N/A"),
        f"Best property type: {top_property.property_type.value if top_property else 'N/A'} "
        f"({pct(top_property.success_rate if top_property else 0)}% success rate)",
        f"Recent trend: {recent.trend.value if recent else 'stable'} ({recent.period if recent else 'N/A'})",
    ]
    data = {
        "overall_stats": {
            "total_negotiations": analytics.total_negotiations,
            "successful_negotiations": analytics.successful_negotiations,
            "success_rate": pct(analytics.overall_success_rate),
        },
        "top_performers": {
            "strategy": top_strategy.model_dump(mode="json") if top_strategy else None,
            "property_type": top_property.model_dump(mode="json") if top_property else None,
            "market_condition": top_market.model_dump(mode="json") if top_market else None,
        },
        "recent_performance": recent.model_dump(mode="json") if recent else None,
        "quick_stats": {
            "avg_days_to_close": _average_of(analytics.by_strategy, "average_days_to_close"),
            "avg_final_price": _average_of(analytics.by_strategy, "average_final_price"),
            "highest_confidence_strategy": confident.strategy_type.value if confident else "Need more data",
        },
    }
    return "Executive Summary Report", "Comprehensive overview of negotiation performance and key insights", insights, data


PROJECTIONS: dict[ReportKind, Callable[[AnalyticsResult], tuple[str, str, list[str], dict[str, Any]]]] = {
    ReportKind.STRATEGY_EFFECTIVENESS: _strategy_effectiveness,
    ReportKind.PERFORMANCE_TRENDS: _performance_trends,
    ReportKind.MARKET_ANALYSIS: _market_analysis,
    ReportKind.EXECUTIVE_SUMMARY: _executive_summary,
}


def generate_report(
    kind: ReportKind | str,
    analytics: AnalyticsResult,
    query: AnalyticsQuery | None = None,
    clock: Clock = utcnow,
) -> AnalyticsReport:
    kind = ReportKind(kind)
    title, summary, insights, data = PROJECTIONS[kind](analytics)
    generated_at = clock()
    return AnalyticsReport(
        id=new_report_id(kind.value, generated_at),
        agent_id=analytics.agent_id,
        report_type=kind,
        title=title,
        summary=summary,
        key_insights=insights,
        data=data,
        filters=_filters(analytics, query),
        generated_at=generated_at,
        data_as_of=analytics.calculated_at,
    )
