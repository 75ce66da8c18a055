"""Pydantic schemas for the analytics core."""

from offerwise.schemas.analytics import (
    AnalyticsFilters,
    AnalyticsQuery,
    AnalyticsReport,
    AnalyticsResult,
    NegotiationContext,
    NegotiationOutcome,
    NegotiationRecord,
    NegotiationStrategy,
    PriceRange,
    RecommendationOptions,
    StrategyRecommendation,
    StrategySignal,
)
from offerwise.schemas.common import ErrorEnvelope, OperationResult
from offerwise.schemas.tracking import ContextualFactors, TrackingSession

__all__ = [
    "AnalyticsFilters",
    "AnalyticsQuery",
    "AnalyticsReport",
    "AnalyticsResult",
    "ContextualFactors",
    "ErrorEnvelope",
    "NegotiationContext",
    "NegotiationOutcome",
    "NegotiationRecord",
    "NegotiationStrategy",
    "OperationResult",
    "PriceRange",
    "RecommendationOptions",
    "StrategyRecommendation",
    "StrategySignal",
    "TrackingSession",
]
