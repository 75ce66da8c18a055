"""Canonical enum values for negotiation analytics.

Categorical fields that may be missing on historical records carry an explicit
``UNKNOWN`` member so grouping functions stay total over their domain.
"""

from __future__ import annotations

import enum


class PropertyType(str, enum.Enum):
    SINGLE_FAMILY = "single_family"
    CONDO = "condo"
    TOWNHOUSE = "townhouse"
    MULTI_FAMILY = "multi_family"
    LAND = "land"
    UNKNOWN = "unknown"


class MarketCondition(str, enum.Enum):
    HOT = "hot"
    WARM = "warm"
    COOL = "cool"
    UNKNOWN = "unknown"


class MarketTrend(str, enum.Enum):
    RISING = "rising"
    STABLE = "stable"
    FALLING = "falling"


class Season(str, enum.Enum):
    SPRING = "spring"
    SUMMER = "summer"
    FALL = "fall"
    WINTER = "winter"


class TransactionType(str, enum.Enum):
    PURCHASE = "purchase"
    REFINANCE = "refinance"
    INVESTMENT = "investment"


class OfferPosition(str, enum.Enum):
    BELOW = "below"
    AT = "at"
    ABOVE = "above"
    UNKNOWN = "unknown"


class CommunicationTone(str, enum.Enum):
    PROFESSIONAL = "professional"
    WARM = "warm"
    CONFIDENT = "confident"
    PERSONAL = "personal"
    UNKNOWN = "unknown"


class ClientSatisfaction(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SessionOutcome(str, enum.Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    PENDING = "pending"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionOutcome.PENDING


class SessionState(str, enum.Enum):
    ACTIVE = "active"
    FINALIZING = "finalizing"
    PERSISTED = "persisted"
    DISCARDED = "discarded"


class OfferEventKind(str, enum.Enum):
    INITIAL = "initial"
    COUNTER = "counter"
    FINAL = "final"


class SignalCategory(str, enum.Enum):
    EMOTIONAL = "emotional"
    COMPETITIVE = "competitive"
    VALUE_ADD = "valueAdd"
    PRICE_JUSTIFICATION = "priceJustification"
    TIME_CONSTRAINT = "timeConstraint"
    FLEXIBILITY = "flexibility"


class FacetKind(str, enum.Enum):
    """Strategy dimensions used as grouping keys, paired with a value."""

    COMMUNICATION_TONE = "communication_tone"
    OFFER_POSITION = "offer_position"
    ESCALATION_CLAUSE = "escalation_clause"
    COVER_LETTER = "cover_letter"


class RecommendationType(str, enum.Enum):
    INITIAL_OFFER = "initial_offer"
    ESCALATION = "escalation"
    CONTINGENCY = "contingency"
    COMMUNICATION = "communication"
    OVERALL = "overall"


class TrendDirection(str, enum.Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class ReportKind(str, enum.Enum):
    STRATEGY_EFFECTIVENESS = "strategy_effectiveness"
    PERFORMANCE_TRENDS = "performance_trends"
    MARKET_ANALYSIS = "market_analysis"
    EXECUTIVE_SUMMARY = "executive_summary"


class CacheStatus(str, enum.Enum):
    HIT = "hit"
    MISS = "miss"
