"""Pydantic models for negotiation records, analytics results and recommendations."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from offerwise.core.enums import (
    ClientSatisfaction,
    CommunicationTone,
    FacetKind,
    MarketCondition,
    MarketTrend,
    OfferPosition,
    PropertyType,
    RecommendationType,
    ReportKind,
    Season,
    SignalCategory,
    TransactionType,
    TrendDirection,
)
from offerwise.utils.clock import ensure_utc

Rate = Annotated[float, Field(ge=0.0, le=1.0)]

CONTINGENCY_TYPES = ("inspection", "financing", "appraisal", "sale_of_home")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ========== CONTEXT ==========


class PriceRange(_Frozen):
    """Price band; ``max=None`` is unbounded above."""

    min: float = Field(default=0.0, ge=0)
    max: float | None = Field(default=0.0, ge=0)
    label: str = "Unknown"

    def contains(self, price: float) -> bool:
        """Inclusive lower bound, exclusive upper bound."""
        if price < self.min:
            return False
        return self.max is None or price < self.max


class Location(_Frozen):
    city: str = ""
    state: str = ""
    neighborhood: str | None = None
    zip_code: str | None = None


class NegotiationContext(_Frozen):
    property_type: PropertyType = PropertyType.UNKNOWN
    market_conditions: MarketCondition = MarketCondition.UNKNOWN
    price_range: PriceRange = Field(default_factory=PriceRange)
    days_on_market: int = 0
    multiple_offers: bool = False
    competing_offers: int = 0
    average_offer_price: float | None = None
    location: Location = Field(default_factory=Location)
    transaction_type: TransactionType = TransactionType.PURCHASE
    listing_agent: str = ""
    buyer_agent: str = ""
    market_trend: MarketTrend = MarketTrend.STABLE
    seasonality: Season = Season.SPRING

    @field_validator("property_type", "market_conditions", mode="before")
    @classmethod
    def _missing_is_unknown(cls, value: Any) -> Any:
        return "unknown" if value is None or value == "" else value


# ========== STRATEGY ==========


class EscalationClause(_Frozen):
    used: bool = False
    max_amount: float | None = None
    increment: float | None = None
    cap_percentage: float | None = None


class Contingencies(_Frozen):
    inspection: bool = False
    financing: bool = False
    appraisal: bool = False
    sale_of_home: bool = False
    other: list[str] = Field(default_factory=list)


class Tactics(_Frozen):
    quick_close: bool = False
    as_is_offer: bool = False
    rent_back: bool = False
    flexible_closing: bool = False
    extra_deposit: bool = False
    custom_terms: list[str] = Field(default_factory=list)


class CounterOfferPattern(_Frozen):
    responsiveness: Literal["immediate", "quick", "deliberate", "slow"] = "quick"
    concession_willingness: Literal["high", "medium", "low"] = "medium"
    negotiation_rounds: int = Field(default=1, ge=0)


class NegotiationStrategy(_Frozen):
    initial_offer_percentage: float = 100.0
    offer_position: OfferPosition = OfferPosition.UNKNOWN
    escalation_clause: EscalationClause = Field(default_factory=EscalationClause)
    contingencies: Contingencies = Field(default_factory=Contingencies)
    communication_tone: CommunicationTone = CommunicationTone.UNKNOWN
    cover_letter_used: bool = False
    personal_story_included: bool = False
    tactics: Tactics = Field(default_factory=Tactics)
    counter_offer_pattern: CounterOfferPattern = Field(default_factory=CounterOfferPattern)

    @field_validator("offer_position", "communication_tone", mode="before")
    @classmethod
    def _missing_is_unknown(cls, value: Any) -> Any:
        return "unknown" if value is None or value == "" else value


# ========== OUTCOME / RECORD ==========


class NegotiationOutcome(_Frozen):
    successful: bool
    final_price: float | None = None
    days_to_acceptance: float | None = None
    negotiation_rounds: int = Field(default=1, ge=0)
    client_satisfaction: ClientSatisfaction | None = None
    chosen_over_offers: int | None = None
    lesson_learned: str | None = None


class NegotiationRecord(_Frozen):
    """Immutable historical unit: identity + context + strategy + outcome."""

    id: str
    agent_id: str
    client_id: str
    property_id: str
    negotiation_id: str
    context: NegotiationContext = Field(default_factory=NegotiationContext)
    strategy: NegotiationStrategy = Field(default_factory=NegotiationStrategy)
    outcome: NegotiationOutcome | None = None
    created_at: datetime
    updated_at: datetime
    version: int = 1

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc_timestamps(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def is_successful(self) -> bool:
        return bool(self.outcome and self.outcome.successful)


# ========== QUERY ==========


class DateRange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start_date: datetime
    end_date: datetime

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc_bounds(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class AnalyticsFilters(BaseModel):
    """Record predicates: AND across fields, OR within list-valued fields."""

    model_config = ConfigDict(extra="forbid")

    property_types: list[PropertyType] | None = None
    market_conditions: list[MarketCondition] | None = None
    price_ranges: list[PriceRange] | None = None
    successful: bool | None = None
    strategy_types: list[str] | None = None
    strategy_values: list[str] | None = None
    competitive_environment: bool | None = None
    date_range: DateRange | None = None


class AnalyticsQuery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date_range: DateRange | None = None
    filters: AnalyticsFilters | None = None
    group_by: list[str] | None = None
    sort_by: str | None = None
    limit: int | None = Field(default=None, ge=1)


# ========== ANALYTICS RESULT ==========


class StrategySuccessRate(BaseModel):
    strategy_type: FacetKind
    strategy_value: str | bool
    total_attempts: int
    successful_attempts: int
    success_rate: Rate
    average_days_to_close: float | None = None
    average_final_price: float | None = None
    confidence: Rate

    @property
    def label(self) -> str:
        return f"{self.strategy_type.value}: {self.strategy_value}"


class PropertyTypeSuccessRate(BaseModel):
    property_type: PropertyType
    total_attempts: int
    successful_attempts: int
    success_rate: Rate
    average_offer_percentage: float | None = None
    most_successful_strategy: str | None = None


class MarketConditionSuccessRate(BaseModel):
    market_condition: MarketCondition
    total_attempts: int
    successful_attempts: int
    success_rate: Rate
    average_days_to_close: float | None = None
    recommended_strategy: str | None = None


class PriceRangeSuccessRate(BaseModel):
    price_range: PriceRange
    total_attempts: int
    successful_attempts: int
    success_rate: Rate
    average_offer_percentage: float | None = None
    most_effective_strategy: str | None = None


class CompetitiveSuccessRate(BaseModel):
    multiple_offers: bool
    average_competing_offers: float
    total_attempts: int
    successful_attempts: int
    success_rate: Rate
    winning_factors: list[str] = Field(default_factory=list)


class PerformanceTrend(BaseModel):
    period: str
    period_type: Literal["month", "quarter", "year"] = "month"
    total_negotiations: int
    successful_negotiations: int
    success_rate: Rate
    previous_period_success_rate: float | None = None
    change_from_previous: float | None = None
    trend: TrendDirection = TrendDirection.STABLE
    top_strategy: str
    top_strategy_success_rate: Rate
    market_conditions: str


class AnalyticsDataRange(BaseModel):
    start_date: datetime | None = None
    end_date: datetime | None = None
    total_records: int = 0


class AnalyticsResult(BaseModel):
    agent_id: str
    total_negotiations: int
    successful_negotiations: int
    overall_success_rate: Rate
    by_strategy: list[StrategySuccessRate] = Field(default_factory=list)
    by_property_type: list[PropertyTypeSuccessRate] = Field(default_factory=list)
    by_market_conditions: list[MarketConditionSuccessRate] = Field(default_factory=list)
    by_price_range: list[PriceRangeSuccessRate] = Field(default_factory=list)
    by_competitive_environment: list[CompetitiveSuccessRate] = Field(default_factory=list)
    trends: list[PerformanceTrend] = Field(default_factory=list)
    calculated_at: datetime
    data_range: AnalyticsDataRange = Field(default_factory=AnalyticsDataRange)


class AnalyticsMetadata(BaseModel):
    total_records: int = 0
    filtered_records: int = 0
    calculation_time_ms: float = 0.0
    cache_status: str
    sufficient: bool = True
    message: str | None = None


class DataSufficiency(BaseModel):
    sufficient: bool
    current_count: int
    minimum_required: int
    message: str


# ========== SIGNALS ==========


class StrategySignal(_Frozen):
    category: SignalCategory
    confidence: Rate
    evidence: str
    keywords: list[str]


# ========== RECOMMENDATIONS ==========


class RecommendationDetail(BaseModel):
    strategy: str
    value: Any
    confidence: Rate
    reasoning: str
    expected_success_rate: Rate


class RecommendationBasis(BaseModel):
    property_type: PropertyType
    market_conditions: MarketCondition
    price_range: PriceRange
    competitive_environment: bool
    historical_data_points: int = Field(ge=0)


class RecommendationAlternative(BaseModel):
    strategy: str
    expected_success_rate: Rate
    reasoning: str


class StrategyRecommendation(BaseModel):
    agent_id: str
    recommendation_type: RecommendationType
    recommendation: RecommendationDetail
    based_on: RecommendationBasis
    alternatives: list[RecommendationAlternative] = Field(default_factory=list, max_length=3)
    generated_at: datetime
    valid_until: datetime

    @property
    def confidence(self) -> float:
        return self.recommendation.confidence


class RecommendationOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    include_alternatives: bool = True
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    max_recommendations: int | None = Field(default=None, ge=1)


# ========== REPORTS ==========


class AnalyticsReport(BaseModel):
    id: str
    agent_id: str
    report_type: ReportKind
    title: str
    summary: str
    key_insights: list[str]
    data: dict[str, Any] = Field(default_factory=dict)
    filters: dict[str, Any] = Field(default_factory=dict)
    generated_at: datetime
    data_as_of: datetime
