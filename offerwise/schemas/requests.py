"""Request bodies for the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from offerwise.core.enums import MarketCondition, OfferEventKind, PropertyType, SessionOutcome
from offerwise.schemas.analytics import AnalyticsQuery, NegotiationContext, RecommendationOptions
from offerwise.schemas.tracking import ContextualFactors


class StartTrackingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    property_id: str = Field(min_length=1)
    property_type: PropertyType
    market_condition: MarketCondition
    contextual_factors: ContextualFactors | None = None


class DocumentEventRequest(BaseModel):
    kind: str = Field(min_length=1)
    text: str
    offer_amount: float | None = Field(default=None, ge=0)
    listing_price: float | None = Field(default=None, gt=0)


class OfferEventRequest(BaseModel):
    kind: OfferEventKind
    amount: float = Field(ge=0)
    listing_price: float = Field(gt=0)
    response_time: float | None = None
    notes: str | None = None


class ContextUpdateRequest(BaseModel):
    context: dict[str, Any]


class OutcomeRequest(BaseModel):
    outcome: SessionOutcome
    final_amount: float | None = Field(default=None, ge=0)
    days_to_close: float | None = Field(default=None, ge=0)
    notes: str | None = None


class RecommendationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    context: NegotiationContext
    options: RecommendationOptions | None = None


class ReportRequest(BaseModel):
    query: AnalyticsQuery | None = None
