"""In-progress negotiation tracking state."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from offerwise.core.enums import (
    MarketTrend,
    OfferEventKind,
    Season,
    SessionOutcome,
    SessionState,
    SignalCategory,
    TransactionType,
)
from offerwise.schemas.analytics import Location, NegotiationContext, PriceRange, StrategySignal


class ContextualFactors(BaseModel):
    """Optional context supplied when a tracking session starts."""

    model_config = ConfigDict(extra="forbid")

    buyer_agent: str | None = None
    seller_agent: str | None = None
    competing_offers: int | None = Field(default=None, ge=0)
    days_on_market: int | None = Field(default=None, ge=0)
    multiple_offers: bool | None = None
    price_range: PriceRange | None = None
    season: Season | None = None
    location: Location | None = None
    transaction_type: TransactionType | None = None
    market_trend: MarketTrend | None = None


@dataclass
class DocumentEvent:
    kind: str
    text: str
    signals: list[StrategySignal]
    occurred_at: datetime
    offer_amount: float | None = None
    listing_price: float | None = None

    def has_signal(self, category: SignalCategory) -> bool:
        return any(signal.category == category for signal in self.signals)


@dataclass
class OfferEvent:
    kind: OfferEventKind
    amount: float
    listing_price: float
    occurred_at: datetime
    response_time: float | None = None
    notes: str | None = None


@dataclass
class OutcomeEvent:
    outcome: SessionOutcome
    occurred_at: datetime
    final_amount: float | None = None
    days_to_close: float | None = None
    notes: str | None = None


@dataclass
class TrackingSession:
    """Mutable working state for one negotiation still in progress."""

    session_id: str
    agent_id: str
    property_id: str
    context: NegotiationContext
    created_at: datetime
    updated_at: datetime
    document_history: list[DocumentEvent] = field(default_factory=list)
    offer_history: list[OfferEvent] = field(default_factory=list)
    outcome_history: list[OutcomeEvent] = field(default_factory=list)
    final_outcome: SessionOutcome | None = None
    state: SessionState = SessionState.ACTIVE

    def snapshot(self) -> TrackingSession:
        return copy.deepcopy(self)

