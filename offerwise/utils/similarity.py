"""Context similarity matching for the recommendation engine."""

from __future__ import annotations

from collections.abc import Iterable

from offerwise.schemas.analytics import NegotiationContext, PriceRange

PRICE_TOLERANCE = 0.2

MATCHABLE_FIELDS = ("property_type", "market_conditions", "multiple_offers", "price_range")


def midpoint(price_range: PriceRange) -> float:
    """Midpoint of a band; an unbounded band is represented by its floor."""
    if price_range.max is None:
        return price_range.min
    return (price_range.min + price_range.max) / 2


def is_price_range_match(first: PriceRange | None, second: PriceRange | None) -> bool:
    if first is None or second is None:
        return False
    first_mid = midpoint(first)
    second_mid = midpoint(second)
    return abs(first_mid - second_mid) <= max(first_mid, second_mid) * PRICE_TOLERANCE


def matches_context(candidate: NegotiationContext, target: NegotiationContext, fields: Iterable[str]) -> bool:
    """True when ``candidate`` agrees with ``target`` on every requested field.

    Categorical fields compare by equality and price ranges by midpoint
    tolerance, so the relation is symmetric in its two arguments.
    """
    for field in fields:
        if field == "price_range":
            if not is_price_range_match(candidate.price_range, target.price_range):
                return False
        elif field in MATCHABLE_FIELDS:
            if getattr(candidate, field) != getattr(target, field):
                return False
        else:
            raise ValueError(f"Unsupported similarity field: {field}")
    return True
