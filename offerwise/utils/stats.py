"""Small statistics helpers used by the aggregator and the recommender."""

from __future__ import annotations

from collections.abc import Iterable, Sequence


def success_rate(successful: int, total: int) -> float:
    """Ratio of successes, 0 for an empty denominator."""
    if total <= 0:
        return 0.0
    return successful / total


def mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def variance(values: Sequence[float]) -> float:
    """Population variance, 0 for fewer than one value."""
    avg = mean(values)
    if avg is None:
        return 0.0
    return sum((value - avg) ** 2 for value in values) / len(values)


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def sample_confidence(count: int, saturation: int) -> float:
    """Confidence that grows linearly with sample size up to ``saturation``."""
    if saturation <= 0:
        return 1.0
    return clamp(count / saturation, 0.0, 1.0)


def offer_consistency(percentages: Sequence[float]) -> float:
    """1 for identical offer percentages, decaying with variance (in points squared)."""
    return max(0.0, 1.0 - variance(percentages) / 100)


def rate_consistency(rates: Sequence[float]) -> float:
    """1 for a flat success-rate series, decaying with variance."""
    return max(0.0, 1.0 - variance(rates) * 10)


def most_common(values: Iterable[str], default: str) -> str:
    counts: dict[str, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    if not counts:
        return default
    # first-seen wins ties
    return max(counts.items(), key=lambda item: item[1])[0]
