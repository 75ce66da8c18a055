"""Deterministic validators and sanitizers for negotiation input."""

from __future__ import annotations

from dataclasses import dataclass, field

from offerwise.schemas.analytics import NegotiationRecord

MAX_OFFER_PERCENTAGE = 200.0


@dataclass(frozen=True)
class RecordValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def sanitize_text(value: str | None, max_len: int = 20000) -> str:
    """Sanitize free-form document text before signal extraction."""
    if value is None:
        return ""
    cleaned = str(value).replace("\x00", "").strip()
    return cleaned[:max_len]


def validate_negotiation_record(record: NegotiationRecord) -> RecordValidation:
    """Check identity fields and value ranges before a record is written."""
    errors: list[str] = []
    warnings: list[str] = []

    if not record.agent_id.strip():
        errors.append("Agent ID is required")
    if not record.client_id.strip():
        errors.append("Client ID is required")
    if not record.property_id.strip():
        errors.append("Property ID is required")
    if not record.negotiation_id.strip():
        errors.append("Negotiation ID is required")

    percentage = record.strategy.initial_offer_percentage
    if percentage < 0 or percentage > MAX_OFFER_PERCENTAGE:
        warnings.append("Initial offer percentage seems unusual (outside 0-200%)")

    if record.context.days_on_market < 0:
        errors.append("Days on market cannot be negative")
    if record.context.competing_offers < 0:
        errors.append("Competing offers cannot be negative")

    return RecordValidation(valid=not errors, errors=errors, warnings=warnings)
