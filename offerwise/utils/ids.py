"""Identifier generation helpers."""

from __future__ import annotations

from datetime import datetime

from offerwise.utils.clock import epoch_millis


def new_session_id(property_id: str, started_at: datetime) -> str:
    """Session ids combine the property id with the start time in epoch millis."""
    return f"{property_id}-{epoch_millis(started_at)}"


def new_report_id(kind: str, started_at: datetime) -> str:
    """Report ids are the report kind suffixed with the generation time in epoch millis."""
    return f"{kind}_{epoch_millis(started_at)}"
