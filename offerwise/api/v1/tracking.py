"""Negotiation tracking endpoints for API v1."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status

from offerwise.api.v1._authz import envelope, require_identity
from offerwise.auth.agent_context import AgentIdentity
from offerwise.core.dependencies import acting_as, get_analytics_service
from offerwise.schemas.requests import (
    ContextUpdateRequest,
    DocumentEventRequest,
    OfferEventRequest,
    OutcomeRequest,
    StartTrackingRequest,
)
from offerwise.services.analytics_service import NegotiationAnalyticsService

router = APIRouter(prefix="/tracking", tags=["tracking"])


def _check_owner(service: NegotiationAnalyticsService, session_id: str, identity: AgentIdentity) -> None:
    session = service.tracker.get_session(session_id)
    if session is not None and session.agent_id != identity.agent_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Session not found: {session_id}")


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
def start_session(
    payload: StartTrackingRequest,
    response: Response,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    with acting_as(identity):
        result = service.start_tracking(
            payload.property_id,
            payload.property_type,
            payload.market_condition,
            payload.contextual_factors,
        )
    return envelope(result, response)


@router.post("/sessions/{session_id}/documents")
def record_document(
    session_id: str,
    payload: DocumentEventRequest,
    response: Response,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    _check_owner(service, session_id, identity)
    result = service.record_document_event(
        session_id,
        payload.kind,
        payload.text,
        offer_amount=payload.offer_amount,
        listing_price=payload.listing_price,
    )
    return envelope(result, response)


@router.post("/sessions/{session_id}/offers")
def record_offer(
    session_id: str,
    payload: OfferEventRequest,
    response: Response,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    _check_owner(service, session_id, identity)
    result = service.record_offer_event(
        session_id,
        payload.kind,
        payload.amount,
        payload.listing_price,
        response_time=payload.response_time,
        notes=payload.notes,
    )
    return envelope(result, response)


@router.patch("/sessions/{session_id}/context")
def update_context(
    session_id: str,
    payload: ContextUpdateRequest,
    response: Response,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    _check_owner(service, session_id, identity)
    return envelope(service.update_context(session_id, payload.context), response)


@router.post("/sessions/{session_id}/outcome")
def finalize_outcome(
    session_id: str,
    payload: OutcomeRequest,
    response: Response,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    _check_owner(service, session_id, identity)
    result = service.finalize_outcome(
        session_id,
        payload.outcome,
        final_amount=payload.final_amount,
        days_to_close=payload.days_to_close,
        notes=payload.notes,
    )
    return envelope(result, response)
