"""Strategy recommendation endpoints for API v1."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Response

from offerwise.api.v1._authz import envelope, require_identity
from offerwise.core.dependencies import get_analytics_service
from offerwise.schemas.requests import RecommendationRequest
from offerwise.services.analytics_service import NegotiationAnalyticsService

router = APIRouter(tags=["recommendations"])


@router.post("/recommendations")
def generate_recommendations(
    payload: RecommendationRequest,
    response: Response,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    result = service.generate_recommendations(identity.agent_id, payload.context, payload.options)
    return envelope(result, response)
