"""Success-rate analytics and report endpoints for API v1."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Response

from offerwise.api.v1._authz import envelope, require_identity
from offerwise.core.dependencies import get_analytics_service
from offerwise.core.enums import ReportKind
from offerwise.schemas.analytics import AnalyticsQuery
from offerwise.schemas.requests import ReportRequest
from offerwise.services.analytics_service import NegotiationAnalyticsService

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.post("")
def compute_analytics(
    response: Response,
    query: AnalyticsQuery | None = None,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    return envelope(service.compute_analytics(identity.agent_id, query), response)


@router.post("/reports/{kind}")
def generate_report(
    kind: ReportKind,
    response: Response,
    payload: ReportRequest | None = None,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    query = payload.query if payload else None
    return envelope(service.generate_report(kind, identity.agent_id, query), response)


@router.get("/sufficiency")
def check_data_sufficiency(
    response: Response,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    return envelope(service.check_data_sufficiency(identity.agent_id), response)


@router.get("/health")
def analytics_health(
    response: Response,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    return envelope(service.health_status(identity.agent_id), response)


@router.delete("/cache")
def clear_cache(
    response: Response,
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: NegotiationAnalyticsService = Depends(get_analytics_service),
) -> dict:
    identity = require_identity(authorization)
    return envelope(service.clear_cache(identity.agent_id), response)
