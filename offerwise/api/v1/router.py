"""Root API router for v1 endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from offerwise.api.v1 import analytics, health, recommendations, tracking
from offerwise.core.config import get_config


def get_api_router() -> APIRouter:
    api_router = APIRouter(prefix=get_config().API_PREFIX)
    api_router.include_router(health.router)
    api_router.include_router(tracking.router)
    api_router.include_router(analytics.router)
    api_router.include_router(recommendations.router)
    return api_router
