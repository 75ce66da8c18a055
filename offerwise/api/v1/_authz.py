"""Shared authorization and response helpers for API v1 route modules."""

from __future__ import annotations

from fastapi import HTTPException, Response, status

from offerwise.auth.agent_context import AgentIdentity
from offerwise.core.config import get_config
from offerwise.core.dependencies import get_current_agent
from offerwise.core.exceptions import NotAuthenticated
from offerwise.schemas.common import OperationResult

STATUS_BY_ERROR_CODE = {
    "not_authenticated": status.HTTP_401_UNAUTHORIZED,
    "validation_failure": 422,
    "upstream_failure": status.HTTP_503_SERVICE_UNAVAILABLE,
    "configuration_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "internal_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _extract_bearer_token(authorization: str | None) -> str:
    if authorization is None or not authorization.strip():
        raise NotAuthenticated("Authorization header is required.")
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise NotAuthenticated("Authorization header must use Bearer token.")
    return parts[1].strip()


def authorize(authorization: str | None) -> AgentIdentity:
    token = _extract_bearer_token(authorization)
    return get_current_agent(token=token, settings=get_config())


def map_auth_error(exc: Exception) -> tuple[int, str]:
    if isinstance(exc, NotAuthenticated):
        return status.HTTP_401_UNAUTHORIZED, str(exc)
    return status.HTTP_401_UNAUTHORIZED, "Unauthorized."


def require_identity(authorization: str | None) -> AgentIdentity:
    try:
        return authorize(authorization)
    except Exception as exc:
        code, detail = map_auth_error(exc)
        raise HTTPException(status_code=code, detail=detail) from exc


def envelope(result: OperationResult, response: Response) -> dict:
    """Serialize an operation result, setting the HTTP status for failures."""
    if not result.success:
        response.status_code = STATUS_BY_ERROR_CODE.get(result.error_code or "", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return result.model_dump(mode="json")
