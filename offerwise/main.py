"""FastAPI application entrypoint."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from offerwise.api.v1 import get_api_router
from offerwise.core.config import get_config
from offerwise.core.exceptions import NotAuthenticated, OfferWiseException
from offerwise.core.logging_config import configure_logging
from offerwise.schemas.common import ErrorEnvelope

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    cfg = get_config()
    app = FastAPI(title=cfg.APP_NAME, version=cfg.APP_VERSION, debug=cfg.DEBUG)
    app.include_router(get_api_router())

    @app.exception_handler(OfferWiseException)
    def handle_offerwise_error(request: Request, exc: OfferWiseException) -> JSONResponse:
        logger.warning(
            "api.unhandled_domain_error: %s",
            exc,
            extra={"event": "api.unhandled_domain_error", "path": request.url.path},
        )
        code = 401 if isinstance(exc, NotAuthenticated) else 500
        body = ErrorEnvelope(error_code=exc.error_code, detail=str(exc))
        return JSONResponse(status_code=code, content=body.model_dump())

    @app.get("/")
    def root() -> dict:
        return {"service": cfg.APP_NAME, "version": cfg.APP_VERSION, "api_prefix": cfg.API_PREFIX}

    logger.info("app.created", extra={"event": "app.created"})
    return app


# ASGI entrypoint for `uvicorn offerwise.main:app`.
app = create_app()
