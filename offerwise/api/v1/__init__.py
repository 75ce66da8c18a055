"""Version 1 API package."""

from offerwise.api.v1.router import get_api_router

__all__ = ["get_api_router"]
