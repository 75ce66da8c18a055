"""Dependency providers for API handlers and scripts."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from functools import lru_cache

from offerwise.auth.agent_context import AgentIdentity, ContextIdentityProvider, from_claims
from offerwise.auth.jwt import decode_access_token
from offerwise.core.config import Config, get_config
from offerwise.database.db import init_db
from offerwise.services.analytics_service import NegotiationAnalyticsService, create_analytics_service

identity_provider = ContextIdentityProvider()


def get_settings() -> Config:
    """Return validated application configuration."""
    return get_config()


def get_current_agent(token: str, settings: Config | None = None) -> AgentIdentity:
    """Resolve the calling agent from a bearer token."""
    cfg = settings or get_settings()
    return from_claims(decode_access_token(token, secret=cfg.JWT_SECRET))


@lru_cache(maxsize=1)
def get_analytics_service() -> NegotiationAnalyticsService:
    """Process-wide service; tracking sessions live as long as it does."""
    init_db()
    return create_analytics_service(config=get_settings(), identity=identity_provider)


@contextmanager
def acting_as(identity: AgentIdentity) -> Iterator[AgentIdentity]:
    """Bind ``identity`` as the current agent for the duration of the block."""
    token = identity_provider.bind(identity)
    try:
        yield identity
    finally:
        identity_provider.reset(token)
