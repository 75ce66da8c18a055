"""Authenticated agent identity for tracking and analytics calls."""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Protocol

from offerwise.core.exceptions import NotAuthenticated


@dataclass(frozen=True)
class AgentIdentity:
    agent_id: str
    claims: dict[str, Any] = field(default_factory=dict)


class IdentityProvider(Protocol):
    def current_agent(self) -> AgentIdentity | None: ...


def from_claims(claims: dict[str, Any]) -> AgentIdentity:
    """Build an agent identity from decoded JWT claims."""
    agent_id = str(claims.get("sub") or "").strip()
    if not agent_id:
        raise NotAuthenticated("Token claims are missing the agent id.")
    return AgentIdentity(agent_id=agent_id, claims=dict(claims))


_current_agent: ContextVar[AgentIdentity | None] = ContextVar("offerwise_current_agent", default=None)


class ContextIdentityProvider:
    """Identity bound to the current request or task via a context variable."""

    def current_agent(self) -> AgentIdentity | None:
        return _current_agent.get()

    def bind(self, identity: AgentIdentity | None):
        return _current_agent.set(identity)

    def reset(self, token) -> None:
        _current_agent.reset(token)


class StaticIdentityProvider:
    """Fixed identity, for scripts and tests."""

    def __init__(self, identity: AgentIdentity | None) -> None:
        self._identity = identity

    def current_agent(self) -> AgentIdentity | None:
        return self._identity


def require_agent(provider: IdentityProvider) -> AgentIdentity:
    identity = provider.current_agent()
    if identity is None:
        raise NotAuthenticated("No authenticated agent identity is active.")
    return identity
