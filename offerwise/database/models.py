"""SQLAlchemy models for negotiation records and analytics caching."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from offerwise.utils.clock import utcnow


class Base(DeclarativeBase):
    """Declarative base class for the analytics schema."""


class NegotiationRecordRow(Base):
    __tablename__ = "negotiation_records"
    __table_args__ = (Index("idx_negotiation_records_agent_created", "agent_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String(128), nullable=False)
    property_id: Mapped[str] = mapped_column(String(128), nullable=False)
    negotiation_id: Mapped[str] = mapped_column(String(128), nullable=False)
    context: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    strategy: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    outcome: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class AnalyticsCacheRow(Base):
    """Cached analytics or recommendation payload, scoped by agent."""

    __tablename__ = "analytics_cache"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    scope: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    payload: Mapped[Any] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class AgentAnalyticsRow(Base):
    """Latest computed analytics snapshot per agent."""

    __tablename__ = "agent_analytics"

    agent_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
