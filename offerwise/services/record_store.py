"""Durable store of negotiation records and per-agent analytics snapshots."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager
from datetime import datetime
from threading import Lock
from typing import Any, Protocol

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from offerwise.core.exceptions import UpstreamFailure, ValidationFailure
from offerwise.database.db import get_db_session
from offerwise.database.models import AgentAnalyticsRow, NegotiationRecordRow
from offerwise.schemas.analytics import AnalyticsResult, DateRange, NegotiationRecord
from offerwise.services.cache_service import AnalyticsCache
from offerwise.utils.clock import Clock, ensure_utc, utcnow
from offerwise.utils.validators import validate_negotiation_record

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractContextManager[Session]]

UPDATABLE_FIELDS = frozenset({"client_id", "property_id", "negotiation_id", "context", "strategy", "outcome"})


class RecordStore(Protocol):
    def fetch(
        self,
        agent_id: str,
        date_range: DateRange | None = None,
        limit: int | None = None,
    ) -> list[NegotiationRecord]: ...

    def get(self, record_id: str) -> NegotiationRecord | None: ...

    def create(self, record: NegotiationRecord) -> NegotiationRecord: ...

    def update(self, record_id: str, partial: Mapping[str, Any]) -> NegotiationRecord: ...

    def store_agent_analytics(self, agent_id: str, analytics: AnalyticsResult) -> None: ...

    def get_agent_analytics(self, agent_id: str) -> AnalyticsResult | None: ...


def _checked(record: NegotiationRecord) -> NegotiationRecord:
    report = validate_negotiation_record(record)
    for warning in report.warnings:
        logger.warning(
            "records.validation_warning: %s",
            warning,
            extra={"event": "records.validation_warning", "agent_id": record.agent_id},
        )
    if not report.valid:
        raise ValidationFailure("Invalid negotiation record.", errors=report.errors)
    return record


def _merged(existing: NegotiationRecord, partial: Mapping[str, Any], now: datetime) -> NegotiationRecord:
    unknown = set(partial) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationFailure(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    payload = existing.model_dump()
    payload.update(partial)
    payload["updated_at"] = now
    payload["version"] = existing.version + 1
    try:
        return NegotiationRecord.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailure("Invalid negotiation record update.", errors=[str(exc)]) from exc


class InMemoryRecordStore:
    """Dictionary-backed store; the reference implementation for tests."""

    def __init__(self, cache: AnalyticsCache | None = None, clock: Clock = utcnow) -> None:
        self._cache = cache
        self._clock = clock
        self._records: dict[str, NegotiationRecord] = {}
        self._analytics: dict[str, AnalyticsResult] = {}
        self._lock = Lock()

    def fetch(
        self,
        agent_id: str,
        date_range: DateRange | None = None,
        limit: int | None = None,
    ) -> list[NegotiationRecord]:
        with self._lock:
            records = [record for record in self._records.values() if record.agent_id == agent_id]
        if date_range is not None:
            records = [
                record
                for record in records
                if date_range.start_date <= record.created_at <= date_range.end_date
            ]
        records.sort(key=lambda record: record.created_at, reverse=True)
        return records[:limit] if limit is not None else records

    def get(self, record_id: str) -> NegotiationRecord | None:
        with self._lock:
            return self._records.get(record_id)

    def create(self, record: NegotiationRecord) -> NegotiationRecord:
        _checked(record)
        with self._lock:
            self._records[record.id] = record
        self._invalidate(record.agent_id)
        return record

    def update(self, record_id: str, partial: Mapping[str, Any]) -> NegotiationRecord:
        with self._lock:
            existing = self._records.get(record_id)
            if existing is None:
                raise ValidationFailure(f"Negotiation record not found: {record_id}")
            updated = _checked(_merged(existing, partial, self._clock()))
            self._records[record_id] = updated
        self._invalidate(updated.agent_id)
        return updated

    def store_agent_analytics(self, agent_id: str, analytics: AnalyticsResult) -> None:
        with self._lock:
            self._analytics[agent_id] = analytics

    def get_agent_analytics(self, agent_id: str) -> AnalyticsResult | None:
        with self._lock:
            return self._analytics.get(agent_id)

    def _invalidate(self, agent_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(agent_id)


def _to_record(row: NegotiationRecordRow) -> NegotiationRecord:
    return NegotiationRecord.model_validate(
        {
            "id": row.id,
            "agent_id": row.agent_id,
            "client_id": row.client_id,
            "property_id": row.property_id,
            "negotiation_id": row.negotiation_id,
            "context": row.context,
            "strategy": row.strategy,
            "outcome": row.outcome,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
            "version": row.version,
        }
    )


def _apply(row: NegotiationRecordRow, record: NegotiationRecord) -> None:
    payload = record.model_dump(mode="json")
    row.agent_id = record.agent_id
    row.client_id = record.client_id
    row.property_id = record.property_id
    row.negotiation_id = record.negotiation_id
    row.context = payload["context"]
    row.strategy = payload["strategy"]
    row.outcome = payload["outcome"]
    row.created_at = ensure_utc(record.created_at)
    row.updated_at = ensure_utc(record.updated_at)
    row.version = record.version


class SQLRecordStore:
    """Record store backed by the ``negotiation_records`` table."""

    def __init__(
        self,
        session_scope: SessionScope | None = None,
        cache: AnalyticsCache | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_scope = session_scope or get_db_session
        self._cache = cache
        self._clock = clock

    def fetch(
        self,
        agent_id: str,
        date_range: DateRange | None = None,
        limit: int | None = None,
    ) -> list[NegotiationRecord]:
        stmt = select(NegotiationRecordRow).where(NegotiationRecordRow.agent_id == agent_id)
        if date_range is not None:
            stmt = stmt.where(
                NegotiationRecordRow.created_at >= ensure_utc(date_range.start_date),
                NegotiationRecordRow.created_at <= ensure_utc(date_range.end_date),
            )
        stmt = stmt.order_by(NegotiationRecordRow.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with self._session_scope() as session:
                return [_to_record(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as exc:
            logger.exception("records.fetch_failed", extra={"event": "records.fetch_failed", "agent_id": agent_id})
            raise UpstreamFailure("Record store is unavailable.") from exc

    def get(self, record_id: str) -> NegotiationRecord | None:
        try:
            with self._session_scope() as session:
                row = session.get(NegotiationRecordRow, record_id)
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.exception("records.get_failed", extra={"event": "records.get_failed"})
            raise UpstreamFailure("Record store is unavailable.") from exc

    def create(self, record: NegotiationRecord) -> NegotiationRecord:
        _checked(record)
        try:
            with self._session_scope() as session:
                row = NegotiationRecordRow(id=record.id)
                _apply(row, record)
                session.add(row)
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("records.create_failed", extra={"event": "records.create_failed", "agent_id": record.agent_id})
            raise UpstreamFailure("Record store is unavailable.") from exc
        logger.info("records.created", extra={"event": "records.created", "agent_id": record.agent_id})
        self._invalidate(record.agent_id)
        return record

    def update(self, record_id: str, partial: Mapping[str, Any]) -> NegotiationRecord:
        try:
            with self._session_scope() as session:
                row = session.get(NegotiationRecordRow, record_id)
                if row is None:
                    raise ValidationFailure(f"Negotiation record not found: {record_id}")
                updated = _checked(_merged(_to_record(row), partial, self._clock()))
                _apply(row, updated)
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("records.update_failed", extra={"event": "records.update_failed"})
            raise UpstreamFailure("Record store is unavailable.") from exc
        logger.info("records.updated", extra={"event": "records.updated", "agent_id": updated.agent_id})
        self._invalidate(updated.agent_id)
        return updated

    def store_agent_analytics(self, agent_id: str, analytics: AnalyticsResult) -> None:
        try:
            with self._session_scope() as session:
                row = session.get(AgentAnalyticsRow, agent_id)
                if row is None:
                    row = AgentAnalyticsRow(agent_id=agent_id)
                    session.add(row)
                row.payload = analytics.model_dump(mode="json")
                row.calculated_at = ensure_utc(analytics.calculated_at)
                row.updated_at = ensure_utc(self._clock())
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("records.snapshot_failed", extra={"event": "records.snapshot_failed", "agent_id": agent_id})
            raise UpstreamFailure("Record store is unavailable.") from exc

    def get_agent_analytics(self, agent_id: str) -> AnalyticsResult | None:
        try:
            with self._session_scope() as session:
                row = session.get(AgentAnalyticsRow, agent_id)
                return AnalyticsResult.model_validate(row.payload) if row is not None else None
        except SQLAlchemyError as exc:
            logger.exception("records.snapshot_read_failed", extra={"event": "records.snapshot_read_failed", "agent_id": agent_id})
            raise UpstreamFailure("Record store is unavailable.") from exc

    def _invalidate(self, agent_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(agent_id)
