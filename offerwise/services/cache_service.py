"""Agent-scoped key/value cache with per-entry TTL.

Expiry is checked lazily: an entry past its ``expires_at`` is reported as a
miss even when it is still physically present.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from offerwise.core.exceptions import UpstreamFailure
from offerwise.database.db import get_db_session
from offerwise.database.models import AnalyticsCacheRow
from offerwise.utils.clock import Clock, ensure_utc, utcnow

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractContextManager[Session]]


@dataclass(frozen=True)
class CacheLookup:
    hit: bool
    value: Any = None


@dataclass(frozen=True)
class CacheEntry:
    key: str
    scope: str
    payload: Any
    expires_at: datetime
    generated_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(self.expires_at) <= ensure_utc(now)


MISS = CacheLookup(hit=False)


class AnalyticsCache(Protocol):
    def get(self, key: str, scope: str) -> CacheLookup: ...

    def set(self, key: str, scope: str, value: Any, ttl_minutes: int) -> None: ...

    def invalidate(self, scope: str) -> int: ...


class InMemoryAnalyticsCache:
    """Process-local cache used by tests and single-node deployments."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = Lock()

    def get(self, key: str, scope: str) -> CacheLookup:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.scope != scope:
                return MISS
            if entry.is_expired(self._clock()):
                return MISS
            return CacheLookup(hit=True, value=entry.payload)

    def set(self, key: str, scope: str, value: Any, ttl_minutes: int) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key,
                scope=scope,
                payload=value,
                expires_at=now + timedelta(minutes=ttl_minutes),
                generated_at=now,
            )

    def invalidate(self, scope: str) -> int:
        with self._lock:
            keys = [key for key, entry in self._entries.items() if entry.scope == scope]
            for key in keys:
                del self._entries[key]
        logger.info("cache.invalidated", extra={"event": "cache.invalidated", "agent_id": scope})
        return len(keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SQLAnalyticsCache:
    """Cache backed by the ``analytics_cache`` table."""

    def __init__(self, session_scope: SessionScope | None = None, clock: Clock = utcnow) -> None:
        self._session_scope = session_scope or get_db_session
        self._clock = clock

    def get(self, key: str, scope: str) -> CacheLookup:
        try:
            with self._session_scope() as session:
                row = session.get(AnalyticsCacheRow, key)
                if row is None or row.scope != scope:
                    return MISS
                if ensure_utc(row.expires_at) <= ensure_utc(self._clock()):
                    return MISS
                return CacheLookup(hit=True, value=row.payload)
        except SQLAlchemyError as exc:
            logger.exception("cache.read_failed", extra={"event": "cache.read_failed", "cache_key": key})
            raise UpstreamFailure("Analytics cache is unavailable.") from exc

    def set(self, key: str, scope: str, value: Any, ttl_minutes: int) -> None:
        now = ensure_utc(self._clock())
        try:
            with self._session_scope() as session:
                row = session.get(AnalyticsCacheRow, key)
                if row is None:
                    row = AnalyticsCacheRow(key=key)
                    session.add(row)
                row.scope = scope
                row.payload = value
                row.generated_at = now
                row.expires_at = now + timedelta(minutes=ttl_minutes)
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("cache.write_failed", extra={"event": "cache.write_failed", "cache_key": key})
            raise UpstreamFailure("Analytics cache is unavailable.") from exc

    def invalidate(self, scope: str) -> int:
        try:
            with self._session_scope() as session:
                result = session.execute(delete(AnalyticsCacheRow).where(AnalyticsCacheRow.scope == scope))
                session.commit()
                removed = result.rowcount or 0
        except SQLAlchemyError as exc:
            logger.exception("cache.invalidate_failed", extra={"event": "cache.invalidate_failed", "agent_id": scope})
            raise UpstreamFailure("Analytics cache is unavailable.") from exc
        logger.info("cache.invalidated", extra={"event": "cache.invalidated", "agent_id": scope})
        return removed

