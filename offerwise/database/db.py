"""Engine and session lifecycle for the analytics tables."""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from offerwise.core.config import get_config
from offerwise.database.models import Base

logger = logging.getLogger(__name__)

config = get_config()


def _build_engine(database_url: str) -> Engine:
    # sqlite connections are shared across the API threadpool
    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=config.DEBUG, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        echo=config.DEBUG,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_size=10,
        max_overflow=20,
    )


engine = _build_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Session scope used by the SQL-backed record store and cache."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create the negotiation, cache and snapshot tables if missing."""
    Base.metadata.create_all(bind=engine)
    logger.info("database.initialized", extra={"event": "database.initialized"})


def verify_database_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("database.connection_failed", extra={"event": "database.connection_failed"})
        return False
    return True
