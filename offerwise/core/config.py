"""Configuration module for the OfferWise analytics core."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse

from dotenv import load_dotenv

from offerwise.core.exceptions import ConfigurationError

load_dotenv()

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_DATABASE_SCHEMES = frozenset({"sqlite", "postgresql", "postgresql+psycopg2"})


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    try:
        value = int(raw) if raw is not None else default
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}.") from exc
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}.")
    return value


def _env_ratio(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        value = float(raw) if raw is not None else default
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}.") from exc
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be between 0 and 1.")
    return value


@dataclass(frozen=True)
class Config:
    """Runtime configuration; every field is validated at build time."""

    APP_NAME: str
    APP_VERSION: str
    ENV: str
    DEBUG: bool
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ACCESS_TTL_MINUTES: int
    API_PREFIX: str
    LOG_LEVEL: str
    LOG_FILE: str
    # analytics and recommendation tuning
    ANALYTICS_CACHE_TTL_MINUTES: int
    RECOMMENDATION_CACHE_TTL_MINUTES: int
    MIN_ANALYTICS_DATA_POINTS: int
    MIN_RECOMMENDATION_DATA_POINTS: int
    OPTIMAL_DATA_POINTS: int
    CONFIDENCE_THRESHOLD: float
    DEFAULT_LOOKBACK_DAYS: int
    ANALYTICS_FETCH_LIMIT: int
    SIMILAR_RECORDS_LIMIT: int
    SESSION_MAX_AGE_HOURS: int
    RECOMMENDATION_VALIDITY_DAYS: int
    ANALYTICS_PARALLEL_DIMENSIONS: bool

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "sqlite:///./offerwise.db")
    parsed = urlparse(url)
    if parsed.scheme not in _DATABASE_SCHEMES:
        raise ConfigurationError("DATABASE_URL must be a sqlite:// or postgresql:// URL.")
    if parsed.scheme != "sqlite" and not parsed.hostname:
        raise ConfigurationError("PostgreSQL DATABASE_URL is missing hostname.")
    return url


def _build_config(env: str | None = None) -> Config:
    resolved_env = (env or os.getenv("ENV", "development")).strip().lower()
    production = resolved_env == "production"

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigurationError(f"LOG_LEVEL must be one of {', '.join(sorted(_LOG_LEVELS))}.")

    jwt_secret = os.getenv("JWT_SECRET", "change_me_jwt_secret")
    if production and "change_me" in jwt_secret.lower():
        raise ConfigurationError("Production JWT_SECRET uses a placeholder value.")

    return Config(
        APP_NAME="OfferWise",
        APP_VERSION=os.getenv("APP_VERSION", "1.0.0"),
        ENV=resolved_env,
        DEBUG=False if production else _env_flag("DEBUG", True),
        DATABASE_URL=_database_url(),
        JWT_SECRET=jwt_secret,
        JWT_ACCESS_TTL_MINUTES=_env_int("JWT_ACCESS_TTL_MINUTES", 60),
        API_PREFIX=os.getenv("API_PREFIX", "/api/v1"),
        LOG_LEVEL=log_level,
        LOG_FILE=os.getenv("LOG_FILE", ""),
        ANALYTICS_CACHE_TTL_MINUTES=_env_int("ANALYTICS_CACHE_TTL_MINUTES", 60),
        RECOMMENDATION_CACHE_TTL_MINUTES=_env_int("RECOMMENDATION_CACHE_TTL_MINUTES", 120),
        MIN_ANALYTICS_DATA_POINTS=_env_int("MIN_ANALYTICS_DATA_POINTS", 5),
        MIN_RECOMMENDATION_DATA_POINTS=_env_int("MIN_RECOMMENDATION_DATA_POINTS", 3),
        OPTIMAL_DATA_POINTS=_env_int("OPTIMAL_DATA_POINTS", 10),
        CONFIDENCE_THRESHOLD=_env_ratio("CONFIDENCE_THRESHOLD", 0.6),
        DEFAULT_LOOKBACK_DAYS=_env_int("DEFAULT_LOOKBACK_DAYS", 90),
        ANALYTICS_FETCH_LIMIT=_env_int("ANALYTICS_FETCH_LIMIT", 1000),
        SIMILAR_RECORDS_LIMIT=_env_int("SIMILAR_RECORDS_LIMIT", 100),
        SESSION_MAX_AGE_HOURS=_env_int("SESSION_MAX_AGE_HOURS", 24),
        RECOMMENDATION_VALIDITY_DAYS=_env_int("RECOMMENDATION_VALIDITY_DAYS", 7),
        ANALYTICS_PARALLEL_DIMENSIONS=_env_flag("ANALYTICS_PARALLEL_DIMENSIONS", True),
    )


@lru_cache(maxsize=8)
def get_config(env: str | None = None) -> Config:
    """Get validated configuration for the requested environment."""
    return _build_config(env)
