# itinerary_engine/config.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

LOG_LEVEL_ENV = "ITINERARY_ENGINE_LOG_LEVEL"


def get_logger(name: str) -> logging.Logger:
    """Return a module logger with the engine's handler and level applied once."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(handler)
    level = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
    logger.setLevel(getattr(logging, level, logging.INFO))
    logger.propagate = False
    return logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class Settings:
    google_places_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    search_timeout: float = 10.0
    plan_timeout: float = 30.0
    duration_timeout: float = 8.0
    session_ttl_hours: float = 4.0
    max_days: int = 30


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r; using %s", name, raw, default)
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default


def load_settings() -> Settings:
    """Build settings from the environment (and .env, loaded at import)."""
    settings = Settings(
        google_places_api_key=os.getenv("GOOGLE_PLACES_API_KEY") or None,
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        model=os.getenv("ITINERARY_ENGINE_MODEL") or "gpt-4o-mini",
        search_timeout=_float_env("ITINERARY_ENGINE_SEARCH_TIMEOUT", 10.0),
        plan_timeout=_float_env("ITINERARY_ENGINE_PLAN_TIMEOUT", 30.0),
        duration_timeout=_float_env("ITINERARY_ENGINE_DURATION_TIMEOUT", 8.0),
        session_ttl_hours=_float_env("ITINERARY_ENGINE_SESSION_TTL_HOURS", 4.0),
        max_days=_int_env("ITINERARY_ENGINE_MAX_DAYS", 30),
    )
    if not settings.google_places_api_key:
        logger.warning("GOOGLE_PLACES_API_KEY not set; place searches will return no results")
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set; planning assist will fall back to deterministic scheduling")
    return settings
