"""Content-safety checks for search results and free-text preferences."""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

from itinerary_engine.config import get_logger
from itinerary_engine.schemas import RawPlace

logger = get_logger(__name__)

_INAPPROPRIATE_PATTERNS: Tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(xxx|porn|adult|nsfw|sex|nude|naked)\b", re.IGNORECASE),
    re.compile(r"\b(kill|murder|violence|bomb|terrorist|weapon|gun)\b", re.IGNORECASE),
    re.compile(r"\b(drug|weed|cocaine|heroin|meth|cannabis)\b", re.IGNORECASE),
    re.compile(r"\b(hate|racist|nazi|supremacist)\b", re.IGNORECASE),
    # personal data: SSN, card numbers, emails, long digit runs
    re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),
    re.compile(r"\b\d{16}\b"),
    re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE),
    re.compile(r"\b\d{10,}\b"),
)

_SUSPICIOUS_PATTERNS: Tuple[re.Pattern[str], ...] = (
    re.compile(r"\bscript\b.*\balert\b", re.IGNORECASE),
    re.compile(r"\bselect\b.*\bfrom\b", re.IGNORECASE),
    re.compile(r"\bdrop\b.*\btable\b", re.IGNORECASE),
    re.compile(r"<[^>]*>"),
    re.compile(r"\$\{.*\}"),
    re.compile(r"\.\./"),
)

BLOCKED_VENUE_TYPES = frozenset({"adult_entertainment", "liquor_store", "casino", "night_club"})

MAX_INPUT_LENGTH = 500


def contains_inappropriate_content(text: str) -> bool:
    return any(p.search(text) for p in _INAPPROPRIATE_PATTERNS)


def contains_suspicious_patterns(text: str) -> bool:
    return any(p.search(text) for p in _SUSPICIOUS_PATTERNS)


def sanitize_input(text: str) -> str:
    """Strip markup and SQL-ish fragments, collapse whitespace, cap the length."""
    cleaned = re.sub(r"<[^>]*>", "", text or "")
    cleaned = re.sub(r"\b(drop|delete|truncate|alter|create)\s+(table|database)", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned[:MAX_INPUT_LENGTH]


def is_valid_user_input(text: Optional[str]) -> Tuple[bool, Optional[str]]:
    if not text or not text.strip():
        return False, "Empty input"
    if contains_inappropriate_content(text):
        return False, "Inappropriate content detected"
    if contains_suspicious_patterns(text):
        return False, "Suspicious patterns detected"
    if not re.search(r"[a-zA-Z]{2,}", text):
        return False, "Input must contain meaningful text"
    words = text.lower().split()
    if len(words) > 5 and len(set(words)) < len(words) / 3:
        return False, "Input contains excessive repetition"
    return True, None


def is_safe_place(place: RawPlace) -> bool:
    if any(t in BLOCKED_VENUE_TYPES for t in place.types):
        return False
    if place.name and contains_inappropriate_content(place.name):
        return False
    return True


def filter_places(places: Iterable[RawPlace]) -> List[RawPlace]:
    kept: List[RawPlace] = []
    dropped = 0
    for place in places:
        if is_safe_place(place):
            kept.append(place)
        else:
            dropped += 1
    if dropped:
        logger.info("Safety filter removed %d place(s)", dropped)
    return kept


def clean_free_text(entries: Iterable[str]) -> List[str]:
    """Sanitize free-text preferences and drop the ones that fail validation."""
    out: List[str] = []
    for raw in entries:
        if raw is None:
            continue
        text = sanitize_input(str(raw))
        valid, reason = is_valid_user_input(text)
        if not valid:
            logger.warning("Dropping free-text preference %r: %s", raw, reason)
            continue
        out.append(text)
    return out
