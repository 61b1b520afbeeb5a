"""Free-text preference normalization.

Turns a user's free text ("we love hot springs and little cafes") into
session tags with a category, a confidence and search terms. Session tags
belong to the current request or session only; nothing here is persisted.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from itinerary_engine.config import get_logger
from itinerary_engine.schemas import PoiCategory
from itinerary_engine.tools.safety import is_valid_user_input, sanitize_input

logger = get_logger(__name__)

PHRASE_CONFIDENCE = 0.9
WORD_CONFIDENCE = 0.7
GENERIC_CONFIDENCE = 0.3
MIN_SEARCH_CONFIDENCE = 0.5
MIN_TAG_LENGTH = 3
MAX_TAG_LENGTH = 100

# keyword -> (category, search terms); the first term is the normalized preference
CATEGORY_MAPPINGS: Dict[str, Tuple[PoiCategory, Tuple[str, ...]]] = {
    # water
    "water": (PoiCategory.BEACH, ("water parks", "beaches", "swimming pools", "aquariums")),
    "swim": (PoiCategory.BEACH, ("swimming pools", "beaches", "water sports")),
    "beach": (PoiCategory.BEACH, ("beaches", "seaside", "coastal areas")),
    "onsen": (PoiCategory.SPA, ("hot springs", "onsen", "spa", "thermal baths")),
    "hot spring": (PoiCategory.SPA, ("hot springs", "onsen", "thermal baths")),
    "aquarium": (PoiCategory.ENTERTAINMENT, ("aquariums", "marine life", "sea world")),
    # food
    "food": (PoiCategory.FOOD, ("restaurants", "local cuisine", "food markets")),
    "eat": (PoiCategory.FOOD, ("restaurants", "cafes", "dining")),
    "restaurant": (PoiCategory.FOOD, ("restaurants", "dining", "eateries")),
    "cafe": (PoiCategory.FOOD, ("cafes", "coffee shops", "bakeries")),
    "street food": (PoiCategory.FOOD, ("street food", "food markets", "food stalls")),
    "local food": (PoiCategory.FOOD, ("local cuisine", "traditional restaurants", "authentic food")),
    # culture
    "temple": (PoiCategory.CULTURE, ("temples", "shrines", "religious sites")),
    "shrine": (PoiCategory.CULTURE, ("shrines", "temples", "spiritual sites")),
    "museum": (PoiCategory.CULTURE, ("museums", "galleries", "exhibitions")),
    "culture": (PoiCategory.CULTURE, ("cultural sites", "heritage", "historical places")),
    "history": (PoiCategory.CULTURE, ("historical sites", "monuments", "heritage")),
    "art": (PoiCategory.CULTURE, ("art galleries", "museums", "exhibitions")),
    # nature
    "nature": (PoiCategory.NATURE, ("parks", "gardens", "nature reserves")),
    "park": (PoiCategory.NATURE, ("parks", "gardens", "green spaces")),
    "garden": (PoiCategory.NATURE, ("gardens", "botanical gardens", "parks")),
    "mountain": (PoiCategory.NATURE, ("mountains", "hiking trails", "viewpoints")),
    "hike": (PoiCategory.NATURE, ("hiking trails", "nature walks", "trekking")),
    # shopping
    "shop": (PoiCategory.SHOPPING, ("shopping malls", "markets", "stores")),
    "shopping": (PoiCategory.SHOPPING, ("shopping centers", "retail", "boutiques")),
    "market": (PoiCategory.SHOPPING, ("markets", "bazaars", "shopping streets")),
    "mall": (PoiCategory.SHOPPING, ("shopping malls", "department stores")),
    # nightlife
    "night": (PoiCategory.NIGHTLIFE, ("nightlife", "bars", "evening entertainment")),
    "bar": (PoiCategory.NIGHTLIFE, ("bars", "pubs", "lounges")),
    "club": (PoiCategory.NIGHTLIFE, ("nightclubs", "dance clubs", "party venues")),
    "party": (PoiCategory.NIGHTLIFE, ("party venues", "nightclubs", "entertainment")),
}

# longest keys first so "street food" claims its words before "food" can
_PHRASE_PATTERNS: Tuple[Tuple[str, re.Pattern[str]], ...] = tuple(
    (key, re.compile(rf"\b{re.escape(key)}(?:s|es)?\b"))
    for key in sorted(CATEGORY_MAPPINGS, key=len, reverse=True)
)
_SINGLE_WORD_KEYS = tuple(k for k, _ in _PHRASE_PATTERNS if " " not in k)


@dataclass(frozen=True)
class SessionTag:
    raw: str
    normalized: str
    category: Optional[PoiCategory]
    confidence: float
    search_terms: Tuple[str, ...] = ()

    @property
    def query(self) -> str:
        return self.search_terms[0] if self.search_terms else self.normalized

    @property
    def searchable(self) -> bool:
        return self.confidence >= MIN_SEARCH_CONFIDENCE


def _tag(raw: str, key: str, confidence: float) -> SessionTag:
    category, terms = CATEGORY_MAPPINGS[key]
    return SessionTag(raw=raw, normalized=key, category=category, confidence=confidence, search_terms=terms)


def process_session_tags(free_text: Optional[str]) -> List[SessionTag]:
    """Normalize one free-text entry into session tags.

    Whole keyword matches (plural forms included) get high confidence. When
    none match, each word is tried as an extension of a single-word keyword
    ("gardening" -> garden) at medium confidence. Anything else becomes a
    single low-confidence generic tag carrying the text itself. Unsafe or
    meaningless input yields no tags.
    """
    text = sanitize_input(free_text or "")
    valid, reason = is_valid_user_input(text)
    if not valid or not MIN_TAG_LENGTH <= len(text) < MAX_TAG_LENGTH:
        logger.warning("Ignoring free-text preference %r: %s", free_text, reason or "length out of range")
        return []
    lower = text.lower()

    tags: List[SessionTag] = []
    claimed: List[Tuple[int, int]] = []
    for key, pattern in _PHRASE_PATTERNS:
        for match in pattern.finditer(lower):
            if any(start <= match.start() and match.end() <= end for start, end in claimed):
                continue
            claimed.append(match.span())
            if all(t.normalized != key for t in tags):
                tags.append(_tag(text, key, PHRASE_CONFIDENCE))
    if tags:
        return tags

    for word in re.findall(r"[a-z]+", lower):
        key = next((k for k in _SINGLE_WORD_KEYS if word.startswith(k)), None)
        if key and all(t.normalized != key for t in tags):
            tags.append(_tag(word, key, WORD_CONFIDENCE))
    if tags:
        return tags

    return [SessionTag(raw=text, normalized=lower, category=None, confidence=GENERIC_CONFIDENCE)]


def preference_tags(entries: Iterable[str]) -> List[str]:
    """Preference strings for free-text entries, confident tags first.

    A generic tag keeps the user's own words so an unmatched interest is still
    searched (and reported as a gap when nothing is found).
    """
    out: List[str] = []
    for entry in entries:
        for tag in process_session_tags(entry):
            out.append(tag.query)
    return out


def search_query_for(free_text: str) -> Optional[str]:
    tags = process_session_tags(free_text)
    if not tags:
        return None
    confident = [t for t in tags if t.searchable]
    return (confident or tags)[0].query


def infer_signals(tags: Iterable[SessionTag]) -> Dict[str, List[str]]:
    """Profile updates implied by confident tags: food keywords become
    cuisine preferences, everything else an activity preference."""
    cuisines: List[str] = []
    activities: List[str] = []
    for tag in tags:
        if not tag.searchable or tag.category is None:
            continue
        target = cuisines if tag.category == PoiCategory.FOOD else activities
        if tag.normalized not in target:
            target.append(tag.normalized)
    signals: Dict[str, List[str]] = {}
    if cuisines:
        signals["cuisine_preferences"] = cuisines
    if activities:
        signals["activity_preferences"] = activities
    return signals


def needs_clarification(free_text: Optional[str]) -> bool:
    """True for input too vague to act on: a question, or nothing recognizable."""
    text = (free_text or "").strip()
    if len(text) < MIN_TAG_LENGTH or "?" in text:
        return True
    tags = process_session_tags(text)
    return not any(t.searchable for t in tags)
