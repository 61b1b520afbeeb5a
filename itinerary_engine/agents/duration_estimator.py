"""Visit-duration estimation for candidate POIs."""
from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from itinerary_engine.config import get_logger
from itinerary_engine.schemas import PoiCategory

logger = get_logger(__name__)

DEFAULT_DURATION = 2.0
MIN_DURATION = 0.25
MAX_DURATION = 12.0

# Curated, queue-prone or unusually large attractions. Checked in order
# before any type lookup; substrings are matched on the lower-cased name.
LANDMARK_OVERRIDES: Tuple[Tuple[Tuple[str, ...], float], ...] = (
    (("disneyland", "disney sea", "disneysea", "disney world", "universal studios", "theme park", "legoland", "everland"), 8.0),
    (("water park", "waterpark"), 6.0),
    (("safari", "zoo"), 5.0),
    (("sea world", "seaworld", "aquarium of", "oceanarium", "churaumi"), 4.0),
    (
        (
            "louvre",
            "british museum",
            "metropolitan museum",
            "the met ",
            "smithsonian",
            "national museum",
            "vatican museums",
            "uffizi",
            "prado",
            "hermitage",
        ),
        4.0,
    ),
    (("forbidden city", "versailles", "schönbrunn", "schonbrunn", "alhambra", "imperial palace"), 3.5),
    (("tokyo tower", "skytree", "eiffel", "cn tower", "empire state", "burj khalifa", "space needle"), 2.0),
)

# Hours per raw provider type. Generic tags (point_of_interest,
# establishment, tourist_attraction) are deliberately absent.
TYPE_DURATIONS: Dict[str, float] = {
    # full day
    "amusement_park": 8.0,
    "theme_park": 8.0,
    "water_park": 6.0,
    "ski_resort": 7.0,
    "zoo": 5.0,
    "national_park": 5.0,
    "mountain": 5.0,
    # half day
    "hiking_area": 4.0,
    "hiking_trail": 4.0,
    "aquarium": 3.0,
    "palace": 3.0,
    "beach": 3.0,
    "theater": 3.0,
    "performing_arts_theater": 3.0,
    "stadium": 3.0,
    "casino": 3.0,
    "night_club": 3.0,
    "shopping_mall": 3.0,
    "museum": 2.5,
    "castle": 2.5,
    "movie_theater": 2.5,
    "spa": 2.5,
    "art_gallery": 2.0,
    "botanical_garden": 2.0,
    "park": 2.0,
    "market": 2.0,
    "department_store": 2.0,
    "bar": 2.0,
    "fine_dining_restaurant": 2.5,
    # short visits
    "restaurant": 1.5,
    "garden": 1.5,
    "temple": 1.5,
    "buddhist_temple": 1.5,
    "hindu_temple": 1.5,
    "tower": 1.5,
    "cafe": 1.0,
    "food_court": 1.0,
    "shrine": 1.0,
    "church": 1.0,
    "mosque": 1.0,
    "synagogue": 1.0,
    "place_of_worship": 1.0,
    "historical_landmark": 1.0,
    "landmark": 1.0,
    "observation_deck": 1.0,
    "store": 1.0,
    "coffee_shop": 0.75,
    # quick stops
    "fast_food_restaurant": 0.5,
    "street_food": 0.5,
    "bakery": 0.5,
    "monument": 0.5,
    "bridge": 0.5,
    "viewpoint": 0.5,
    "scenic_spot": 0.5,
    "train_station": 0.25,
    "subway_station": 0.25,
    "transit_station": 0.25,
    "bus_station": 0.25,
}

# Raw type -> coarse category, checked in this order by ``categorize_types``.
_CATEGORY_TYPES: Tuple[Tuple[PoiCategory, frozenset], ...] = (
    (PoiCategory.BEACH, frozenset({"beach"})),
    (PoiCategory.SPA, frozenset({"spa", "hot_spring", "onsen", "sauna", "wellness_center"})),
    (PoiCategory.NIGHTLIFE, frozenset({"night_club", "casino"})),
    (
        PoiCategory.FOOD,
        frozenset(
            {
                "restaurant",
                "food",
                "cafe",
                "coffee_shop",
                "bakery",
                "bar",
                "meal_takeaway",
                "meal_delivery",
                "food_court",
                "street_food",
                "fast_food_restaurant",
                "fine_dining_restaurant",
            }
        ),
    ),
    (
        PoiCategory.CULTURE,
        frozenset(
            {
                "museum",
                "art_gallery",
                "church",
                "temple",
                "buddhist_temple",
                "hindu_temple",
                "shrine",
                "mosque",
                "synagogue",
                "place_of_worship",
                "castle",
                "palace",
                "historical_landmark",
                "monument",
            }
        ),
    ),
    (PoiCategory.SHOPPING, frozenset({"shopping_mall", "store", "market", "department_store", "clothing_store"})),
    (
        PoiCategory.NATURE,
        frozenset({"park", "national_park", "natural_feature", "campground", "garden", "botanical_garden", "hiking_area", "hiking_trail", "mountain"}),
    ),
    (
        PoiCategory.ENTERTAINMENT,
        frozenset({"amusement_park", "theme_park", "water_park", "zoo", "aquarium", "movie_theater", "theater", "performing_arts_theater", "stadium", "bowling_alley", "ski_resort"}),
    ),
)

CATEGORY_DURATIONS: Dict[PoiCategory, float] = {
    PoiCategory.FOOD: 1.5,
    PoiCategory.CULTURE: 2.5,
    PoiCategory.SHOPPING: 2.0,
    PoiCategory.NATURE: 2.0,
    PoiCategory.NIGHTLIFE: 2.5,
    PoiCategory.ENTERTAINMENT: 3.0,
    PoiCategory.ATTRACTION: 2.0,
    PoiCategory.BEACH: 3.0,
    PoiCategory.SPA: 2.5,
}

_FAST_DINING_KEYWORDS = ("fast food", "buffet", "burger", "takeaway", "take-away", "stand", "kiosk", "express")
_FINE_DINING_KEYWORDS = ("fine dining", "tasting", "omakase", "kaiseki", "michelin", "degustation")
_LONG_SHOPPING_KEYWORDS = ("outlet", "mall")
_FAMOUS_PARK_KEYWORDS = ("national", "central park", "hyde park", "golden gate park", "ueno park", "stanley park", "yosemite")
_RESORT_KEYWORDS = ("resort",)


def _keyword_pattern(keywords: Sequence[str]) -> "re.Pattern[str]":
    return re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")\b")


_FAST_DINING = _keyword_pattern(_FAST_DINING_KEYWORDS)
_FINE_DINING = _keyword_pattern(_FINE_DINING_KEYWORDS)
_LONG_SHOPPING = _keyword_pattern(_LONG_SHOPPING_KEYWORDS)
_FAMOUS_PARK = _keyword_pattern(_FAMOUS_PARK_KEYWORDS)
_RESORT = _keyword_pattern(_RESORT_KEYWORDS)


def categorize_types(types: Sequence[str] | None) -> PoiCategory:
    """Map raw provider types to a coarse category; ``attraction`` when nothing matches."""
    type_set = set(types or [])
    for category, members in _CATEGORY_TYPES:
        if type_set & members:
            return category
    return PoiCategory.ATTRACTION


def _coerce_category(value: Any) -> Optional[PoiCategory]:
    if isinstance(value, PoiCategory):
        return value
    if not value:
        return None
    text = str(value).lower()
    aliases = {"restaurant": PoiCategory.FOOD, "museum": PoiCategory.CULTURE, "dining": PoiCategory.FOOD}
    if text in aliases:
        return aliases[text]
    try:
        return PoiCategory(text)
    except ValueError:
        return None


def _adjust_for_name(hours: float, category: Optional[PoiCategory], name: str) -> float:
    if category == PoiCategory.FOOD:
        if _FINE_DINING.search(name):
            return max(hours, 2.5)
        if _FAST_DINING.search(name):
            return max(0.5, hours * 0.5)
    elif category == PoiCategory.SHOPPING:
        if _LONG_SHOPPING.search(name):
            return max(hours, 3.0)
    elif category == PoiCategory.NATURE:
        if _FAMOUS_PARK.search(name):
            return max(hours, 4.0)
    elif category == PoiCategory.BEACH:
        if _RESORT.search(name):
            return max(hours, 5.0)
    return hours


@dataclass(frozen=True)
class PoiTraits:
    name: str
    types: Tuple[str, ...]
    category: Optional[PoiCategory]

    @classmethod
    def of(cls, poi: Any) -> "PoiTraits":
        if isinstance(poi, dict):
            name, types, category = poi.get("name"), poi.get("types"), poi.get("category")
        else:
            name = getattr(poi, "name", None)
            types = getattr(poi, "types", None)
            category = getattr(poi, "category", None)
        clean_types = tuple(str(t) for t in (types or []) if t)
        return cls(
            name=str(name or "").lower(),
            types=clean_types,
            category=_coerce_category(category) or (categorize_types(clean_types) if clean_types else None),
        )


@dataclass(frozen=True)
class DurationEstimate:
    hours: float
    source: str  # landmark | type | category | default


def _landmark_override(traits: PoiTraits) -> Optional[DurationEstimate]:
    padded = f"{traits.name} "
    for needles, hours in LANDMARK_OVERRIDES:
        if any(n in padded for n in needles):
            return DurationEstimate(hours, "landmark")
    return None


def _type_table_lookup(traits: PoiTraits) -> Optional[DurationEstimate]:
    # Longer type strings tend to be more specific; sorted() is stable so
    # equal-length types keep provider order.
    for raw_type in sorted(traits.types, key=len, reverse=True):
        hours = TYPE_DURATIONS.get(raw_type)
        if hours is not None:
            group = categorize_types([raw_type])
            return DurationEstimate(_adjust_for_name(hours, group, traits.name), "type")
    return None


def _category_fallback(traits: PoiTraits) -> Optional[DurationEstimate]:
    if traits.category is None:
        return None
    hours = CATEGORY_DURATIONS.get(traits.category, DEFAULT_DURATION)
    return DurationEstimate(_adjust_for_name(hours, traits.category, traits.name), "category")


RESOLVERS: Tuple[Callable[[PoiTraits], Optional[DurationEstimate]], ...] = (
    _landmark_override,
    _type_table_lookup,
    _category_fallback,
)


def resolve_duration(poi: Any) -> DurationEstimate:
    """Walk the resolver chain; first hit wins, otherwise the global default."""
    try:
        traits = PoiTraits.of(poi)
    except Exception:
        logger.debug("Unreadable POI attributes; using default duration", exc_info=True)
        return DurationEstimate(DEFAULT_DURATION, "default")
    for resolver in RESOLVERS:
        estimate = resolver(traits)
        if estimate is not None:
            return DurationEstimate(_clamp(estimate.hours), estimate.source)
    return DurationEstimate(DEFAULT_DURATION, "default")


def estimate_duration(poi: Any) -> float:
    return resolve_duration(poi).hours


def _clamp(hours: float) -> float:
    return max(MIN_DURATION, min(MAX_DURATION, float(hours)))


class DurationAdvisor(Protocol):
    async def estimate_hours(self, poi: Any) -> float:
        ...


class IntelligentDurationEstimator:
    """Asks an LLM advisor about POIs the tables cannot place.

    Only POIs that fall through to the category fallback or the default are
    sent to the advisor. Errors, timeouts and answers outside
    [0.25, 12] hours all resolve to the deterministic estimate.
    """

    def __init__(self, advisor: Optional[DurationAdvisor] = None, *, timeout: float = 8.0):
        self.advisor = advisor
        self.timeout = timeout
        self._cache: Dict[str, float] = {}

    async def estimate(self, poi: Any) -> float:
        baseline = resolve_duration(poi)
        if self.advisor is None or baseline.source in ("landmark", "type"):
            return baseline.hours

        key = _cache_key(poi)
        if key and key in self._cache:
            return self._cache[key]

        try:
            hours = await asyncio.wait_for(self.advisor.estimate_hours(poi), timeout=self.timeout)
            hours = float(hours)
        except asyncio.TimeoutError:
            logger.warning("Duration advisor timed out for %s; using %.2fh", _poi_name(poi), baseline.hours)
            return baseline.hours
        except Exception:
            logger.warning("Duration advisor failed for %s; using %.2fh", _poi_name(poi), baseline.hours, exc_info=True)
            return baseline.hours

        if not (MIN_DURATION <= hours <= MAX_DURATION):
            logger.warning(
                "Duration advisor returned %.2fh for %s (outside %.2f-%.1fh); using %.2fh",
                hours,
                _poi_name(poi),
                MIN_DURATION,
                MAX_DURATION,
                baseline.hours,
            )
            return baseline.hours

        if key:
            self._cache[key] = hours
        return hours

    async def estimate_many(self, pois: List[Any]) -> List[float]:
        return list(await asyncio.gather(*[self.estimate(p) for p in pois]))


def _cache_key(poi: Any) -> Optional[str]:
    if isinstance(poi, dict):
        return poi.get("place_id")
    return getattr(poi, "place_id", None)


def _poi_name(poi: Any) -> str:
    if isinstance(poi, dict):
        return str(poi.get("name", "?"))
    return str(getattr(poi, "name", "?"))
