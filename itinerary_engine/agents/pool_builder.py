"""Candidate POI pool construction from preference-driven and generic searches."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from itinerary_engine.agents.duration_estimator import (
    IntelligentDurationEstimator,
    categorize_types,
    estimate_duration,
)
from itinerary_engine.agents.tag_processor import preference_tags
from itinerary_engine.config import get_logger
from itinerary_engine.schemas import (
    DINING_SOURCE,
    GENERAL_SOURCE,
    CandidatePOI,
    PoiCategory,
    PreferenceSet,
    RawPlace,
    SearchFilters,
)
from itinerary_engine.tools.places import PlaceSearcher
from itinerary_engine.tools.safety import clean_free_text, filter_places

logger = get_logger(__name__)

_TAG_QUERIES: Dict[str, str] = {
    # food
    "ramen": "ramen restaurants",
    "sushi": "sushi restaurants",
    "street food": "street food markets",
    "local cuisine": "traditional restaurants",
    "michelin": "michelin star restaurants",
    "coffee": "specialty coffee shops",
    "bakery": "artisan bakeries",
    # landmarks
    "tokyo tower": "Tokyo Tower observation deck",
    "eiffel tower": "Eiffel Tower",
    "statue of liberty": "Statue of Liberty",
    "golden gate bridge": "Golden Gate Bridge",
    "big ben": "Big Ben Westminster",
    # districts
    "shibuya": "Shibuya crossing district",
    "akihabara": "Akihabara electronics district",
    "times square": "Times Square",
    "central park": "Central Park",
    "las vegas strip": "Las Vegas Strip casinos",
    "the strip": "Las Vegas Strip",
    # experiences
    "museums": "art museums",
    "temples": "buddhist temples shrines",
    "shopping": "shopping malls markets",
    "nightlife": "bars nightclubs",
    "jazz": "jazz bars clubs",
    "broadway": "broadway theaters shows",
    "beach": "beaches seaside",
    "spa": "spa wellness centers",
    "onsen": "hot springs onsen",
    # generic interests
    "must-see highlights": "top tourist attractions",
    "local food & culture": "authentic local restaurants cultural sites",
    "hidden gems": "off the beaten path attractions",
    "adventure": "outdoor activities adventure sports",
    "family friendly": "family attractions kids activities",
    "romantic": "romantic restaurants couples activities",
    "budget": "free attractions budget restaurants",
    "luxury": "luxury hotels fine dining",
}

PREFERENCE_FILTERS = SearchFilters(min_rating=4.0, min_reviews=100)
ATTRACTION_FILTERS = SearchFilters(min_rating=4.2, min_reviews=500)
DINING_FILTERS = SearchFilters(min_rating=4.0, min_reviews=200)
GENERIC_FILTERS = SearchFilters(min_rating=4.0, min_reviews=100)
LODGING_FILTERS = SearchFilters(min_rating=4.0)


@dataclass(frozen=True)
class SearchSpec:
    query: str
    source: str
    limit: int
    filters: SearchFilters
    reason_prefix: str
    lodging: bool = False


@dataclass
class CandidatePool:
    destination: str
    preference_pois: List[CandidatePOI] = field(default_factory=list)
    general_pois: List[CandidatePOI] = field(default_factory=list)
    dining_pois: List[CandidatePOI] = field(default_factory=list)
    lodging: List[str] = field(default_factory=list)
    coverage_gaps: List[str] = field(default_factory=list)
    failed_queries: List[str] = field(default_factory=list)

    def all_pois(self) -> List[CandidatePOI]:
        return [*self.preference_pois, *self.general_pois, *self.dining_pois]

    def by_id(self) -> Dict[str, CandidatePOI]:
        return {p.place_id: p for p in self.all_pois()}

    def __len__(self) -> int:
        return len(self.preference_pois) + len(self.general_pois) + len(self.dining_pois)

    @classmethod
    def from_pois(cls, destination: str, pois: Iterable[CandidatePOI]) -> "CandidatePool":
        """Split already-built POIs by provenance, dropping repeated ids."""
        pool = cls(destination=destination)
        seen: set[str] = set()
        for poi in pois:
            if poi.place_id in seen:
                continue
            seen.add(poi.place_id)
            if poi.source == DINING_SOURCE:
                pool.dining_pois.append(poi)
            elif poi.source == GENERAL_SOURCE:
                pool.general_pois.append(poi)
            else:
                pool.preference_pois.append(poi)
        return pool


def build_preference_set(selected_tags: Iterable[str] | None, free_text: Iterable[str] | None = None) -> PreferenceSet:
    """Selected tags first, then normalized free-text tags, deduplicated in order.

    Free text goes through the session tag processor, so "we love hot springs"
    becomes "hot springs" and unrecognized interests keep the user's words.
    """
    return PreferenceSet([*(selected_tags or []), *preference_tags(clean_free_text(free_text or []))])


def query_for_tag(tag: str, destination: str) -> str:
    base = _TAG_QUERIES.get(tag.lower(), tag)
    return f"{base} in {destination}"


def search_plan(destination: str, preferences: Sequence[str], day_count: int) -> List[SearchSpec]:
    """Every search a run issues: one per preference, then the generic battery."""
    per_tag = max(5, day_count)
    specs: List[SearchSpec] = [
        SearchSpec(
            query=query_for_tag(tag, destination),
            source=tag,
            limit=per_tag,
            filters=PREFERENCE_FILTERS,
            reason_prefix=f'Selected for "{tag}"',
        )
        for tag in preferences
    ]
    specs += [
        SearchSpec(f"top attractions in {destination}", GENERAL_SOURCE, max(20, 6 * day_count), ATTRACTION_FILTERS, "Must-see attraction"),
        SearchSpec(f"museums in {destination}", GENERAL_SOURCE, per_tag, GENERIC_FILTERS, "Notable museum"),
        SearchSpec(f"parks in {destination}", GENERAL_SOURCE, per_tag, GENERIC_FILTERS, "Scenic park"),
        SearchSpec(f"shopping in {destination}", GENERAL_SOURCE, per_tag, GENERIC_FILTERS, "Popular shopping"),
        SearchSpec(f"best restaurants in {destination}", DINING_SOURCE, max(10, 2 * day_count), DINING_FILTERS, "Highly-rated dining"),
        SearchSpec(f"cafes in {destination}", DINING_SOURCE, per_tag, GENERIC_FILTERS, "Local café"),
        SearchSpec(f"hotels in {destination}", "lodging", per_tag, LODGING_FILTERS, "Recommended stay", lodging=True),
    ]
    return specs


async def _run_search(searcher: PlaceSearcher, spec: SearchSpec, timeout: float) -> Optional[List[RawPlace]]:
    try:
        hits = await asyncio.wait_for(searcher.search(spec.query, spec.filters), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Search timed out after %.1fs for query '%s'", timeout, spec.query)
        return None
    except Exception:
        logger.warning("Search failed for query '%s'", spec.query, exc_info=True)
        return None
    logger.info("Search query '%s' produced %d hits", spec.query, len(hits))
    return list(hits)


def _reason(prefix: str, place: RawPlace) -> str:
    rating = f"rated {place.rating}★" if place.rating else "popular choice"
    return f"{prefix} - {rating} with {place.user_ratings_total or 0} reviews"


def _to_candidate(place: RawPlace, spec: SearchSpec, hours: float) -> CandidatePOI:
    category = categorize_types(place.types)
    if spec.source == DINING_SOURCE and category == PoiCategory.ATTRACTION:
        category = PoiCategory.FOOD
    return CandidatePOI(
        place_id=place.place_id,
        name=place.name,
        types=list(place.types),
        category=category,
        rating=place.rating,
        review_count=place.user_ratings_total,
        source=spec.source,
        reason=_reason(spec.reason_prefix, place),
        estimated_duration=hours,
        location=place.location,
        opening_hours={"open_now": place.open_now} if place.open_now is not None else None,
        description=place.description or place.editorial_summary,
    )


async def build_candidate_pool(
    destination: str,
    preferences: Sequence[str],
    day_count: int,
    searcher: PlaceSearcher,
    *,
    timeout: float = 10.0,
    estimator: Optional[IntelligentDurationEstimator] = None,
) -> CandidatePool:
    """Issue all searches concurrently and merge them into a deduplicated pool.

    Preference searches are merged before the generic battery so a place
    found by both keeps its preference provenance. A failed or timed-out
    search contributes nothing; a preference with no hits is recorded in
    ``coverage_gaps``.
    """
    specs = search_plan(destination, list(preferences), day_count)
    logger.info("Assembled %d search queries for %s (%d day(s))", len(specs), destination, day_count)

    results = await asyncio.gather(*[_run_search(searcher, spec, timeout) for spec in specs])

    pool = CandidatePool(destination=destination)
    seen: set[str] = set()
    accepted: List[Tuple[RawPlace, SearchSpec]] = []
    hits_per_preference: Dict[str, int] = {tag: 0 for tag in preferences}

    for spec, hits in zip(specs, results):
        if hits is None:
            pool.failed_queries.append(spec.query)
            continue
        safe = filter_places(hits)[: spec.limit]
        if spec.lodging:
            pool.lodging.extend(p.name for p in safe)
            continue
        for place in safe:
            if place.place_id in seen:
                continue
            seen.add(place.place_id)
            accepted.append((place, spec))
            if spec.source in hits_per_preference:
                hits_per_preference[spec.source] += 1

    if estimator is not None:
        durations = await estimator.estimate_many([place for place, _ in accepted])
    else:
        durations = [estimate_duration(place) for place, _ in accepted]

    for (place, spec), hours in zip(accepted, durations):
        poi = _to_candidate(place, spec, hours)
        if spec.source == DINING_SOURCE:
            pool.dining_pois.append(poi)
        elif spec.source == GENERAL_SOURCE:
            pool.general_pois.append(poi)
        else:
            pool.preference_pois.append(poi)

    pool.coverage_gaps = [tag for tag, count in hits_per_preference.items() if count == 0]
    if pool.coverage_gaps:
        logger.warning("Could not find POIs for preference(s): %s", ", ".join(pool.coverage_gaps))
    if pool.failed_queries:
        logger.warning("%d of %d searches failed; continuing with partial results", len(pool.failed_queries), len(specs))
    logger.info(
        "Candidate pool for %s: %d preference, %d general, %d dining POIs (%d lodging options)",
        destination,
        len(pool.preference_pois),
        len(pool.general_pois),
        len(pool.dining_pois),
        len(pool.lodging),
    )
    return pool
