# itinerary_engine/orchestrator.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from itinerary_engine.agents.allocator import allocate_days
from itinerary_engine.agents.duration_estimator import IntelligentDurationEstimator
from itinerary_engine.agents.personalization import personalize_itinerary
from itinerary_engine.agents.pool_builder import CandidatePool, build_candidate_pool, build_preference_set
from itinerary_engine.agents.scheduler import (
    PlanningAssistant,
    PlanOk,
    assisted_schedule,
    fallback_schedule,
    schedule_allocations,
    travel_buffer,
)
from itinerary_engine.config import Settings, get_logger, load_settings
from itinerary_engine.errors import InvalidPlanRequest
from itinerary_engine.schemas import (
    CandidatePOI,
    DayPlan,
    ItineraryResult,
    SessionPreferences,
    TravelPackage,
)
from itinerary_engine.tools.places import GooglePlacesSearcher, PlaceSearcher

logger = get_logger(__name__)

STRATEGIES = ("assisted", "allocated", "fallback")
FOODIE_ACTIVITY_CAP = 4
BUDGET_ACTIVITY_CAP = 3


def validate_request(destination: str, day_count: int, max_days: int) -> str:
    """Return the trimmed destination or raise ``InvalidPlanRequest``."""
    cleaned = " ".join((destination or "").split())
    if not cleaned:
        raise InvalidPlanRequest("destination must not be blank")
    if isinstance(day_count, bool) or not isinstance(day_count, int):
        raise InvalidPlanRequest(f"day_count must be an integer, got {day_count!r}")
    if day_count <= 0:
        raise InvalidPlanRequest(f"day_count must be positive, got {day_count}")
    if day_count > max_days:
        raise InvalidPlanRequest(f"day_count {day_count} exceeds the maximum of {max_days}")
    return cleaned


def _coverage(days: Sequence[DayPlan], preferences: Sequence[str]) -> Dict[str, int]:
    counts = {tag: 0 for tag in preferences}
    for day in days:
        for poi in day.all_pois():
            if poi.source in counts:
                counts[poi.source] += 1
    return counts


async def schedule_itinerary(
    pool: CandidatePool,
    day_count: int,
    destination: str,
    preferences: Sequence[str],
    planner: Optional[PlanningAssistant],
    strategy: str,
    plan_timeout: float,
    notes: List[str],
) -> Tuple[List[DayPlan], str]:
    """Run the requested strategy; a declined assisted plan degrades to allocation."""
    if strategy == "assisted":
        outcome = await assisted_schedule(
            pool.all_pois(), day_count, destination, preferences, planner, timeout=plan_timeout
        )
        if isinstance(outcome, PlanOk):
            logger.info("Using assisted plan for %s", destination)
            return outcome.days, "assisted"
        logger.warning("Assisted planning unavailable (%s); using coverage-balanced allocation", outcome.reason)
        notes.append(f"Assisted planning skipped: {outcome.reason}")
        strategy = "allocated"

    if strategy == "allocated":
        allocations = allocate_days(pool, day_count, preferences, destination)
        return schedule_allocations(allocations, destination), "allocated"

    return fallback_schedule(pool.all_pois(), day_count, destination), "fallback"


async def _plan(
    destination: str,
    day_count: int,
    preferences: Iterable[str] | None,
    session_profile: Optional[SessionPreferences],
    *,
    searcher: Optional[PlaceSearcher],
    planner: Optional[PlanningAssistant],
    estimator: Optional[IntelligentDurationEstimator],
    settings: Optional[Settings],
    strategy: str,
    free_text: Iterable[str] | None = None,
) -> Tuple[ItineraryResult, CandidatePool]:
    settings = settings or load_settings()
    destination = validate_request(destination, day_count, settings.max_days)
    if strategy not in STRATEGIES:
        raise InvalidPlanRequest(f"unknown strategy {strategy!r}; expected one of {', '.join(STRATEGIES)}")
    prefs = build_preference_set(preferences, free_text)
    if searcher is None:
        searcher = GooglePlacesSearcher(api_key=settings.google_places_api_key, timeout=settings.search_timeout)

    logger.info(
        "Planning %d day(s) in %s with preferences: %s",
        day_count,
        destination,
        ", ".join(prefs) or "none",
    )
    pool = await build_candidate_pool(
        destination, prefs, day_count, searcher, timeout=settings.search_timeout, estimator=estimator
    )
    notes: List[str] = []
    if pool.failed_queries:
        notes.append(f"{len(pool.failed_queries)} search(es) failed; results may be partial")
    if not len(pool):
        logger.warning("Candidate pool for %s is empty; returning empty days", destination)
        notes.append("No candidate places were found")

    days, used_strategy = await schedule_itinerary(
        pool, day_count, destination, prefs, planner, strategy, settings.plan_timeout, notes
    )
    if session_profile is not None:
        days = await personalize_itinerary(
            days, session_profile, destination, searcher, timeout=settings.search_timeout
        )

    coverage = _coverage(days, prefs)
    uncovered = [tag for tag, count in coverage.items() if count == 0 and tag not in pool.coverage_gaps]
    if uncovered:
        notes.append(f"Found but could not schedule: {', '.join(uncovered)}")
    result = ItineraryResult(
        destination=destination,
        days=days,
        strategy=used_strategy,
        coverage=coverage,
        coverage_gaps=list(pool.coverage_gaps),
        notes=notes,
    )
    logger.info(
        "Itinerary for %s built via %s strategy: %d POIs over %d day(s)",
        destination,
        used_strategy,
        sum(len(d.all_pois()) for d in days),
        len(days),
    )
    return result, pool


async def plan_itinerary(
    destination: str,
    day_count: int,
    preferences: Iterable[str] | None = None,
    session_profile: Optional[SessionPreferences] = None,
    *,
    searcher: Optional[PlaceSearcher] = None,
    planner: Optional[PlanningAssistant] = None,
    estimator: Optional[IntelligentDurationEstimator] = None,
    settings: Optional[Settings] = None,
    strategy: str = "assisted",
    free_text: Iterable[str] | None = None,
) -> ItineraryResult:
    """Plan a trip and report the strategy used, preference coverage and gaps."""
    result, _ = await _plan(
        destination,
        day_count,
        preferences,
        session_profile,
        searcher=searcher,
        planner=planner,
        estimator=estimator,
        settings=settings,
        strategy=strategy,
        free_text=free_text,
    )
    return result


async def build_itinerary(
    destination: str,
    day_count: int,
    preferences: Iterable[str] | None = None,
    session_profile: Optional[SessionPreferences] = None,
    *,
    searcher: Optional[PlaceSearcher] = None,
    planner: Optional[PlanningAssistant] = None,
    estimator: Optional[IntelligentDurationEstimator] = None,
    settings: Optional[Settings] = None,
    strategy: str = "assisted",
    free_text: Iterable[str] | None = None,
) -> List[DayPlan]:
    """
    Exactly ``day_count`` days numbered 1..N with no place id repeated.
    Only ``InvalidPlanRequest`` escapes; every collaborator failure degrades.
    """
    result = await plan_itinerary(
        destination,
        day_count,
        preferences,
        session_profile,
        searcher=searcher,
        planner=planner,
        estimator=estimator,
        settings=settings,
        strategy=strategy,
        free_text=free_text,
    )
    return result.days


# ---------- package assembly ----------
def _cap_day(day: DayPlan, limit: int, *, dining_first: bool = False) -> DayPlan:
    """Keep at most ``limit`` POIs of ``day`` in their original buckets."""
    pois = day.all_pois()
    if len(pois) <= limit:
        return day.model_copy(deep=True)
    if dining_first:
        pois = [p for p in pois if p.is_dining] + [p for p in pois if not p.is_dining]
    keep = {p.place_id for p in pois[:limit]}
    morning = [p for p in day.morning if p.place_id in keep]
    afternoon = [p for p in day.afternoon if p.place_id in keep]
    evening = [p for p in day.evening if p.place_id in keep]
    return day.model_copy(
        update={
            "morning": morning,
            "afternoon": afternoon,
            "evening": evening,
            "travel_buffer": travel_buffer([*morning, *afternoon, *evening]),
        }
    )


def _names(pois: Iterable[CandidatePOI], limit: int) -> List[str]:
    return [p.name for p in pois][:limit]


def _package(
    name: str,
    kind: str,
    budget: int,
    description: str,
    destination: str,
    accommodation: str,
    itinerary: List[DayPlan],
    highlights: List[str],
) -> TravelPackage:
    scheduled = [p for day in itinerary for p in day.all_pois()]
    dining = sum(1 for p in scheduled if p.is_dining)
    return TravelPackage(
        name=name,
        type=kind,
        budget=f"${budget}",
        description=description,
        route=destination,
        accommodation=accommodation,
        dining_count=dining,
        attraction_count=len(scheduled) - dining,
        highlights=highlights,
        itinerary=itinerary,
    )


def assemble_packages(
    result: ItineraryResult,
    pool: CandidatePool,
    preferences: Sequence[str],
) -> List[TravelPackage]:
    """Slice one schedule into classic, foodie and budget variants.

    Variants only drop POIs from the schedule; each kept POI stays in its
    day and bucket.
    """
    destination = result.destination
    days = len(result.days)
    scheduled = [p for day in result.days for p in day.all_pois()]
    preference_pois = [p for p in scheduled if p.is_preference]
    dining_pois = [p for p in scheduled if p.is_dining]
    attractions = [p for p in scheduled if not p.is_preference and not p.is_dining]
    tags = list(preferences)

    classic_days = [day.model_copy(deep=True) for day in result.days]
    foodie_days = [_cap_day(day, FOODIE_ACTIVITY_CAP, dining_first=True) for day in result.days]
    budget_days = [_cap_day(day, BUDGET_ACTIVITY_CAP) for day in result.days]

    def _in(itinerary: List[DayPlan], pois: List[CandidatePOI]) -> List[CandidatePOI]:
        ids = {pid for day in itinerary for pid in day.place_ids()}
        return [p for p in pois if p.place_id in ids]

    if tags:
        classic_description = (
            f"Tailored to your interests: {', '.join(tags)}. Includes {len(preference_pois)} hand-picked "
            "venues matching your preferences plus must-see highlights."
        )
    else:
        classic_description = f"The must-see highlights of {destination}, paced for {days} day(s)."
    packages = [
        _package(
            f"Personalized {destination} Experience",
            "classic",
            1000 + days * 200,
            classic_description,
            destination,
            pool.lodging[0] if pool.lodging else "Recommended hotel",
            classic_days,
            _names(preference_pois, 3) + _names(attractions, 2),
        ),
        _package(
            f"Foodie {destination} Experience",
            "foodie",
            800 + days * 150,
            f"A culinary journey through {destination}"
            f"{' featuring your selected interests' if tags else ''}. Perfect for food lovers.",
            destination,
            pool.lodging[1] if len(pool.lodging) > 1 else "Quality hotel",
            foodie_days,
            _names(_in(foodie_days, dining_pois), 3) + _names(_in(foodie_days, preference_pois), 2),
        ),
        _package(
            f"Budget {destination} Discovery",
            "budget",
            500 + days * 100,
            "Affordable exploration focusing on free and low-cost attractions"
            f"{' including your interests' if tags else ''}.",
            destination,
            "Budget-friendly accommodation",
            budget_days,
            _names(_in(budget_days, preference_pois), 2) + _names(_in(budget_days, attractions), 3),
        ),
    ]
    logger.info(
        "Assembled %d packages for %s; preference coverage %d/%d",
        len(packages),
        destination,
        sum(1 for count in result.coverage.values() if count),
        len(result.coverage),
    )
    return packages


async def generate_packages(
    destination: str,
    day_count: int,
    preferences: Iterable[str] | None = None,
    session_profile: Optional[SessionPreferences] = None,
    *,
    searcher: Optional[PlaceSearcher] = None,
    planner: Optional[PlanningAssistant] = None,
    estimator: Optional[IntelligentDurationEstimator] = None,
    settings: Optional[Settings] = None,
    strategy: str = "assisted",
    free_text: Iterable[str] | None = None,
) -> List[TravelPackage]:
    result, pool = await _plan(
        destination,
        day_count,
        preferences,
        session_profile,
        searcher=searcher,
        planner=planner,
        estimator=estimator,
        settings=settings,
        strategy=strategy,
        free_text=free_text,
    )
    return assemble_packages(result, pool, list(build_preference_set(preferences, free_text)))
