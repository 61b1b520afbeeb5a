"""Coverage-balanced day allocation.

Preference POIs are rationed per day so early days cannot monopolise them:
each day may take ``min(2, ceil(remaining / remaining_days))`` of them. General
attractions are picked from a window that rotates with the day index, dining
rotates by day as well, and a backfill step tops every day up to four
activities while anything unused remains. All days consume from one
``AllocationState`` and are processed strictly in order, since each day's
quota depends on what earlier days took.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from itertools import zip_longest
from typing import Dict, Iterable, List, Sequence

from itinerary_engine.agents.pool_builder import CandidatePool
from itinerary_engine.config import get_logger
from itinerary_engine.schemas import CandidatePOI, DayAllocation

logger = get_logger(__name__)

TARGET_ACTIVITIES = 5
MIN_ACTIVITIES = 4
MAX_PREFERENCE_PER_DAY = 2
MIN_GENERAL_CHUNK = 5


@dataclass
class AllocationState:
    """Mutable state owned by a single allocation run."""

    used_ids: set = field(default_factory=set)
    remaining_preference: int = 0

    def take(self, poi: CandidatePOI) -> bool:
        if poi.place_id in self.used_ids:
            return False
        self.used_ids.add(poi.place_id)
        if poi.is_preference:
            self.remaining_preference = max(0, self.remaining_preference - 1)
        return True

    def is_used(self, poi: CandidatePOI) -> bool:
        return poi.place_id in self.used_ids


def interleave_by_preference(pois: Sequence[CandidatePOI], preferences: Sequence[str]) -> List[CandidatePOI]:
    """Round-robin across preferences in priority order so scarce early
    rounds still touch every preference before repeating one."""
    buckets: Dict[str, List[CandidatePOI]] = {p.lower(): [] for p in preferences}
    extra: Dict[str, List[CandidatePOI]] = {}
    for poi in pois:
        key = poi.source.lower()
        if key in buckets:
            buckets[key].append(poi)
        else:
            extra.setdefault(key, []).append(poi)
    ordered: List[CandidatePOI] = []
    for round_ in zip_longest(*buckets.values(), *extra.values()):
        ordered.extend(p for p in round_ if p is not None)
    return ordered


def _take_preference(
    day: int,
    day_count: int,
    preference_pois: List[CandidatePOI],
    state: AllocationState,
) -> List[CandidatePOI]:
    remaining_days = day_count - day + 1
    quota = math.ceil(state.remaining_preference / remaining_days) if state.remaining_preference else 0
    limit = min(MAX_PREFERENCE_PER_DAY, quota)
    taken: List[CandidatePOI] = []
    for poi in preference_pois:
        if len(taken) >= limit:
            break
        if state.take(poi):
            taken.append(poi)
    return taken


def _take_general(
    day: int,
    day_count: int,
    general_pois: List[CandidatePOI],
    needed: int,
    state: AllocationState,
) -> List[CandidatePOI]:
    if needed <= 0 or not general_pois:
        return []
    available = len(general_pois)
    chunk = max(MIN_GENERAL_CHUNK, math.ceil(available / day_count))
    start = min((day - 1) * chunk, max(0, available - needed))
    # scan forward from the window start, then wrap to the head of the list
    rotated = general_pois[start:] + general_pois[:start]
    taken: List[CandidatePOI] = []
    for poi in rotated:
        if len(taken) >= needed:
            break
        if state.take(poi):
            taken.append(poi)
    return taken


def _take_dining(day: int, dining_pois: List[CandidatePOI], state: AllocationState) -> List[CandidatePOI]:
    if not dining_pois:
        return []
    start = (day - 1) % len(dining_pois)
    for poi in dining_pois[start:] + dining_pois[:start]:
        if state.take(poi):
            return [poi]
    return []


def _backfill(
    picked: List[CandidatePOI],
    pools: Iterable[List[CandidatePOI]],
    state: AllocationState,
) -> List[CandidatePOI]:
    extra: List[CandidatePOI] = []
    for source in pools:
        for poi in source:
            if len(picked) + len(extra) >= MIN_ACTIVITIES:
                return extra
            if state.take(poi):
                extra.append(poi)
    return extra


def day_title(day: int, destination: str, pois: Sequence[CandidatePOI]) -> tuple[str, List[str]]:
    covered: List[str] = []
    for poi in pois:
        if poi.is_preference and poi.source not in covered:
            covered.append(poi.source)
    theme = f"featuring {' & '.join(covered)}" if covered else "exploring top attractions"
    return f"Day {day}: {destination} {theme}", covered


def allocate_day(
    day: int,
    day_count: int,
    destination: str,
    preference_pois: List[CandidatePOI],
    general_pois: List[CandidatePOI],
    dining_pois: List[CandidatePOI],
    state: AllocationState,
) -> DayAllocation:
    preference = _take_preference(day, day_count, preference_pois, state)
    general_needed = TARGET_ACTIVITIES - len(preference) - 1  # one slot reserved for dining
    general = _take_general(day, day_count, general_pois, general_needed, state)
    dining = _take_dining(day, dining_pois, state)
    picked = [*preference, *general, *dining]
    if len(picked) < MIN_ACTIVITIES:
        filler = _backfill(picked, (preference_pois, general_pois, dining_pois), state)
        if filler:
            logger.info("Day %d backfilled with %d extra POI(s)", day, len(filler))
        picked.extend(filler)

    title, covered = day_title(day, destination, picked)
    logger.debug(
        "Day %d picks: %s",
        day,
        ", ".join(f"{p.name} [{p.source}]" for p in picked) or "none",
    )
    return DayAllocation(day=day, title=title, pois=picked, preferences_covered=covered)


def allocate_days(
    pool: CandidatePool,
    day_count: int,
    preferences: Sequence[str],
    destination: str | None = None,
) -> List[DayAllocation]:
    """First-pass per-day POI sets with fair preference coverage and no reuse."""
    destination = destination or pool.destination
    preference_pois = interleave_by_preference(pool.preference_pois, preferences)
    general_pois = list(pool.general_pois)
    dining_pois = list(pool.dining_pois)

    state = AllocationState(remaining_preference=len(preference_pois))
    allocations = [
        allocate_day(day, day_count, destination, preference_pois, general_pois, dining_pois, state)
        for day in range(1, day_count + 1)
    ]

    covered = {tag for alloc in allocations for tag in alloc.preferences_covered}
    missing = [tag for tag in preferences if tag not in covered]
    logger.info(
        "Allocated %d POIs across %d day(s); preferences covered %d/%d",
        len(state.used_ids),
        day_count,
        len(covered),
        len(preferences),
    )
    if missing:
        logger.warning("Preferences without an allocated POI: %s", ", ".join(missing))
    return allocations
