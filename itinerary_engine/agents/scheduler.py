"""Slot scheduling: morning / afternoon / evening buckets per day."""
from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple, Union

from itinerary_engine.agents.allocator import day_title
from itinerary_engine.config import get_logger
from itinerary_engine.schemas import CandidatePOI, DayAllocation, DayPlan, PoiCategory

logger = get_logger(__name__)

FULL_DAY_HOURS = 6.0
HALF_DAY_HOURS = 3.0
DAY_ACTIVITY_CAP = 8.0
DINNER_OVERFLOW_CAP = 8.5
MORNING_CAP = 3.0
AFTERNOON_CAP = 4.0
MAX_POIS_PER_SLOT = 2
DEFAULT_TRAVEL_BUFFER = 0.5

# Soft ceilings handed to the planning assistant.
ASSISTED_SLOT_CEILINGS = {"morning": 3.0, "afternoon": 5.0, "evening": 4.0}

SLOTS = ("morning", "afternoon", "evening")
_EVENING_CATEGORIES = (PoiCategory.FOOD, PoiCategory.NIGHTLIFE)


# ---------- tagged result of the assisted strategy ----------
@dataclass(frozen=True)
class PlanOk:
    days: List[DayPlan]


@dataclass(frozen=True)
class NeedsFallback:
    reason: str


PlanResult = Union[PlanOk, NeedsFallback]


class PlanningAssistant(Protocol):
    async def plan(
        self,
        pois: Sequence[CandidatePOI],
        day_count: int,
        destination: str,
        preferences: Sequence[str],
    ) -> List[Dict[str, Any]]:
        ...


# ---------- travel buffer approximation ----------
def estimate_travel_time(a: CandidatePOI, b: CandidatePOI) -> float:
    """Hours between two POIs: straight-line when both have coordinates
    (0.01 degrees ~ 20 minutes in a city, capped at one hour), else 30 minutes."""
    if a.location and b.location:
        distance = math.sqrt((b.location.lat - a.location.lat) ** 2 + (b.location.lng - a.location.lng) ** 2)
        return min(1.0, distance * 20)
    return DEFAULT_TRAVEL_BUFFER


def travel_buffer(pois: Sequence[CandidatePOI]) -> float:
    return round(sum(estimate_travel_time(a, b) for a, b in zip(pois, pois[1:])), 2)


def _hours(pois: Iterable[CandidatePOI]) -> float:
    return sum(p.estimated_duration for p in pois)


def _evening_eligible(poi: CandidatePOI) -> bool:
    return poi.category in _EVENING_CATEGORIES and poi.estimated_duration < HALF_DAY_HOURS


def _feasibility(total: float) -> float:
    return 0.9 if total <= DAY_ACTIVITY_CAP else 0.7


# ---------- deterministic slot filling ----------
@dataclass
class SlotFill:
    morning: List[CandidatePOI] = field(default_factory=list)
    afternoon: List[CandidatePOI] = field(default_factory=list)
    evening: List[CandidatePOI] = field(default_factory=list)
    anchor: Optional[CandidatePOI] = None

    @property
    def total(self) -> float:
        return _hours([*self.morning, *self.afternoon, *self.evening])

    def is_empty(self) -> bool:
        return not (self.morning or self.afternoon or self.evening)


def _fill_slot(
    slot: List[CandidatePOI],
    candidates: Sequence[CandidatePOI],
    used: Set[str],
    running: float,
    slot_cap: float,
    day_cap: float,
    max_items: int,
) -> float:
    for poi in candidates:
        if poi.place_id in used:
            continue
        if running + poi.estimated_duration > day_cap:
            continue
        if _hours(slot) + poi.estimated_duration > slot_cap:
            continue
        slot.append(poi)
        used.add(poi.place_id)
        running += poi.estimated_duration
        if len(slot) >= max_items:
            break
    return running


def fill_day(candidates: Sequence[CandidatePOI], used: Set[str], *, reserve_evening: bool = False) -> SlotFill:
    """Arrange one day's worth of POIs from ``candidates``; marks ``used`` as it goes.

    A full-day anchor (>= 6h) is placed alone in the afternoon. Otherwise the
    morning takes up to two POIs within 3h and the afternoon up to two within
    4h, both under the 8h running total; the evening takes one quick dining
    or nightlife POI as long as the running total stays within 8.5h.
    With ``reserve_evening`` that POI is kept out of the daytime slots.
    """
    fill = SlotFill()
    fresh = [p for p in candidates if p.place_id not in used]
    anchor = next((p for p in fresh if p.estimated_duration >= FULL_DAY_HOURS), None)
    if anchor is not None:
        fill.afternoon.append(anchor)
        fill.anchor = anchor
        used.add(anchor.place_id)
        return fill

    half_day = [p for p in fresh if HALF_DAY_HOURS <= p.estimated_duration < FULL_DAY_HOURS]
    quick = [p for p in fresh if p.estimated_duration < HALF_DAY_HOURS]
    evening_pool = [p for p in quick if _evening_eligible(p)]
    daytime = half_day + quick
    if reserve_evening and evening_pool:
        reserved = evening_pool[-1]
        daytime = [p for p in daytime if p is not reserved]
        evening_pool = [reserved] + evening_pool[:-1]

    running = _fill_slot(fill.morning, daytime, used, 0.0, MORNING_CAP, DAY_ACTIVITY_CAP, MAX_POIS_PER_SLOT)
    running = _fill_slot(fill.afternoon, daytime, used, running, AFTERNOON_CAP, DAY_ACTIVITY_CAP, MAX_POIS_PER_SLOT)
    _fill_slot(fill.evening, evening_pool, used, running, DINNER_OVERFLOW_CAP, DINNER_OVERFLOW_CAP, 1)

    if fill.is_empty() and fresh:
        # Nothing fit the slot caps (only 4-6h POIs left); keep the day usable.
        shortest = min(fresh, key=lambda p: p.estimated_duration)
        fill.afternoon.append(shortest)
        used.add(shortest.place_id)
    return fill


def _day_from_fill(day: int, fill: SlotFill, title: str, description: str) -> DayPlan:
    ordered = [*fill.morning, *fill.afternoon, *fill.evening]
    return DayPlan(
        day=day,
        title=title,
        description=description,
        morning=fill.morning,
        afternoon=fill.afternoon,
        evening=fill.evening,
        feasibility_score=0.9 if fill.anchor is not None else _feasibility(fill.total),
        travel_buffer=travel_buffer(ordered),
    )


def fallback_schedule(
    pois: Sequence[CandidatePOI],
    day_count: int,
    destination: str,
    used: Optional[Set[str]] = None,
) -> List[DayPlan]:
    """Deterministic greedy schedule over the whole pool, one day at a time."""
    used = used if used is not None else set()
    days: List[DayPlan] = []
    for day in range(1, day_count + 1):
        fill = fill_day(pois, used)
        if fill.anchor is not None:
            description = f"Full day at {fill.anchor.name}"
        else:
            description = f"Exploring the best of {destination}"
        days.append(_day_from_fill(day, fill, f"Day {day}: {destination} Discovery", description))
    logger.info("Fallback schedule placed %d POIs across %d day(s)", len(used), day_count)
    return days


def _defer_general_anchors(
    candidates: Sequence[CandidatePOI],
) -> Tuple[List[CandidatePOI], List[CandidatePOI]]:
    """Split off general full-day POIs when the day also holds preference POIs."""
    if not any(p.is_preference for p in candidates):
        return list(candidates), []
    kept: List[CandidatePOI] = []
    deferred: List[CandidatePOI] = []
    for poi in candidates:
        if poi.estimated_duration >= FULL_DAY_HOURS and not poi.is_preference:
            deferred.append(poi)
        else:
            kept.append(poi)
    return kept, deferred


def schedule_allocations(allocations: Sequence[DayAllocation], destination: str) -> List[DayPlan]:
    """Arrange each allocated day into slots.

    POIs a day cannot fit under the slot caps are carried over and offered
    first to the next day. A general full-day anchor never displaces the
    preference POIs allocated to a day; it waits for a day without them.
    """
    used: Set[str] = set()
    carry: List[CandidatePOI] = []
    days: List[DayPlan] = []
    for alloc in allocations:
        candidates = [p for p in [*carry, *alloc.pois] if p.place_id not in used]
        candidates, deferred = _defer_general_anchors(candidates)
        fill = fill_day(candidates, used, reserve_evening=True)
        carry = [p for p in [*candidates, *deferred] if p.place_id not in used]
        if carry:
            logger.debug("Day %d: carrying %d POI(s) to the next day", alloc.day, len(carry))
        title, covered = day_title(alloc.day, destination, [*fill.morning, *fill.afternoon, *fill.evening])
        if fill.anchor is not None:
            description = f"Full day at {fill.anchor.name}"
        elif covered:
            description = f"Experience the best of {destination} with a mix of {', '.join(covered)} and must-see highlights"
        else:
            description = f"Exploring the best of {destination}"
        days.append(_day_from_fill(alloc.day, fill, title, description))
    if carry:
        logger.info("%d allocated POI(s) did not fit any day: %s", len(carry), ", ".join(p.name for p in carry))
    return days


# ---------- assisted strategy ----------
def serialize_pool(pois: Sequence[CandidatePOI]) -> List[Dict[str, Any]]:
    return [
        {
            "placeId": p.place_id,
            "name": p.name,
            "category": p.category.value,
            "duration": p.estimated_duration,
            "reason": p.reason,
            "source": p.source,
        }
        for p in pois
    ]


def _slot_ids(entry: Dict[str, Any], slot: str) -> List[str]:
    for key in (f"{slot}Ids", f"{slot}_ids", f"{slot}POIs", slot):
        value = entry.get(key)
        if value is None:
            continue
        if not isinstance(value, list):
            raise ValueError(f"{key} must be a list")
        return [str(item) for item in value if isinstance(item, (str, int))]
    return []


def _coerce_score(value: Any, default: float = 0.8) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(score):
        return default
    return max(0.0, min(1.0, score))


def resolve_assisted_plan(
    raw: Any,
    pois: Sequence[CandidatePOI],
    day_count: int,
    destination: str,
) -> PlanResult:
    """Map an assistant response back onto ``CandidatePOI`` records and validate it."""
    if isinstance(raw, dict):
        raw = raw.get("days")
    if not isinstance(raw, list) or not raw:
        return NeedsFallback("empty or malformed assisted plan")

    by_id = {p.place_id: p for p in pois}
    entries: Dict[int, Dict[str, Any]] = {}
    for position, entry in enumerate(raw, start=1):
        if not isinstance(entry, dict):
            return NeedsFallback(f"day entry {position} is not an object")
        try:
            day_index = int(entry.get("day", position))
        except (TypeError, ValueError):
            return NeedsFallback(f"day entry {position} has a non-numeric day")
        if 1 <= day_index <= day_count and day_index not in entries:
            entries[day_index] = entry

    used: Set[str] = set()
    days: List[DayPlan] = []
    dropped = 0
    for day_index in range(1, day_count + 1):
        entry = entries.get(day_index, {})
        buckets: Dict[str, List[CandidatePOI]] = {}
        for slot in SLOTS:
            try:
                ids = _slot_ids(entry, slot)
            except ValueError as exc:
                return NeedsFallback(f"day {day_index}: {exc}")
            bucket: List[CandidatePOI] = []
            for place_id in ids:
                poi = by_id.get(place_id)
                if poi is None or place_id in used:
                    dropped += 1
                    continue
                used.add(place_id)
                bucket.append(poi)
            buckets[slot] = bucket
        plan = DayPlan(
            day=day_index,
            title=str(entry.get("title") or f"Day {day_index}: Exploring {destination}"),
            description=str(entry.get("description") or "A day of discovery and adventure"),
            morning=buckets["morning"],
            afternoon=buckets["afternoon"],
            evening=buckets["evening"],
            feasibility_score=_coerce_score(entry.get("feasibilityScore", entry.get("feasibility_score"))),
            travel_buffer=travel_buffer([*buckets["morning"], *buckets["afternoon"], *buckets["evening"]]),
        )
        days.append(plan)

    if dropped:
        logger.info("Dropped %d unknown or repeated POI id(s) from assisted plan", dropped)
    if all(day.is_empty() for day in days):
        return NeedsFallback("assisted plan resolved to no known POIs")
    if len(pois) >= day_count:
        empty = [d.day for d in days if d.is_empty()]
        if empty:
            return NeedsFallback(f"assisted plan left day(s) {empty} empty")
    for day in days:
        violation = _constraint_violation(day)
        if violation:
            return NeedsFallback(f"day {day.day}: {violation}")
    return PlanOk(days)


def _constraint_violation(day: DayPlan) -> Optional[str]:
    pois = day.all_pois()
    anchors = [p for p in pois if p.estimated_duration >= FULL_DAY_HOURS]
    if anchors and len(pois) > 1:
        return f"full-day anchor {anchors[0].name} co-scheduled with other POIs"
    if not anchors and day.total_duration > DINNER_OVERFLOW_CAP:
        return f"{day.total_duration:.1f}h exceeds the {DINNER_OVERFLOW_CAP}h day ceiling"
    return None


async def assisted_schedule(
    pois: Sequence[CandidatePOI],
    day_count: int,
    destination: str,
    preferences: Sequence[str],
    planner: Optional[PlanningAssistant],
    *,
    timeout: float = 30.0,
) -> PlanResult:
    """One attempt at an assistant-built plan; never raises, never retries."""
    if planner is None:
        return NeedsFallback("no planning assistant configured")
    if not pois:
        return NeedsFallback("empty candidate pool")
    try:
        raw = await asyncio.wait_for(planner.plan(pois, day_count, destination, preferences), timeout=timeout)
    except asyncio.TimeoutError:
        return NeedsFallback(f"planning assistant timed out after {timeout:.0f}s")
    except Exception as exc:
        logger.warning("Planning assistant raised", exc_info=True)
        return NeedsFallback(f"planning assistant error: {exc}")
    return resolve_assisted_plan(raw, pois, day_count, destination)
