import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from itinerary_engine.agents.scheduler import (
    DINNER_OVERFLOW_CAP,
    NeedsFallback,
    PlanOk,
    assisted_schedule,
    estimate_travel_time,
    fallback_schedule,
    fill_day,
    resolve_assisted_plan,
    schedule_allocations,
    serialize_pool,
    travel_buffer,
)
from itinerary_engine.schemas import (
    DINING_SOURCE,
    GENERAL_SOURCE,
    CandidatePOI,
    Coordinate,
    DayAllocation,
    PoiCategory,
)


def _poi(place_id, hours=2.0, category=PoiCategory.ATTRACTION, source=GENERAL_SOURCE, location=None):
    return CandidatePOI(
        place_id=place_id,
        name=place_id.title(),
        estimated_duration=hours,
        category=category,
        source=source,
        location=location,
    )


def _food(place_id, hours=1.5):
    return _poi(place_id, hours, PoiCategory.FOOD, DINING_SOURCE)


def test_full_day_anchor_is_scheduled_alone():
    park = _poi("usj", 8.0, PoiCategory.ENTERTAINMENT)
    used = set()
    fill = fill_day([_poi("a", 1.0), park, _poi("b", 1.0)], used)
    assert fill.anchor == park
    assert fill.afternoon == [park]
    assert fill.morning == [] and fill.evening == []
    assert used == {"usj"}


def test_greedy_fill_respects_slot_caps():
    pool = [_poi("half", 3.0), _poi("q1", 1.0), _poi("q2", 2.0), _poi("q3", 2.0), _poi("q4", 1.0), _food("dinner")]
    fill = fill_day(pool, set())
    assert [p.place_id for p in fill.morning] == ["half"]
    assert [p.place_id for p in fill.afternoon] == ["q1", "q2"]
    assert [p.place_id for p in fill.evening] == ["dinner"]
    assert fill.total <= DINNER_OVERFLOW_CAP


def test_evening_only_takes_dining_or_nightlife():
    fill = fill_day([_poi("m", 3.0), _poi("a1", 2.0), _poi("a2", 2.0), _poi("late", 1.0)], set())
    assert fill.evening == []


def test_evening_allows_slight_dinner_overflow():
    pool = [_poi("m", 3.0), _poi("a1", 2.0), _poi("a2", 2.0), _food("dinner", 1.5)]
    fill = fill_day(pool, set(), reserve_evening=True)
    assert fill.total == 8.5
    assert [p.place_id for p in fill.evening] == ["dinner"]


def test_only_mid_length_pois_still_yield_a_day():
    fill = fill_day([_poi("long", 4.5), _poi("longer", 5.0)], set())
    assert [p.place_id for p in fill.afternoon] == ["long"]


def test_fallback_schedule_never_reuses_pois():
    pool = [_poi(f"g{i}", 1.5) for i in range(10)] + [_food(f"d{i}") for i in range(3)]
    days = fallback_schedule(pool, 4, "Kyoto")
    ids = [pid for d in days for pid in d.place_ids()]
    assert len(ids) == len(set(ids))
    assert [d.day for d in days] == [1, 2, 3, 4]
    assert all(d.title == f"Day {d.day}: Kyoto Discovery" for d in days)


def test_fallback_feasibility_scores():
    days = fallback_schedule([_poi("park", 8.0), _poi("a", 1.0)], 2, "Orlando")
    assert days[0].feasibility_score == 0.9
    assert days[0].description == "Full day at Park"
    assert days[1].feasibility_score == 0.9


def test_fallback_with_empty_pool_gives_empty_days():
    days = fallback_schedule([], 3, "Kyoto")
    assert len(days) == 3
    assert all(d.is_empty() for d in days)


def test_schedule_allocations_keeps_pois_on_their_day():
    allocations = [
        DayAllocation(day=1, title="x", pois=[_poi("t1", 1.5, source="temples"), _poi("g1"), _food("d1")]),
        DayAllocation(day=2, title="y", pois=[_poi("t2", 1.5, source="temples"), _poi("g2"), _food("d2")]),
    ]
    days = schedule_allocations(allocations, "Kyoto")
    assert set(days[0].place_ids()) == {"t1", "g1", "d1"}
    assert set(days[1].place_ids()) == {"t2", "g2", "d2"}
    assert days[0].title == "Day 1: Kyoto featuring temples"
    assert [p.place_id for p in days[0].evening] == ["d1"]


def test_general_anchor_waits_for_a_day_without_preferences():
    allocations = [
        DayAllocation(day=1, title="x", pois=[_poi("t1", 1.5, source="temples"), _poi("park", 8.0), _food("d1")]),
        DayAllocation(day=2, title="y", pois=[]),
    ]
    days = schedule_allocations(allocations, "Osaka")
    assert set(days[0].place_ids()) == {"t1", "d1"}
    assert days[1].place_ids() == ["park"]
    assert days[1].description == "Full day at Park"


def test_preference_anchor_pushes_the_rest_of_its_day_forward():
    allocations = [
        DayAllocation(day=1, title="x", pois=[_poi("usj", 8.0, source="theme parks"), _poi("t1", 1.5, source="temples")]),
        DayAllocation(day=2, title="y", pois=[]),
    ]
    days = schedule_allocations(allocations, "Osaka")
    assert days[0].place_ids() == ["usj"]
    assert days[1].place_ids() == ["t1"]


def test_pois_that_do_not_fit_carry_to_the_next_day():
    sights = [_poi(f"s{i}", 2.0) for i in range(7)]
    allocations = [
        DayAllocation(day=1, title="x", pois=sights[:4]),
        DayAllocation(day=2, title="y", pois=sights[4:]),
        DayAllocation(day=3, title="z", pois=[]),
    ]
    days = schedule_allocations(allocations, "Kyoto")
    assert days[0].place_ids() == ["s0", "s1", "s2"]
    assert days[1].place_ids() == ["s3", "s4", "s5"]
    assert days[2].place_ids() == ["s6"]


def test_travel_buffer_uses_coordinates_when_present():
    a = _poi("a", location=Coordinate(lat=35.0, lng=135.70))
    b = _poi("b", location=Coordinate(lat=35.0, lng=135.72))
    assert estimate_travel_time(a, b) == pytest.approx(0.4)
    assert estimate_travel_time(a, _poi("c")) == 0.5
    assert travel_buffer([a, b, _poi("c")]) == pytest.approx(0.9)


# ---------- assisted strategy ----------
POOL = [_poi("t1", 1.5, source="temples"), _poi("t2", 1.5, source="temples"), _poi("g1"), _poi("g2"), _food("d1")]


def test_serialize_pool_shape():
    entry = serialize_pool(POOL[:1])[0]
    assert entry == {
        "placeId": "t1",
        "name": "T1",
        "category": "attraction",
        "duration": 1.5,
        "reason": "",
        "source": "temples",
    }


def test_resolve_maps_ids_and_drops_unknown_or_repeated():
    raw = [
        {"day": 1, "title": "Temples", "morningIds": ["t1", "ghost"], "afternoonIds": ["g1"], "eveningIds": ["d1"], "feasibilityScore": 0.95},
        {"day": 2, "morningPOIs": ["t2", "t1"], "afternoon_ids": ["g2"]},
    ]
    outcome = resolve_assisted_plan(raw, POOL, 2, "Kyoto")
    assert isinstance(outcome, PlanOk)
    day1, day2 = outcome.days
    assert day1.place_ids() == ["t1", "g1", "d1"]
    assert day1.feasibility_score == 0.95
    assert day2.place_ids() == ["t2", "g2"]
    assert day2.title == "Day 2: Exploring Kyoto"


def test_resolve_accepts_days_wrapper_and_pads_missing_days():
    raw = {"days": [{"day": 1, "morningIds": ["t1"]}]}
    outcome = resolve_assisted_plan(raw, POOL[:1], 3, "Kyoto")
    assert isinstance(outcome, PlanOk)
    assert [d.day for d in outcome.days] == [1, 2, 3]


@pytest.mark.parametrize(
    "raw",
    [
        None,
        [],
        "not json",
        [{"day": 1, "morningIds": ["ghost"]}],
        [{"day": 1, "morningIds": "t1"}],
        ["day one"],
        [{"day": 1, "morningIds": ["t1", "t2", "g1", "g2"]}, {"day": 2}],
    ],
)
def test_resolve_rejects_unusable_plans(raw):
    assert isinstance(resolve_assisted_plan(raw, POOL, 2, "Kyoto"), NeedsFallback)


def test_resolve_rejects_anchor_shared_with_other_pois():
    pool = [_poi("usj", 8.0), _poi("g1", 1.0)]
    raw = [{"day": 1, "afternoonIds": ["usj", "g1"]}]
    outcome = resolve_assisted_plan(raw, pool, 1, "Osaka")
    assert isinstance(outcome, NeedsFallback)
    assert "anchor" in outcome.reason


def test_resolve_rejects_overlong_days():
    pool = [_poi(f"h{i}", 3.0) for i in range(3)]
    outcome = resolve_assisted_plan([{"day": 1, "morningIds": ["h0", "h1", "h2"]}], pool, 1, "Kyoto")
    assert isinstance(outcome, NeedsFallback)


class _Planner:
    def __init__(self, response=None, exc=None, delay=0.0):
        self.response = response
        self.exc = exc
        self.delay = delay

    async def plan(self, pois, day_count, destination, preferences):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc:
            raise self.exc
        return self.response


def test_assisted_schedule_success():
    planner = SimpleNamespace(plan=AsyncMock(return_value=[{"day": 1, "morningIds": ["t1"], "eveningIds": ["d1"]}]))
    outcome = asyncio.run(assisted_schedule(POOL, 1, "Kyoto", ["temples"], planner))
    assert isinstance(outcome, PlanOk)
    planner.plan.assert_awaited_once()
    assert planner.plan.await_args.args[1:] == (1, "Kyoto", ["temples"])


@pytest.mark.parametrize(
    "planner",
    [None, _Planner(exc=RuntimeError("rate limited")), _Planner(response=[], delay=0.5), _Planner(response={"oops": 1})],
)
def test_assisted_schedule_failures_request_fallback(planner):
    outcome = asyncio.run(assisted_schedule(POOL, 2, "Kyoto", ["temples"], planner, timeout=0.05))
    assert isinstance(outcome, NeedsFallback)


def test_assisted_schedule_with_empty_pool_requests_fallback():
    outcome = asyncio.run(assisted_schedule([], 2, "Kyoto", [], _Planner([{"day": 1}])))
    assert isinstance(outcome, NeedsFallback)
