import asyncio

import pytest

from itinerary_engine.agents.duration_estimator import (
    DEFAULT_DURATION,
    MAX_DURATION,
    MIN_DURATION,
    IntelligentDurationEstimator,
    categorize_types,
    estimate_duration,
    resolve_duration,
)
from itinerary_engine.schemas import PoiCategory, RawPlace


def _place(name, types=None, place_id="p1"):
    return RawPlace(place_id=place_id, name=name, types=types or [])


def test_landmark_override_wins_over_type_table():
    # amusement_park alone would also give 8h; zoo types would give 5h
    estimate = resolve_duration(_place("Tokyo Disneyland", ["zoo", "tourist_attraction"]))
    assert estimate.source == "landmark"
    assert estimate.hours == 8.0


def test_tower_landmark_accounts_for_queues():
    assert estimate_duration(_place("Tokyo Tower", ["tourist_attraction"])) == 2.0


def test_type_lookup_prefers_longer_types():
    place = _place("Some Place", ["park", "botanical_garden"])
    estimate = resolve_duration(place)
    assert estimate.source == "type"
    assert estimate.hours == 2.0  # botanical_garden, not park


def test_fast_food_keyword_shortens_dining():
    plain = estimate_duration(_place("Kyoto Noodle House", ["restaurant"]))
    fast = estimate_duration(_place("Kyoto Burger Express", ["restaurant"]))
    assert plain == 1.5
    assert fast == 0.75


@pytest.mark.parametrize("name", ["The Standard Grill", "Grandstand Bistro", "International Diner"])
def test_keywords_match_whole_words_only(name):
    assert estimate_duration(_place(name, ["restaurant"])) == 1.5


def test_hyphenated_keyword_still_matches():
    assert estimate_duration(_place("Yakitori Stand-Up Bar", ["restaurant"])) == 0.75


def test_fine_dining_keyword_lengthens_dining():
    assert estimate_duration(_place("Omakase Kiyota", ["restaurant"])) == 2.5


def test_outlet_lengthens_shopping():
    assert estimate_duration(_place("Gotemba Premium Outlet", ["store"])) == 3.0


def test_famous_park_lengthens_nature():
    assert estimate_duration(_place("Ueno Park", ["park"])) == 4.0


def test_resort_beach_lengthens_beach():
    assert estimate_duration(_place("Nusa Dua Resort Beach", ["beach"])) == 5.0


def test_category_fallback_from_dict_category():
    estimate = resolve_duration({"name": "Mystery spot", "category": "museum"})
    assert estimate.source == "category"
    assert estimate.hours == 2.5


def test_unknown_poi_gets_global_default():
    estimate = resolve_duration({"name": "Nothing known"})
    assert estimate.source == "default"
    assert estimate.hours == DEFAULT_DURATION


def test_estimator_is_total_and_bounded():
    odd_inputs = [
        None,
        {},
        {"name": None, "types": None},
        _place("", []),
        _place("X", ["train_station"]),
        _place("Y", ["theme_park", "water_park"]),
        object(),
    ]
    for poi in odd_inputs:
        hours = estimate_duration(poi)
        assert MIN_DURATION <= hours <= MAX_DURATION


def test_estimator_is_deterministic():
    place = _place("Fushimi Inari Taisha", ["shrine", "place_of_worship", "tourist_attraction"])
    assert len({estimate_duration(place) for _ in range(5)}) == 1


def test_categorize_types_is_total():
    assert categorize_types(None) == PoiCategory.ATTRACTION
    assert categorize_types(["unknown_type"]) == PoiCategory.ATTRACTION
    assert categorize_types(["restaurant", "bar"]) == PoiCategory.FOOD
    assert categorize_types(["buddhist_temple"]) == PoiCategory.CULTURE


class _Advisor:
    def __init__(self, answer=None, exc=None, delay=0.0):
        self.answer = answer
        self.exc = exc
        self.delay = delay
        self.calls = 0

    async def estimate_hours(self, poi):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc:
            raise self.exc
        return self.answer


def test_intelligent_estimator_uses_advisor_for_ambiguous_pois():
    advisor = _Advisor(answer=3.25)
    estimator = IntelligentDurationEstimator(advisor)
    hours = asyncio.run(estimator.estimate(_place("Odd venue", ["tourist_attraction"])))
    assert hours == 3.25
    assert advisor.calls == 1


def test_intelligent_estimator_skips_advisor_when_tables_match():
    advisor = _Advisor(answer=11.0)
    estimator = IntelligentDurationEstimator(advisor)
    hours = asyncio.run(estimator.estimate(_place("Corner Cafe", ["cafe"])))
    assert hours == 1.0
    assert advisor.calls == 0


@pytest.mark.parametrize(
    "advisor",
    [
        _Advisor(answer=0.1),
        _Advisor(answer=20.0),
        _Advisor(answer="not a number"),
        _Advisor(exc=RuntimeError("provider down")),
        _Advisor(answer=3.0, delay=0.5),
    ],
)
def test_intelligent_estimator_falls_back_to_tables(advisor):
    estimator = IntelligentDurationEstimator(advisor, timeout=0.05)
    place = _place("Odd venue", ["tourist_attraction"])
    hours = asyncio.run(estimator.estimate(place))
    assert hours == estimate_duration(place)


def test_intelligent_estimator_caches_per_place():
    advisor = _Advisor(answer=1.75)
    estimator = IntelligentDurationEstimator(advisor)

    async def run():
        place = _place("Odd venue", ["tourist_attraction"], place_id="same")
        return await estimator.estimate_many([place, place])

    # both lookups run concurrently, so the cache may or may not be hit;
    # a third, sequential call must be served from it
    assert asyncio.run(run()) == [1.75, 1.75]
    calls = advisor.calls
    asyncio.run(estimator.estimate(_place("Odd venue", ["tourist_attraction"], place_id="same")))
    assert advisor.calls == calls
