import asyncio
from typing import Dict, List

from itinerary_engine.agents.pool_builder import (
    CandidatePool,
    build_candidate_pool,
    build_preference_set,
    query_for_tag,
    search_plan,
)
from itinerary_engine.errors import PlaceSearchError
from itinerary_engine.schemas import DINING_SOURCE, GENERAL_SOURCE, PoiCategory, RawPlace


class FakeSearcher:
    """Answers by query; an Exception value is raised, a float value is a delay."""

    def __init__(self, responses: Dict[str, object]):
        self.responses = responses
        self.queries: List[str] = []

    async def search(self, query, filters=None):
        self.queries.append(query)
        answer = self.responses.get(query, [])
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, float):
            await asyncio.sleep(answer)
            return []
        return list(answer)


def _place(place_id, name=None, types=None, rating=4.5, reviews=1000):
    return RawPlace(
        place_id=place_id,
        name=name or place_id,
        types=types or ["tourist_attraction"],
        rating=rating,
        user_ratings_total=reviews,
    )


def test_preference_set_dedupes_and_keeps_order():
    prefs = build_preference_set(["Temples", "street food", "temples"], ["  Street  Food ", "matcha", "nsfw pics"])
    assert list(prefs) == ["Temples", "street food", "matcha"]
    assert "TEMPLES" in prefs


def test_free_text_is_normalized_into_preferences():
    prefs = build_preference_set(["temples"], ["we love hot springs", "I enjoy gardening", "Temple hopping"])
    assert list(prefs) == ["temples", "hot springs", "gardens"]


def test_query_for_tag_uses_curated_phrasing():
    assert query_for_tag("temples", "Kyoto") == "buddhist temples shrines in Kyoto"
    assert query_for_tag("pottery classes", "Kyoto") == "pottery classes in Kyoto"


def test_search_plan_sizes_scale_with_days():
    specs = search_plan("Kyoto", ["temples"], 7)
    by_query = {s.query: s for s in specs}
    assert by_query["buddhist temples shrines in Kyoto"].limit == 7
    assert by_query["top attractions in Kyoto"].limit == 42
    assert by_query["best restaurants in Kyoto"].limit == 14
    assert by_query["hotels in Kyoto"].lodging is True

    short = {s.query: s for s in search_plan("Kyoto", [], 2)}
    assert short["top attractions in Kyoto"].limit == 20
    assert short["best restaurants in Kyoto"].limit == 10
    assert short["museums in Kyoto"].limit == 5


def test_preference_hits_win_over_generic_duplicates():
    shared = _place("kiyomizu", "Kiyomizu-dera", types=["buddhist_temple"])
    searcher = FakeSearcher(
        {
            "buddhist temples shrines in Kyoto": [shared],
            "top attractions in Kyoto": [shared, _place("castle", "Nijo Castle", types=["castle"])],
            "best restaurants in Kyoto": [_place("ramen", "Ramen Sen", types=["restaurant"])],
            "hotels in Kyoto": [_place("hotel", "Hotel Granvia", types=["lodging"])],
        }
    )
    pool = asyncio.run(build_candidate_pool("Kyoto", ["temples"], 3, searcher))

    assert [p.place_id for p in pool.preference_pois] == ["kiyomizu"]
    assert pool.preference_pois[0].source == "temples"
    assert [p.place_id for p in pool.general_pois] == ["castle"]
    assert pool.general_pois[0].source == GENERAL_SOURCE
    assert pool.dining_pois[0].source == DINING_SOURCE
    assert pool.dining_pois[0].category == PoiCategory.FOOD
    assert pool.lodging == ["Hotel Granvia"]
    assert len(pool) == 3
    ids = [p.place_id for p in pool.all_pois()]
    assert len(ids) == len(set(ids))


def test_failed_and_slow_searches_are_dropped():
    searcher = FakeSearcher(
        {
            "buddhist temples shrines in Kyoto": PlaceSearchError("temples", "quota exceeded"),
            "street food markets in Kyoto": 1.0,
            "top attractions in Kyoto": [_place("a1"), _place("a2")],
        }
    )
    pool = asyncio.run(build_candidate_pool("Kyoto", ["temples", "street food"], 2, searcher, timeout=0.05))

    assert [p.place_id for p in pool.general_pois] == ["a1", "a2"]
    assert pool.preference_pois == []
    assert set(pool.coverage_gaps) == {"temples", "street food"}
    assert "buddhist temples shrines in Kyoto" in pool.failed_queries
    assert "street food markets in Kyoto" in pool.failed_queries


def test_unsafe_places_never_enter_the_pool():
    searcher = FakeSearcher(
        {
            "bars nightclubs in Kyoto": [
                _place("club", "World Kyoto", types=["night_club"]),
                _place("bar", "Bar Rocking Chair", types=["bar"]),
            ],
        }
    )
    pool = asyncio.run(build_candidate_pool("Kyoto", ["nightlife"], 1, searcher))
    assert [p.place_id for p in pool.preference_pois] == ["bar"]


def test_results_are_capped_per_search():
    searcher = FakeSearcher({"museums in Kyoto": [_place(f"m{i}", types=["museum"]) for i in range(12)]})
    pool = asyncio.run(build_candidate_pool("Kyoto", [], 3, searcher))
    assert len(pool.general_pois) == 5


def test_durations_and_reasons_are_filled_in():
    searcher = FakeSearcher({"top attractions in Kyoto": [_place("inari", "Fushimi Inari Taisha", types=["shrine"])]})
    poi = asyncio.run(build_candidate_pool("Kyoto", [], 1, searcher)).general_pois[0]
    assert poi.estimated_duration == 1.0
    assert poi.category == PoiCategory.CULTURE
    assert poi.reason == "Must-see attraction - rated 4.5★ with 1000 reviews"


def test_from_pois_splits_by_source():
    pool = asyncio.run(
        build_candidate_pool(
            "Kyoto",
            ["temples"],
            1,
            FakeSearcher(
                {
                    "buddhist temples shrines in Kyoto": [_place("t1", types=["buddhist_temple"])],
                    "cafes in Kyoto": [_place("c1", types=["cafe"])],
                    "parks in Kyoto": [_place("p1", types=["park"])],
                }
            ),
        )
    )
    rebuilt = CandidatePool.from_pois("Kyoto", list(reversed(pool.all_pois())) + pool.all_pois())
    assert [p.place_id for p in rebuilt.preference_pois] == ["t1"]
    assert [p.place_id for p in rebuilt.general_pois] == ["p1"]
    assert [p.place_id for p in rebuilt.dining_pois] == ["c1"]
