from itinerary_engine.agents.allocator import (
    AllocationState,
    allocate_days,
    day_title,
    interleave_by_preference,
)
from itinerary_engine.agents.pool_builder import CandidatePool
from itinerary_engine.schemas import DINING_SOURCE, GENERAL_SOURCE, CandidatePOI, PoiCategory


def _poi(place_id, source=GENERAL_SOURCE, hours=2.0, category=PoiCategory.ATTRACTION):
    return CandidatePOI(place_id=place_id, name=place_id.title(), source=source, estimated_duration=hours, category=category)


def _pool(pref_counts, general=0, dining=0):
    preference = [_poi(f"{tag}-{i}", source=tag) for tag, n in pref_counts.items() for i in range(n)]
    return CandidatePool(
        destination="Kyoto",
        preference_pois=preference,
        general_pois=[_poi(f"gen-{i}") for i in range(general)],
        dining_pois=[_poi(f"din-{i}", source=DINING_SOURCE, category=PoiCategory.FOOD) for i in range(dining)],
    )


def _ids(allocations):
    return [p.place_id for a in allocations for p in a.pois]


def test_interleave_round_robins_in_priority_order():
    pois = [_poi("t1", "temples"), _poi("t2", "temples"), _poi("f1", "food"), _poi("t3", "temples"), _poi("f2", "food")]
    ordered = interleave_by_preference(pois, ["food", "temples"])
    assert [p.place_id for p in ordered] == ["f1", "t1", "f2", "t2", "t3"]


def test_state_counts_down_preference_pois_only():
    state = AllocationState(remaining_preference=2)
    assert state.take(_poi("t1", "temples"))
    assert not state.take(_poi("t1", "temples"))
    assert state.take(_poi("g1"))
    assert state.remaining_preference == 1


def test_no_poi_is_allocated_twice():
    allocations = allocate_days(_pool({"temples": 4, "food": 4}, general=12, dining=4), 4, ["temples", "food"])
    ids = _ids(allocations)
    assert len(ids) == len(set(ids))
    assert [a.day for a in allocations] == [1, 2, 3, 4]


def test_preference_quota_spreads_scarce_pois_across_days():
    # 3 preference POIs over 3 days: the quota is 1 per day, never 2 then 1 then 0
    allocations = allocate_days(_pool({"temples": 3}, general=15, dining=3), 3, ["temples"])
    per_day = [sum(1 for p in a.pois if p.is_preference) for a in allocations]
    assert per_day == [1, 1, 1]


def test_at_most_two_preference_pois_per_day():
    allocations = allocate_days(_pool({"temples": 10, "food": 10}, general=20, dining=5), 2, ["temples", "food"])
    for alloc in allocations:
        assert sum(1 for p in alloc.pois if p.is_preference) <= 2


def test_every_preference_with_candidates_is_covered_when_days_allow():
    allocations = allocate_days(_pool({"temples": 6, "street food": 6}, general=10, dining=5), 3, ["temples", "street food"])
    for alloc in allocations:
        assert set(alloc.preferences_covered) == {"temples", "street food"}


def test_general_window_rotates_between_days():
    allocations = allocate_days(_pool({}, general=15, dining=3), 3, [])
    first = {p.place_id for p in allocations[0].pois if p.source == GENERAL_SOURCE}
    second = {p.place_id for p in allocations[1].pois if p.source == GENERAL_SOURCE}
    assert first == {"gen-0", "gen-1", "gen-2", "gen-3"}
    assert second == {"gen-5", "gen-6", "gen-7", "gen-8"}


def test_each_day_gets_a_different_restaurant():
    allocations = allocate_days(_pool({}, general=15, dining=3), 3, [])
    dining = [[p.place_id for p in a.pois if p.source == DINING_SOURCE] for a in allocations]
    assert dining == [["din-0"], ["din-1"], ["din-2"]]


def test_backfill_tops_days_up_to_four():
    # no general POIs at all; preference and dining pools must fill the gap
    allocations = allocate_days(_pool({"temples": 12}, general=0, dining=2), 3, ["temples"])
    assert all(len(a.pois) >= 4 for a in allocations)


def test_backfill_stops_when_pool_is_exhausted():
    allocations = allocate_days(_pool({"temples": 1}, general=2, dining=0), 3, ["temples"])
    assert sorted(_ids(allocations)) == ["gen-0", "gen-1", "temples-0"]
    assert len(allocations) == 3


def test_titles_mention_covered_preferences():
    title, covered = day_title(2, "Kyoto", [_poi("t1", "temples"), _poi("f1", "street food"), _poi("g1")])
    assert title == "Day 2: Kyoto featuring temples & street food"
    assert covered == ["temples", "street food"]
    assert day_title(1, "Kyoto", [_poi("g1")])[0] == "Day 1: Kyoto exploring top attractions"
