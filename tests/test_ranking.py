# =============================================
# File: tests/test_ranking.py
# Purpose: Score fusion purity, single-path penalty, tie-breaks, sort modes and facets
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import pytest

from app.services.models import SortDirection, SortMode
from app.services.ranking import facets, merge, sort_candidates
from app.services.settings import RankingWeights
from conftest import make_item

W = RankingWeights(keyword=0.4, semantic=0.4, geo=0.1, popularity=0.1, single_path_factor=0.65)


def test_merge_is_pure():
    kw = [("a", 0.9), ("b", 0.5), ("c", 0.1)]
    sem = [("b", 0.8), ("d", 0.75)]
    geo = {"a": 0.2, "b": 0.9}
    pop = {"a": 0.1, "b": 0.3, "c": 1.0, "d": 0.0}
    first = merge(kw, sem, geo, pop, W)
    second = merge(list(reversed(kw)), list(reversed(sem)), dict(geo), dict(pop), W)
    assert first == second
    assert [c.item_id for c in first] == [c.item_id for c in merge(kw, sem, geo, pop, W)]


def test_multi_signal_consensus_beats_single_signal():
    # "solo" has the stronger keyword score but nothing else
    out = merge([("solo", 1.0), ("both", 0.8)], [("both", 0.8)], {}, {}, W)
    assert [c.item_id for c in out] == ["both", "solo"]
    solo = out[1]
    assert solo.combined == pytest.approx(0.4 * 1.0 * 0.65)
    assert solo.provenance == ("keyword",)
    assert out[0].provenance == ("keyword", "semantic")


def test_combined_is_weighted_sum_of_partials():
    (c,) = merge([("x", 0.5)], [("x", 1.0)], {"x": 0.5}, {"x": 0.2}, W)
    assert c.combined == pytest.approx(0.4 * 0.5 + 0.4 * 1.0 + 0.1 * 0.5 + 0.1 * 0.2)
    assert c.provenance == ("keyword", "semantic", "geo", "popularity")


def test_ties_break_by_item_id():
    out = merge([("b", 0.5), ("a", 0.5), ("c", 0.5)], [], {}, {}, W)
    assert [c.item_id for c in out] == ["a", "b", "c"]


def test_browse_ids_are_included_without_penalty():
    out = merge([], [], {}, {"x": 1.0, "y": 0.5}, W, base_ids=["x", "y"])
    assert [c.item_id for c in out] == ["x", "y"]
    assert out[0].combined == pytest.approx(0.1)


def test_weights_come_from_environment(monkeypatch):
    monkeypatch.setenv("RANK_W_KEYWORD", "1.0")
    monkeypatch.setenv("RANK_W_SEMANTIC", "0.0")
    monkeypatch.setenv("RANK_SINGLE_PATH_FACTOR", "1.0")
    out = merge([("k", 0.5)], [("s", 1.0)], {}, {})
    assert [c.item_id for c in out] == ["k", "s"]
    assert out[0].combined == pytest.approx(0.5)


def test_distance_sort_is_non_decreasing():
    items = {i: make_item(i, i) for i in "abcd"}
    cands = merge([("a", 0.9), ("b", 0.8), ("c", 0.7), ("d", 0.6)], [], {}, {}, W,
                  distances={"a": 7.5, "b": 0.4, "c": 3.0, "d": 3.0})
    out = sort_candidates(cands, items, SortMode.DISTANCE, SortDirection.ASC)
    dists = [c.distance_km for c in out]
    assert dists == sorted(dists)
    # equal distances fall back to combined score
    assert [c.item_id for c in out] == ["b", "c", "d", "a"]


def test_price_sort_puts_unpriced_items_last_in_both_directions():
    items = {
        "cheap": make_item("cheap", "x", price=(100, 200)),
        "dear": make_item("dear", "y", price=(5000, 9000)),
        "none": make_item("none", "z"),
    }
    cands = merge([(i, 0.5) for i in items], [], {}, {}, W)
    asc = sort_candidates(cands, items, SortMode.PRICE, SortDirection.ASC)
    desc = sort_candidates(cands, items, SortMode.PRICE, SortDirection.DESC)
    assert [c.item_id for c in asc] == ["cheap", "dear", "none"]
    assert [c.item_id for c in desc] == ["dear", "cheap", "none"]


@pytest.mark.parametrize("mode,field,values,expected", [
    (SortMode.RATING, "rating", {"a": 3.0, "b": 4.9, "c": 4.0}, ["b", "c", "a"]),
    (SortMode.REVIEWS, "review_count", {"a": 10, "b": 2, "c": 30}, ["c", "a", "b"]),
    (SortMode.NEWEST, "created_at", {"a": 100.0, "b": 300.0, "c": 200.0}, ["b", "c", "a"]),
])
def test_attribute_sorts_descending_by_default(mode, field, values, expected):
    items = {i: make_item(i, i, **{field: v}) for i, v in values.items()}
    cands = merge([(i, 0.5) for i in items], [], {}, {}, W)
    out = sort_candidates(cands, items, mode, SortDirection.DESC)
    assert [c.item_id for c in out] == expected


def test_relevance_sort_matches_merge_order():
    items = {i: make_item(i, i) for i in "abc"}
    cands = merge([("a", 0.2), ("b", 0.9), ("c", 0.5)], [], {}, {}, W)
    out = sort_candidates(cands, items, SortMode.RELEVANCE, SortDirection.DESC)
    assert [c.item_id for c in out] == [c.item_id for c in cands]


def test_facets_count_categories_cities_and_buckets():
    its = [
        make_item("1", "a", category="Venue", city="Austin", price=(500, 900), rating=4.5),
        make_item("2", "b", category="Venue", city="Dallas", price=(1000, 2000), rating=3.2),
        make_item("3", "c", category="Florist", city="Austin", price=(12000, 15000), rating=5.0),
        make_item("4", "d", category="Florist", rating=1.0),
    ]
    f = facets(its)
    assert f["category"] == {"Venue": 2, "Florist": 2}
    assert f["city"] == {"Austin": 2, "Dallas": 1}
    assert f["price"] == {"0-1000": 1, "1000-5000": 1, "10000+": 1}
    assert f["rating"] == {"4-5": 2, "3-4": 1, "0-2": 1}
