# =============================================
# File: tests/test_item_store.py
# Purpose: Structural filters, eligibility and JSON seed loading
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import json

from app.services.item_store import InMemoryItemStore, build_item_store, matches_filters
from app.services.models import GeoFilter, GeoPoint, SearchFilters
from conftest import make_item


def test_filters_match_on_normalized_text_fields():
    it = make_item("a", "x", category="Photography", city="San Antonio", state="TX")
    assert matches_filters(it, SearchFilters(category=" PHOTOGRAPHY", city="san  antonio", state="tx"))
    assert not matches_filters(it, SearchFilters(city="Austin"))


def test_price_filter_uses_range_overlap():
    it = make_item("a", "x", price=(1000, 3000))
    assert matches_filters(it, SearchFilters(min_price=2500))
    assert matches_filters(it, SearchFilters(max_price=1000))
    assert not matches_filters(it, SearchFilters(min_price=3500))
    assert not matches_filters(make_item("b", "y"), SearchFilters(max_price=5000))


def test_numeric_and_flag_filters():
    it = make_item("a", "x", rating=4.2, review_count=12, verified=True)
    assert matches_filters(it, SearchFilters(min_rating=4.0, min_reviews=10, verified=True))
    assert not matches_filters(it, SearchFilters(min_rating=4.5))
    assert not matches_filters(it, SearchFilters(featured=True))


def test_geo_filter_excludes_items_without_location():
    geo = GeoFilter(center=GeoPoint(lat=30.2672, lon=-97.7431), radius_km=10)
    assert matches_filters(make_item("a", "x", location=(30.27, -97.74)), SearchFilters(geo=geo))
    assert not matches_filters(make_item("b", "y"), SearchFilters(geo=geo))


def test_ineligible_items_never_match():
    for status in ("pending", "suspended", "rejected"):
        assert not matches_filters(make_item("a", "x", status=status), SearchFilters())


def test_store_copies_and_maintenance():
    store = InMemoryItemStore([make_item("a", "Alpha"), make_item("b", "Beta", status="pending")])
    assert [it.id for it in store.find_eligible_by_filters(SearchFilters())] == ["a"]
    got = store.get_by_id("a")
    got.name = "changed"
    assert store.get_by_id("a").name == "Alpha"
    prev = store.upsert(make_item("a", "Alpha 2"))
    assert prev.name == "Alpha"
    assert store.remove("b").id == "b"
    assert store.get_by_id("b") is None
    assert len(store) == 1


def test_seed_file_loading_skips_invalid_rows(tmp_path, monkeypatch):
    path = tmp_path / "items.json"
    path.write_text(json.dumps([
        {"id": "v1", "name": "Sunset Photography", "rating": 4.5},
        {"id": "v2", "name": "Broken", "rating": 9.0},
        {"id": "v3", "name": "Bloom Florals", "location": {"lat": 32.7, "lon": -96.8}},
    ]), encoding="utf-8")
    monkeypatch.setenv("ITEMS_PATH", str(path))
    store = build_item_store()
    assert sorted(it.id for it in store.all_items()) == ["v1", "v3"]
    assert store.get_by_id("v3").location.lat == 32.7

    assert len(InMemoryItemStore(path=str(tmp_path / "missing.json"))) == 0


def test_bundled_sample_catalog_loads():
    store = InMemoryItemStore(path=os.path.join(os.path.dirname(os.path.dirname(__file__)), "app", "data", "items.json"))
    assert len(store) >= 5
    assert all(it.eligible for it in store.find_eligible_by_filters(SearchFilters()))
