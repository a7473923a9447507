# =============================================
# File: tests/test_api.py
# Purpose: HTTP contract of /search, autocomplete, trending and item hooks
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from fastapi.testclient import TestClient

from app.services.search import get_search_service
from app.utils.ratelimit import reset_rate_limit
from conftest import make_service


def _mount_client(monkeypatch, catalog):
    monkeypatch.setenv("RL_MAX_REQS", "100")
    monkeypatch.setenv("RL_WINDOW_SECONDS", "60")
    reset_rate_limit()

    svc = make_service(catalog)
    from app.main import app
    monkeypatch.setitem(app.dependency_overrides, get_search_service, lambda: svc)
    # no context manager: the lifespan (real service + warm-up) is not run
    return TestClient(app), svc


def test_search_returns_ranked_page(monkeypatch, catalog):
    client, svc = _mount_client(monkeypatch, catalog)
    r = client.post("/search", json={"query": "sunset photo"})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    ids = [h["item"]["id"] for h in body["hits"]]
    assert ids.index("a") < ids.index("b")
    assert "embedding" not in body["hits"][0]["item"]
    assert "X-Request-ID" in r.headers

    again = client.post("/search", json={"query": "Sunset  Photo"})
    assert again.json()["cache_hit"] is True
    svc.shutdown()


def test_search_with_filters_sort_and_pagination(monkeypatch, catalog):
    client, svc = _mount_client(monkeypatch, catalog)
    r = client.post("/search", json={
        "query": "",
        "filters": {"geo": {"center": {"lat": 30.2672, "lon": -97.7431}, "radius_km": 50}},
        "sort": "distance",
        "pagination": {"offset": 0, "size": 1},
    })
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2
    assert [h["item"]["id"] for h in body["hits"]] == ["a"]
    svc.shutdown()


def test_invalid_requests_are_rejected(monkeypatch, catalog):
    client, svc = _mount_client(monkeypatch, catalog)
    bad = [
        {"query": "x", "sort": "distance"},
        {"query": "x", "pagination": {"offset": -1, "size": 10}},
        {"query": "x", "pagination": {"offset": 0, "size": 1000}},
        {"query": "x", "filters": {"geo": {"center": {"lat": 30.0, "lon": -97.0}, "radius_km": -5}}},
        {"query": "x", "filters": {"geo": {"center": {"lat": 120.0, "lon": -97.0}, "radius_km": 5}}},
        {"query": "x", "filters": {"min_price": 500, "max_price": 100}},
    ]
    for payload in bad:
        assert client.post("/search", json=payload).status_code == 422, payload
    svc.shutdown()


def test_autocomplete_and_trending(monkeypatch, catalog):
    client, svc = _mount_client(monkeypatch, catalog)
    for _ in range(3):
        assert client.post("/search", json={"query": "wedding cake"}).status_code == 200
    client.post("/search", json={"query": "venue"})
    svc.drain(timeout=5)

    r = client.get("/search/autocomplete", params={"q": "wed", "limit": 5})
    assert r.status_code == 200
    texts = [e["text"] for e in r.json()]
    assert texts[0] == "wedding cake"
    assert "venue" not in texts
    assert client.get("/search/autocomplete", params={"q": "w"}).json() == []

    trending = client.get("/search/trending", params={"window_seconds": 3600}).json()
    assert [t["query"] for t in trending][:2] == ["wedding cake", "venue"]
    assert trending[0]["frequency"] == 3

    assert client.get("/search/completions", params={"q": "wed"}).json()[0] == "wedding cake"
    cats = client.get("/search/categories/Photography/suggestions", params={"q": "photo"}).json()
    assert "sunset photography" in [e["text"] for e in cats]
    svc.shutdown()


def test_item_put_and_delete_update_results(monkeypatch, catalog):
    client, svc = _mount_client(monkeypatch, catalog)
    assert "e" not in [h["item"]["id"] for h in client.post("/search", json={"query": "marquee"}).json()["hits"]]

    item = {"id": "e", "name": "Marquee Tents", "category": "Rentals", "city": "Austin"}
    r = client.put("/items/e", json=item)
    assert r.status_code == 200
    hits = client.post("/search", json={"query": "marquee"}).json()["hits"]
    assert [h["item"]["id"] for h in hits] == ["e"]

    bad = client.put("/items/zzz", json=item)
    assert bad.status_code == 422
    assert "does not match" in bad.json()["detail"]

    assert client.delete("/items/e").json() == {"removed": "e"}
    assert client.post("/search", json={"query": "marquee"}).json()["hits"] == []
    svc.shutdown()


def test_health(monkeypatch, catalog):
    client, svc = _mount_client(monkeypatch, catalog)
    assert client.get("/health").json() == {"status": "ok", "items": 4, "indexed": 3}
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"
    svc.shutdown()
