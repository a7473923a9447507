# =============================================
# File: tests/test_logging.py
# =============================================
import sys, os, json
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from fastapi.testclient import TestClient

from app.services.search import get_search_service
from app.utils.ratelimit import reset_rate_limit
from conftest import make_service


def _mount_client(monkeypatch, catalog):
    # generous limiter
    monkeypatch.setenv("RL_MAX_REQS", "100")
    monkeypatch.setenv("RL_WINDOW_SECONDS", "60")
    reset_rate_limit()

    svc = make_service(catalog)
    from app.main import app
    monkeypatch.setitem(app.dependency_overrides, get_search_service, lambda: svc)
    return TestClient(app), svc


def _find_json_events(caplog, name: str):
    out = []
    for rec in caplog.records:
        try:
            data = json.loads(rec.message)
        except ValueError:
            continue
        if isinstance(data, dict) and data.get("event") == name:
            out.append(data)
    return out


def test_structured_log_on_search(monkeypatch, caplog, catalog):
    caplog.set_level("INFO", logger="search")
    client, svc = _mount_client(monkeypatch, catalog)

    r = client.post("/search", json={"user_id": "u-log", "query": "Sunset Photo"})
    assert r.status_code == 200

    (evt,) = _find_json_events(caplog, "request.completed")
    assert evt["path"] == "/search"
    assert evt["request_id"] == r.headers["X-Request-ID"]
    assert isinstance(evt["latency_ms"], int)
    assert evt["user_id"] == "u-log"
    assert len(evt["qhash"]) == 10
    assert evt["cache_hit"] is False
    assert evt["rate_limited"] is False

    (done,) = _find_json_events(caplog, "search.completed")
    assert done["qhash"] == evt["qhash"]
    assert done["user"] is True
    assert done["failed_paths"] == []
    # raw query text never reaches the log
    assert all("Sunset Photo" not in rec.message for rec in caplog.records)
    svc.shutdown()


def test_structured_log_rate_limited(monkeypatch, caplog, catalog):
    caplog.set_level("INFO", logger="search")
    client, svc = _mount_client(monkeypatch, catalog)
    monkeypatch.setenv("RL_MAX_REQS", "1")

    client.post("/search", json={"user_id": "rl-user", "query": "ping"})
    r = client.post("/search", json={"user_id": "rl-user", "query": "ping again"})
    assert r.status_code == 429

    evts = _find_json_events(caplog, "request.completed")
    assert [e["status"] for e in evts] == [200, 429]
    assert evts[-1]["rate_limited"] is True
    assert evts[0]["rate_limited"] is False
    svc.shutdown()


def test_item_change_is_logged(monkeypatch, caplog, catalog):
    caplog.set_level("INFO", logger="search")
    client, svc = _mount_client(monkeypatch, catalog)
    client.put("/items/e", json={"id": "e", "name": "Marquee Tents"})
    (evt,) = [e for e in _find_json_events(caplog, "item.changed") if e["item_id"] == "e"]
    assert evt["reembedded"] is True
    svc.shutdown()
