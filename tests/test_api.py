import sqlite3

import httpx
import pytest
from fastapi.testclient import TestClient

from app import service
from app.main import create_app


class Upstream:
    def __init__(self, body: bytes) -> None:
        self.body = body
        self.mode = "ok"
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.mode == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if self.mode == "down":
            return httpx.Response(503)
        return httpx.Response(200, content=self.body)


@pytest.fixture
def upstream(bulletin_html) -> Upstream:
    return Upstream(bulletin_html)


@pytest.fixture
def api(settings, clock, upstream):
    app = create_app(settings, transport=httpx.MockTransport(upstream), clock=clock)
    with TestClient(app) as client:
        yield client


def test_first_read_triggers_scrape(api, upstream) -> None:
    res = api.get("/api/events")
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["count"] == 5
    assert upstream.calls == 1

    newest = body["events"][0]
    assert newest == {
        "id": "2025-11-01T08-12-00-000Z_1460_12098",
        "datetime": "2025-11-01T08:12:00.000Z",
        "latitude": 14.6,
        "longitude": 120.98,
        "depth": 10.0,
        "magnitude": 3.2,
        "location": "004 km S 73° E of Nasugbu (Batangas)",
    }
    datetimes = [e["datetime"] for e in body["events"]]
    assert datetimes == sorted(datetimes, reverse=True)
    assert body["lastUpdated"] == "2025-11-01T12:00:00.000Z"


def test_fresh_store_is_served_without_scrape(api, upstream, clock) -> None:
    api.get("/api/events")
    clock.advance(minutes=2)
    res = api.get("/api/events")
    assert res.json()["count"] == 5
    assert upstream.calls == 1


def test_upstream_timeout_serves_stored_window(api, upstream, clock) -> None:
    first = api.get("/api/events").json()

    upstream.mode = "timeout"
    clock.advance(minutes=10)
    res = api.get("/api/events")

    assert res.status_code == 200
    body = res.json()
    assert upstream.calls == 2
    assert body["success"] is True
    assert body["events"] == first["events"]
    assert body["lastUpdated"] == first["lastUpdated"]


def test_empty_store_and_dead_upstream_is_not_an_error(api, upstream, clock) -> None:
    upstream.mode = "down"
    res = api.get("/api/events")
    assert res.status_code == 200
    assert res.json()["events"] == []
    assert res.json()["lastUpdated"] == "2025-11-01T12:00:00.000Z"


def test_store_failure_surfaces_as_error(api, monkeypatch) -> None:
    def broken(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(service, "query_recent_events", broken)
    res = api.get("/api/events")
    assert res.status_code == 500
    assert res.json()["success"] is False


def test_scrape_trigger_reports_counts_and_gate(api, upstream, clock) -> None:
    res = api.post("/api/scrape")
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["events_stored"] == 5
    assert body["duplicates_collapsed"] == 1
    assert body["skipped_rows"] == 0
    assert body["error"] is None

    clock.advance(seconds=30)
    res = api.get("/api/scrape")
    assert res.status_code == 429
    assert res.headers["retry-after"] == "30"
    assert res.json()["error"] == "rate_limited"
    assert upstream.calls == 1


def test_scrape_trigger_timeout_is_504(api, upstream) -> None:
    upstream.mode = "timeout"
    res = api.post("/api/scrape")
    assert res.status_code == 504
    assert res.json()["error"] == "timeout"


def test_cleanup_and_health(api, clock) -> None:
    api.post("/api/scrape")

    clock.advance(hours=20)
    res = api.post("/api/cleanup")
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["events_before"] == 5
    # 12:00 + 20h leaves only events newer than 08:00 UTC on Nov 1
    assert body["events_deleted"] == 4
    assert body["events_after"] == 1

    state = api.get("/api/health").json()["state"]
    assert state["success_count"] == 1
    assert state["last_events_stored"] == 5


def test_unexpected_refresh_error_serves_stored_window(api, clock, monkeypatch) -> None:
    first = api.get("/api/events").json()

    async def exploding(*args, **kwargs):
        raise RuntimeError("upstream handler bug")

    monkeypatch.setattr(service, "run_cycle", exploding)
    clock.advance(minutes=10)
    res = api.get("/api/events")

    assert res.status_code == 200
    assert res.json()["events"] == first["events"]
