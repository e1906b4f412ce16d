"""API tests against the app wired with in-memory fakes."""

import pytest
from fastapi.testclient import TestClient

from app.core.actions import ActionExecutor
from app.core.automation import AutomationConfig, AutomationEngine
from app.core.errors import UpstreamFetchError
from app.core.refresher import BackgroundRefresher
from app.core.stop_store import StopRecord
from app.main import app
from helpers import FakeClock, FakeSource, MemoryStopStore, RecordingDelivery, make_cache, make_payload, make_prediction, T0


@pytest.fixture
def services():
    clock = FakeClock()
    source = FakeSource(make_payload("place-orhte", [make_prediction("p1", 0, arrival_ms=T0 + 90_000)]))
    cache = make_cache(source, clock)
    store = MemoryStopStore([StopRecord("place-sdmnl", "Suffolk Downs")])
    delivery = RecordingDelivery()
    app.state.cache = cache
    app.state.stop_store = store
    app.state.refresher = BackgroundRefresher(cache, store, poll_interval=30, inter_stop_delay=0)
    app.state.automation = AutomationEngine(cache, ActionExecutor([delivery]), AutomationConfig(), clock=clock)
    return {"clock": clock, "source": source, "store": store, "delivery": delivery}


@pytest.fixture
def client(services):
    return TestClient(app)


def test_health(client):
    assert client.get("/api/health").json() == {"ok": True, "service": "mbta-tracker-api"}


def test_predictions_report_provenance(client, services):
    first = client.get("/api/stops/place-orhte/predictions")
    assert first.status_code == 200
    body = first.json()
    assert body["stopId"] == "place-orhte"
    assert body["source"] == "fresh-fetch"
    assert body["cached"] is False
    assert body["stale"] is False
    assert body["error"] is None
    assert body["predictions"][0]["routeId"] == "Blue"
    assert body["predictions"][0]["directionId"] == 0

    second = client.get("/api/stops/place-orhte/predictions?routeType=1&routeId=")
    assert second.json()["source"] == "fresh-cache"
    assert second.json()["cached"] is True
    assert services["source"].calls == [("place-orhte", 1, None, 16)]


def test_refresh_flag_forces_fetch(client, services):
    client.get("/api/stops/place-orhte/predictions")
    resp = client.get("/api/stops/place-orhte/predictions?refresh=true")
    assert resp.json()["source"] == "fresh-fetch"
    assert len(services["source"].calls) == 2


def test_stale_fallback_is_labelled(client, services):
    client.get("/api/stops/place-orhte/predictions")
    services["clock"].advance(30_000)
    services["source"].error = UpstreamFetchError("MBTA API error 503", status_code=503)

    body = client.get("/api/stops/place-orhte/predictions?refresh=true").json()
    assert body["source"] == "stale-after-failed-refetch"
    assert body["stale"] is True
    assert body["error"] == "MBTA API error 503"


def test_no_data_passes_upstream_status_through(client, services):
    services["source"].error = UpstreamFetchError(
        "MBTA API error 503 Service Unavailable", status_code=503, url="https://api-v3.mbta.com/predictions",
    )
    resp = client.get("/api/stops/place-orhte/predictions")
    assert resp.status_code == 503
    assert resp.json() == {
        "error": "Failed to fetch predictions",
        "details": "MBTA API error 503 Service Unavailable",
        "url": "https://api-v3.mbta.com/predictions",
    }


def test_transport_failure_maps_to_bad_gateway(client, services):
    services["source"].error = UpstreamFetchError("MBTA API unreachable")
    assert client.get("/api/stops/place-orhte/predictions").status_code == 502


def test_non_numeric_route_type_rejected(client):
    assert client.get("/api/stops/place-orhte/predictions?routeType=subway").status_code == 422


def test_stop_pinning(client, services):
    assert client.get("/api/stops").json() == {
        "stops": [{"stopId": "place-sdmnl", "name": "Suffolk Downs", "pinned": True}],
    }

    created = client.post("/api/stops", json={"stopId": " place-orhte ", "name": "Orient Heights"})
    assert created.status_code == 201
    assert created.json()["stop"] == {"stopId": "place-orhte", "name": "Orient Heights", "pinned": True}

    assert client.delete("/api/stops/place-sdmnl").status_code == 204
    assert list(services["store"].stops) == ["place-orhte"]


def test_pin_requires_stop_id(client):
    assert client.post("/api/stops", json={"name": "nowhere"}).status_code == 422
    assert client.post("/api/stops", json={"stopId": "   "}).status_code == 422


def test_automation_status(client):
    body = client.get("/api/automation").json()
    assert body["enabled"] is True
    assert body["active"] is False
    assert body["config"]["stopId"] == "place-orhte"
    assert body["config"]["hasWebhook"] is False
    assert body["currentWindow"] is None


def test_manual_trigger(client, services):
    resp = client.post("/api/automation/trigger", json={"action": "restore"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["lastAction"] == "restore"
    assert body["lastActionAt"] == "2026-03-02T12:00:00.000Z"
    assert body["active"] is False
    assert services["delivery"].actions() == ["restore"]


def test_manual_trigger_rejects_unknown_action(client, services):
    resp = client.post("/api/automation/trigger", json={"action": "mute"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == 'action must be "raise" or "restore"'
    assert services["delivery"].contexts == []


def test_diagnostics_lists_cache_entries(client):
    client.get("/api/stops/place-orhte/predictions")
    body = client.get("/api/diagnostics").json()
    assert body["cache"]["ttl_ms"] == 10_000
    assert body["cache"]["entries"][0]["key"] == "place-orhte:1:all"
    assert body["cache"]["entries"][0]["state"] == "fresh"
    assert body["refresher"]["running"] is False

    assert client.get("/api/diagnostics/cache/place-orhte").json()["entries"][0]["count"] == 1
    assert client.get("/api/diagnostics/cache/elsewhere").json() == {"error": "Stop not cached"}


def test_default_stop_redirect(client):
    resp = client.get("/api/default-stop", follow_redirects=False)
    assert resp.status_code == 302
    assert resp.headers["location"].endswith("/predictions")
