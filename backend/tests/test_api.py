from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from traffic_api.main import app, build_services, get_services
from traffic_api.settings import settings

KEY = {"x-api-key": "demo-key-pro"}

TII_PAYLOAD = [
    {
        "header": {"id": "TII-M1-NB"},
        "publicationTime": "2026-10-18T07:45:00Z",
        "situationRecord": [
            {
                "roadName": "M1",
                "directionBound": "northBound",
                "travelTime": 1680,
                "freeFlowTravelTime": 1320,
                "startLocation": "Drogheda",
                "endLocation": "Swords",
            }
        ],
    },
    {
        "header": {"id": "TII-N7"},
        "situationRecord": [{"roadName": "N7", "travelTime": 600, "freeFlowTravelTime": 600}],
    },
]

DIRECTIONS_PAYLOAD = {
    "status": "OK",
    "routes": [
        {
            "summary": "George's St",
            "legs": [
                {
                    "duration": {"value": 300},
                    "duration_in_traffic": {"value": 480},
                    "distance": {"value": 1200},
                    "start_address": "Drogheda, Co. Louth, Ireland",
                    "end_address": "George's Street, Drogheda, Ireland",
                    "steps": [],
                }
            ],
        }
    ],
}


def _provider_handler(request: httpx.Request) -> httpx.Response:
    host = request.url.host
    if host == "data.tii.ie":
        return httpx.Response(200, json=TII_PAYLOAD)
    if host == "webtris.nationalhighways.co.uk":
        return httpx.Response(200, json={"sites": []})
    if host == "maps.googleapis.com":
        return httpx.Response(200, json=DIRECTIONS_PAYLOAD)
    return httpx.Response(404, json={"error": f"unexpected host {host}"})


@pytest.fixture
def offline(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "tii_base_url", "https://data.tii.ie")
    monkeypatch.setattr(settings, "webtris_base_url", "https://webtris.nationalhighways.co.uk/api/v1")
    monkeypatch.setattr(settings, "google_maps_directions_url", "https://maps.googleapis.com/maps/api/directions/json")
    monkeypatch.setattr(settings, "google_maps_api_key", "maps-key")
    monkeypatch.setattr(settings, "llm_api_key", "")
    monkeypatch.setattr(settings, "telegram_bot_token", "")
    monkeypatch.setattr(settings, "junction_call_pause_s", 0.0)
    monkeypatch.setattr(settings, "api_keys", "demo-key-free,demo-key-pro")
    monkeypatch.setattr(settings, "rate_limit_enabled", True)
    monkeypatch.setattr(settings, "rate_limit_max_requests", 100)


@pytest.fixture
def client(offline: None) -> Iterator[TestClient]:
    services = build_services(httpx.AsyncClient(transport=httpx.MockTransport(_provider_handler)))
    app.dependency_overrides[get_services] = lambda: services
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def _traffic(client: TestClient, **params: Any) -> httpx.Response:
    return client.get("/traffic", params=params, headers=KEY)


def test_public_endpoints_need_no_key(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}
    root = client.get("/").json()
    assert root["status"] == "operational"
    sources = client.get("/sources").json()["sources"]
    assert [s["id"] for s in sources] == ["national-roads", "uk-highways", "commercial-fallback"]


def test_irish_m1_end_to_end(client: TestClient) -> None:
    resp = _traffic(client, road="M1", country="IE")
    assert resp.status_code == 200
    body = resp.json()

    assert body["query"] == {"road": "M1", "country": "IE", "extract": False}
    assert len(body["data"]) == 1
    record = body["data"][0]
    assert record["source"] == "national-roads"
    assert record["direction"] == "Northbound"
    assert record["travelTimeMinutes"] == 28
    assert record["delayMinutes"] == 6
    assert record["congestionLevel"] == "moderate"
    assert body["summary"]["totalRecords"] == 1
    assert body["summary"]["sourcesUsed"] == ["national-roads"]
    assert body["summary"]["congestionBreakdown"]["moderate"] == 1
    assert body["routing"]["fallbackUsed"] is False
    assert body["routing"]["trace"][0]["outcome"] == "ok"
    assert "errors" not in body
    assert "extraction" not in body


def test_local_street_goes_to_commercial(client: TestClient) -> None:
    body = _traffic(client, road="George's Street", town="Drogheda").json()

    assert body["routing"]["fallbackUsed"] is True
    assert body["routing"]["sourcesTried"] == ["commercial-fallback"]
    assert body["summary"]["sourcesUsed"] == ["commercial-fallback"]
    record = body["data"][0]
    assert record["travelTimeMinutes"] == 8
    assert record["freeFlowTimeMinutes"] == 5
    assert record["delayMinutes"] == 3

    usage = client.get("/usage/commercial", headers=KEY).json()["usage"]
    assert usage["totalCalls"] == 1


def test_traffic_with_extraction_falls_back_without_llm(client: TestClient) -> None:
    body = _traffic(client, road="M1", country="IE", extract="true").json()
    assert body["extraction"]["processed"] == 1
    assert body["extraction"]["fallback"] == 1
    segment = body["data"][0]["segment"]
    assert segment["road"] == "M1"
    assert segment["fallback"] is True
    assert body["data"][0]["humanReadable"].startswith("M1 Northbound")


def test_traffic_validation_and_auth(client: TestClient) -> None:
    missing = _traffic(client)
    assert missing.status_code == 400
    assert missing.json()["detail"]["error"] == "Road parameter required"

    assert _traffic(client, road="M1", country="FR").status_code == 422
    assert client.get("/traffic", params={"road": "M1"}).status_code == 401
    assert client.get("/traffic", params={"road": "M1"}, headers={"x-api-key": "nope"}).status_code == 401


def test_compare_endpoint(client: TestClient) -> None:
    body = client.get("/compare", params={"road": "M1"}, headers=KEY).json()
    assert body["comparison"]["ireland"]["recordCount"] == 1
    assert body["comparison"]["uk"]["recordCount"] == 0
    assert body["insight"] == "Only Irish data available for M1"
    assert client.get("/compare", headers=KEY).status_code == 400


def test_extract_endpoint_accepts_text_and_json(client: TestClient) -> None:
    text = client.post(
        "/extract",
        content="Heavy traffic on the M50 southbound after a collision",
        headers={**KEY, "content-type": "text/plain"},
    ).json()
    assert text["input"].startswith("Heavy traffic")
    assert text["extracted"]["road"] == "M50"
    assert text["extracted"]["incidentType"] == "collision"

    wrapped = client.post("/extract", json={"text": "Roadworks on A14 eastbound"}, headers=KEY).json()
    assert wrapped["input"] == "Roadworks on A14 eastbound"
    assert wrapped["extracted"]["road"] == "A14"

    raw = client.post("/extract", json={"road": "N7", "speed": 30}, headers=KEY).json()
    assert raw["input"] == '{"road": "N7", "speed": 30}'

    empty = client.post("/extract", content="   ", headers={**KEY, "content-type": "text/plain"})
    assert empty.status_code == 400


def test_cache_stats_and_clear(client: TestClient) -> None:
    _traffic(client, road="M1", country="IE")
    stats = client.get("/cache/stats", headers=KEY).json()
    assert set(stats["cache"]) == {"national-roads", "uk-highways", "commercial-fallback", "segments"}
    assert stats["cache"]["national-roads"]["size"] == 1

    cleared = client.post("/cache/clear", headers=KEY).json()
    assert cleared["cleared"]["national-roads"] == 1
    assert client.get("/cache/stats", headers=KEY).json()["cache"]["national-roads"]["size"] == 0


def test_llm_status_endpoint(client: TestClient) -> None:
    body = client.get("/llm/status", headers=KEY).json()
    assert body["llm"]["enabled"] is False
    assert body["providers"] == ["gemini", "openai", "kimi"]
    assert "LLM_API_KEY" in body["setup"]


def test_junction_report_endpoint(client: TestClient) -> None:
    resp = client.get("/junctions/report", params={"direction": "northbound"}, headers=KEY)
    assert resp.status_code == 200
    body = resp.json()
    assert body["direction"] == "northbound"
    assert body["route_name"] == "Swords → Drogheda"
    assert len(body["segments"]) == 8
    assert body["notified"] is False
    assert body["report_text"].startswith("🌆")

    assert client.get("/junctions/report", params={"direction": "east"}, headers=KEY).status_code == 422


def test_rate_limit_returns_429(offline: None, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "rate_limit_max_requests", 2)
    with TestClient(app) as limited:
        assert limited.get("/health").status_code == 200
        assert limited.get("/health").status_code == 200
        blocked = limited.get("/health")
        assert blocked.status_code == 429
        assert int(blocked.headers["retry-after"]) >= 1
        # Keys are counted separately from anonymous callers.
        assert limited.get("/sources", headers=KEY).status_code == 200
