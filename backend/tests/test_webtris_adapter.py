from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from traffic_api.ttl_cache import TTLCache
from traffic_api.webtris_adapter import WebTRISAdapter, normalize_webtris_site

SITES = {
    "sites": [
        {
            "id": "19446",
            "name": "M1/4112B",
            "description": "M1 southbound between J15 and J14",
            "direction": "southBound",
            "latitude": 52.198,
            "longitude": -0.915,
            "length": 2,
            "typicalSpeed": 100,
        },
        {
            "id": "19450",
            "name": "M1/4115A",
            "direction": "northBound",
            "latitude": 52.187,
            "longitude": -0.898,
        },
    ]
}


def _handler(*, reports_status: int = 200, sites_status: int = 200, log: list[httpx.Request] | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if log is not None:
            log.append(request)
        if request.url.path.endswith("/sites"):
            if sites_status != 200:
                return httpx.Response(sites_status, json={"message": "down"})
            return httpx.Response(200, json=SITES)
        if request.url.path.endswith("/reports/current"):
            if reports_status != 200:
                return httpx.Response(reports_status, text="gateway timeout")
            return httpx.Response(200, json={"reports": [{"siteId": "19446", "speed": 50, "vehicleFlow": 1200}]})
        return httpx.Response(404)

    return handler


def _adapter(handler) -> tuple[WebTRISAdapter, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebTRISAdapter(client=client, cache=TTLCache("uk-highways", ttl_s=300), timeout_s=2.0), client


def test_normalize_site_with_report() -> None:
    rec = normalize_webtris_site(SITES["sites"][0], {"speed": 50, "vehicleFlow": 1200}, road="M1")
    assert rec.source == "uk-highways"
    assert rec.site_id == "19446"
    assert rec.direction == "Southbound"
    assert rec.average_speed == 50
    assert rec.vehicle_flow == 1200
    assert rec.travel_time_minutes == pytest.approx(2.4)
    assert rec.free_flow_time_minutes == pytest.approx(1.2)
    assert rec.delay_minutes == pytest.approx(1.2)
    assert rec.congestion_level == "moderate"
    assert rec.location is not None and rec.location.lat == pytest.approx(52.198)


def test_site_without_report_is_kept_with_zero_readings() -> None:
    rec = normalize_webtris_site(SITES["sites"][1], None, road="M1")
    assert rec.average_speed == 0
    assert rec.vehicle_flow == 0
    assert rec.travel_time_minutes == 0
    assert rec.delay_minutes == 0
    # Default typical speed and length.
    assert rec.free_flow_time_minutes == pytest.approx(round(60 / 70, 1))


def test_two_step_fetch_merges_by_site_id() -> None:
    requests: list[httpx.Request] = []

    async def run() -> None:
        adapter, client = _adapter(_handler(log=requests))
        async with client:
            result = await adapter.fetch("m1")
        assert result.ok
        assert [r.site_id for r in result.data] == ["19446", "19450"]
        assert result.data[0].average_speed == 50
        assert result.data[1].average_speed == 0

    asyncio.run(run())
    assert requests[0].url.params["road"] == "M1"
    assert requests[0].url.params["format"] == "json"
    assert requests[1].url.params["sites"] == "19446,19450"


def test_report_failure_degrades_and_is_not_cached() -> None:
    requests: list[httpx.Request] = []

    async def run() -> None:
        adapter, client = _adapter(_handler(reports_status=504, log=requests))
        async with client:
            first = await adapter.fetch("M1")
            second = await adapter.fetch("M1")
        assert len(first.data) == 2
        assert all(r.average_speed == 0 for r in first.data)
        assert first.error and "504" in first.error
        assert not second.from_cache

    asyncio.run(run())
    assert len(requests) == 4


def test_site_discovery_failure_is_an_error() -> None:
    async def run() -> None:
        adapter, client = _adapter(_handler(sites_status=500))
        async with client:
            result = await adapter.fetch("M1")
        assert result.data == []
        assert result.error and "down" in result.error

    asyncio.run(run())


def test_no_sites_is_empty_without_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        payload: dict[str, Any] = {"sites": []}
        return httpx.Response(200, json=payload)

    async def run() -> None:
        adapter, client = _adapter(handler)
        async with client:
            result = await adapter.fetch("M25")
        assert result.data == []
        assert result.ok

    asyncio.run(run())


def test_applicability_leaves_ambiguous_motorways_to_the_caller() -> None:
    adapter = WebTRISAdapter(client=httpx.AsyncClient(), cache=TTLCache("x"))
    assert adapter.is_applicable("M25")
    assert adapter.is_applicable("A1")
    assert not adapter.is_applicable("M1")
