from __future__ import annotations

from typing import Any

from .adapter_base import TrafficAdapter, optional_float, optional_text, safe_float, utc_now_iso
from .congestion import DEFAULT_TYPICAL_SPEED_KMH, congestion_from_speed
from .models import SOURCE_UK_HIGHWAYS, NormalizedTrafficRecord, RecordLocation
from .provider_http import ProviderError, get_json
from .road_patterns import is_uk_road, normalize_road
from .settings import settings

# Assumed monitored length (km) for a site that does not publish one.
DEFAULT_SITE_LENGTH_KM = 1.0


def _round1(value: float) -> float:
    return round(value * 10.0) / 10.0


def normalize_webtris_site(
    site: dict[str, Any],
    report: dict[str, Any] | None,
    *,
    road: str,
) -> NormalizedTrafficRecord:
    """Merge one monitoring site with its current report (``None`` -> zero flow, zero speed)."""
    report = report or {}
    speed = max(0.0, safe_float(report.get("speed")) or safe_float(report.get("averageSpeed")))
    flow = max(0.0, safe_float(report.get("vehicleFlow")) or safe_float(report.get("volume")))
    typical = safe_float(site.get("typicalSpeed")) or DEFAULT_TYPICAL_SPEED_KMH
    length_km = safe_float(site.get("length")) or DEFAULT_SITE_LENGTH_KM

    travel = (length_km / speed) * 60.0 if speed > 0 else 0.0
    free_flow = length_km / typical * 60.0
    delay = max(0.0, travel - free_flow)

    return NormalizedTrafficRecord(
        source=SOURCE_UK_HIGHWAYS,
        road=road,
        direction=site.get("direction"),
        site_id=optional_text(site.get("id")),
        location=RecordLocation(
            lat=optional_float(site.get("latitude")),
            lon=optional_float(site.get("longitude")),
            area=optional_text(site.get("area")),
            description=optional_text(site.get("description")) or optional_text(site.get("name")),
        ),
        vehicle_flow=flow,
        average_speed=float(round(speed)),
        congestion_level=congestion_from_speed(speed, typical),
        travel_time_minutes=_round1(travel),
        free_flow_time_minutes=_round1(free_flow),
        delay_minutes=_round1(delay),
        distance_km=length_km,
        timestamp=optional_text(report.get("timestamp")) or utc_now_iso(),
    )


def _list_field(payload: Any, key: str, *, provider: str) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        items = payload.get(key) or []
    else:
        raise ProviderError(f"{provider} payload is not a JSON object")
    if not isinstance(items, list):
        raise ProviderError(f"{provider} payload field '{key}' is not a list")
    return [item for item in items if isinstance(item, dict)]


class WebTRISAdapter(TrafficAdapter):
    """Two-step lookup: monitoring sites on the road, then their current reports."""

    source = SOURCE_UK_HIGHWAYS

    def is_applicable(self, road: str, country: str | None = None) -> bool:
        return is_uk_road(road)

    def cache_key(self, road: str, **kwargs: Any) -> str:
        return normalize_road(road)

    async def fetch_sites(self, road: str) -> list[dict[str, Any]]:
        payload = await get_json(
            self._client,
            f"{settings.webtris_base_url}/sites",
            provider="WebTRIS sites",
            timeout_s=self.timeout_s,
            params={"road": normalize_road(road), "format": "json"},
        )
        return _list_field(payload, "sites", provider="WebTRIS sites")

    async def fetch_reports(self, site_ids: list[str]) -> list[dict[str, Any]]:
        if not site_ids:
            return []
        payload = await get_json(
            self._client,
            f"{settings.webtris_base_url}/reports/current",
            provider="WebTRIS reports",
            timeout_s=self.timeout_s,
            params={"sites": ",".join(site_ids), "format": "json"},
        )
        return _list_field(payload, "reports", provider="WebTRIS reports")

    async def _fetch_records(self, road: str, **kwargs: Any) -> tuple[list[NormalizedTrafficRecord], str | None]:
        wanted = normalize_road(road)
        sites = await self.fetch_sites(wanted)
        if not sites:
            return [], None

        site_ids = [str(site.get("id")) for site in sites if site.get("id") is not None]
        degraded: str | None = None
        try:
            reports = await self.fetch_reports(site_ids)
        except ProviderError as e:
            # Sites are still useful without live readings.
            reports = []
            degraded = str(e)

        by_site = {str(rep.get("siteId")): rep for rep in reports if rep.get("siteId") is not None}
        records = [
            normalize_webtris_site(site, by_site.get(str(site.get("id"))), road=wanted)
            for site in sites
        ]
        return records, degraded
