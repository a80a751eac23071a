"""Commercial routing fallback (directions API with live traffic).

Every network round trip here is billed, so the adapter is only consulted when
the free feeds come back empty or the road is outside their coverage, and each
call is written to an in-memory audit trail exposed via ``usage_stats``.
"""

from __future__ import annotations

import re
from collections import deque
from typing import Any

import httpx

from .adapter_base import AdapterResult, TrafficAdapter, optional_float, optional_text, safe_float, utc_now_iso
from .congestion import congestion_from_durations
from .logging_utils import log_event
from .models import SOURCE_COMMERCIAL, NormalizedTrafficRecord, RecordLocation
from .provider_http import ProviderError, get_json
from .road_patterns import is_commercial_preferred
from .settings import settings
from .ttl_cache import TTLCache

MISSING_KEY_ERROR = "commercial maps API key not configured"

_TAG_RE = re.compile(r"<[^>]+>")
_ONTO_RE = re.compile(r"\b(?:onto|on)\s+([^,.;/]+)", re.IGNORECASE)
_MAX_VIA = 3
_RECENT_CALLS = 20


def _via_roads(steps: list[Any]) -> list[str]:
    roads: list[str] = []
    for step in steps:
        if not isinstance(step, dict):
            continue
        instruction = _TAG_RE.sub("", str(step.get("html_instructions") or ""))
        match = _ONTO_RE.search(instruction)
        if not match:
            continue
        name = " ".join(match.group(1).split())
        if name and name not in roads:
            roads.append(name)
    return roads


def normalize_route(route: dict[str, Any], *, origin: str, destination: str, road: str | None) -> NormalizedTrafficRecord:
    legs = route.get("legs") or []
    if not legs or not isinstance(legs[0], dict):
        raise ProviderError("directions route has no legs")
    leg = legs[0]

    duration_s = max(0.0, safe_float((leg.get("duration") or {}).get("value")))
    in_traffic_s = max(0.0, safe_float((leg.get("duration_in_traffic") or {}).get("value"), duration_s))
    distance_m = max(0.0, safe_float((leg.get("distance") or {}).get("value")))

    duration_min = round(duration_s / 60.0)
    in_traffic_min = round(in_traffic_s / 60.0)

    start = leg.get("start_location") or {}
    end = leg.get("end_location") or {}
    via = _via_roads(leg.get("steps") or [])

    warnings = [str(w) for w in (route.get("warnings") or []) if w]
    return NormalizedTrafficRecord(
        source=SOURCE_COMMERCIAL,
        road=road or (via[0] if via else "UNKNOWN"),
        origin=optional_text(leg.get("start_address")) or origin,
        destination=optional_text(leg.get("end_address")) or destination,
        location=RecordLocation(
            lat=optional_float(start.get("lat")),
            lon=optional_float(start.get("lng")),
            end_lat=optional_float(end.get("lat")),
            end_lon=optional_float(end.get("lng")),
            via=via[:_MAX_VIA],
        ),
        distance_km=round(distance_m / 1000.0, 2),
        travel_time_minutes=in_traffic_min,
        free_flow_time_minutes=duration_min,
        delay_minutes=max(0, in_traffic_min - duration_min),
        congestion_level=congestion_from_durations(in_traffic_s, duration_s),
        route_summary=optional_text(route.get("summary")) or "",
        warnings=warnings,
        timestamp=utc_now_iso(),
    )


def build_location_query(road: str, town: str | None, country: str | None) -> str:
    return ", ".join(part for part in (road, town, country) if part)


class GoogleMapsAdapter(TrafficAdapter):
    source = SOURCE_COMMERCIAL

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        cache: TTLCache,
        timeout_s: float | None = None,
        audit_history: int | None = None,
    ) -> None:
        super().__init__(client=client, cache=cache, timeout_s=timeout_s)
        self.total_calls = 0
        self.call_history: deque[dict[str, Any]] = deque(
            maxlen=int(audit_history or settings.commercial_audit_history)
        )

    def is_applicable(self, road: str, country: str | None = None) -> bool:
        # Worldwide coverage; whether it *should* be called is decided by is_preferred.
        return True

    def is_preferred(self, road: str, town: str | None, country: str | None) -> bool:
        return is_commercial_preferred(road, town, country)

    def cache_key(self, road: str, **kwargs: Any) -> str:
        origin = str(kwargs.get("origin") or road)
        destination = str(kwargs.get("destination") or road)
        return f"{origin.lower()}:{destination.lower()}"

    def _track_call(self, origin: str, destination: str, success: bool) -> None:
        self.total_calls += 1
        self.call_history.append(
            {
                "timestamp": utc_now_iso(),
                "origin": origin,
                "destination": destination,
                "success": success,
            }
        )

    async def _fetch_records(self, road: str, **kwargs: Any) -> tuple[list[NormalizedTrafficRecord], str | None]:
        origin = str(kwargs.get("origin") or road)
        destination = str(kwargs.get("destination") or road)
        params = {
            "origin": origin,
            "destination": destination,
            "departure_time": "now",
            "mode": "driving",
            "key": settings.google_maps_api_key,
        }
        success = False
        try:
            payload = await get_json(
                self._client,
                settings.google_maps_directions_url,
                provider="Commercial maps",
                timeout_s=self.timeout_s,
                params=params,
            )
            if not isinstance(payload, dict):
                raise ProviderError("Commercial maps payload is not a JSON object")
            status = str(payload.get("status") or "UNKNOWN")
            if status != "OK":
                raise ProviderError(f"Commercial maps API error: {status}")
            routes = [r for r in (payload.get("routes") or []) if isinstance(r, dict)]
            if not routes:
                return [], None
            record = normalize_route(routes[0], origin=origin, destination=destination, road=kwargs.get("label"))
            success = True
            return [record], None
        finally:
            self._track_call(origin, destination, success)

    async def fetch_route(self, origin: str, destination: str, road: str | None = None) -> AdapterResult:
        if not settings.google_maps_api_key:
            log_event("commercial_skipped", reason="missing_api_key")
            return AdapterResult(source=self.source, error=MISSING_KEY_ERROR)
        result = await self.fetch(road or origin, origin=origin, destination=destination, label=road)
        result.attempts = [
            {
                "origin": origin,
                "destination": destination,
                "record_count": len(result.data),
                "from_cache": result.from_cache,
                "error": result.error,
            }
        ]
        return result

    async def fetch_road(self, road: str, town: str | None = None, country: str | None = None) -> AdapterResult:
        """Query a road (optionally within a town), retrying once with looser phrasing.

        The retry only happens when a town is known; without one there is no
        better anchor to rephrase around.
        """
        location = build_location_query(road, town, country)
        origin = f"{town} {country or ''}".strip() if town else location
        result = await self.fetch_route(origin, location, road)
        if result.data or not town or result.error == MISSING_KEY_ERROR:
            return result

        first_attempts = result.attempts
        retry = await self.fetch_route(f"Near {road}, {town}", f"End of {road}, {town}", road)
        retry.attempts = first_attempts + retry.attempts
        errors = [err for err in (result.error, retry.error) if err]
        retry.error = "; ".join(dict.fromkeys(errors)) or None
        return retry

    def usage_stats(self) -> dict[str, Any]:
        cache_stats = self.cache.stats()
        return {
            "totalCalls": self.total_calls,
            "recentCalls": list(self.call_history)[-_RECENT_CALLS:],
            "cacheSize": cache_stats["size"],
            "cacheKeys": cache_stats["keys"],
        }
