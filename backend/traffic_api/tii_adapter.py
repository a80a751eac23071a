"""National-roads feed (Transport Infrastructure Ireland, DATEX II style JSON)."""

from __future__ import annotations

import re
from typing import Any

from .adapter_base import TrafficAdapter, optional_float, optional_text, safe_float, utc_now_iso
from .congestion import congestion_from_delay
from .models import SOURCE_NATIONAL_ROADS, NormalizedTrafficRecord, RecordLocation
from .provider_http import ProviderError, get_json
from .road_patterns import is_irish_road, normalize_road
from .settings import settings


def _first_situation_record(situation: dict[str, Any]) -> dict[str, Any]:
    records = situation.get("situationRecord")
    if isinstance(records, list) and records and isinstance(records[0], dict):
        return records[0]
    if isinstance(records, dict):
        return records
    return {}


def normalize_tii_situation(situation: dict[str, Any], *, fallback_road: str = "") -> NormalizedTrafficRecord:
    """Map one DATEX II situation onto the shared record schema.

    Travel times arrive in seconds. A missing free-flow time means "no delay
    information", so it defaults to the observed travel time.
    """
    inner = situation.get("situation") if isinstance(situation.get("situation"), dict) else situation
    header = inner.get("header") if isinstance(inner.get("header"), dict) else {}
    rec = _first_situation_record(inner)

    travel_s = max(0.0, safe_float(rec.get("travelTime")))
    free_flow_s = max(0.0, safe_float(rec.get("freeFlowTravelTime"), travel_s))
    delay_s = max(0.0, travel_s - free_flow_s)
    delay_minutes = round(delay_s / 60.0)

    return NormalizedTrafficRecord(
        source=SOURCE_NATIONAL_ROADS,
        road=optional_text(rec.get("roadName")) or optional_text(situation.get("road")) or fallback_road or "UNKNOWN",
        direction=rec.get("directionBound"),
        travel_time_minutes=round(travel_s / 60.0),
        free_flow_time_minutes=round(free_flow_s / 60.0),
        delay_minutes=delay_minutes,
        congestion_level=congestion_from_delay(delay_minutes),
        location=RecordLocation(
            lat=optional_float(situation.get("lat", rec.get("lat"))),
            lon=optional_float(situation.get("lon", rec.get("lon"))),
            from_name=optional_text(rec.get("startLocation")),
            to_name=optional_text(rec.get("endLocation")),
        ),
        timestamp=optional_text(situation.get("publicationTime")) or utc_now_iso(),
        raw_id=optional_text(header.get("id")) or optional_text(situation.get("id")),
    )


def _names_road(road_name: str, wanted: str) -> bool:
    """Whole-designation match: "M1" names "M1 NORTHBOUND" but not "M11"."""
    return re.search(rf"(?<![A-Z0-9]){re.escape(wanted)}(?![0-9])", road_name) is not None


def _matches_town(record: NormalizedTrafficRecord, town: str) -> bool:
    loc = record.location
    if loc is None:
        return False
    needle = town.strip().lower()
    return any(needle in (value or "").lower() for value in (loc.from_name, loc.to_name, loc.description))


class TIIAdapter(TrafficAdapter):
    source = SOURCE_NATIONAL_ROADS

    def is_applicable(self, road: str, country: str | None = None) -> bool:
        return is_irish_road(road)

    def cache_key(self, road: str, **kwargs: Any) -> str:
        town = str(kwargs.get("town") or "").strip().upper()
        key = normalize_road(road)
        return f"{key}@{town}" if town else key

    async def _fetch_records(self, road: str, **kwargs: Any) -> tuple[list[NormalizedTrafficRecord], str | None]:
        payload = await get_json(
            self._client,
            f"{settings.tii_base_url}/traffic",
            provider="TII",
            timeout_s=self.timeout_s,
            headers={"accept": "application/json"},
        )
        if isinstance(payload, dict):
            situations = payload.get("situation", [])
        elif isinstance(payload, list):
            situations = payload
        else:
            raise ProviderError("TII payload is not a JSON object")
        if not isinstance(situations, list):
            raise ProviderError("TII payload has no situation list")

        wanted = normalize_road(road)
        records: list[NormalizedTrafficRecord] = []
        for situation in situations:
            if not isinstance(situation, dict):
                continue
            inner = situation.get("situation") if isinstance(situation.get("situation"), dict) else situation
            road_name = normalize_road(_first_situation_record(inner).get("roadName"))
            if wanted and not _names_road(road_name, wanted):
                continue
            records.append(normalize_tii_situation(situation, fallback_road=wanted))

        town = str(kwargs.get("town") or "").strip()
        if town:
            local = [rec for rec in records if _matches_town(rec, town)]
            # Most situations only name the road; keep the road-wide view when none mention the town.
            if local:
                records = local
        return records, None
