"""Turn raw traffic records (or free text) into a where/what description.

The LLM backend does the heavy lifting when configured; otherwise, or when it
fails, a deterministic regex/landmark extractor fills in what it can so that
callers always get an :class:`EnrichedSegment` back.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from .adapter_base import optional_float, safe_float
from .landmarks import nearest_landmark
from .llm_client import LLMClient, LLMError
from .logging_utils import log_debug, log_event, log_warning
from .models import EnrichedSegment, NormalizedTrafficRecord
from .settings import settings
from .ttl_cache import CacheRegistry, TTLCache, content_cache_key

SEGMENT_FIELDS: tuple[str, ...] = (
    "road",
    "direction",
    "segment",
    "landmark",
    "congestion",
    "speed",
    "incidentType",
)
UNAVAILABLE = "Location information unavailable"
BATCH_FAILURE = "Segment extraction failed"

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

_ROAD_RE = re.compile(r"\b(M\d+|N\d+|A\d+|E\d+|R\d+)\b", re.IGNORECASE)
_DIRECTION_RE = re.compile(r"\b(Northbound|Southbound|Eastbound|Westbound|North|South|East|West)\b", re.IGNORECASE)
_CONGESTION_RE = re.compile(r"\b(none|light|moderate|heavy|severe)\s+(?:traffic|congestion)\b", re.IGNORECASE)
_CONGESTION_LABEL_RE = re.compile(r"\bcongestion[:=\s]+(none|light|moderate|heavy|severe)\b", re.IGNORECASE)
_INCIDENT_RE = re.compile(r"\b(collision|crash|accident|breakdown|roadworks|construction|incident)\b", re.IGNORECASE)
_SPEED_PREFIXED_RE = re.compile(r"(?:speed[:\s]+|at\s+)(\d+)\s*(km/h|mph|kph)?", re.IGNORECASE)
_SPEED_UNIT_RE = re.compile(r"(\d+)\s*(km/h|mph|kph)", re.IGNORECASE)
_COORD_RE = re.compile(
    r"\blat(?:itude)?\s*[:=]?\s*(-?\d+(?:\.\d+)?)\s*[,;\s]\s*lon(?:gitude)?\s*[:=]?\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE
)


def _to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, exclude_none=True)
    return data


def build_prompt(data: Any) -> str:
    data = _to_jsonable(data)
    data_str = data if isinstance(data, str) else json.dumps(data, indent=2, default=str)
    return f"""Extract structured traffic segment information from the following data.

The data comes from a road monitoring system. Identify:
1. The road name (e.g. "M1", "M50", "A1")
2. The direction of travel (Northbound, Southbound, Eastbound, Westbound)
3. The specific road segment or junction area, using coordinates if provided
4. Any nearby landmark, city or town
5. The congestion level (none, light, moderate, heavy, severe)
6. Speed information, if available
7. The incident type (collision, breakdown, roadworks, ...), if any

For coordinates, name the nearest town or motorway junction (e.g. "near Drogheda", "south of Dublin").

Traffic Data:
{data_str}

Return ONLY a valid JSON object with these fields:
{{
  "road": "road name like M1, M50, A1",
  "direction": "Northbound/Southbound/Eastbound/Westbound or null",
  "segment": "description of junction or road segment, or null",
  "landmark": "nearby city, town, or landmark, or null",
  "congestion": "none/light/moderate/heavy/severe or null",
  "speed": "speed with units or null",
  "incidentType": "type of incident or null"
}}

Respond with ONLY the JSON object, no markdown, no explanation, no code blocks."""


def _balanced_object(text: str) -> str | None:
    """First ``{...}`` span whose braces balance, ignoring braces inside strings.

    Returns the tail from the first ``{`` when the object never closes, so the
    caller can still attempt field-level recovery on truncated output.
    """
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return text[start:]


def extract_field(text: str, field_name: str) -> Any:
    pattern = re.compile(
        rf'"{re.escape(field_name)}"\s*:\s*(?:"((?:[^"\\]|\\.)*)"|(null|true|false)|(-?\d+(?:\.\d+)?))',
        re.IGNORECASE,
    )
    match = pattern.search(text)
    if not match:
        return None
    if match.group(1) is not None:
        return match.group(1).replace('\\"', '"')
    if match.group(2) is not None:
        literal = match.group(2).lower()
        if literal == "null":
            return None
        return literal == "true"
    if match.group(3) is not None:
        return float(match.group(3))
    return None


def parse_llm_response(text: str) -> dict[str, Any] | None:
    if not isinstance(text, str) or not text.strip():
        return None

    body = text
    fenced = _FENCE_RE.search(body)
    if fenced:
        body = fenced.group(1).strip()
    candidate = _balanced_object(body) or body

    try:
        parsed = json.loads(candidate)
    except ValueError:
        parsed = None

    if isinstance(parsed, dict):
        fields = {name: parsed.get(name) or None for name in SEGMENT_FIELDS}
        fields["rawExtracted"] = True
        return fields

    recovered = {name: extract_field(candidate, name) for name in SEGMENT_FIELDS}
    if any(value is not None and not isinstance(value, bool) for value in recovered.values()):
        recovered["rawExtracted"] = True
        recovered["partial"] = True
        return recovered

    log_warning("llm_response_unparseable", preview=text[:200])
    return None


def _field(fields: Mapping[str, Any], name: str) -> Any:
    if name == "incidentType":
        return fields.get("incidentType", fields.get("incident_type"))
    return fields.get(name)


def human_readable(fields: Mapping[str, Any]) -> str:
    road = _field(fields, "road")
    direction = _field(fields, "direction")
    segment = _field(fields, "segment")
    landmark = _field(fields, "landmark")
    congestion = _field(fields, "congestion")
    speed = _field(fields, "speed")
    incident = _field(fields, "incidentType")

    parts: list[str] = []
    if road and direction:
        parts.append(f"{road} {direction}")
    elif road:
        parts.append(str(road))
    if segment:
        parts.append(f"- {segment}")
    if landmark:
        parts.append(f"({landmark})")
    if congestion:
        parts.append(f"[{congestion} congestion]")
    if speed:
        parts.append(f"at {speed}")
    if incident:
        parts.append(f"- {incident}")
    return " ".join(parts) or UNAVAILABLE


def _coordinate_fields(lat: float, lon: float) -> tuple[str, str | None]:
    nearest = nearest_landmark(lat, lon)
    return f"Coordinates: {lat:.3f}, {lon:.3f}", nearest[0].name if nearest is not None else None


def _fallback_from_text(text: str) -> dict[str, Any]:
    road = _ROAD_RE.search(text)
    direction = _DIRECTION_RE.search(text)
    congestion = _CONGESTION_RE.search(text) or _CONGESTION_LABEL_RE.search(text)
    incident = _INCIDENT_RE.search(text)
    speed = _SPEED_PREFIXED_RE.search(text) or _SPEED_UNIT_RE.search(text)
    coords = _COORD_RE.search(text)
    segment, landmark = _coordinate_fields(float(coords.group(1)), float(coords.group(2))) if coords else (None, None)
    return {
        "road": road.group(1).upper() if road else None,
        "direction": direction.group(1) if direction else None,
        "segment": segment,
        "landmark": landmark,
        "congestion": congestion.group(1) if congestion else None,
        "speed": f"{speed.group(1)} {speed.group(2) or 'km/h'}" if speed else None,
        "incidentType": incident.group(1) if incident else None,
    }


def _fallback_from_mapping(data: Mapping[str, Any]) -> dict[str, Any]:
    location = data.get("location") if isinstance(data.get("location"), Mapping) else {}
    lat = optional_float(location.get("lat", data.get("lat")))
    lon = optional_float(location.get("lon", data.get("lon")))

    segment, landmark = _coordinate_fields(lat, lon) if lat is not None and lon is not None else (None, None)

    direction = data.get("direction")
    if isinstance(direction, str) and direction.strip().lower() == "unknown":
        direction = None

    speed_value = safe_float(data.get("averageSpeed"))
    return {
        "road": data.get("road") or None,
        "direction": direction or None,
        "segment": segment,
        "landmark": landmark,
        "congestion": data.get("congestionLevel") or data.get("congestion") or None,
        "speed": f"{speed_value:g} km/h" if speed_value > 0 else None,
        "incidentType": data.get("incidentType") or None,
    }


def fallback_extract(data: Any) -> EnrichedSegment:
    """Deterministic extraction used when the LLM is unavailable."""
    data = _to_jsonable(data)
    if isinstance(data, Mapping):
        fields = _fallback_from_mapping(data)
    else:
        fields = _fallback_from_text(data if isinstance(data, str) else json.dumps(data, default=str))
    return EnrichedSegment.model_validate(
        {**fields, "humanReadable": human_readable(fields), "rawExtracted": False, "fallback": True}
    )


class SegmentExtractor:
    def __init__(self, *, llm: LLMClient, cache: TTLCache) -> None:
        self.llm = llm
        self.cache = cache

    async def extract(self, data: Any, *, use_cache: bool = True, fallback: bool = True) -> EnrichedSegment:
        """Enrich one record or text snippet.

        With ``fallback=False`` an LLM failure propagates as :class:`LLMError`;
        otherwise the deterministic extractor's result is returned with
        ``fallback=True`` and the failure reason in ``extraction_error``.
        """
        data = _to_jsonable(data)
        key = content_cache_key(data)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                log_debug("segment_cache_hit", cache_key=key)
                return cached.model_copy(update={"cached": True})

        try:
            text = await self.llm.complete(build_prompt(data))
            fields = parse_llm_response(text)
            if fields is None:
                raise LLMError("bad_response", "Failed to extract segment data from LLM response")
        except LLMError as e:
            log_warning("segment_extraction_failed", reason_code=e.reason_code, error=e.message)
            if not fallback:
                raise
            return fallback_extract(data).model_copy(update={"extraction_error": e.message})

        result = EnrichedSegment.model_validate(
            {
                **fields,
                "humanReadable": human_readable(fields),
                "cached": False,
                "llmProvider": settings.llm_provider,
            }
        )
        if use_cache:
            self.cache.set(key, result)
        return result

    async def _enrich_one(
        self,
        record: NormalizedTrafficRecord,
        *,
        use_cache: bool,
        fallback: bool,
    ) -> NormalizedTrafficRecord:
        try:
            segment = await self.extract(record, use_cache=use_cache, fallback=fallback)
        except Exception as e:
            # One bad record must not sink the batch.
            log_warning("segment_batch_item_failed", road=record.road, error=str(e))
            return record.model_copy(
                update={"segment": None, "human_readable": BATCH_FAILURE, "extraction_error": str(e)}
            )
        return record.model_copy(update={"segment": segment, "human_readable": segment.human_readable})

    async def extract_batch(
        self,
        records: list[NormalizedTrafficRecord],
        *,
        use_cache: bool = True,
        fallback: bool = True,
    ) -> list[NormalizedTrafficRecord]:
        return list(
            await asyncio.gather(
                *(self._enrich_one(rec, use_cache=use_cache, fallback=fallback) for rec in records)
            )
        )

    async def run_sweeper(self, interval_s: float | None = None, registry: CacheRegistry | None = None) -> None:
        """Evict expired entries periodically until cancelled."""
        interval = float(settings.cache_sweep_interval_s if interval_s is None else interval_s)
        while True:
            await asyncio.sleep(interval)
            removed = registry.sweep_all() if registry is not None else self.cache.sweep()
            if removed:
                log_event("cache_sweep", removed=removed)
