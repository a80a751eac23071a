"""Cost-ordered fallback chain across the traffic feeds.

Free jurisdiction feeds are always consulted first; the billed commercial
provider only runs when they produced nothing, when the query is a local street
they cannot cover, or when the road/country is outside their coverage.
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from .adapter_base import AdapterResult, TrafficAdapter, utc_now_iso
from .congestion import CONGESTION_ORDER, congestion_rank, empty_breakdown
from .fetch_trace import FetchTrace, stopwatch
from .google_maps_adapter import GoogleMapsAdapter
from .logging_utils import log_event, log_warning
from .models import (
    SOURCE_COMMERCIAL,
    SOURCE_NATIONAL_ROADS,
    SOURCE_UK_HIGHWAYS,
    CompareResponse,
    CountryComparison,
    NormalizedTrafficRecord,
    TrafficSummary,
)
from .provider_http import describe_exception
from .road_patterns import is_ambiguous_motorway, is_local_street, normalize_road

_COUNTRY_SOURCE = {"IE": SOURCE_NATIONAL_ROADS, "UK": SOURCE_UK_HIGHWAYS}
_COUNTRY_NAMES = {"IE": "Ireland", "UK": "United Kingdom"}
_COMPARE_SAMPLE = 5


@dataclass
class ResolveResult:
    data: list[NormalizedTrafficRecord] = field(default_factory=list)
    sources_used: list[str] = field(default_factory=list)
    fallback_used: bool = False
    errors: list[str] = field(default_factory=list)
    trace: FetchTrace = field(default_factory=FetchTrace)

    @property
    def all_failed(self) -> bool:
        """Every source that was tried reported an error and nothing came back."""
        return not self.data and bool(self.sources_used) and len(self.errors) >= len(self.sources_used)


def build_summary(records: list[NormalizedTrafficRecord], sources_used: list[str] | None = None) -> TrafficSummary:
    breakdown = empty_breakdown()
    for rec in records:
        breakdown[rec.congestion_level] = breakdown.get(rec.congestion_level, 0) + 1
    if sources_used is None:
        sources_used = list(dict.fromkeys(rec.source for rec in records))
    return TrafficSummary(
        total_records=len(records),
        sources_used=list(sources_used),
        congestion_breakdown=breakdown,
    )


class TrafficOrchestrator:
    def __init__(
        self,
        *,
        national_roads: TrafficAdapter,
        uk_highways: TrafficAdapter,
        commercial: GoogleMapsAdapter,
    ) -> None:
        # Fixed priority order; jurisdiction feeds before anything billed.
        self.free_adapters: tuple[TrafficAdapter, ...] = (national_roads, uk_highways)
        self.commercial = commercial

    def adapter_for(self, source: str) -> TrafficAdapter:
        for adapter in (*self.free_adapters, self.commercial):
            if adapter.source == source:
                return adapter
        raise KeyError(source)

    def plan_free_feeds(self, road: str, country: str) -> list[TrafficAdapter]:
        """Which free feeds to consult for ``road`` under the ``country`` filter."""
        country = (country or "ALL").strip().upper()
        if country in _COUNTRY_SOURCE:
            return [self.adapter_for(_COUNTRY_SOURCE[country])]
        if country != "ALL":
            return []
        if is_ambiguous_motorway(road):
            # M1 exists on both networks and only the caller can say which one.
            return list(self.free_adapters)
        return [adapter for adapter in self.free_adapters if adapter.is_applicable(road, country)]

    async def _call(self, adapter: TrafficAdapter, road: str, **kwargs: Any) -> AdapterResult:
        try:
            return await adapter.fetch(road, **kwargs)
        except Exception as e:
            log_warning("adapter_unexpected_error", source=adapter.source, road=road, error=describe_exception(e))
            return AdapterResult(source=adapter.source, error=f"{adapter.source} failed: {describe_exception(e)}")

    async def fetch_source(self, source: str, road: str, **kwargs: Any) -> AdapterResult:
        return await self._call(self.adapter_for(source), normalize_road(road), **kwargs)

    async def resolve(self, road: str, country: str = "ALL", town: str | None = None) -> ResolveResult:
        started = time.perf_counter()
        road = normalize_road(road)
        country = (country or "ALL").strip().upper()
        town = (town or "").strip() or None
        result = ResolveResult()
        trace = result.trace

        local_street = is_local_street(road, town)
        if local_street:
            trace.skip("free feeds", f"{road} in {town} is a local street", source=None)
        else:
            planned = self.plan_free_feeds(road, country)
            if not planned:
                trace.skip("free feeds", f"no free feed covers {road} (country={country})")
            for adapter in planned:
                with stopwatch() as timing:
                    fetched = await self._call(adapter, road, town=town)
                result.sources_used.append(adapter.source)
                result.data.extend(fetched.data)
                if fetched.error:
                    result.errors.append(fetched.error)
                trace.record(
                    f"{adapter.source}: {road}",
                    source=adapter.source,
                    record_count=len(fetched.data),
                    from_cache=fetched.from_cache,
                    error=fetched.error,
                    duration_ms=timing["ms"],
                )

        commercial_country = None if country == "ALL" else _COUNTRY_NAMES.get(country, country)
        reasons = []
        if not result.data:
            reasons.append("no free data")
        if local_street:
            reasons.append("local street")
        if self.commercial.is_preferred(road, town, None if country == "ALL" else country):
            reasons.append("commercial preferred")

        if reasons:
            with stopwatch() as timing:
                fetched = await self._call_commercial(road, town, commercial_country)
            result.fallback_used = True
            result.sources_used.append(SOURCE_COMMERCIAL)
            result.data.extend(fetched.data)
            if fetched.error:
                result.errors.append(fetched.error)
            attempts = fetched.attempts or [{"record_count": len(fetched.data), "error": fetched.error}]
            for attempt in attempts:
                label = f"{attempt.get('origin')} -> {attempt.get('destination')}" if attempt.get("origin") else road
                trace.record(
                    f"{SOURCE_COMMERCIAL}: {label}",
                    source=SOURCE_COMMERCIAL,
                    record_count=int(attempt.get("record_count") or 0),
                    from_cache=bool(attempt.get("from_cache")),
                    error=attempt.get("error"),
                    detail=", ".join(reasons),
                )
            trace.entries[-1].duration_ms = timing["ms"]
        else:
            trace.skip(SOURCE_COMMERCIAL, "free feeds answered", source=SOURCE_COMMERCIAL)

        log_event(
            "traffic_resolve",
            road=road,
            country=country,
            town=town,
            record_count=len(result.data),
            sources_used=result.sources_used,
            fallback_used=result.fallback_used,
            error_count=len(result.errors),
            duration_ms=round((time.perf_counter() - started) * 1000.0, 2),
        )
        return result

    async def _call_commercial(self, road: str, town: str | None, country: str | None) -> AdapterResult:
        try:
            return await self.commercial.fetch_road(road, town, country)
        except Exception as e:
            log_warning("adapter_unexpected_error", source=SOURCE_COMMERCIAL, road=road, error=describe_exception(e))
            return AdapterResult(source=SOURCE_COMMERCIAL, error=f"{SOURCE_COMMERCIAL} failed: {describe_exception(e)}")

    async def compare(self, road: str) -> CompareResponse:
        road = normalize_road(road)
        ireland = _comparison(await self.fetch_source(SOURCE_NATIONAL_ROADS, road))
        uk = _comparison(await self.fetch_source(SOURCE_UK_HIGHWAYS, road))
        return CompareResponse(
            road=road,
            timestamp=utc_now_iso(),
            comparison={"ireland": ireland, "uk": uk},
            insight=_insight(road, ireland, uk),
        )


def dominant_congestion(records: list[NormalizedTrafficRecord]) -> str:
    if not records:
        return "unknown"
    counts = Counter(rec.congestion_level for rec in records)
    # Most frequent level; ties go to the more severe one.
    return max(CONGESTION_ORDER, key=lambda level: (counts.get(level, 0), congestion_rank(level)))


def _average(values: list[float]) -> float | None:
    return round(sum(values) / len(values), 1) if values else None


def _comparison(fetched: AdapterResult) -> CountryComparison:
    records = fetched.data
    speeds = [rec.average_speed for rec in records if rec.average_speed is not None and rec.average_speed > 0]
    return CountryComparison(
        record_count=len(records),
        average_delay_minutes=_average([float(rec.delay_minutes or 0.0) for rec in records]),
        average_speed=_average(speeds),
        congestion=dominant_congestion(records),
        error=fetched.error,
        sample=records[:_COMPARE_SAMPLE],
    )


def _insight(road: str, ireland: CountryComparison, uk: CountryComparison) -> str:
    if not ireland.record_count and not uk.record_count:
        return f"No live data for {road} in either country right now"
    if not uk.record_count:
        return f"Only Irish data available for {road}"
    if not ireland.record_count:
        return f"Only UK data available for {road}"
    ie_delay = ireland.average_delay_minutes or 0.0
    uk_delay = uk.average_delay_minutes or 0.0
    if abs(ie_delay - uk_delay) < 0.5:
        return f"IE and UK {road} flowing similarly at this time"
    if uk_delay < ie_delay:
        return f"UK {road} showing better flow than IE {road} at this time"
    return f"IE {road} showing better flow than UK {road} at this time"
