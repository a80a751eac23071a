from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from typing import Annotated, Any

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from .adapter_base import utc_now_iso
from .api_keys import require_api_key
from .google_maps_adapter import GoogleMapsAdapter
from .junction_report import run_scheduled_check
from .llm_client import PROVIDERS, LLMClient, llm_status
from .logging_utils import log_event
from .models import (
    CompareResponse,
    Country,
    ExtractionInfo,
    ExtractResponse,
    JunctionReport,
    RouteDirection,
    RoutingInfo,
    TrafficQuery,
    TrafficResponse,
)
from .notifier import TelegramNotifier
from .orchestrator import TrafficOrchestrator, build_summary
from .rate_limit import FixedWindowRateLimiter, enforce_rate_limit
from .segment_extraction import SegmentExtractor
from .settings import settings
from .tii_adapter import TIIAdapter
from .ttl_cache import CacheRegistry
from .webtris_adapter import WebTRISAdapter

SERVICE_NAME = "Traffic API"
SERVICE_VERSION = "1.2.0"


@dataclass
class TrafficServices:
    client: httpx.AsyncClient
    registry: CacheRegistry
    national_roads: TIIAdapter
    uk_highways: WebTRISAdapter
    commercial: GoogleMapsAdapter
    extractor: SegmentExtractor
    orchestrator: TrafficOrchestrator
    notifier: TelegramNotifier


def build_services(client: httpx.AsyncClient, *, registry: CacheRegistry | None = None) -> TrafficServices:
    """Wire every component around one shared HTTP client, one cache per component."""
    registry = registry or CacheRegistry()
    national_roads = TIIAdapter(client=client, cache=registry.create("national-roads"))
    uk_highways = WebTRISAdapter(client=client, cache=registry.create("uk-highways"))
    commercial = GoogleMapsAdapter(client=client, cache=registry.create("commercial-fallback"))
    extractor = SegmentExtractor(llm=LLMClient(client=client), cache=registry.create("segments"))
    return TrafficServices(
        client=client,
        registry=registry,
        national_roads=national_roads,
        uk_highways=uk_highways,
        commercial=commercial,
        extractor=extractor,
        orchestrator=TrafficOrchestrator(
            national_roads=national_roads,
            uk_highways=uk_highways,
            commercial=commercial,
        ),
        notifier=TelegramNotifier(client=client),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = httpx.AsyncClient(headers={"User-Agent": f"traffic-api/{SERVICE_VERSION}"})
    services = build_services(client)
    app.state.services = services
    app.state.rate_limiter = FixedWindowRateLimiter()
    sweeper = asyncio.create_task(services.extractor.run_sweeper(registry=services.registry))
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        await client.aclose()


app = FastAPI(
    title=SERVICE_NAME,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    dependencies=[Depends(enforce_rate_limit)],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_services(request: Request) -> TrafficServices:
    services: TrafficServices | None = getattr(request.app.state, "services", None)  # type: ignore[attr-defined]
    if services is None:
        raise HTTPException(status_code=503, detail="traffic services not initialised")
    return services


ServicesDep = Annotated[TrafficServices, Depends(get_services)]
ApiKeyDep = Annotated[str, Depends(require_api_key)]


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 2)


@app.get("/")
async def root() -> dict[str, Any]:
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "operational",
        "endpoints": {
            "traffic": "/traffic?road=M1&country=IE&town=Drogheda&extract=true",
            "compare": "/compare?road=M1",
            "sources": "/sources",
            "extract": "/extract (POST text or JSON)",
            "cache": "/cache/stats, /cache/clear (POST)",
            "llmStatus": "/llm/status",
            "commercialUsage": "/usage/commercial",
            "junctions": "/junctions/report?direction=southbound",
        },
        "auth": "send x-api-key on every endpoint except /, /health and /sources",
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/sources")
async def sources() -> dict[str, Any]:
    return {
        "sources": [
            {
                "id": "national-roads",
                "name": "Transport Infrastructure Ireland",
                "country": "IE",
                "coverage": "National roads",
                "updateFrequency": "5 minutes",
                "cost": "Free",
            },
            {
                "id": "uk-highways",
                "name": "National Highways WebTRIS",
                "country": "UK",
                "coverage": "England motorways and trunk roads",
                "updateFrequency": "1-15 minutes",
                "cost": "Free",
            },
            {
                "id": "commercial-fallback",
                "name": "Commercial directions API",
                "country": "ALL",
                "coverage": "Local streets and roads outside the free feeds",
                "updateFrequency": "Live",
                "cost": "Per request",
            },
        ]
    }


@app.get("/traffic", response_model=TrafficResponse, response_model_exclude_none=True)
async def traffic(
    services: ServicesDep,
    _: ApiKeyDep,
    road: str | None = None,
    country: Country = "ALL",
    town: str | None = None,
    extract: bool = False,
) -> TrafficResponse:
    if not road or not road.strip():
        raise HTTPException(
            status_code=400,
            detail={"error": "Road parameter required", "example": "/traffic?road=M1&country=UK&extract=true"},
        )
    started = time.perf_counter()
    resolved = await services.orchestrator.resolve(road, country, town)

    data = resolved.data
    extraction: ExtractionInfo | None = None
    if extract and data:
        extract_started = time.perf_counter()
        data = await services.extractor.extract_batch(data)
        extraction = ExtractionInfo(
            processed=len(data),
            extraction_time_ms=_elapsed_ms(extract_started),
            cached=sum(1 for rec in data if rec.segment is not None and rec.segment.cached),
            fallback=sum(1 for rec in data if rec.segment is not None and rec.segment.fallback),
        )

    response = TrafficResponse(
        query=TrafficQuery(road=road.strip(), country=country, town=town, extract=extract),
        timestamp=utc_now_iso(),
        data=data,
        summary=build_summary(data, resolved.sources_used),
        routing=RoutingInfo(
            sources_tried=resolved.sources_used,
            fallback_used=resolved.fallback_used,
            trace=resolved.trace.as_list(),
        ),
        response_time_ms=_elapsed_ms(started),
        errors=resolved.errors or None,
        extraction=extraction,
    )
    log_event(
        "traffic_request",
        road=road,
        country=country,
        town=town,
        extract=extract,
        record_count=len(data),
        response_time_ms=response.response_time_ms,
    )
    return response


@app.get("/compare", response_model=CompareResponse, response_model_exclude_none=True)
async def compare(services: ServicesDep, _: ApiKeyDep, road: str | None = None) -> CompareResponse:
    if not road or not road.strip():
        raise HTTPException(status_code=400, detail={"error": "Road parameter required", "example": "/compare?road=M1"})
    return await services.orchestrator.compare(road)


def _extract_input(raw: bytes, content_type: str) -> str:
    text = raw.decode("utf-8", errors="replace")
    if "json" in content_type.lower():
        try:
            data = json.loads(text) if text.strip() else None
        except ValueError:
            data = text
        if isinstance(data, dict) and isinstance(data.get("text"), str):
            return data["text"]
        if isinstance(data, (dict, list)):
            return json.dumps(data) if data else ""
        if data is None:
            return ""
        return str(data)
    return text


@app.post("/extract", response_model=ExtractResponse)
async def extract(request: Request, services: ServicesDep, _: ApiKeyDep) -> ExtractResponse:
    started = time.perf_counter()
    input_text = _extract_input(await request.body(), request.headers.get("content-type", ""))
    if not input_text.strip():
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Text body required",
                "example": "Site 19446, M1, lat: 52.198, lon: -0.915, speed: 48, congestion: moderate",
            },
        )
    extracted = await services.extractor.extract(input_text)
    return ExtractResponse(
        input=input_text,
        extracted=extracted,
        processing_time_ms=_elapsed_ms(started),
        timestamp=utc_now_iso(),
    )


@app.get("/cache/stats")
async def cache_stats(services: ServicesDep, _: ApiKeyDep) -> dict[str, Any]:
    return {
        "cache": services.registry.stats(),
        "ttlMinutes": round(settings.cache_ttl_s / 60.0, 2),
        "timestamp": utc_now_iso(),
    }


@app.post("/cache/clear")
async def cache_clear(services: ServicesDep, _: ApiKeyDep) -> dict[str, Any]:
    cleared = services.registry.clear_all()
    log_event("cache_cleared", cleared=cleared)
    return {"message": "Cache cleared successfully", "cleared": cleared, "timestamp": utc_now_iso()}


@app.get("/llm/status")
async def llm_status_endpoint(_: ApiKeyDep) -> dict[str, Any]:
    status = llm_status()
    return {
        "llm": status,
        "providers": list(PROVIDERS),
        "setup": (
            "LLM extraction is active"
            if status["enabled"]
            else "Set LLM_PROVIDER and LLM_API_KEY to enable LLM extraction"
        ),
        "timestamp": utc_now_iso(),
    }


@app.get("/usage/commercial")
async def commercial_usage(services: ServicesDep, _: ApiKeyDep) -> dict[str, Any]:
    return {"usage": services.commercial.usage_stats(), "timestamp": utc_now_iso()}


@app.get("/junctions/report", response_model=JunctionReport)
async def junction_report(
    services: ServicesDep,
    _: ApiKeyDep,
    direction: RouteDirection = "southbound",
    notify: bool = Query(default=False),
) -> JunctionReport:
    return await run_scheduled_check(
        services.orchestrator,
        direction,
        notifier=services.notifier,
        notify=notify,
    )
