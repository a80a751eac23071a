from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Source = Literal["national-roads", "uk-highways", "commercial-fallback"]
Direction = Literal["Northbound", "Southbound", "Eastbound", "Westbound", "unknown"]
CongestionLevel = Literal["none", "light", "moderate", "heavy"]
Country = Literal["ALL", "IE", "UK"]
RouteDirection = Literal["southbound", "northbound"]
SegmentStatus = Literal["clear", "light", "moderate", "heavy", "unknown"]
RecommendationTier = Literal["clear", "minor", "significant", "major"]

SOURCE_NATIONAL_ROADS: Source = "national-roads"
SOURCE_UK_HIGHWAYS: Source = "uk-highways"
SOURCE_COMMERCIAL: Source = "commercial-fallback"

_DIRECTION_ALIASES: dict[str, Direction] = {
    "n": "Northbound",
    "north": "Northbound",
    "northbound": "Northbound",
    "s": "Southbound",
    "south": "Southbound",
    "southbound": "Southbound",
    "e": "Eastbound",
    "east": "Eastbound",
    "eastbound": "Eastbound",
    "w": "Westbound",
    "west": "Westbound",
    "westbound": "Westbound",
}


def normalize_direction(raw: Any) -> Direction:
    key = str(raw or "").strip().lower().replace(" ", "").replace("_", "")
    return _DIRECTION_ALIASES.get(key, "unknown")


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RecordLocation(_CamelModel):
    lat: float | None = None
    lon: float | None = None
    from_name: str | None = Field(default=None, alias="from")
    to_name: str | None = Field(default=None, alias="to")
    area: str | None = None
    description: str | None = None
    end_lat: float | None = Field(default=None, alias="endLat")
    end_lon: float | None = Field(default=None, alias="endLon")
    via: list[str] | None = None

    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None


class EnrichedSegment(_CamelModel):
    """Structured where/what description of one traffic record."""

    road: str | None = None
    direction: str | None = None
    segment: str | None = None
    landmark: str | None = None
    congestion: str | None = None
    speed: str | None = None
    incident_type: str | None = Field(default=None, alias="incidentType")
    human_readable: str = Field(default="Location information unavailable", alias="humanReadable")
    raw_extracted: bool = Field(default=False, alias="rawExtracted")
    partial: bool = False
    cached: bool = False
    fallback: bool = False
    llm_provider: str | None = Field(default=None, alias="llmProvider")
    extraction_error: str | None = Field(default=None, alias="extractionError")

    @field_validator(
        "road",
        "direction",
        "segment",
        "landmark",
        "congestion",
        "speed",
        "incident_type",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        # LLMs occasionally answer with bare numbers or booleans.
        if value is None or isinstance(value, bool):
            return None
        text = str(value).strip()
        return text or None


class NormalizedTrafficRecord(_CamelModel):
    source: Source
    road: str
    direction: Direction = "unknown"
    location: RecordLocation | None = None
    travel_time_minutes: float = Field(default=0.0, ge=0.0, alias="travelTimeMinutes")
    free_flow_time_minutes: float = Field(default=0.0, ge=0.0, alias="freeFlowTimeMinutes")
    delay_minutes: float | None = Field(default=None, alias="delayMinutes")
    congestion_level: CongestionLevel = Field(default="none", alias="congestionLevel")
    timestamp: str

    site_id: str | None = Field(default=None, alias="siteId")
    vehicle_flow: float | None = Field(default=None, alias="vehicleFlow")
    average_speed: float | None = Field(default=None, alias="averageSpeed")
    distance_km: float | None = Field(default=None, alias="distanceKm")
    origin: str | None = None
    destination: str | None = None
    route_summary: str | None = Field(default=None, alias="routeSummary")
    warnings: list[str] | None = None
    raw_id: str | None = Field(default=None, alias="rawId")

    segment: EnrichedSegment | None = None
    human_readable: str | None = Field(default=None, alias="humanReadable")
    extraction_error: str | None = Field(default=None, alias="extractionError")

    @field_validator("road", mode="before")
    @classmethod
    def _normalise_road(cls, value: Any) -> str:
        text = " ".join(str(value or "").split())
        return text.upper() or "UNKNOWN"

    @field_validator("direction", mode="before")
    @classmethod
    def _normalise_direction(cls, value: Any) -> Direction:
        return normalize_direction(value)

    @model_validator(mode="after")
    def _derive_delay(self) -> "NormalizedTrafficRecord":
        if self.delay_minutes is None:
            self.delay_minutes = max(0.0, self.travel_time_minutes - self.free_flow_time_minutes)
        else:
            self.delay_minutes = max(0.0, float(self.delay_minutes))
        return self

    def has_travel_time(self) -> bool:
        return self.travel_time_minutes > 0


class TrafficQuery(BaseModel):
    road: str
    country: Country = "ALL"
    town: str | None = None
    extract: bool = False


class TrafficSummary(_CamelModel):
    total_records: int = Field(..., alias="totalRecords")
    sources_used: list[str] = Field(default_factory=list, alias="sourcesUsed")
    congestion_breakdown: dict[str, int] = Field(default_factory=dict, alias="congestionBreakdown")


class RoutingInfo(_CamelModel):
    sources_tried: list[str] = Field(default_factory=list, alias="sourcesTried")
    fallback_used: bool = Field(default=False, alias="fallbackUsed")
    trace: list[dict[str, Any]] = Field(default_factory=list)


class ExtractionInfo(_CamelModel):
    processed: int
    extraction_time_ms: float = Field(..., alias="extractionTimeMs")
    cached: int = 0
    fallback: int = 0


class TrafficResponse(_CamelModel):
    query: TrafficQuery
    timestamp: str
    data: list[NormalizedTrafficRecord]
    summary: TrafficSummary
    routing: RoutingInfo
    response_time_ms: float = Field(..., alias="responseTimeMs")
    errors: list[str] | None = None
    extraction: ExtractionInfo | None = None


class ExtractResponse(_CamelModel):
    input: str
    extracted: EnrichedSegment
    processing_time_ms: float = Field(..., alias="processingTimeMs")
    timestamp: str


class CountryComparison(_CamelModel):
    record_count: int = Field(..., alias="recordCount")
    average_delay_minutes: float | None = Field(default=None, alias="averageDelayMinutes")
    average_speed: float | None = Field(default=None, alias="averageSpeed")
    congestion: str
    error: str | None = None
    sample: list[NormalizedTrafficRecord] = Field(default_factory=list)


class CompareResponse(_CamelModel):
    road: str
    timestamp: str
    comparison: dict[str, CountryComparison]
    insight: str


class JunctionSegmentResult(BaseModel):
    name: str
    order: int
    query_town: str
    normal_minutes: float
    current_minutes: float | None = None
    delay_minutes: float = 0.0
    status: SegmentStatus = "clear"
    congestion_level: str = "none"
    source: str = "estimate"
    error: str | None = None


class JunctionReport(BaseModel):
    direction: RouteDirection
    route_name: str
    timestamp: str
    segments: list[JunctionSegmentResult]
    total_normal_minutes: float
    total_current_minutes: float
    total_delay_minutes: float
    worst_segment: str
    worst_segment_delay_minutes: float
    unknown_segments: int = 0
    tier: RecommendationTier
    recommendation: str
    report_text: str = ""
    notified: bool = False
