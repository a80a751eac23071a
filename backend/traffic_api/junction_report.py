"""Per-junction commute report for the M1 between Drogheda and Swords.

Each segment is resolved through the orchestrator scoped to its town, compared
against a hand-calibrated baseline, and rolled up into a total delay and a
recommendation.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .adapter_base import utc_now_iso
from .logging_utils import log_event, log_warning
from .models import (
    JunctionReport,
    JunctionSegmentResult,
    NormalizedTrafficRecord,
    RecommendationTier,
    RouteDirection,
    SegmentStatus,
)
from .notifier import TelegramNotifier
from .orchestrator import TrafficOrchestrator
from .provider_http import describe_exception
from .settings import settings

Sleep = Callable[[float], Awaitable[None]]

REPORT_ROAD = "M1"
REPORT_COUNTRY = "IE"
REPORT_TIMEZONE = "Europe/Dublin"


@dataclass(frozen=True)
class RouteSegment:
    name: str
    from_label: str
    to_label: str
    query_town: str
    normal_minutes: float
    order: int


def _segments(rows: list[tuple[str, str, str, str, float]]) -> tuple[RouteSegment, ...]:
    return tuple(
        RouteSegment(name=name, from_label=src, to_label=dst, query_town=town, normal_minutes=normal, order=idx)
        for idx, (name, src, dst, town, normal) in enumerate(rows)
    )


ROUTE_SEGMENTS: dict[str, tuple[RouteSegment, ...]] = {
    "southbound": _segments(
        [
            ("J10-J9 Drogheda", "Drogheda North", "Drogheda South", "Drogheda", 5),
            ("J9-J8 Drogheda-Duleek", "Drogheda", "Duleek", "Duleek", 8),
            ("J8-J7 Duleek-Julianstown", "Duleek", "Julianstown", "Julianstown", 5),
            ("J7-J6 Julianstown-Balbriggan", "Julianstown", "Balbriggan North", "Balbriggan", 8),
            ("J6-J5 Balbriggan", "Balbriggan North", "Balbriggan", "Balbriggan", 3),
            ("J5-J4 Balbriggan-Donabate", "Balbriggan", "Donabate", "Donabate", 7),
            ("J4-J3 Donabate-Swords", "Donabate", "Swords", "Swords", 6),
            ("J3-J1 Swords-M50", "Swords", "M50 Interchange", "Swords", 5),
        ]
    ),
    "northbound": _segments(
        [
            ("J3-J1 Swords-M50", "M50 Interchange", "Swords", "Swords", 5),
            ("J4-J3 Donabate-Swords", "Swords", "Donabate", "Donabate", 6),
            ("J5-J4 Balbriggan-Donabate", "Donabate", "Balbriggan", "Balbriggan", 7),
            ("J6-J5 Balbriggan", "Balbriggan", "Balbriggan North", "Balbriggan", 3),
            ("J7-J6 Julianstown-Balbriggan", "Balbriggan North", "Julianstown", "Julianstown", 8),
            ("J8-J7 Duleek-Julianstown", "Julianstown", "Duleek", "Duleek", 5),
            ("J9-J8 Drogheda-Duleek", "Duleek", "Drogheda", "Drogheda", 8),
            ("J10-J9 Drogheda", "Drogheda South", "Drogheda North", "Drogheda", 5),
        ]
    ),
}

ROUTE_NAMES: dict[str, str] = {
    "southbound": "Drogheda → Swords",
    "northbound": "Swords → Drogheda",
}

STATUS_EMOJI: dict[str, str] = {
    "clear": "✅",
    "light": "🟡",
    "moderate": "🟠",
    "heavy": "🔴",
    "unknown": "⚪",
}


def segment_status(delay_minutes: float) -> SegmentStatus:
    if delay_minutes >= 10:
        return "heavy"
    if delay_minutes >= 5:
        return "moderate"
    if delay_minutes >= 2:
        return "light"
    return "clear"


def _fmt(minutes: float) -> str:
    return f"{float(minutes):g}"


def recommendation_for(total_delay: float, worst_name: str) -> tuple[RecommendationTier, str]:
    if total_delay >= 15:
        departure_shift = int(math.ceil(total_delay / 5.0) * 5)
        return (
            "major",
            f"🔴 Major delays! Consider an alternative route or delay departure by {departure_shift} mins.",
        )
    if total_delay >= 10:
        return "significant", f"🟠 Significant delays at {worst_name}. Allow extra {_fmt(total_delay)} minutes."
    if total_delay >= 5:
        return "minor", f"🟡 Minor delays. Allow extra {_fmt(total_delay)} minutes, mainly at {worst_name}."
    return "clear", "🟢 Route is clear. Normal travel time expected."


def _pick_record(records: list[NormalizedTrafficRecord]) -> NormalizedTrafficRecord | None:
    for rec in records:
        if rec.has_travel_time():
            return rec
    return None


def segment_result(
    segment: RouteSegment,
    records: list[NormalizedTrafficRecord],
    *,
    errors: list[str] | None = None,
    all_failed: bool = False,
) -> JunctionSegmentResult:
    base = {
        "name": segment.name,
        "order": segment.order,
        "query_town": segment.query_town,
        "normal_minutes": segment.normal_minutes,
    }
    if all_failed:
        return JunctionSegmentResult(
            **base,
            current_minutes=None,
            status="unknown",
            congestion_level="unknown",
            source="none",
            error="; ".join(errors or []) or "no signal",
        )

    record = _pick_record(records)
    if record is None:
        return JunctionSegmentResult(**base, current_minutes=segment.normal_minutes, source="estimate")

    current = record.travel_time_minutes
    provided = float(record.delay_minutes or 0.0)
    delay = provided if provided > 0 else max(0.0, current - segment.normal_minutes)
    return JunctionSegmentResult(
        **base,
        current_minutes=current,
        delay_minutes=delay,
        status=segment_status(delay),
        congestion_level=record.congestion_level,
        source=record.source,
    )


async def check_segment(orchestrator: TrafficOrchestrator, segment: RouteSegment) -> JunctionSegmentResult:
    try:
        resolved = await orchestrator.resolve(REPORT_ROAD, REPORT_COUNTRY, segment.query_town)
    except Exception as e:
        log_warning("junction_segment_failed", segment=segment.name, error=describe_exception(e))
        return segment_result(segment, [], errors=[describe_exception(e)], all_failed=True)
    return segment_result(segment, resolved.data, errors=resolved.errors, all_failed=resolved.all_failed)


def aggregate(direction: RouteDirection, results: list[JunctionSegmentResult]) -> JunctionReport:
    if not results:
        raise ValueError("junction report needs at least one segment")
    total_normal = sum(r.normal_minutes for r in results)
    # Segments without a signal count at baseline so one outage doesn't read as a saving.
    total_current = sum(r.normal_minutes if r.current_minutes is None else r.current_minutes for r in results)
    total_delay = total_current - total_normal

    worst = results[0]
    for r in results[1:]:
        if r.delay_minutes > worst.delay_minutes:
            worst = r

    tier, recommendation = recommendation_for(total_delay, worst.name)
    return JunctionReport(
        direction=direction,
        route_name=ROUTE_NAMES[direction],
        timestamp=utc_now_iso(),
        segments=results,
        total_normal_minutes=total_normal,
        total_current_minutes=total_current,
        total_delay_minutes=total_delay,
        worst_segment=worst.name,
        worst_segment_delay_minutes=worst.delay_minutes,
        unknown_segments=sum(1 for r in results if r.status == "unknown"),
        tier=tier,
        recommendation=recommendation,
    )


async def build_report(
    orchestrator: TrafficOrchestrator,
    direction: RouteDirection,
    *,
    pause_s: float | None = None,
    concurrency: int | None = None,
    sleep: Sleep = asyncio.sleep,
) -> JunctionReport:
    """Resolve every segment in route order and aggregate.

    ``concurrency=1`` (the default) runs segments one after another with
    ``pause_s`` between calls; higher values bound parallel calls with a
    semaphore instead. Results are always in segment order.
    """
    segments = ROUTE_SEGMENTS[direction]
    pause = float(settings.junction_call_pause_s if pause_s is None else pause_s)
    limit = int(settings.junction_concurrency if concurrency is None else concurrency)

    if limit <= 1:
        results: list[JunctionSegmentResult] = []
        for idx, segment in enumerate(segments):
            if idx and pause > 0:
                await sleep(pause)
            results.append(await check_segment(orchestrator, segment))
    else:
        gate = asyncio.Semaphore(limit)

        async def bounded(segment: RouteSegment) -> JunctionSegmentResult:
            async with gate:
                return await check_segment(orchestrator, segment)

        results = list(await asyncio.gather(*(bounded(segment) for segment in segments)))

    report = aggregate(direction, results)
    log_event(
        "junction_report",
        direction=direction,
        total_delay_minutes=report.total_delay_minutes,
        worst_segment=report.worst_segment,
        tier=report.tier,
        unknown_segments=report.unknown_segments,
    )
    return report


def _local_time(now: datetime | None) -> str:
    now = now or datetime.now(UTC)
    try:
        local = now.astimezone(ZoneInfo(REPORT_TIMEZONE))
    except ZoneInfoNotFoundError:
        local = now.astimezone(UTC)
    return local.strftime("%A %H:%M")


def format_report(report: JunctionReport, *, now: datetime | None = None) -> str:
    header_emoji = "🌅" if report.direction == "southbound" else "🌆"
    lines = [
        f"{header_emoji} **M1 Traffic Report - {report.route_name}**",
        f"_{_local_time(now)}_",
        "",
        "**Segment Breakdown:**",
    ]
    for seg in report.segments:
        time_str = f"{_fmt(seg.current_minutes)} min" if seg.current_minutes is not None else "N/A"
        delay_str = f" (+{_fmt(seg.delay_minutes)})" if seg.delay_minutes > 0 else ""
        lines.append(f"{STATUS_EMOJI.get(seg.status, '⚪')} {seg.name}: {time_str}{delay_str}")

    delay_text = f"+{_fmt(report.total_delay_minutes)} minutes" if report.total_delay_minutes > 0 else "No delay"
    lines += [
        "",
        "**Summary:**",
        f"• Total time: {_fmt(report.total_current_minutes)} minutes (normal: {_fmt(report.total_normal_minutes)} min)",
        f"• Delay: {delay_text}",
        f"• Worst segment: {report.worst_segment} ({_fmt(report.worst_segment_delay_minutes)} min delay)",
    ]
    if report.unknown_segments:
        lines.append(f"• No live signal for {report.unknown_segments} segment(s); counted at normal time")
    lines += ["", "**Recommendation:**", report.recommendation]
    return "\n".join(lines)


async def run_scheduled_check(
    orchestrator: TrafficOrchestrator,
    direction: RouteDirection,
    *,
    notifier: TelegramNotifier | None = None,
    notify: bool = True,
    sleep: Sleep = asyncio.sleep,
) -> JunctionReport:
    report = await build_report(orchestrator, direction, sleep=sleep)
    text = format_report(report)
    notified = False
    if notify and notifier is not None and report.total_delay_minutes >= settings.junction_notify_min_delay:
        notified = await notifier.send(text)
    return report.model_copy(update={"report_text": text, "notified": notified})
