from __future__ import annotations

from .models import CongestionLevel

CONGESTION_ORDER: tuple[CongestionLevel, ...] = ("none", "light", "moderate", "heavy")
_RANK: dict[str, int] = {level: idx for idx, level in enumerate(CONGESTION_ORDER)}

# Typical free-flow speed (km/h) assumed for a UK monitoring site that does not publish one.
DEFAULT_TYPICAL_SPEED_KMH = 70.0


def congestion_rank(level: str) -> int:
    return _RANK.get(str(level or "").strip().lower(), 0)


def empty_breakdown() -> dict[str, int]:
    return {level: 0 for level in reversed(CONGESTION_ORDER)}


def congestion_from_delay(delay_minutes: float) -> CongestionLevel:
    """National-roads scheme: thresholds on absolute delay in minutes."""
    delay = max(0.0, float(delay_minutes))
    if delay > 10:
        return "heavy"
    if delay > 5:
        return "moderate"
    if delay > 2:
        return "light"
    return "none"


def congestion_from_speed(speed_kmh: float, typical_speed_kmh: float = DEFAULT_TYPICAL_SPEED_KMH) -> CongestionLevel:
    """UK-highways scheme: observed speed relative to the site's typical speed."""
    speed = max(0.0, float(speed_kmh))
    typical = float(typical_speed_kmh) if typical_speed_kmh and typical_speed_kmh > 0 else DEFAULT_TYPICAL_SPEED_KMH
    ratio = speed / typical
    if ratio < 0.3 or speed < 20:
        return "heavy"
    if ratio < 0.6 or speed < 40:
        return "moderate"
    if ratio < 0.8 or speed < 55:
        return "light"
    return "none"


def congestion_from_durations(duration_in_traffic_s: float, free_flow_duration_s: float) -> CongestionLevel:
    """Commercial-fallback scheme: traffic/free-flow ratio and absolute delay."""
    free_flow = float(free_flow_duration_s or 0.0)
    if free_flow <= 0:
        return "none"
    in_traffic = max(0.0, float(duration_in_traffic_s or 0.0))
    ratio = in_traffic / free_flow
    delay_minutes = (in_traffic - free_flow) / 60.0
    if delay_minutes > 15 or ratio > 2.0:
        return "heavy"
    if delay_minutes > 5 or ratio > 1.5:
        return "moderate"
    if delay_minutes > 2 or ratio > 1.2:
        return "light"
    return "none"
