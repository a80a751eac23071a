from __future__ import annotations

import random

from traffic_api.congestion import (
    congestion_from_delay,
    congestion_from_durations,
    congestion_from_speed,
    congestion_rank,
    empty_breakdown,
)
from traffic_api.models import NormalizedTrafficRecord


def test_delay_thresholds() -> None:
    assert congestion_from_delay(0) == "none"
    assert congestion_from_delay(2) == "none"
    assert congestion_from_delay(2.5) == "light"
    assert congestion_from_delay(6) == "moderate"
    assert congestion_from_delay(10) == "moderate"
    assert congestion_from_delay(10.5) == "heavy"


def test_speed_thresholds() -> None:
    assert congestion_from_speed(15, 70) == "heavy"
    assert congestion_from_speed(35, 70) == "moderate"
    assert congestion_from_speed(50, 70) == "light"
    assert congestion_from_speed(68, 70) == "none"
    # Zero or missing typical speed falls back to the motorway default.
    assert congestion_from_speed(68, 0) == "none"


def test_duration_thresholds() -> None:
    assert congestion_from_durations(1800, 0) == "none"
    assert congestion_from_durations(1200, 1200) == "none"
    assert congestion_from_durations(1500, 1200) == "light"
    assert congestion_from_durations(1800, 1200) == "moderate"
    assert congestion_from_durations(2500, 1200) == "heavy"


def test_congestion_monotonic_in_delay_randomized() -> None:
    rng = random.Random(20261018)
    for _ in range(50):
        delays = sorted(rng.uniform(0.0, 40.0) for _ in range(30))
        ranks = [congestion_rank(congestion_from_delay(d)) for d in delays]
        assert ranks == sorted(ranks)


def test_congestion_monotonic_in_speed_randomized() -> None:
    rng = random.Random(7)
    for _ in range(50):
        typical = rng.uniform(40.0, 120.0)
        speeds = sorted(rng.uniform(0.0, 130.0) for _ in range(30))
        ranks = [congestion_rank(congestion_from_speed(s, typical)) for s in speeds]
        assert ranks == sorted(ranks, reverse=True)


def test_congestion_monotonic_in_traffic_duration_randomized() -> None:
    rng = random.Random(99)
    for _ in range(50):
        free_flow = rng.uniform(60.0, 3600.0)
        in_traffic = sorted(rng.uniform(free_flow, free_flow * 3) for _ in range(30))
        ranks = [congestion_rank(congestion_from_durations(t, free_flow)) for t in in_traffic]
        assert ranks == sorted(ranks)


def test_record_delay_never_negative_randomized() -> None:
    rng = random.Random(3)
    for _ in range(200):
        travel = round(rng.uniform(0.0, 60.0), 1)
        free_flow = round(rng.uniform(0.0, 60.0), 1)
        rec = NormalizedTrafficRecord(
            source="national-roads",
            road="m1",
            travel_time_minutes=travel,
            free_flow_time_minutes=free_flow,
            timestamp="2026-01-01T00:00:00Z",
        )
        assert rec.delay_minutes is not None
        assert rec.delay_minutes >= 0
        assert rec.delay_minutes == max(0.0, travel - free_flow)


def test_empty_breakdown_lists_every_level() -> None:
    assert list(empty_breakdown()) == ["heavy", "moderate", "light", "none"]
    assert congestion_rank("bogus") == 0
