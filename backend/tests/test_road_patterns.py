from __future__ import annotations

import pytest

from traffic_api.road_patterns import (
    is_ambiguous_motorway,
    is_commercial_preferred,
    is_irish_road,
    is_local_street,
    is_uk_road,
    normalize_road,
)


def test_normalize_road_collapses_whitespace_and_case() -> None:
    assert normalize_road("  m1 ") == "M1"
    assert normalize_road("george's   street") == "GEORGE'S STREET"
    assert normalize_road(None) == ""


@pytest.mark.parametrize("road", ["M1", "m50", "N11", "R132", "L1234", "Dublin Port"])
def test_irish_roads(road: str) -> None:
    assert is_irish_road(road)


@pytest.mark.parametrize("road", ["M25", "M40", "A1", "a14", "B1234", "M6 Toll Motorway", "London Road"])
def test_uk_roads(road: str) -> None:
    assert is_uk_road(road)


@pytest.mark.parametrize("road", ["M1", "M50", "M7", "M11"])
def test_colliding_motorways_are_ambiguous_not_uk(road: str) -> None:
    assert is_ambiguous_motorway(road)
    assert not is_uk_road(road)
    assert is_irish_road(road)


def test_regional_road_prefix_is_kept() -> None:
    assert is_irish_road("R132")
    assert not is_uk_road("R132")


def test_local_street_requires_town_and_unknown_designation() -> None:
    assert is_local_street("George's Street", "Drogheda")
    assert not is_local_street("George's Street", None)
    assert not is_local_street("M1", "Drogheda")
    assert not is_local_street("N2", "Ashbourne")


def test_commercial_preferred_heuristic() -> None:
    assert is_commercial_preferred("George's Street", "Drogheda", None)
    assert is_commercial_preferred("I-95", None, "us")
    assert is_commercial_preferred("Ring Road", None, None)
    assert not is_commercial_preferred("M1", None, "IE")
    assert not is_commercial_preferred("A14", "Cambridge", "UK")
