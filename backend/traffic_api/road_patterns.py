"""Road-ownership heuristics.

These are heuristics: the same motorway designation (``M1``) exists
on both sides of the Irish Sea and only geocoding could tell them apart. A bare
designation that collides is reported as ambiguous and left to the caller's
``country`` parameter.
"""

from __future__ import annotations

import re

KNOWN_DESIGNATION = re.compile(r"^(M|N|A)\d+", re.IGNORECASE)

_IRISH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^M\d+$", re.IGNORECASE),
    re.compile(r"^N\d+$", re.IGNORECASE),
    re.compile(r"^R\d+$", re.IGNORECASE),
    re.compile(r"^L\d+$", re.IGNORECASE),
    re.compile(r"Dublin|Cork|Galway|Limerick|Waterford|Drogheda|Swords|Dundalk", re.IGNORECASE),
)

_UK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^M\d+[A-Z]?$", re.IGNORECASE),
    re.compile(r"^A\d+[A-Z]?$", re.IGNORECASE),
    re.compile(r"^B\d+$", re.IGNORECASE),
    re.compile(r"Motorway", re.IGNORECASE),
    re.compile(r"Milton Keynes|Birmingham|Manchester|London|Leeds|Glasgow|Edinburgh", re.IGNORECASE),
)

# Motorway numbers in use on the Irish network as well as the British one.
_SHARED_MOTORWAY = re.compile(
    r"^M(1|2|3|4|5|6|7|8|9|11|17|18|20|50|54|55|56|57|61|62|63|64|65|66|67|68|69"
    r"|70|71|72|73|74|75|76|77|78|79|80|81|82|83|84|85|86|87|88|89)$",
    re.IGNORECASE,
)

COMMERCIAL_ONLY_COUNTRIES: frozenset[str] = frozenset(
    {"US", "FR", "DE", "ES", "IT", "NL", "BE", "AT", "CH", "PT"}
)
_STREET_WORDS = re.compile(r"street|road|avenue|lane|drive|way|boulevard", re.IGNORECASE)


def normalize_road(road: str | None) -> str:
    return " ".join(str(road or "").split()).upper()


def is_known_designation(road: str) -> bool:
    return bool(KNOWN_DESIGNATION.match(normalize_road(road)))


def is_local_street(road: str, town: str | None) -> bool:
    return bool(town and str(town).strip()) and not is_known_designation(road)


def is_ambiguous_motorway(road: str) -> bool:
    return bool(_SHARED_MOTORWAY.match(normalize_road(road)))


def is_irish_road(road: str) -> bool:
    text = normalize_road(road)
    return any(pattern.search(text) for pattern in _IRISH_PATTERNS)


def is_uk_road(road: str) -> bool:
    text = normalize_road(road)
    if is_ambiguous_motorway(text):
        return False
    return any(pattern.search(text) for pattern in _UK_PATTERNS)


def is_commercial_preferred(road: str, town: str | None, country: str | None) -> bool:
    """Whether the costly mapping provider is the better (or only) source."""
    text = normalize_road(road)
    if town and not KNOWN_DESIGNATION.match(text):
        return True
    if country and country.strip().upper() in COMMERCIAL_ONLY_COUNTRIES:
        return True
    if _STREET_WORDS.search(text):
        return True
    return False
