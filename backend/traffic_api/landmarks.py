from __future__ import annotations

import math
from dataclasses import dataclass

# Records further than this from every known landmark get no landmark at all.
LANDMARK_CUTOFF_KM = 15.0
_EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class Landmark:
    name: str
    lat: float
    lon: float
    country: str


# Towns at motorway junctions on the Irish and British networks.
LANDMARKS: tuple[Landmark, ...] = (
    Landmark("Dublin Airport", 53.4264, -6.2499, "IE"),
    Landmark("Swords", 53.4597, -6.2181, "IE"),
    Landmark("Balbriggan", 53.6128, -6.1819, "IE"),
    Landmark("Drogheda", 53.7179, -6.3561, "IE"),
    Landmark("Dundalk", 54.0090, -6.4049, "IE"),
    Landmark("Newry", 54.1751, -6.3402, "UK"),
    Landmark("Dublin Port Tunnel", 53.3727, -6.2255, "IE"),
    Landmark("Blanchardstown", 53.3881, -6.3773, "IE"),
    Landmark("Lucan", 53.3574, -6.4486, "IE"),
    Landmark("Naas", 53.2159, -6.6669, "IE"),
    Landmark("Kildare", 53.1589, -6.9096, "IE"),
    Landmark("Portlaoise", 53.0344, -7.2998, "IE"),
    Landmark("Limerick", 52.6638, -8.6267, "IE"),
    Landmark("Cork", 51.8985, -8.4756, "IE"),
    Landmark("Galway", 53.2707, -9.0568, "IE"),
    Landmark("Athlone", 53.4239, -7.9407, "IE"),
    Landmark("Waterford", 52.2593, -7.1101, "IE"),
    Landmark("Navan", 53.6528, -6.6814, "IE"),
    Landmark("Bray", 53.2028, -6.0983, "IE"),
    Landmark("London (M25 Junction 21)", 51.7046, -0.3770, "UK"),
    Landmark("Luton", 51.8787, -0.4200, "UK"),
    Landmark("Milton Keynes", 52.0406, -0.7594, "UK"),
    Landmark("Northampton", 52.2405, -0.9027, "UK"),
    Landmark("Leicester", 52.6369, -1.1398, "UK"),
    Landmark("Nottingham", 52.9548, -1.1581, "UK"),
    Landmark("Sheffield", 53.3811, -1.4701, "UK"),
    Landmark("Leeds", 53.8008, -1.5491, "UK"),
    Landmark("Birmingham", 52.4862, -1.8904, "UK"),
    Landmark("Coventry", 52.4068, -1.5197, "UK"),
    Landmark("Manchester", 53.4808, -2.2426, "UK"),
    Landmark("Preston", 53.7632, -2.7031, "UK"),
    Landmark("Carlisle", 54.8925, -2.9329, "UK"),
    Landmark("Bristol", 51.4545, -2.5879, "UK"),
    Landmark("Reading", 51.4543, -0.9781, "UK"),
    Landmark("Glasgow", 55.8642, -4.2518, "UK"),
    Landmark("Edinburgh", 55.9533, -3.1883, "UK"),
)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * _EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def nearest_landmark(
    lat: float,
    lon: float,
    *,
    cutoff_km: float = LANDMARK_CUTOFF_KM,
    landmarks: tuple[Landmark, ...] = LANDMARKS,
) -> tuple[Landmark, float] | None:
    best: tuple[Landmark, float] | None = None
    for landmark in landmarks:
        dist = haversine_km(lat, lon, landmark.lat, landmark.lon)
        if best is None or dist < best[1]:
            best = (landmark, dist)
    if best is None or best[1] > cutoff_km:
        return None
    return best
