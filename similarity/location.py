"""Location Proximity Calculators.

Great-circle distance between geocoded listings plus postal-code, city and
province heuristics for listings without coordinates.
"""

import math
from dataclasses import dataclass
from typing import Optional


EARTH_RADIUS_KM = 6371.0
DEFAULT_MAX_DISTANCE_KM = 50.0

NEUTRAL_SCORE = 0.5


def _finite(value: Optional[float]) -> Optional[float]:
    """None for missing, NaN or infinite coordinates."""
    if value is None or not math.isfinite(value):
        return None
    return value

# Relative weight of each location signal in the combined score
COORDINATE_WEIGHT = 3.0
POSTAL_CODE_WEIGHT = 2.0
CITY_WEIGHT = 1.0
PROVINCE_WEIGHT = 0.5


@dataclass
class LocationSignal:
    """Location fields of one listing. Any may be missing."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return _finite(self.latitude) is not None and _finite(self.longitude) is not None


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def coordinate_similarity(
    lat1: Optional[float],
    lon1: Optional[float],
    lat2: Optional[float],
    lon2: Optional[float],
    max_distance_km: float = DEFAULT_MAX_DISTANCE_KM,
) -> float:
    """Linear decay from 1.0 at 0 km to 0.0 at max_distance_km.

    Returns:
        0.5 when any coordinate is missing or not finite
    """
    lat1, lon1, lat2, lon2 = (_finite(v) for v in (lat1, lon1, lat2, lon2))
    if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
        return NEUTRAL_SCORE
    if math.isnan(max_distance_km):
        max_distance_km = DEFAULT_MAX_DISTANCE_KM
    if max_distance_km <= 0:
        return 1.0 if (lat1, lon1) == (lat2, lon2) else 0.0

    distance = haversine_km(lat1, lon1, lat2, lon2)
    if distance >= max_distance_km:
        return 0.0
    return 1.0 - distance / max_distance_km


def normalize_postal_code(postal_code: Optional[str]) -> str:
    """Strip spaces and hyphens and uppercase: "m5v 3l9" → "M5V3L9"."""
    if not postal_code:
        return ""
    return postal_code.replace(" ", "").replace("-", "").upper().strip()


def postal_code_similarity(postal_a: Optional[str], postal_b: Optional[str]) -> float:
    """Compare postal/ZIP codes.

    - either blank → 0.5
    - exact match → 1.0
    - first 3 characters match → 0.7 for digit-leading codes (US ZIP3),
      0.8 otherwise (Canadian FSA)
    - otherwise → 0.2
    """
    a = normalize_postal_code(postal_a)
    b = normalize_postal_code(postal_b)
    if not a or not b:
        return NEUTRAL_SCORE

    if a == b:
        return 1.0

    if len(a) >= 3 and len(b) >= 3 and a[:3] == b[:3]:
        if a[0].isdigit() and b[0].isdigit():
            return 0.7
        return 0.8

    return 0.2


def _same_text(a: Optional[str], b: Optional[str]) -> Optional[float]:
    if not a or not a.strip() or not b or not b.strip():
        return None
    return 1.0 if a.strip().lower() == b.strip().lower() else 0.0


def combined_location_similarity(
    a: LocationSignal,
    b: LocationSignal,
    max_distance_km: float = DEFAULT_MAX_DISTANCE_KM,
) -> float:
    """Weighted mean over whichever location signals are present.

    Signals and weights:
    - coordinates (3.0): both listings geocoded
    - postal code (2.0): either listing has one
    - city (1.0): both have one, exact case-insensitive match
    - province (0.5): both have one, exact case-insensitive match

    Normalized by the sum of weights actually used; 0.5 with no signal at all.
    """
    scores = []

    if a.has_coordinates and b.has_coordinates:
        scores.append((
            coordinate_similarity(a.latitude, a.longitude, b.latitude, b.longitude, max_distance_km),
            COORDINATE_WEIGHT,
        ))

    if normalize_postal_code(a.postal_code) or normalize_postal_code(b.postal_code):
        scores.append((postal_code_similarity(a.postal_code, b.postal_code), POSTAL_CODE_WEIGHT))

    city_score = _same_text(a.city, b.city)
    if city_score is not None:
        scores.append((city_score, CITY_WEIGHT))

    province_score = _same_text(a.province, b.province)
    if province_score is not None:
        scores.append((province_score, PROVINCE_WEIGHT))

    if not scores:
        return NEUTRAL_SCORE

    total_weight = sum(weight for _, weight in scores)
    return sum(score * weight for score, weight in scores) / total_weight
