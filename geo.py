"""Great-circle distance and coordinate parsing helpers."""

import math
from typing import Any, Optional, Tuple

from search_config import SEARCH_CONFIG


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance between two points, returned in kilometres."""
    R_KM = SEARCH_CONFIG.earth_radius_km
    lat1_r, lng1_r = math.radians(lat1), math.radians(lng1)
    lat2_r, lng2_r = math.radians(lat2), math.radians(lng2)

    dlat = lat2_r - lat1_r
    dlng = lng2_r - lng1_r

    a = (math.sin(dlat / 2) ** 2
         + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2)
    # Rounding can push a a hair outside [0, 1] near antipodes.
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R_KM * c


def parse_coordinate(value: Any) -> Optional[float]:
    """Parse a stored coordinate (usually text) into a float.

    Returns None for missing, blank, non-numeric, or non-finite values.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_coordinates(lat: Any, lng: Any) -> Optional[Tuple[float, float]]:
    """Parse a (lat, lng) pair, rejecting out-of-range values."""
    lat_f = parse_coordinate(lat)
    lng_f = parse_coordinate(lng)
    if lat_f is None or lng_f is None:
        return None
    if not -90.0 <= lat_f <= 90.0 or not -180.0 <= lng_f <= 180.0:
        return None
    return lat_f, lng_f
