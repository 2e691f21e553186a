import math
from typing import Optional, Tuple

from .models import LatLon

EARTH_RADIUS_METERS = 6371000.0
METERS_PER_DEGREE_LAT = 111320.0


def valid_location(location: Optional[LatLon]) -> bool:
    return location is not None and location.is_valid()


def haversine_meters(a: LatLon, b: LatLon) -> float:
    """Great-circle distance in metres."""
    p1 = math.radians(a.lat)
    p2 = math.radians(b.lat)
    d_lat = math.radians(b.lat - a.lat)
    d_lon = math.radians(b.lon - a.lon)
    h = math.sin(d_lat / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def distance_or_none(a: Optional[LatLon], b: Optional[LatLon]) -> Optional[float]:
    if not (valid_location(a) and valid_location(b)):
        return None
    return haversine_meters(a, b)


def bounding_box(center: LatLon, radius_meters: float) -> Tuple[float, float, float, float]:
    """(min_lat, max_lat, min_lon, max_lon) enclosing a circle of radius_meters.

    Used as a cheap prefilter; callers refine with haversine_meters.
    """
    d_lat = radius_meters / METERS_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(center.lat))
    # Near the poles a longitude degree shrinks to nothing; take the full range.
    if cos_lat < 1e-6:
        d_lon = 180.0
    else:
        d_lon = min(180.0, radius_meters / (METERS_PER_DEGREE_LAT * cos_lat))
    return (center.lat - d_lat, center.lat + d_lat, center.lon - d_lon, center.lon + d_lon)
