"""Great-circle distance helpers used by job and worker discovery."""

from __future__ import annotations

import math

EARTH_RADIUS_METERS = 6_371_000.0


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in meters between two WGS84 points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bounding_box(
    latitude: float, longitude: float, radius_m: float
) -> tuple[float, float, float, float]:
    """Coarse (min_lat, max_lat, min_lon, max_lon) box enclosing the radius.

    Used as an indexable pre-filter; the exact haversine check runs after.
    """
    d_lat = math.degrees(radius_m / EARTH_RADIUS_METERS)
    cos_lat = math.cos(math.radians(latitude))
    if cos_lat < 1e-9:
        d_lon = 180.0
    else:
        d_lon = min(180.0, math.degrees(radius_m / (EARTH_RADIUS_METERS * cos_lat)))
    return (
        max(-90.0, latitude - d_lat),
        min(90.0, latitude + d_lat),
        longitude - d_lon,
        longitude + d_lon,
    )
