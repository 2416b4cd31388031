"""
Geographic utility functions.

This module provides core geospatial calculations used throughout the application.
"""

from math import radians, cos, sin, asin, sqrt, pi
from typing import Tuple

EARTH_RADIUS_METERS = 6371000
KM_PER_DEGREE_LAT = 2 * pi * EARTH_RADIUS_METERS / 1000 / 360
BOX_PADDING = 1.01


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return c * EARTH_RADIUS_METERS


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in kilometres."""
    return calculate_distance(lat1, lon1, lat2, lon2) / 1000.0


def bounding_box(lat: float, lon: float, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Return (min_lat, max_lat, min_lon, max_lon) enclosing a circle of ``radius_km``.

    The box is padded so it always contains the circle; callers still run the
    exact Haversine check.
    """
    lat = float(lat)
    lon = float(lon)
    lat_delta = radius_km / KM_PER_DEGREE_LAT * BOX_PADDING
    cos_lat = abs(cos(radians(lat)))
    if cos_lat < 1e-9:
        lon_delta = 180.0
    else:
        lon_delta = radius_km / (KM_PER_DEGREE_LAT * cos_lat) * BOX_PADDING
    return lat - lat_delta, lat + lat_delta, lon - lon_delta, lon + lon_delta


def estimate_travel_seconds(km: float, speed_kmh: float = 30.0) -> int:
    """Travel time at a constant average city speed, rounded to whole seconds."""
    return int(round(km / speed_kmh * 3600))


def is_valid_coordinate(lat, lon) -> bool:
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def google_maps_link(lat: float, lon: float) -> str:
    return f"https://www.google.com/maps?q={float(lat)},{float(lon)}"
