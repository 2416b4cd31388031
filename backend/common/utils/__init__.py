"""Common utility functions."""

from .geo import (
    calculate_distance,
    distance_km,
    bounding_box,
    estimate_travel_seconds,
    is_valid_coordinate,
    google_maps_link,
)

__all__ = [
    "calculate_distance",
    "distance_km",
    "bounding_box",
    "estimate_travel_seconds",
    "is_valid_coordinate",
    "google_maps_link",
]
