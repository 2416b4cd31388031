"""
Geocoding and routing.

Google Maps over its REST API when GOOGLE_MAPS_API_KEY is set. Without a
key, callers fall back to straight-line estimates (haversine_route).
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from django.conf import settings

from common.utils import distance_km, estimate_travel_seconds
from .exceptions import ExternalServiceError, IntegrationNotConfigured
from .http import call_with_retry, request_json, warn_degraded

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"

# Google statuses worth one more try
RETRYABLE_STATUSES = ("OVER_QUERY_LIMIT", "UNKNOWN_ERROR")

Point = Tuple[float, float]


@dataclass(frozen=True)
class GeocodeResult:
    latitude: float
    longitude: float
    formatted_address: str = ""


@dataclass(frozen=True)
class RouteInfo:
    distance_m: int
    duration_s: int
    polyline: Optional[str] = None
    is_estimate: bool = False

    @property
    def distance_km(self) -> float:
        return self.distance_m / 1000.0

    @property
    def duration_min(self) -> float:
        return self.duration_s / 60.0

    def as_dict(self) -> dict:
        return {
            "distance": self.distance_m,
            "duration": self.duration_s,
            "polyline": self.polyline,
            "isEstimate": self.is_estimate,
        }


class Geocoder:
    def geocode(self, address: str) -> GeocodeResult:
        raise NotImplementedError


class Router:
    def route(self, origin: Point, destination: Point) -> RouteInfo:
        raise NotImplementedError


def haversine_route(origin: Point, destination: Point, speed_kmh: float = 30.0) -> RouteInfo:
    """Straight-line distance and a constant-speed travel time; no polyline."""
    km = distance_km(origin[0], origin[1], destination[0], destination[1])
    return RouteInfo(
        distance_m=int(round(km * 1000)),
        duration_s=estimate_travel_seconds(km, speed_kmh),
        polyline=None,
        is_estimate=True,
    )


def _check_google_status(data: dict, service: str) -> None:
    status = data.get("status")
    if status == "OK":
        return
    message = data.get("error_message") or status or "unknown error"
    raise ExternalServiceError(
        f"{service} failed: {message}",
        service=service,
        retryable=status in RETRYABLE_STATUSES,
    )


class GoogleGeocoder(Geocoder):
    service = "google_geocoding"

    def __init__(self, api_key: str):
        self.api_key = api_key

    def _geocode_once(self, address: str) -> GeocodeResult:
        data = request_json(self.service, "GET", GEOCODE_URL, params={"address": address, "key": self.api_key})
        _check_google_status(data, self.service)
        first = data["results"][0]
        location = first["geometry"]["location"]
        return GeocodeResult(
            latitude=float(location["lat"]),
            longitude=float(location["lng"]),
            formatted_address=first.get("formatted_address", address),
        )

    def geocode(self, address: str) -> GeocodeResult:
        return call_with_retry(lambda: self._geocode_once(address), self.service)


class GoogleRouter(Router):
    service = "google_directions"

    def __init__(self, api_key: str):
        self.api_key = api_key

    def _route_once(self, origin: Point, destination: Point) -> RouteInfo:
        params = {
            "origin": f"{origin[0]},{origin[1]}",
            "destination": f"{destination[0]},{destination[1]}",
            "mode": "driving",
            "key": self.api_key,
        }
        data = request_json(self.service, "GET", DIRECTIONS_URL, params=params)
        _check_google_status(data, self.service)
        route = data["routes"][0]
        leg = route["legs"][0]
        return RouteInfo(
            distance_m=int(leg["distance"]["value"]),
            duration_s=int(leg["duration"]["value"]),
            polyline=route.get("overview_polyline", {}).get("points"),
        )

    def route(self, origin: Point, destination: Point) -> RouteInfo:
        return call_with_retry(lambda: self._route_once(origin, destination), self.service)


class UnconfiguredMaps(Geocoder, Router):
    """Stands in for Google Maps when no API key is configured."""

    def geocode(self, address: str) -> GeocodeResult:
        raise IntegrationNotConfigured("Geocoding is not configured", service="google_geocoding")

    def route(self, origin: Point, destination: Point) -> RouteInfo:
        raise IntegrationNotConfigured("Routing is not configured", service="google_directions")


def get_geocoder() -> Geocoder:
    api_key = getattr(settings, "GOOGLE_MAPS_API_KEY", None)
    if not api_key:
        warn_degraded("geocoding", "coordinates required")
        return UnconfiguredMaps()
    return GoogleGeocoder(api_key)


def get_router() -> Router:
    api_key = getattr(settings, "GOOGLE_MAPS_API_KEY", None)
    if not api_key:
        warn_degraded("routing", "haversine")
        return UnconfiguredMaps()
    return GoogleRouter(api_key)
