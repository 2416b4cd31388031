"""
Payload builders and send helpers for ride events.

Payload keys are the wire names the mobile clients read, so they stay
camelCase where the clients expect it.
"""

import logging
import math
from typing import Any, Dict, Iterable, Optional

from . import events
from .bus import RealtimeBus

logger = logging.getLogger(__name__)


# ---------------------- Shapes ----------------------

def _float(value) -> Optional[float]:
    return float(value) if value is not None else None


def location_payload(lat, lon, address: str = "") -> Dict[str, Any]:
    return {"lat": _float(lat), "lon": _float(lon), "address": address or ""}


def eta_minutes(eta_seconds: int) -> int:
    return int(math.ceil(eta_seconds / 60.0))


def fare_payload(ride) -> Dict[str, Any]:
    return {
        "estimated": int(ride.fare_estimated),
        "final": int(ride.fare_final) if ride.fare_final is not None else None,
        "currency": ride.fare_currency,
        "breakdown": {
            "base": int(ride.fare_base),
            "distance": int(ride.fare_distance),
            "time": int(ride.fare_time),
            "surge": float(ride.fare_surge),
        },
    }


def passenger_summary(user) -> Dict[str, Any]:
    profile = getattr(user, "passenger_profile", None)
    return {
        "id": user.id,
        "name": user.display_name,
        "phone": user.phone_number,
        "rating": float(profile.rating) if profile else None,
    }


def driver_summary(user) -> Dict[str, Any]:
    profile = user.driver_profile
    return {
        "id": user.id,
        "name": user.display_name,
        "phone": user.phone_number,
        "rating": float(profile.rating),
        "vehicle": {
            "type": profile.vehicle_class,
            "model": profile.vehicle_model,
            "plateNumber": profile.vehicle_number,
            "color": profile.vehicle_color,
        },
    }


def ride_offer_payload(ride, offer) -> Dict[str, Any]:
    """Body of ``ride:new_request`` for one offered driver."""
    payload = {
        "ride_id": ride.id,
        "offer_id": offer.id,
        "pickup": location_payload(ride.pickup_latitude, ride.pickup_longitude, ride.pickup_address),
        "dropoff": location_payload(ride.dropoff_latitude, ride.dropoff_longitude, ride.dropoff_address),
        "fare": fare_payload(ride),
        "distance": ride.route_distance_m,
        "duration": ride.route_duration_s,
        "driverDistance": round(offer.distance_km, 2),
        "driverETA": eta_minutes(offer.eta_seconds),
        "passenger": passenger_summary(ride.passenger),
        "priority": ride.priority,
        "paymentMethod": ride.payment_method,
        "vehicleType": ride.vehicle_class,
        "rideType": ride.ride_type,
        "expiresAt": offer.expires_at.isoformat(),
    }
    if ride.scheduled_at:
        payload["scheduledAt"] = ride.scheduled_at.isoformat()
    return payload


# ---------------------- Ride Event Notifications ----------------------

def notify_driver_event(
    bus: RealtimeBus,
    event_type: str,
    ride,
    driver_id: Optional[int],
    message: str = "",
    extra: Dict[str, Any] = None,
) -> bool:
    """Send a ride event to one driver's stream."""
    if not driver_id:
        return False
    payload = {"ride_id": ride.id, **(extra or {})}
    if message:
        payload["message"] = message
    return bus.publish(driver_id, event_type, payload)


def notify_passenger_event(
    bus: RealtimeBus,
    event_type: str,
    ride,
    message: str = "",
    extra: Dict[str, Any] = None,
) -> bool:
    """Send a ride event to the ride's passenger."""
    payload = {"ride_id": ride.id, "status": ride.status, **(extra or {})}
    if message:
        payload["message"] = message
    return bus.publish(ride.passenger_id, event_type, payload)


def notify_offer_drivers(
    bus: RealtimeBus,
    event_type: str,
    ride,
    driver_ids: Iterable[int],
    message: str = "",
    extra: Dict[str, Any] = None,
) -> int:
    """Send the same event to every driver in ``driver_ids``; returns how many were handed off."""
    sent = 0
    for driver_id in sorted(set(driver_ids)):
        if notify_driver_event(bus, event_type, ride, driver_id, message, extra):
            sent += 1
    return sent


def publish_ride_offer(bus: RealtimeBus, ride, offer) -> bool:
    logger.debug("offer -> driver_id=%s ride_id=%s", offer.driver_id, ride.id)
    return bus.publish(offer.driver_id, events.RIDE_NEW_REQUEST, ride_offer_payload(ride, offer))
