"""
SOS alerts.

trigger() resolves where the user is, stores the alert, texts the
passenger's emergency contacts and alerts every connected admin. SMS
failures are recorded per contact and never fail the alert itself.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.db.models import Q
from django.utils import timezone

from accounts.models import User
from common.utils import google_maps_link, is_valid_coordinate
from integrations import ExternalServiceError, SMSGateway, get_sms_gateway
from passengers.models import EmergencyContact
from realtime import events
from realtime.bus import RealtimeBus, get_realtime_bus
from rides.constants import ACTIVE_STATUSES
from rides.models import Ride, SOSAlert
from services.ride_management.exceptions import (
    LocationUnavailableError,
    NotRideParticipantError,
    RideNotFoundError,
)

logger = logging.getLogger(__name__)

ALERT_TYPES = ("manual", "automatic", "driver_detected")
SEVERITIES = ("low", "medium", "high", "critical")


@dataclass
class SOSResult:
    alert: SOSAlert
    delivered: int = 0
    failed: int = 0
    contacts: List[Dict[str, Any]] = field(default_factory=list)
    admin_notified: bool = False

    def as_dict(self) -> dict:
        return {
            "alertId": self.alert.id,
            "rideId": self.alert.ride_id,
            "location": {
                "lat": float(self.alert.latitude),
                "lon": float(self.alert.longitude),
                "address": self.alert.address,
            },
            "severity": self.alert.severity,
            "alertType": self.alert.alert_type,
            "contactsNotified": {"delivered": self.delivered, "failed": self.failed, "details": self.contacts},
            "adminNotified": self.admin_notified,
        }


def sos_message(user, latitude: float, longitude: float, address: str = "") -> str:
    where = address or f"{latitude:.6f},{longitude:.6f}"
    return (
        f"URGENT: {user.display_name} has triggered an SOS alert. "
        f"Location: {where} {google_maps_link(latitude, longitude)}"
    )


class SOSPipeline:
    def __init__(self, sms_gateway: SMSGateway, bus: RealtimeBus):
        self.sms_gateway = sms_gateway
        self.bus = bus

    @staticmethod
    def resolve_ride(user, ride_id: Optional[int] = None) -> Optional[Ride]:
        """The explicit ride if given, else the user's most recent active ride."""
        if ride_id is not None:
            ride = Ride.objects.filter(pk=ride_id).first()
            if ride is None:
                raise RideNotFoundError("Ride not found")
            if not ride.is_participant(user):
                raise NotRideParticipantError("You are not a participant of this ride")
            return ride
        return (
            Ride.objects.filter(status__in=ACTIVE_STATUSES)
            .filter(Q(passenger=user) | Q(driver=user))
            .order_by("-requested_at")
            .first()
        )

    @staticmethod
    def resolve_location(body: Dict[str, Any], ride: Optional[Ride]):
        """Body first, then the ride's live position, then its pickup."""
        lat, lon = body.get("latitude"), body.get("longitude")
        address = body.get("address") or ""
        if lat is not None and lon is not None and is_valid_coordinate(lat, lon):
            return float(lat), float(lon), address
        if ride is not None:
            current = ride.current_point
            if current is not None:
                return current[0], current[1], address
            return ride.pickup_point[0], ride.pickup_point[1], address or ride.pickup_address
        raise LocationUnavailableError("Could not determine your location. Please share it and try again.")

    def _notify_contacts(self, user, alert: SOSAlert) -> List[Dict[str, Any]]:
        contacts = EmergencyContact.objects.filter(passenger__user=user)
        message = sos_message(user, float(alert.latitude), float(alert.longitude), alert.address)
        results = []
        for contact in contacts:
            entry = {"name": contact.name, "phone_number": contact.phone_number, "notified": False}
            try:
                self.sms_gateway.send(contact.phone_number, message)
            except ExternalServiceError as exc:
                logger.warning("sos sms failed alert_id=%s contact=%s error=%s", alert.id, contact.phone_number, exc.message)
                entry["error"] = exc.message
            else:
                entry["notified"] = True
                entry["notified_at"] = timezone.now().isoformat()
            results.append(entry)
        return results

    def trigger(self, user, body: Dict[str, Any]) -> SOSResult:
        ride = self.resolve_ride(user, body.get("ride_id"))
        latitude, longitude, address = self.resolve_location(body, ride)

        alert = SOSAlert.objects.create(
            user=user,
            ride=ride,
            latitude=round(latitude, 6),
            longitude=round(longitude, 6),
            address=address,
            alert_type=body.get("alert_type") if body.get("alert_type") in ALERT_TYPES else "manual",
            severity=body.get("severity") if body.get("severity") in SEVERITIES else "high",
            description=body.get("description") or "",
        )
        logger.warning("sos triggered alert_id=%s user_id=%s ride_id=%s", alert.id, user.id, alert.ride_id)

        contacts = []
        if user.is_passenger:
            contacts = self._notify_contacts(user, alert)
        delivered = sum(1 for contact in contacts if contact["notified"])

        admin_notified = self.bus.publish_to_role(User.ROLE_ADMIN, events.SOS_ALERT, {
            "alertId": alert.id,
            "rideId": alert.ride_id,
            "userId": user.id,
            "userName": user.display_name,
            "location": {"lat": latitude, "lon": longitude, "address": address},
            "severity": alert.severity,
            "alertType": alert.alert_type,
            "createdAt": alert.created_at.isoformat(),
        })

        alert.contacts_notified = contacts
        alert.admin_notified = admin_notified
        alert.save(update_fields=["contacts_notified", "admin_notified"])

        return SOSResult(
            alert=alert,
            delivered=delivered,
            failed=len(contacts) - delivered,
            contacts=contacts,
            admin_notified=admin_notified,
        )


def get_sos_pipeline() -> SOSPipeline:
    return SOSPipeline(get_sms_gateway(), get_realtime_bus())
