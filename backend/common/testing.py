"""
In-process doubles for the dispatch collaborators.

Used by the test modules of every app; nothing here is imported by
production code.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from django.utils import timezone

from accounts.models import User
from drivers.models import DriverProfile
from integrations import (
    ExternalServiceError,
    GeocodeResult,
    Geocoder,
    ImageStore,
    PaymentGateway,
    Router,
    RouteInfo,
    SMSGateway,
    SMSResult,
)
from integrations.payments import CashGateway
from passengers.models import PassengerProfile
from realtime.bus import RealtimeBus, role_group, user_group
from realtime.geo import DriverIndex, STATE_AVAILABLE
from services.ride_management import DispatchOrchestrator

# Karachi, Saddar and a couple of points around it
PICKUP = (24.8607, 67.0011)
DROPOFF = (24.8700, 67.0100)
NEARBY = (24.8640, 67.0040)
FAR_AWAY = (24.9600, 67.1500)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, moment=None):
        self.moment = moment or timezone.now()

    def __call__(self):
        return self.moment

    def advance(self, **kwargs):
        self.moment = self.moment + timedelta(**kwargs)
        return self.moment


class RecordingBus(RealtimeBus):
    """RealtimeBus that keeps every message instead of handing it to a channel layer."""

    def __init__(self):
        super().__init__()
        self.sent = []

    def _group_send(self, group, message):
        self.sent.append((group, message))
        return True

    def events_for(self, user_id) -> List[tuple]:
        group = user_group(user_id)
        return [(message["event"], message["payload"]) for target, message in self.sent if target == group]

    def event_names(self, user_id) -> List[str]:
        return [event for event, _ in self.events_for(user_id)]

    def role_events(self, role) -> List[tuple]:
        group = role_group(role)
        return [(message["event"], message["payload"]) for target, message in self.sent if target == group]


class FakeRouter(Router):
    def __init__(self, distance_m=1300, duration_s=1500, polyline="encoded_polyline"):
        self.distance_m = distance_m
        self.duration_s = duration_s
        self.polyline = polyline
        self.calls = []

    def route(self, origin, destination):
        self.calls.append((origin, destination))
        return RouteInfo(distance_m=self.distance_m, duration_s=self.duration_s, polyline=self.polyline)


class FailingRouter(Router):
    def route(self, origin, destination):
        raise ExternalServiceError("google_directions timed out", service="google_directions", retryable=True)


class FakeGeocoder(Geocoder):
    def __init__(self, known: Optional[Dict[str, tuple]] = None):
        self.known = known or {}

    def geocode(self, address):
        if address not in self.known:
            raise ExternalServiceError("google_geocoding failed: ZERO_RESULTS", service="google_geocoding")
        lat, lon = self.known[address]
        return GeocodeResult(latitude=lat, longitude=lon, formatted_address=address)


class FakeImageStore(ImageStore):
    def __init__(self):
        self.uploads = []

    def upload(self, image, folder, public_id=None):
        self.uploads.append((folder, public_id))
        return f"https://images.example.test/{folder}/{public_id}.jpg"


class FailingGateway(PaymentGateway):
    method = "card"

    def charge(self, amount, currency, metadata=None):
        raise ExternalServiceError("stripe returned HTTP 502", service="stripe", retryable=True)


class FakeSMSGateway(SMSGateway):
    def __init__(self, failing_numbers=()):
        self.failing_numbers = set(failing_numbers)
        self.sent = []

    def send(self, to, body):
        if to in self.failing_numbers:
            raise ExternalServiceError("twilio returned HTTP 500", service="twilio", retryable=True)
        self.sent.append((to, body))
        return SMSResult(sid=f"SM{len(self.sent)}", status="queued")


def build_test_orchestrator(**overrides) -> DispatchOrchestrator:
    collaborators = {
        "driver_index": DriverIndex(),
        "bus": RecordingBus(),
        "geocoder": FakeGeocoder(),
        "router": FakeRouter(),
        "payment_gateways": {"cash": CashGateway(), "card": FailingGateway()},
        "image_store": FakeImageStore(),
        "clock": FakeClock(),
    }
    collaborators.update(overrides)
    return DispatchOrchestrator(**collaborators)


def make_passenger(username, joined_at=None, phone_number="03000000000", **profile) -> User:
    user = User.objects.create_user(
        username=username,
        password="pass1234",
        role=User.ROLE_PASSENGER,
        phone_number=phone_number,
    )
    if joined_at is not None:
        User.objects.filter(pk=user.pk).update(date_joined=joined_at)
        user.refresh_from_db()
    PassengerProfile.objects.create(user=user, **profile)
    return user


def make_driver(
    username,
    index: Optional[DriverIndex] = None,
    location=NEARBY,
    vehicle_class="car",
    approved=True,
    rating=Decimal("4.80"),
    state=STATE_AVAILABLE,
    located_at=None,
) -> User:
    """Driver user + profile, registered in ``index`` at ``location`` when one is given."""
    user = User.objects.create_user(
        username=username,
        password="driver1234",
        role=User.ROLE_DRIVER,
        phone_number="03110000000",
    )
    DriverProfile.objects.create(
        user=user,
        vehicle_class=vehicle_class,
        vehicle_model="Suzuki Alto",
        vehicle_number=f"KHI-{username.upper()}",
        vehicle_color="White",
        is_approved=approved,
        rating=rating,
        status=state,
        current_latitude=location[0] if location else None,
        current_longitude=location[1] if location else None,
    )
    if index is not None:
        index.register(user.id, vehicle_class, approved)
        if location:
            index.update_location(user.id, location[0], location[1], located_at or timezone.now())
        index.set_state(user.id, state)
    return user


def ride_request_data(pickup=PICKUP, dropoff=DROPOFF, **extra) -> dict:
    data = {
        "pickup_latitude": pickup[0],
        "pickup_longitude": pickup[1],
        "pickup_address": "Saddar, Karachi",
        "dropoff_latitude": dropoff[0],
        "dropoff_longitude": dropoff[1],
        "dropoff_address": "Burns Road, Karachi",
        "vehicle_class": "car",
        "payment_method": "cash",
    }
    data.update(extra)
    return data
