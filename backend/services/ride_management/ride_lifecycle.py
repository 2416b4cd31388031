"""
Core ride lifecycle operations.

DispatchOrchestrator drives a ride from request to a terminal state. It
talks to the outside world only through the collaborators it is built
with (driver index, realtime bus, maps, payments, image store), so tests
swap them for in-process doubles.

External calls (maps, uploads, payments) never run while a ride or
driver lock is held.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from accounts.models import User
from common.utils import distance_km, estimate_travel_seconds, is_valid_coordinate
from drivers.models import DriverProfile
from drivers.services import get_driver_profile, sync_driver_state
from integrations import (
    ExternalServiceError,
    Geocoder,
    ImageStore,
    PaymentGateway,
    Router,
    RouteInfo,
    build_payment_gateways,
    get_geocoder,
    get_image_store,
    get_payment_gateway,
    get_router,
    haversine_route,
)
from passengers.models import PassengerProfile
from realtime import events
from realtime.bus import RealtimeBus, get_realtime_bus
from realtime.geo import DriverIndex, STATE_AVAILABLE, STATE_BUSY, get_driver_index
from realtime.notifications import (
    driver_summary,
    eta_minutes,
    location_payload,
    notify_driver_event,
    notify_offer_drivers,
    notify_passenger_event,
)
from rides.constants import (
    ACTIVE_STATUSES,
    CANCELLED_BY_ADMIN, CANCELLED_BY_DRIVER, CANCELLED_BY_PASSENGER,
    OFFER_ACCEPTED, OFFER_PENDING, OFFER_REJECTED,
    PAYMENT_CASH, PAYMENT_COMPLETED, PAYMENT_FAILED,
    RIDE_TYPE_ONE_TIME, RIDE_TYPE_SCHEDULED, RIDE_TYPE_SUBSCRIPTION,
    STATUS_ACCEPTED, STATUS_IN_PROGRESS, STATUS_PENDING, STATUS_SCHEDULED,
)
from rides.models import Ride, RideOffer
from services.matching import (
    DispatchRound,
    MatchingEngine,
    dispatch_offers,
    expire_pending_offers,
    has_live_offers,
    match_ride,
)
from services.pricing import CancellationContext, evaluate_cancellation, fare_for_route
from services.pricing.cancellation import cancellation_policy_text
from .exceptions import (
    ActiveRideExistsError,
    CancellationNotAllowedError,
    DriverNotApprovedError,
    DriverNotAvailableError,
    DriverTooFarError,
    InvalidRideRequestError,
    InvalidTransition,
    LocationUnavailableError,
    NotRideParticipantError,
    OfferExpiredError,
    OfferNotFoundError,
)
from .state_machine import SIDE_DRIVER, SIDE_PASSENGER, RideStateMachine

logger = logging.getLogger(__name__)

CANCEL_ATTEMPTS = 2
PHOTO_FOLDER = "ride-verification"
MAX_CHAT_LENGTH = 1000


@dataclass
class RideResult:
    """Result object for ride operations."""
    success: bool
    ride: Optional[Ride] = None
    message: str = ""
    extra: Optional[Dict[str, Any]] = None


def _dispatch_setting(key: str):
    return settings.DISPATCH[key]


class DispatchOrchestrator:
    """End-to-end ride lifecycle: request, offer, accept, start, track, complete, cancel, rate."""

    def __init__(
        self,
        driver_index: DriverIndex,
        bus: RealtimeBus,
        geocoder: Geocoder,
        router: Router,
        payment_gateways: Dict[str, PaymentGateway],
        image_store: ImageStore,
        state_machine: Optional[RideStateMachine] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.driver_index = driver_index
        self.bus = bus
        self.geocoder = geocoder
        self.router = router
        self.payment_gateways = payment_gateways
        self.image_store = image_store
        self.state_machine = state_machine or RideStateMachine()
        self.clock = clock
        self.engine = MatchingEngine(driver_index)

    # ===================== Pricing & routing =====================

    def live_surge(self, now: datetime) -> Decimal:
        """Surge applied to trip fares. Always 1 until live surge pricing exists."""
        return Decimal("1")

    def compute_route(self, origin, destination) -> RouteInfo:
        """Router first; straight-line estimate at the average city speed if it fails."""
        try:
            return self.router.route(origin, destination)
        except ExternalServiceError as exc:
            logger.warning(
                "route fallback to haversine service=%s reason=%s retryable=%s",
                exc.service, exc.reason, exc.retryable,
            )
            return haversine_route(origin, destination, _dispatch_setting("AVERAGE_SPEED_KMH"))

    def estimate(self, pickup, dropoff) -> Dict[str, Any]:
        """Route and fare for a trip without creating anything."""
        for lat, lon in (pickup, dropoff):
            if not is_valid_coordinate(lat, lon):
                raise InvalidRideRequestError("Invalid coordinates", reason="INVALID_COORDINATES")
        route = self.compute_route(pickup, dropoff)
        fare = fare_for_route(route.distance_m, route.duration_s, self.live_surge(self.clock()))
        return {"route": route.as_dict(), "fare": fare.as_dict()}

    def _resolve_point(self, data: Dict[str, Any], prefix: str):
        lat = data.get(f"{prefix}_latitude")
        lon = data.get(f"{prefix}_longitude")
        address = data.get(f"{prefix}_address") or ""
        if lat is None or lon is None:
            if not address:
                raise InvalidRideRequestError(
                    f"{prefix.capitalize()} coordinates or address are required", reason="INVALID_COORDINATES"
                )
            try:
                result = self.geocoder.geocode(address)
            except ExternalServiceError as exc:
                raise InvalidRideRequestError(
                    f"Could not locate {prefix} address: {exc.message}", reason="GEOCODING_FAILED"
                ) from exc
            lat, lon = result.latitude, result.longitude
            address = address or result.formatted_address
        if not is_valid_coordinate(lat, lon):
            raise InvalidRideRequestError(f"Invalid {prefix} coordinates", reason="INVALID_COORDINATES")
        return float(lat), float(lon), address

    # ===================== Passenger Operations =====================

    @staticmethod
    def check_active_ride(user) -> Optional[Ride]:
        """Passenger's ride in Accepted or InProgress, if any."""
        return Ride.objects.filter(passenger=user, status__in=ACTIVE_STATUSES).first()

    def request_ride(self, passenger, data: Dict[str, Any]) -> RideResult:
        """
        Create a ride and offer it to the best nearby drivers.

        ``data`` is the validated request: ``pickup_*`` / ``dropoff_*``
        (coordinates and/or address), ``vehicle_class``, ``ride_type``,
        ``priority``, ``payment_method`` and optional ``scheduled_at``.

        Raises:
            ActiveRideExistsError: the passenger already has a ride underway
            InvalidRideRequestError: bad coordinates, schedule or subscription
        """
        existing = self.check_active_ride(passenger)
        if existing:
            raise ActiveRideExistsError(
                f"You already have an active ride (ride {existing.id} is {existing.status})",
                current_status=existing.status,
            )

        now = self.clock()
        pickup_lat, pickup_lon, pickup_address = self._resolve_point(data, "pickup")
        dropoff_lat, dropoff_lon, dropoff_address = self._resolve_point(data, "dropoff")

        ride_type = data.get("ride_type") or RIDE_TYPE_ONE_TIME
        if ride_type == RIDE_TYPE_SUBSCRIPTION:
            profile = PassengerProfile.objects.filter(user=passenger).first()
            if profile is None or not profile.has_usable_subscription(now):
                raise InvalidRideRequestError(
                    "You do not have an active subscription with rides remaining",
                    reason="NO_ACTIVE_SUBSCRIPTION",
                )

        scheduled_at = data.get("scheduled_at")
        if scheduled_at is not None:
            if scheduled_at <= now:
                raise InvalidRideRequestError("Scheduled time must be in the future", reason="INVALID_SCHEDULE")
            if ride_type == RIDE_TYPE_ONE_TIME:
                ride_type = RIDE_TYPE_SCHEDULED

        route = self.compute_route((pickup_lat, pickup_lon), (dropoff_lat, dropoff_lon))
        fare = fare_for_route(route.distance_m, route.duration_s, self.live_surge(now))

        ride = Ride(
            passenger=passenger,
            vehicle_class=data.get("vehicle_class") or "car",
            ride_type=ride_type,
            priority=data.get("priority") or "speed",
            status=STATUS_SCHEDULED if scheduled_at else STATUS_PENDING,
            pickup_latitude=round(pickup_lat, 6),
            pickup_longitude=round(pickup_lon, 6),
            pickup_address=pickup_address,
            dropoff_latitude=round(dropoff_lat, 6),
            dropoff_longitude=round(dropoff_lon, 6),
            dropoff_address=dropoff_address,
            route_distance_m=route.distance_m,
            route_duration_s=route.duration_s,
            route_polyline=route.polyline,
            route_is_estimate=route.is_estimate,
            fare_currency=fare.currency,
            fare_base=fare.base,
            fare_distance=fare.distance_fare,
            fare_time=fare.time_fare,
            fare_surge=fare.surge,
            fare_estimated=fare.total,
            payment_method=data.get("payment_method") or PAYMENT_CASH,
            requested_at=now,
            scheduled_at=scheduled_at,
        )

        if scheduled_at:
            ride.save()
            logger.info("ride scheduled ride_id=%s passenger_id=%s at=%s", ride.id, passenger.id, scheduled_at.isoformat())
            return RideResult(
                success=True,
                ride=ride,
                message="Ride scheduled successfully",
                extra=self._request_summary(ride, fare, route, None),
            )

        match = match_ride(self.engine, ride, now=now)
        with transaction.atomic():
            ride.save()
        dispatch_round = dispatch_offers(self.bus, ride, match, now=now)

        if dispatch_round.offers:
            message = "Ride requested. Notifying nearby drivers..."
        else:
            message = "No drivers available nearby yet."
            notify_passenger_event(
                self.bus, events.RIDE_NO_DRIVERS, ride,
                "No drivers found nearby. Please try again later.",
                extra={"reason": match.reason},
            )

        logger.info(
            "ride requested ride_id=%s passenger_id=%s candidates=%s reason=%s",
            ride.id, passenger.id, len(dispatch_round.offers), match.reason,
        )
        return RideResult(
            success=True,
            ride=ride,
            message=message,
            extra=self._request_summary(ride, fare, route, dispatch_round),
        )

    @staticmethod
    def _request_summary(ride: Ride, fare, route: RouteInfo, dispatch_round: Optional[DispatchRound]) -> Dict[str, Any]:
        summary = {
            "ride_id": ride.id,
            "estimated_fare": int(fare.total),
            "fare": fare.as_dict(),
            "route": route.as_dict(),
            "nearby_driver_count": 0,
            "offered_drivers": [],
            "matching_reason": None,
        }
        if dispatch_round is not None:
            summary["nearby_driver_count"] = dispatch_round.match.nearby_count
            summary["offered_drivers"] = dispatch_round.diagnostics()
            summary["matching_reason"] = dispatch_round.reason
        return summary

    # ===================== Driver Operations =====================

    def _driver_position(self, driver_id: int, profile: DriverProfile):
        entry = self.driver_index.get(driver_id)
        if entry is not None and entry.has_location:
            return entry.latitude, entry.longitude
        if profile.has_location:
            return float(profile.current_latitude), float(profile.current_longitude)
        return None

    def accept_ride(self, driver, ride_id: int) -> RideResult:
        """
        Accept a Pending ride; the first driver to get here wins.

        The driver must be approved, Available, within the search radius of
        the pickup and, if the ride was offered to them, before the offer's
        expiry. A driver who loses the race is left untouched.
        """
        now = self.clock()
        profile = get_driver_profile(driver)
        if not profile.is_approved:
            raise DriverNotApprovedError("Your driver account has not been approved yet")

        ride = self.state_machine.load(ride_id)
        if ride.status != STATUS_PENDING:
            raise self.state_machine.accept_conflict(ride.status)

        offer = RideOffer.objects.filter(ride_id=ride_id, driver_id=driver.id).first()
        if offer is not None:
            if offer.status == OFFER_REJECTED:
                raise OfferNotFoundError("You already declined this ride")
            if offer.expires_at <= now:
                raise OfferExpiredError(
                    f"This ride offer has timed out (ride is {ride.status})", current_status=ride.status
                )

        position = self._driver_position(driver.id, profile)
        if position is None:
            raise LocationUnavailableError("Share your location before accepting rides")
        pickup_km = distance_km(position[0], position[1], *ride.pickup_point)
        radius = _dispatch_setting("SEARCH_RADIUS_KM")
        if pickup_km > radius:
            raise DriverTooFarError(
                f"You are {pickup_km:.1f} km from the pickup; the limit is {radius} km (ride is {ride.status})",
                current_status=ride.status,
            )

        with self.driver_index.lock_for(driver.id):
            if self.driver_index.get_state(driver.id) != STATE_AVAILABLE:
                raise DriverNotAvailableError(
                    f"Please set your status to available before accepting rides (ride is {ride.status})",
                    current_status=ride.status,
                )
            ride = self.state_machine.accept(ride_id, driver.id, now)
            if not self.driver_index.compare_and_set_state(driver.id, STATE_AVAILABLE, STATE_BUSY):
                logger.warning("driver state changed during accept driver_id=%s", driver.id)
                self.driver_index.set_state(driver.id, STATE_BUSY)
            DriverProfile.objects.filter(user_id=driver.id).update(status=STATE_BUSY)

        RideOffer.objects.filter(ride_id=ride_id, driver_id=driver.id).update(status=OFFER_ACCEPTED, responded_at=now)
        closed = expire_pending_offers(ride, now=now, exclude_driver_id=driver.id)
        notify_offer_drivers(self.bus, events.RIDE_OFFER_CLOSED, ride, closed, "Ride was accepted by another driver.")

        eta_seconds = estimate_travel_seconds(pickup_km, _dispatch_setting("AVERAGE_SPEED_KMH"))
        notify_passenger_event(
            self.bus, events.RIDE_ACCEPTED, ride,
            "Your ride has been accepted! The driver is on the way.",
            extra={
                "driver": driver_summary(driver),
                "driverDistance": round(pickup_km, 2),
                "driverETA": eta_minutes(eta_seconds),
                "pickupLocation": location_payload(ride.pickup_latitude, ride.pickup_longitude, ride.pickup_address),
            },
        )
        return RideResult(
            success=True,
            ride=ride,
            message="Ride accepted successfully! Navigate to pickup location.",
            extra={"driverDistance": round(pickup_km, 2), "driverETA": eta_minutes(eta_seconds)},
        )

    def reject_offer(self, driver, ride_id: int) -> RideResult:
        """
        Decline a pending offer.

        When the last live offer is gone the ride is matched again, skipping
        every driver already offered; with nobody left the passenger is told.
        """
        now = self.clock()
        ride = self.state_machine.load(ride_id)
        if ride.status != STATUS_PENDING:
            raise InvalidTransition(
                f"Cannot decline: ride is {ride.status}", current_status=ride.status
            )
        updated = RideOffer.objects.filter(
            ride_id=ride_id, driver_id=driver.id, status=OFFER_PENDING
        ).update(status=OFFER_REJECTED, responded_at=now)
        if not updated:
            raise OfferNotFoundError("No active offer found for this ride")
        logger.info("offer rejected ride_id=%s driver_id=%s", ride_id, driver.id)

        rematched = None
        if not has_live_offers(ride, now):
            rematched = self.rematch(ride, now)

        extra = {"rematched": bool(rematched and rematched.offers)}
        return RideResult(success=True, ride=ride, message="Offer declined.", extra=extra)

    def rematch(self, ride: Ride, now: Optional[datetime] = None) -> DispatchRound:
        """Offer a Pending ride to drivers it has not been offered to yet."""
        now = now or self.clock()
        match = match_ride(self.engine, ride, now=now, exclude_offered=True)
        dispatch_round = dispatch_offers(self.bus, ride, match, now=now)
        if not dispatch_round.offers:
            notify_passenger_event(
                self.bus, events.RIDE_NO_DRIVERS, ride,
                "No drivers accepted your ride request. Please try again later.",
                extra={"reason": match.reason},
            )
        return dispatch_round

    def start_ride(self, driver, ride_id: int, latitude, longitude, photo) -> RideResult:
        """Upload the driver photo, then Accepted -> InProgress."""
        if photo is None:
            raise InvalidRideRequestError("Driver photo is required to start the ride", reason="PHOTO_REQUIRED")
        if not is_valid_coordinate(latitude, longitude):
            raise InvalidRideRequestError("Invalid start coordinates", reason="INVALID_COORDINATES")

        ride = self.state_machine.load(ride_id)
        if ride.driver_id != driver.id:
            raise NotRideParticipantError("You are not the assigned driver for this ride")
        if ride.status != STATUS_ACCEPTED:
            raise InvalidTransition(f"Cannot start ride: ride is {ride.status}", current_status=ride.status)

        photo_url = self.image_store.upload(photo, folder=PHOTO_FOLDER, public_id=f"ride_{ride_id}_driver_{driver.id}")
        ride = self.state_machine.start(ride_id, driver.id, float(latitude), float(longitude), photo_url, self.clock())

        notify_passenger_event(
            self.bus, events.RIDE_STARTED, ride, "Your ride has started.",
            extra={
                "startedAt": ride.started_at.isoformat(),
                "startLocation": location_payload(ride.start_latitude, ride.start_longitude),
                "driverPhotoUrl": ride.driver_photo_url,
            },
        )
        return RideResult(success=True, ride=ride, message="Ride started successfully")

    def update_location(
        self,
        driver,
        ride_id: int,
        latitude,
        longitude,
        ts: Optional[datetime] = None,
        speed: Optional[float] = None,
        heading: Optional[float] = None,
    ) -> RideResult:
        """Append a tracking point and relay it to the passenger only."""
        if not is_valid_coordinate(latitude, longitude):
            raise InvalidRideRequestError("Invalid coordinates", reason="INVALID_COORDINATES")
        ts = ts or self.clock()
        point = self.state_machine.append_location(
            ride_id, driver.id, float(latitude), float(longitude), ts, speed, heading
        )
        self.driver_index.update_location(driver.id, float(latitude), float(longitude), ts)

        ride = point.ride
        self.bus.publish(ride.passenger_id, events.RIDE_DRIVER_LOCATION, {
            "ride_id": ride_id,
            "location": {"lat": float(latitude), "lon": float(longitude)},
            "speed": speed,
            "heading": heading,
            "timestamp": ts.isoformat(),
        })
        return RideResult(success=True, ride=ride, message="Location updated", extra={"sequence": point.sequence})

    def complete_ride(
        self,
        driver,
        ride_id: int,
        latitude,
        longitude,
        actual_distance_m: Optional[int] = None,
        actual_duration_s: Optional[int] = None,
    ) -> RideResult:
        """
        InProgress -> Completed, then take payment.

        A failed charge marks the payment Failed; the ride stays Completed.
        """
        if not is_valid_coordinate(latitude, longitude):
            raise InvalidRideRequestError("Invalid end coordinates", reason="INVALID_COORDINATES")
        now = self.clock()
        ride = self.state_machine.load(ride_id)
        if ride.driver_id != driver.id:
            raise NotRideParticipantError("You are not the assigned driver for this ride")
        if ride.status != STATUS_IN_PROGRESS:
            raise InvalidTransition(f"Cannot complete ride: ride is {ride.status}", current_status=ride.status)

        updates: Dict[str, Any] = {
            "end_latitude": round(float(latitude), 6),
            "end_longitude": round(float(longitude), 6),
            "current_latitude": round(float(latitude), 6),
            "current_longitude": round(float(longitude), 6),
        }
        if actual_distance_m is not None:
            duration_s = actual_duration_s if actual_duration_s is not None else ride.route_duration_s
            fare = fare_for_route(actual_distance_m, duration_s, ride.fare_surge)
            final = fare.total
            updates.update(fare_base=fare.base, fare_distance=fare.distance_fare, fare_time=fare.time_fare)
        else:
            final = ride.fare_estimated
        commission = Decimal(str(_dispatch_setting("DRIVER_COMMISSION_RATE")))
        earnings = (final * (Decimal("1") - commission)).quantize(Decimal("0.01"))
        updates.update(fare_final=final, driver_earnings=earnings)

        ride = self.state_machine.complete(ride_id, driver.id, updates, now)

        payment_status, payment_extra = self._take_payment(ride, final, now)
        self._record_completion(ride, earnings)
        sync_driver_state(driver.id, STATE_AVAILABLE, self.driver_index)

        notify_passenger_event(
            self.bus, events.RIDE_COMPLETED, ride,
            "Your ride has been completed. Thank you for riding with us!",
            extra={
                "finalFare": int(final),
                "currency": ride.fare_currency,
                "paymentStatus": payment_status,
                "paymentMethod": ride.payment_method,
                "completedAt": ride.completed_at.isoformat(),
                **payment_extra,
            },
        )
        ride.refresh_from_db()
        return RideResult(
            success=True,
            ride=ride,
            message="Ride completed successfully",
            extra={"finalFare": int(final), "driverEarnings": str(earnings), "paymentStatus": payment_status},
        )

    def _take_payment(self, ride: Ride, amount: Decimal, now: datetime):
        metadata = {"ride_id": ride.id, "passenger_id": ride.passenger_id, "driver_id": ride.driver_id}
        try:
            gateway = get_payment_gateway(ride.payment_method, self.payment_gateways)
            result = gateway.charge(amount, ride.fare_currency, metadata)
        except ExternalServiceError as exc:
            logger.error(
                "payment failed ride_id=%s method=%s reason=%s error=%s",
                ride.id, ride.payment_method, exc.reason, exc.message,
            )
            Ride.objects.filter(pk=ride.id).update(
                payment_status=PAYMENT_FAILED,
                payment_details={"error": exc.message, "reason": exc.reason},
            )
            return PAYMENT_FAILED, {}

        Ride.objects.filter(pk=ride.id).update(
            payment_status=result.status,
            payment_transaction_id=result.transaction_id,
            payment_details=result.details,
            paid_at=now if result.status == PAYMENT_COMPLETED else None,
        )
        logger.info(
            "payment recorded ride_id=%s method=%s status=%s txn=%s",
            ride.id, ride.payment_method, result.status, result.transaction_id,
        )
        extra = {}
        if result.details.get("paymentUrl"):
            extra["paymentUrl"] = result.details["paymentUrl"]
        return result.status, extra

    @staticmethod
    @transaction.atomic
    def _record_completion(ride: Ride, earnings: Decimal) -> None:
        DriverProfile.objects.filter(user_id=ride.driver_id).update(
            completed_rides=F("completed_rides") + 1,
            total_rides=F("total_rides") + 1,
            total_earnings=F("total_earnings") + earnings,
            pending_earnings=F("pending_earnings") + earnings,
        )
        User.objects.filter(pk__in=[ride.passenger_id, ride.driver_id]).update(
            completed_rides=F("completed_rides") + 1
        )
        if ride.ride_type == RIDE_TYPE_SUBSCRIPTION:
            decremented = PassengerProfile.objects.filter(
                user_id=ride.passenger_id, subscription_rides_remaining__gt=0
            ).update(subscription_rides_remaining=F("subscription_rides_remaining") - 1)
            logger.info("subscription ride used ride_id=%s decremented=%s", ride.id, decremented)

    # ===================== Cancellation =====================

    @staticmethod
    def _canceller_role(actor, ride: Ride) -> str:
        if actor.id == ride.passenger_id:
            return CANCELLED_BY_PASSENGER
        if ride.driver_id and actor.id == ride.driver_id:
            return CANCELLED_BY_DRIVER
        if getattr(actor, "is_dispatch_admin", False):
            return CANCELLED_BY_ADMIN
        raise NotRideParticipantError("You are not a participant of this ride")

    @staticmethod
    def _cancellation_context(ride: Ride, canceller: str, now) -> CancellationContext:
        profile = PassengerProfile.objects.filter(user_id=ride.passenger_id).first()
        driver_rating = None
        if canceller == CANCELLED_BY_DRIVER and ride.driver_id:
            driver_rating = DriverProfile.objects.filter(user_id=ride.driver_id).values_list("rating", flat=True).first()
        return CancellationContext(
            status=ride.status,
            canceller=canceller,
            requested_at=ride.requested_at,
            subscription_active=bool(profile and profile.subscription_is_current(now)),
            passenger_joined_at=ride.passenger.date_joined,
            driver_rating=driver_rating,
        )

    def cancel_ride(self, actor, ride_id: int, reason: str = "") -> RideResult:
        """
        Cancel a ride under the cancellation policy.

        If the ride moves (e.g. Pending -> Accepted) between the policy check
        and the write, the policy is evaluated again against the new status.
        """
        window = _dispatch_setting("PASSENGER_CANCEL_WINDOW_MINUTES")
        decision = None
        ride = None
        for _ in range(CANCEL_ATTEMPTS):
            ride = self.state_machine.load(ride_id)
            canceller = self._canceller_role(actor, ride)
            now = self.clock()
            decision = evaluate_cancellation(self._cancellation_context(ride, canceller, now), now, window)
            if not decision.allowed:
                raise CancellationNotAllowedError(
                    decision.message, reason=decision.reason, current_status=ride.status
                )
            if self.state_machine.cancel(ride_id, ride.status, canceller, reason or "", decision.fee, now):
                break
        else:
            status = self.state_machine.current_status(ride_id)
            raise InvalidTransition(f"Cannot cancel ride: ride is {status}", current_status=status)

        expired_driver_ids = expire_pending_offers(ride, now=now)
        cancelled = self.state_machine.load(ride_id)
        payload = {
            "cancelledBy": canceller,
            "reason": reason or "",
            "cancellationFee": int(decision.fee),
        }

        if ride.driver_id:
            sync_driver_state(ride.driver_id, STATE_AVAILABLE, self.driver_index)
            if canceller == CANCELLED_BY_DRIVER:
                DriverProfile.objects.filter(user_id=ride.driver_id).update(cancelled_rides=F("cancelled_rides") + 1)
            if canceller != CANCELLED_BY_DRIVER:
                notify_driver_event(self.bus, events.RIDE_CANCELLED, cancelled, ride.driver_id, extra=payload)
        else:
            notify_offer_drivers(
                self.bus, events.RIDE_CANCELLED_UNASSIGNED, cancelled, expired_driver_ids,
                "Ride request cancelled.", extra={"reason": reason or ""},
            )
        if canceller != CANCELLED_BY_PASSENGER:
            notify_passenger_event(self.bus, events.RIDE_CANCELLED, cancelled, extra=payload)

        return RideResult(
            success=True,
            ride=cancelled,
            message="Ride cancelled successfully",
            extra={
                "cancellationFee": int(decision.fee),
                "feeDetails": decision.as_dict(),
                "policy": cancellation_policy_text(canceller),
            },
        )

    # ===================== Ratings =====================

    def rate_ride(self, actor, ride_id: int, score: int, review: str = "") -> RideResult:
        """Rate the other party of a Completed ride; once per side."""
        try:
            score = int(score)
        except (TypeError, ValueError):
            score = 0
        if not 1 <= score <= 5:
            raise InvalidRideRequestError("Rating must be between 1 and 5", reason="INVALID_RATING")

        ride = self.state_machine.load(ride_id)
        if actor.id == ride.passenger_id:
            side = SIDE_PASSENGER
        elif ride.driver_id and actor.id == ride.driver_id:
            side = SIDE_DRIVER
        else:
            raise NotRideParticipantError("You are not a participant of this ride")

        ride = self.state_machine.rate(ride_id, side, score, review)
        if side == SIDE_PASSENGER:
            self._apply_rating(DriverProfile, ride.driver_id, score)
            rated_id = ride.driver_id
        else:
            self._apply_rating(PassengerProfile, ride.passenger_id, score)
            rated_id = ride.passenger_id
        self.bus.publish(rated_id, events.RIDE_RATED, {
            "rideId": ride.id,
            "rating": score,
            "review": review or "",
            "ratedBy": side,
            "message": f"You received a {score}-star rating",
        })
        return RideResult(success=True, ride=ride, message="Rating submitted successfully")

    # ===================== In-ride chat =====================

    def _counterparty(self, sender, ride_id: int):
        """The other participant of an Accepted or InProgress ride."""
        ride = self.state_machine.load(ride_id)
        if sender.id == ride.passenger_id:
            target_id, sender_role = ride.driver_id, SIDE_PASSENGER
        elif ride.driver_id and sender.id == ride.driver_id:
            target_id, sender_role = ride.passenger_id, SIDE_DRIVER
        else:
            raise NotRideParticipantError("You are not a participant of this ride")
        if ride.status not in ACTIVE_STATUSES:
            raise InvalidTransition(
                f"Chat is only open during a ride (ride is {ride.status})", current_status=ride.status
            )
        return ride, target_id, sender_role

    def send_chat_message(self, sender, ride_id: int, message: str, message_type: str = "text") -> bool:
        """Relay a chat message to the other participant; False if the bus could not take it."""
        message = (message or "").strip()
        if not message or len(message) > MAX_CHAT_LENGTH:
            raise InvalidRideRequestError(
                f"Message must be between 1 and {MAX_CHAT_LENGTH} characters", reason="INVALID_MESSAGE"
            )
        ride, target_id, sender_role = self._counterparty(sender, ride_id)
        return self.bus.publish(target_id, events.CHAT_RECEIVE, {
            "rideId": ride.id,
            "message": message,
            "messageType": message_type or "text",
            "senderId": sender.id,
            "senderRole": sender_role,
            "timestamp": self.clock().isoformat(),
        })

    def send_typing(self, sender, ride_id: int, is_typing: bool) -> bool:
        ride, target_id, _ = self._counterparty(sender, ride_id)
        return self.bus.publish(target_id, events.CHAT_TYPING, {
            "rideId": ride.id,
            "senderId": sender.id,
            "isTyping": bool(is_typing),
        })

    @staticmethod
    @transaction.atomic
    def _apply_rating(model, user_id: int, score: int) -> None:
        """Running mean: new = (old * n + score) / (n + 1)."""
        profile = model.objects.select_for_update().filter(user_id=user_id).first()
        if profile is None:
            return
        count = profile.rating_count
        if count == 0:
            new_rating = Decimal(score)
        else:
            new_rating = (profile.rating * count + score) / (count + 1)
        profile.rating = new_rating.quantize(Decimal("0.01"))
        profile.rating_count = count + 1
        profile.save(update_fields=["rating", "rating_count"])

    # ===================== Scheduled rides =====================

    def activate_scheduled_ride(
        self, ride_id: int, now: Optional[datetime] = None, force: bool = False
    ) -> DispatchRound:
        """
        Scheduled -> Pending, then match and offer like a fresh request.

        Only allowed once the pickup is inside the activation window, unless
        ``force`` is set (an admin dispatching early).
        """
        now = now or self.clock()
        ride = self.state_machine.load(ride_id)
        window = timedelta(minutes=_dispatch_setting("ACTIVATION_WINDOW_MINUTES"))
        if not force and ride.status == STATUS_SCHEDULED and ride.scheduled_at and ride.scheduled_at - now > window:
            raise InvalidTransition(
                f"Ride cannot be activated before {(ride.scheduled_at - window).isoformat()} (ride is {ride.status})",
                reason="ACTIVATION_TOO_EARLY",
                current_status=ride.status,
            )

        ride = self.state_machine.activate(ride_id, now)
        match = match_ride(self.engine, ride, now=now)
        dispatch_round = dispatch_offers(self.bus, ride, match, now=now)

        notify_passenger_event(
            self.bus, events.RIDE_SCHEDULED_ACTIVATED, ride,
            "Your scheduled ride is now active. Looking for drivers...",
            extra={
                "scheduledAt": ride.scheduled_at.isoformat() if ride.scheduled_at else None,
                "driversNotified": dispatch_round.delivered,
                "reason": match.reason,
            },
        )
        return dispatch_round


# ===================== Process-wide instance =====================

_orchestrator: Optional[DispatchOrchestrator] = None


def build_orchestrator(**overrides) -> DispatchOrchestrator:
    """Orchestrator wired to the configured integrations; keyword overrides replace any collaborator."""
    collaborators = {
        "driver_index": overrides.pop("driver_index", None) or get_driver_index(),
        "bus": overrides.pop("bus", None) or get_realtime_bus(),
        "geocoder": overrides.pop("geocoder", None) or get_geocoder(),
        "router": overrides.pop("router", None) or get_router(),
        "payment_gateways": overrides.pop("payment_gateways", None) or build_payment_gateways(),
        "image_store": overrides.pop("image_store", None) or get_image_store(),
    }
    collaborators.update(overrides)
    return DispatchOrchestrator(**collaborators)


def get_orchestrator() -> DispatchOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: Optional[DispatchOrchestrator]) -> None:
    """Install (or with None, drop) the process-wide orchestrator."""
    global _orchestrator
    _orchestrator = orchestrator
