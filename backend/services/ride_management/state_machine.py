"""
Ride status transitions.

Every transition is a compare-and-set UPDATE on the ride row filtered by
the expected status, so concurrent callers (threads or processes) cannot
both win. A per-ride lock additionally serializes callers in this process
so path appends keep arrival order.

    scheduled --activate--> pending --accept--> accepted --start--> in_progress --complete--> completed
                               |                    |
                               +------cancel--------+--> cancelled
    (scheduled may also be cancelled)
"""

import logging
import threading
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from rides.constants import (
    STATUS_SCHEDULED, STATUS_PENDING, STATUS_ACCEPTED, STATUS_IN_PROGRESS,
    STATUS_COMPLETED, STATUS_CANCELLED, DRIVER_ASSIGNED_STATUSES,
)
from rides.models import Ride, RideLocationPoint
from .exceptions import (
    InvalidRideRequestError,
    InvalidTransition,
    NotRideParticipantError,
    RideNotFoundError,
)

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64

TRANSITIONS = {
    STATUS_SCHEDULED: (STATUS_PENDING, STATUS_CANCELLED),
    STATUS_PENDING: (STATUS_ACCEPTED, STATUS_CANCELLED),
    STATUS_ACCEPTED: (STATUS_IN_PROGRESS, STATUS_CANCELLED),
    STATUS_IN_PROGRESS: (STATUS_COMPLETED,),
    STATUS_COMPLETED: (),
    STATUS_CANCELLED: (),
}

CANCELLABLE_STATUSES = (STATUS_SCHEDULED, STATUS_PENDING, STATUS_ACCEPTED)

SIDE_PASSENGER = "passenger"
SIDE_DRIVER = "driver"

RATING_FIELDS = {
    SIDE_PASSENGER: ("rating_by_passenger", "review_by_passenger"),
    SIDE_DRIVER: ("rating_by_driver", "review_by_driver"),
}

REASON_ALREADY_ACCEPTED = "ALREADY_ACCEPTED"
REASON_INVALID_STATUS = "INVALID_STATUS"
REASON_NOT_ASSIGNED_DRIVER = "NOT_ASSIGNED_DRIVER"
REASON_STALE_LOCATION = "STALE_LOCATION"
REASON_ALREADY_RATED = "ALREADY_RATED"


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


class RideStateMachine:
    """The only writer of ``Ride.status`` and the columns tied to it."""

    def __init__(self):
        self._locks = [threading.RLock() for _ in range(LOCK_STRIPES)]

    def lock_for(self, ride_id: int) -> threading.RLock:
        return self._locks[hash(int(ride_id)) % LOCK_STRIPES]

    # ---------------------- Helpers ----------------------

    @staticmethod
    def load(ride_id: int) -> Ride:
        try:
            return Ride.objects.get(pk=ride_id)
        except Ride.DoesNotExist:
            raise RideNotFoundError("Ride not found") from None

    @staticmethod
    def current_status(ride_id: int) -> str:
        status = Ride.objects.filter(pk=ride_id).values_list("status", flat=True).first()
        if status is None:
            raise RideNotFoundError("Ride not found")
        return status

    @staticmethod
    def _cas(ride_id: int, from_statuses: Iterable[str], updates: Dict[str, Any], **filters) -> bool:
        return Ride.objects.filter(pk=ride_id, status__in=tuple(from_statuses), **filters).update(**updates) == 1

    def _conflict(self, ride_id: int, action: str) -> InvalidTransition:
        status = self.current_status(ride_id)
        return InvalidTransition(
            f"Cannot {action} ride: ride is {status}",
            reason=REASON_INVALID_STATUS,
            current_status=status,
        )

    @staticmethod
    def _require_driver(ride: Ride, driver_id: int, action: str) -> None:
        if ride.driver_id != driver_id:
            raise InvalidTransition(
                f"Cannot {action} ride: you are not the assigned driver (ride is {ride.status})",
                reason=REASON_NOT_ASSIGNED_DRIVER,
                current_status=ride.status,
            )

    @staticmethod
    def accept_conflict(status: str) -> InvalidTransition:
        if status in DRIVER_ASSIGNED_STATUSES:
            return InvalidTransition(
                f"Ride has already been accepted by another driver (ride is {status})",
                reason=REASON_ALREADY_ACCEPTED,
                current_status=status,
            )
        return InvalidTransition(
            f"Cannot accept ride: ride is {status}",
            reason=REASON_INVALID_STATUS,
            current_status=status,
        )

    def _log(self, ride_id: int, source: str, target: str, **extra) -> None:
        details = " ".join(f"{key}={value}" for key, value in extra.items())
        logger.info("ride transition ride_id=%s %s->%s %s", ride_id, source, target, details)

    # ---------------------- Transitions ----------------------

    def activate(self, ride_id: int, now: Optional[datetime] = None) -> Ride:
        """Scheduled -> Pending. The fee clock restarts at activation."""
        now = now or timezone.now()
        with self.lock_for(ride_id):
            if not self._cas(ride_id, [STATUS_SCHEDULED], {
                "status": STATUS_PENDING,
                "activated_at": now,
                "requested_at": now,
            }):
                raise self._conflict(ride_id, "activate")
            self._log(ride_id, STATUS_SCHEDULED, STATUS_PENDING)
            return self.load(ride_id)

    def accept(self, ride_id: int, driver_id: int, now: Optional[datetime] = None) -> Ride:
        """
        Pending -> Accepted, first caller wins.

        The loser gets InvalidTransition(ALREADY_ACCEPTED) when someone else
        got the ride, INVALID_STATUS otherwise.
        """
        now = now or timezone.now()
        with self.lock_for(ride_id):
            won = self._cas(
                ride_id, [STATUS_PENDING],
                {"status": STATUS_ACCEPTED, "driver_id": driver_id, "accepted_at": now},
                driver__isnull=True,
            )
            if not won:
                raise self.accept_conflict(self.current_status(ride_id))
            self._log(ride_id, STATUS_PENDING, STATUS_ACCEPTED, driver_id=driver_id)
            return self.load(ride_id)

    @transaction.atomic
    def start(
        self,
        ride_id: int,
        driver_id: int,
        latitude: float,
        longitude: float,
        photo_url: str,
        now: Optional[datetime] = None,
    ) -> Ride:
        """Accepted -> InProgress; seeds the path with the start coordinate."""
        if not photo_url:
            raise InvalidRideRequestError("Driver photo is required to start the ride", reason="PHOTO_REQUIRED")
        now = now or timezone.now()
        with self.lock_for(ride_id):
            ride = self.load(ride_id)
            self._require_driver(ride, driver_id, "start")
            started = self._cas(ride_id, [STATUS_ACCEPTED], {
                "status": STATUS_IN_PROGRESS,
                "started_at": now,
                "start_latitude": latitude,
                "start_longitude": longitude,
                "current_latitude": latitude,
                "current_longitude": longitude,
                "current_location_at": now,
                "driver_photo_url": photo_url,
                "verified_at": now,
            }, driver_id=driver_id)
            if not started:
                raise self._conflict(ride_id, "start")
            RideLocationPoint.objects.create(
                ride_id=ride_id, sequence=0, latitude=latitude, longitude=longitude, recorded_at=now,
            )
            self._log(ride_id, STATUS_ACCEPTED, STATUS_IN_PROGRESS, driver_id=driver_id)
            return self.load(ride_id)

    @transaction.atomic
    def append_location(
        self,
        ride_id: int,
        driver_id: int,
        latitude: float,
        longitude: float,
        ts: Optional[datetime] = None,
        speed: Optional[float] = None,
        heading: Optional[float] = None,
    ) -> RideLocationPoint:
        """Record a tracking point; only while InProgress and never going back in time."""
        ts = ts or timezone.now()
        with self.lock_for(ride_id):
            ride = self.load(ride_id)
            if ride.status != STATUS_IN_PROGRESS:
                raise InvalidTransition(
                    f"Location updates are only accepted while the ride is in progress (ride is {ride.status})",
                    reason=REASON_INVALID_STATUS,
                    current_status=ride.status,
                )
            self._require_driver(ride, driver_id, "track")
            if ride.current_location_at and ts < ride.current_location_at:
                raise InvalidTransition(
                    f"Location update is older than the last one recorded (ride is {ride.status})",
                    reason=REASON_STALE_LOCATION,
                    current_status=ride.status,
                )
            updated = self._cas(ride_id, [STATUS_IN_PROGRESS], {
                "current_latitude": latitude,
                "current_longitude": longitude,
                "current_location_at": ts,
                "current_speed": speed,
                "current_heading": heading,
            })
            if not updated:
                raise self._conflict(ride_id, "track")
            last = ride.path_points.aggregate(last=Max("sequence"))["last"]
            return RideLocationPoint.objects.create(
                ride_id=ride_id,
                sequence=0 if last is None else last + 1,
                latitude=latitude,
                longitude=longitude,
                recorded_at=ts,
                speed=speed,
                heading=heading,
            )

    def complete(
        self,
        ride_id: int,
        driver_id: int,
        updates: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> Ride:
        """
        InProgress -> Completed.

        ``updates`` carries the end coordinate, final fare and earnings the
        orchestrator computed; they land in the same UPDATE as the status.
        """
        now = now or timezone.now()
        with self.lock_for(ride_id):
            ride = self.load(ride_id)
            self._require_driver(ride, driver_id, "complete")
            fields = dict(updates, status=STATUS_COMPLETED, completed_at=now)
            if not self._cas(ride_id, [STATUS_IN_PROGRESS], fields, driver_id=driver_id):
                raise self._conflict(ride_id, "complete")
            self._log(ride_id, STATUS_IN_PROGRESS, STATUS_COMPLETED, driver_id=driver_id)
            return self.load(ride_id)

    def cancel(
        self,
        ride_id: int,
        expected_status: str,
        cancelled_by: str,
        reason: str,
        fee: Decimal,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        ``expected_status`` -> Cancelled.

        Returns False if the ride left ``expected_status`` in the meantime so
        the caller can re-evaluate the cancellation against the new status.
        """
        if expected_status not in CANCELLABLE_STATUSES:
            status = self.current_status(ride_id)
            raise InvalidTransition(
                f"Cannot cancel ride: ride is {status}",
                reason=REASON_INVALID_STATUS,
                current_status=status,
            )
        now = now or timezone.now()
        with self.lock_for(ride_id):
            cancelled = self._cas(ride_id, [expected_status], {
                "status": STATUS_CANCELLED,
                "cancelled_at": now,
                "cancelled_by": cancelled_by,
                "cancellation_reason": reason,
                "cancellation_fee": fee,
            })
            if cancelled:
                self._log(ride_id, expected_status, STATUS_CANCELLED, by=cancelled_by, fee=fee)
            return cancelled

    def rate(self, ride_id: int, side: str, score: int, review: str = "") -> Ride:
        """Write one side's rating on a Completed ride, once."""
        rating_field, review_field = RATING_FIELDS[side]
        with self.lock_for(ride_id):
            written = Ride.objects.filter(
                pk=ride_id, status=STATUS_COMPLETED, **{f"{rating_field}__isnull": True}
            ).update(**{rating_field: score, review_field: review or ""})
            if not written:
                status = self.current_status(ride_id)
                if status != STATUS_COMPLETED:
                    raise InvalidTransition(
                        f"Only completed rides can be rated (ride is {status})",
                        reason=REASON_INVALID_STATUS,
                        current_status=status,
                    )
                raise InvalidTransition(
                    "You have already rated this ride",
                    reason=REASON_ALREADY_RATED,
                    current_status=status,
                )
            logger.info("ride rated ride_id=%s side=%s score=%s", ride_id, side, score)
            return self.load(ride_id)


def assert_participant(ride: Ride, user) -> None:
    if not ride.is_participant(user) and not getattr(user, "is_dispatch_admin", False):
        raise NotRideParticipantError()
