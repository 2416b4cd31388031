"""Read-side helpers for ride listings and per-user stats."""

from decimal import Decimal
from typing import Dict, Optional

from django.db.models import Count, Q, QuerySet, Sum

from rides.constants import (
    ACTIVE_STATUSES, STATUS_CANCELLED, STATUS_COMPLETED, STATUS_PENDING, STATUS_SCHEDULED,
)
from rides.models import Ride
from .exceptions import NotRideParticipantError, RideNotFoundError


def rides_for_user(user) -> QuerySet:
    """Rides the user took part in, as passenger or driver."""
    return (
        Ride.objects.filter(Q(passenger=user) | Q(driver=user))
        .select_related("passenger", "driver", "driver__driver_profile")
    )


def get_ride_for_user(user, ride_id: int) -> Ride:
    """A ride the user may see: participants and admins only."""
    try:
        ride = Ride.objects.select_related("passenger", "driver", "driver__driver_profile").get(pk=ride_id)
    except Ride.DoesNotExist:
        raise RideNotFoundError("Ride not found") from None
    if not ride.is_participant(user) and not user.is_dispatch_admin:
        raise NotRideParticipantError("You do not have access to this ride")
    return ride


def ride_history(user, status: Optional[str] = None) -> QuerySet:
    rides = rides_for_user(user)
    if status:
        rides = rides.filter(status=status)
    return rides.order_by("-requested_at")


def active_rides(user) -> QuerySet:
    """Rides still in flight for the user, including ones waiting for a driver."""
    return rides_for_user(user).filter(status__in=(STATUS_PENDING,) + ACTIVE_STATUSES).order_by("-requested_at")


def scheduled_rides(user) -> QuerySet:
    return Ride.objects.filter(passenger=user, status=STATUS_SCHEDULED).order_by("scheduled_at")


def ride_stats(user) -> Dict[str, object]:
    """Totals over every ride the user took part in."""
    as_passenger = Ride.objects.filter(passenger=user).aggregate(
        total=Count("id"),
        completed=Count("id", filter=Q(status=STATUS_COMPLETED)),
        cancelled=Count("id", filter=Q(status=STATUS_CANCELLED)),
        spent=Sum("fare_final", filter=Q(status=STATUS_COMPLETED)),
        cancellation_fees=Sum("cancellation_fee", filter=Q(status=STATUS_CANCELLED, cancelled_by="passenger")),
    )
    as_driver = Ride.objects.filter(driver=user).aggregate(
        total=Count("id"),
        completed=Count("id", filter=Q(status=STATUS_COMPLETED)),
        cancelled=Count("id", filter=Q(status=STATUS_CANCELLED)),
        earned=Sum("driver_earnings", filter=Q(status=STATUS_COMPLETED)),
    )
    return {
        "totalRides": as_passenger["total"] + as_driver["total"],
        "completedRides": as_passenger["completed"] + as_driver["completed"],
        "cancelledRides": as_passenger["cancelled"] + as_driver["cancelled"],
        "totalSpent": str(as_passenger["spent"] or Decimal("0")),
        "cancellationFees": str(as_passenger["cancellation_fees"] or Decimal("0")),
        "totalEarned": str(as_driver["earned"] or Decimal("0")),
    }
