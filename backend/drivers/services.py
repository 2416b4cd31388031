"""
Driver availability and idle location.

The database row and the DriverIndex are written together; the index is
what matching reads, the row is what survives a restart.
"""

import logging
from datetime import datetime
from typing import Optional

from django.utils import timezone

from common.utils import is_valid_coordinate
from realtime.geo import DriverIndex, STATE_AVAILABLE, STATE_BUSY, STATE_OFFLINE
from rides.constants import ACTIVE_STATUSES
from rides.models import Ride
from services.ride_management.exceptions import (
    DriverNotApprovedError,
    DriverNotFoundError,
    InvalidRideRequestError,
    InvalidTransition,
)
from .models import DriverProfile

logger = logging.getLogger(__name__)

REQUESTABLE_STATUSES = (STATE_AVAILABLE, STATE_OFFLINE)


def get_driver_profile(driver) -> DriverProfile:
    try:
        return DriverProfile.objects.select_related("user").get(user_id=driver.id)
    except DriverProfile.DoesNotExist:
        raise DriverNotFoundError("Driver profile not found") from None


def sync_driver_state(driver_id: int, status: str, index: DriverIndex) -> None:
    """Write ``status`` to both the profile row and the index under the driver's lock."""
    with index.lock_for(driver_id):
        index.set_state(driver_id, status)
        DriverProfile.objects.filter(user_id=driver_id).update(status=status)
    logger.info("driver status driver_id=%s status=%s", driver_id, status)


def update_driver_status(driver, new_status: str, index: DriverIndex) -> DriverProfile:
    """
    Toggle a driver between available and offline.

    Busy is never requested directly; it follows ride acceptance. The
    active-ride check and both writes happen under the driver's index lock,
    the same lock accept_ride holds while it moves the driver to busy.
    """
    if new_status not in REQUESTABLE_STATUSES:
        raise InvalidRideRequestError(
            f"Status must be one of: {', '.join(REQUESTABLE_STATUSES)}", reason="INVALID_STATUS_VALUE"
        )
    profile = get_driver_profile(driver)
    if not profile.is_approved:
        raise DriverNotApprovedError("Your driver account has not been approved yet")

    with index.lock_for(driver.id):
        active = Ride.objects.filter(driver_id=driver.id, status__in=ACTIVE_STATUSES).first()
        if active is not None:
            raise InvalidTransition(
                f"You cannot change availability during a ride (ride {active.id} is {active.status})",
                reason="ACTIVE_RIDE_EXISTS",
                current_status=active.status,
            )

        index.register(driver.id, profile.vehicle_class, profile.is_approved)
        if profile.has_location and index.get(driver.id).location_ts is None:
            index.update_location(
                driver.id, float(profile.current_latitude), float(profile.current_longitude),
                profile.last_location_update,
            )
        current = index.get_state(driver.id)
        if current == STATE_BUSY or not index.compare_and_set_state(driver.id, current, new_status):
            raise InvalidTransition(
                "You cannot change availability while a ride is being assigned or closed",
                reason="DRIVER_BUSY",
                current_status=current,
            )
        DriverProfile.objects.filter(user_id=driver.id).update(status=new_status)
    logger.info("driver status driver_id=%s status=%s from=%s", driver.id, new_status, current)

    profile.status = new_status
    return profile


def update_driver_location(
    driver,
    lat,
    lon,
    index: DriverIndex,
    ts: Optional[datetime] = None,
) -> bool:
    """
    Record an idle position report.

    Returns False when the report was older than the last one and dropped.
    """
    if not is_valid_coordinate(lat, lon):
        raise InvalidRideRequestError("Invalid coordinates", reason="INVALID_COORDINATES")
    ts = ts or timezone.now()
    profile = get_driver_profile(driver)

    with index.lock_for(driver.id):
        index.register(driver.id, profile.vehicle_class, profile.is_approved)
        status = DriverProfile.objects.filter(user_id=driver.id).values_list("status", flat=True).first()
        if index.get_state(driver.id) != status and status in (STATE_AVAILABLE, STATE_BUSY):
            index.set_state(driver.id, status)
        accepted = index.update_location(driver.id, float(lat), float(lon), ts)
        if accepted:
            DriverProfile.objects.filter(user_id=driver.id).update(
                current_latitude=round(float(lat), 6),
                current_longitude=round(float(lon), 6),
                last_location_update=ts,
            )
    return accepted
