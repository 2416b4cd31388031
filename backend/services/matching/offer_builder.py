"""
Persist offers for a ride's short-list.

An offer is live while it is pending and ``expires_at`` is in the future;
nothing times it out actively, expiry is checked when it is resolved.
"""

import logging
from datetime import timedelta
from typing import Iterable, List, Optional

from django.conf import settings
from django.db.models import Max
from django.utils import timezone

from rides.constants import OFFER_EXPIRED, OFFER_PENDING
from rides.models import Ride, RideOffer
from .scoring import ScoredCandidate

logger = logging.getLogger(__name__)


def build_offers_for_ride(
    ride: Ride,
    candidates: Iterable[ScoredCandidate],
    now=None,
    ttl_seconds: Optional[int] = None,
) -> List[RideOffer]:
    """
    Create one pending RideOffer per candidate, best match first.

    Order numbers continue after any earlier round of offers for the ride.
    """
    now = now or timezone.now()
    ttl = ttl_seconds or settings.DISPATCH["OFFER_TTL_SECONDS"]
    start = (ride.offers.aggregate(last=Max("order"))["last"] or -1) + 1

    offers: List[RideOffer] = []
    for position, candidate in enumerate(candidates):
        offers.append(RideOffer.objects.create(
            ride=ride,
            driver_id=candidate.driver_id,
            order=start + position,
            status=OFFER_PENDING,
            score=candidate.score,
            distance_km=candidate.distance_km,
            eta_seconds=candidate.eta_seconds,
            sent_at=now,
            expires_at=now + timedelta(seconds=ttl),
        ))

    logger.info("built offers ride_id=%s count=%s ttl_s=%s", ride.id, len(offers), ttl)
    return offers


def expire_pending_offers(ride: Ride, now=None, exclude_driver_id: Optional[int] = None) -> List[int]:
    """
    Close every still-pending offer for ``ride``.

    Returns the ids of drivers whose offers were closed.
    """
    now = now or timezone.now()
    pending = ride.offers.filter(status=OFFER_PENDING)
    if exclude_driver_id is not None:
        pending = pending.exclude(driver_id=exclude_driver_id)
    driver_ids = list(pending.values_list("driver_id", flat=True))
    if driver_ids:
        pending.update(status=OFFER_EXPIRED, responded_at=now)
        logger.info("expired offers ride_id=%s drivers=%s", ride.id, driver_ids)
    return driver_ids


def offered_driver_ids(ride: Ride) -> List[int]:
    return list(ride.offers.values_list("driver_id", flat=True))


def has_live_offers(ride: Ride, now=None) -> bool:
    now = now or timezone.now()
    return ride.offers.filter(status=OFFER_PENDING, expires_at__gt=now).exists()
