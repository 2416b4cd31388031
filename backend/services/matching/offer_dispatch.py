"""
Match a ride and push offers to the short-listed drivers.

All offers for a round go out at once; the first driver to accept wins.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from django.utils import timezone

from realtime.bus import RealtimeBus
from realtime.notifications import publish_ride_offer
from rides.models import Ride, RideOffer
from .offer_builder import build_offers_for_ride, offered_driver_ids
from .scoring import MatchingEngine, MatchResult, drivers_with_live_offers

logger = logging.getLogger(__name__)


@dataclass
class DispatchRound:
    match: MatchResult
    offers: List[RideOffer] = field(default_factory=list)
    delivered: int = 0

    @property
    def reason(self) -> Optional[str]:
        return self.match.reason

    def diagnostics(self) -> List[dict]:
        return [candidate.as_dict() for candidate in self.match.candidates]


def match_ride(engine: MatchingEngine, ride: Ride, now=None, exclude_offered: bool = False) -> MatchResult:
    """Run the matching engine for ``ride``'s pickup, skipping drivers busy with other offers."""
    now = now or timezone.now()
    excluded = drivers_with_live_offers(now, exclude_ride_id=ride.id)
    if exclude_offered and ride.id:
        excluded.update(offered_driver_ids(ride))
    lat, lon = ride.pickup_point
    return engine.find_candidates(
        lat, lon,
        vehicle_class=ride.vehicle_class,
        priority=ride.priority,
        exclude=excluded,
        now=now,
    )


def dispatch_offers(bus: RealtimeBus, ride: Ride, match: MatchResult, now=None) -> DispatchRound:
    """Persist offers for ``match`` and publish ``ride:new_request`` to each driver."""
    offers = build_offers_for_ride(ride, match.candidates, now=now)
    delivered = 0
    for offer in offers:
        if publish_ride_offer(bus, ride, offer):
            delivered += 1
    logger.info("dispatched offers ride_id=%s offers=%s delivered=%s", ride.id, len(offers), delivered)
    return DispatchRound(match=match, offers=offers, delivered=delivered)
