"""
Driver scoring and short-listing.

A candidate's score blends five sub-scores in [0, 100]:

    distance    max(0, 100 - km * 20)
    rating      rating / 5 * 100
    acceptance  % of offers accepted over the stats window (default 50)
    completion  % of accepted rides completed over the window (default 50)
    response    max(0, 100 - avg accept latency in ms / 1000) (default 70)

The ``rating`` and ``distance`` priorities pull the final score 20% toward
the matching sub-score.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Iterable, List, Optional

from django.conf import settings
from django.db.models import Count, Q
from django.utils import timezone

from common.utils import estimate_travel_seconds
from drivers.models import DriverProfile
from realtime.geo import DriverIndex
from rides.constants import (
    OFFER_ACCEPTED, OFFER_PENDING,
    PRIORITY_DISTANCE, PRIORITY_RATING,
    STATUS_CANCELLED, STATUS_COMPLETED, DRIVER_ASSIGNED_STATUSES,
)
from rides.models import Ride, RideOffer

logger = logging.getLogger(__name__)

WEIGHTS = {
    "distance": 0.30,
    "rating": 0.25,
    "acceptance": 0.20,
    "completion": 0.15,
    "response": 0.10,
}
PRIORITY_WEIGHT = 0.2

DEFAULT_ACCEPTANCE = 50.0
DEFAULT_COMPLETION = 50.0
DEFAULT_RESPONSE = 70.0

REASON_NO_DRIVERS = "NO_DRIVERS"
REASON_NO_VEHICLE_MATCH = "NO_VEHICLE_MATCH"


@dataclass(frozen=True)
class DriverStats:
    acceptance: float = DEFAULT_ACCEPTANCE
    completion: float = DEFAULT_COMPLETION
    response: float = DEFAULT_RESPONSE


@dataclass(frozen=True)
class ScoredCandidate:
    driver_id: int
    distance_km: float
    eta_seconds: int
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "driverId": self.driver_id,
            "distance": round(self.distance_km, 2),
            "eta": self.eta_seconds,
            "score": round(self.score, 2),
            "breakdown": {key: round(value, 2) for key, value in self.breakdown.items()},
        }


@dataclass
class MatchResult:
    candidates: List[ScoredCandidate]
    reason: Optional[str] = None
    nearby_count: int = 0

    @property
    def found(self) -> bool:
        return bool(self.candidates)


def distance_score(km: float) -> float:
    return max(0.0, 100.0 - km * 20.0)


def rating_score(rating) -> float:
    return float(rating) / 5.0 * 100.0


def response_score(avg_latency_ms: Optional[float]) -> float:
    if avg_latency_ms is None:
        return DEFAULT_RESPONSE
    return max(0.0, 100.0 - avg_latency_ms / 1000.0)


def combine_scores(breakdown: Dict[str, float], priority: str) -> float:
    base = sum(WEIGHTS[key] * breakdown[key] for key in WEIGHTS)
    if priority == PRIORITY_RATING:
        return (1 - PRIORITY_WEIGHT) * base + PRIORITY_WEIGHT * breakdown["rating"]
    if priority == PRIORITY_DISTANCE:
        return (1 - PRIORITY_WEIGHT) * base + PRIORITY_WEIGHT * breakdown["distance"]
    return base


def drivers_with_live_offers(now=None, exclude_ride_id: Optional[int] = None) -> set:
    """Drivers currently holding an unexpired pending offer for some (other) ride."""
    now = now or timezone.now()
    offers = RideOffer.objects.filter(status=OFFER_PENDING, expires_at__gt=now)
    if exclude_ride_id is not None:
        offers = offers.exclude(ride_id=exclude_ride_id)
    return set(offers.values_list("driver_id", flat=True))


class MatchingEngine:
    """Turns a pickup point into a ranked short-list of drivers."""

    def __init__(
        self,
        index: DriverIndex,
        radius_km: Optional[float] = None,
        max_candidates: Optional[int] = None,
        window_days: Optional[int] = None,
        speed_kmh: Optional[float] = None,
    ):
        dispatch = settings.DISPATCH
        self.index = index
        self.radius_km = radius_km if radius_km is not None else dispatch["SEARCH_RADIUS_KM"]
        self.max_candidates = max_candidates or dispatch["MAX_CANDIDATES"]
        self.window_days = window_days or dispatch["STATS_WINDOW_DAYS"]
        self.speed_kmh = speed_kmh or dispatch["AVERAGE_SPEED_KMH"]

    def driver_stats(self, driver_ids: Iterable[int], now=None) -> Dict[int, DriverStats]:
        """Acceptance, completion and response sub-scores from the last ``window_days``."""
        driver_ids = list(driver_ids)
        now = now or timezone.now()
        since = now - timedelta(days=self.window_days)

        offer_counts = {
            row["driver_id"]: row
            for row in RideOffer.objects.filter(driver_id__in=driver_ids, sent_at__gte=since)
            .values("driver_id")
            .annotate(total=Count("id"), accepted=Count("id", filter=Q(status=OFFER_ACCEPTED)))
        }
        ride_counts = {
            row["driver_id"]: row
            for row in Ride.objects.filter(
                driver_id__in=driver_ids,
                accepted_at__gte=since,
                status__in=DRIVER_ASSIGNED_STATUSES + (STATUS_CANCELLED,),
            )
            .values("driver_id")
            .annotate(total=Count("id"), completed=Count("id", filter=Q(status=STATUS_COMPLETED)))
        }
        latencies: Dict[int, List[float]] = {}
        accepted_offers = RideOffer.objects.filter(
            driver_id__in=driver_ids,
            sent_at__gte=since,
            status=OFFER_ACCEPTED,
            responded_at__isnull=False,
        ).values_list("driver_id", "sent_at", "responded_at")
        for driver_id, sent_at, responded_at in accepted_offers:
            latencies.setdefault(driver_id, []).append((responded_at - sent_at).total_seconds() * 1000.0)

        stats = {}
        for driver_id in driver_ids:
            offers = offer_counts.get(driver_id)
            rides = ride_counts.get(driver_id)
            samples = latencies.get(driver_id)
            stats[driver_id] = DriverStats(
                acceptance=(offers["accepted"] / offers["total"] * 100.0) if offers and offers["total"] else DEFAULT_ACCEPTANCE,
                completion=(rides["completed"] / rides["total"] * 100.0) if rides and rides["total"] else DEFAULT_COMPLETION,
                response=response_score(sum(samples) / len(samples) if samples else None),
            )
        return stats

    def find_candidates(
        self,
        lat: float,
        lon: float,
        vehicle_class: Optional[str] = None,
        priority: str = "speed",
        exclude: Iterable[int] = (),
        now=None,
    ) -> MatchResult:
        """
        Rank available drivers around (lat, lon).

        ``exclude`` removes drivers before anything else (already offered,
        busy with another offer).
        """
        excluded = set(exclude)
        matching = self.index.query(
            lat, lon, self.radius_km, vehicle_class=vehicle_class, exclude=excluded
        )
        if not matching:
            nearby = self.index.query(lat, lon, self.radius_km, exclude=excluded) if vehicle_class else []
            if not nearby:
                logger.info("no drivers nearby lat=%.5f lon=%.5f radius_km=%s", lat, lon, self.radius_km)
                return MatchResult(candidates=[], reason=REASON_NO_DRIVERS)
            logger.info("no %s drivers among nearby=%s", vehicle_class, len(nearby))
            return MatchResult(candidates=[], reason=REASON_NO_VEHICLE_MATCH, nearby_count=len(nearby))

        ids = [candidate.driver_id for candidate in matching]
        ratings = dict(
            DriverProfile.objects.filter(user_id__in=ids, is_approved=True).values_list("user_id", "rating")
        )
        stats = self.driver_stats(ratings.keys(), now=now)

        scored: List[ScoredCandidate] = []
        for candidate in matching:
            if candidate.driver_id not in ratings:
                continue
            driver_stats = stats[candidate.driver_id]
            breakdown = {
                "distance": distance_score(candidate.distance_km),
                "rating": rating_score(ratings[candidate.driver_id]),
                "acceptance": driver_stats.acceptance,
                "completion": driver_stats.completion,
                "response": driver_stats.response,
            }
            scored.append(ScoredCandidate(
                driver_id=candidate.driver_id,
                distance_km=candidate.distance_km,
                eta_seconds=estimate_travel_seconds(candidate.distance_km, self.speed_kmh),
                score=combine_scores(breakdown, priority),
                breakdown=breakdown,
            ))

        if not scored:
            return MatchResult(candidates=[], reason=REASON_NO_DRIVERS)

        scored.sort(key=lambda c: (-c.score, c.distance_km, c.driver_id))
        shortlist = scored[:self.max_candidates]
        logger.info(
            "matched drivers=%s of nearby=%s priority=%s top_score=%.2f",
            len(shortlist), len(matching), priority, shortlist[0].score,
        )
        return MatchResult(candidates=shortlist, nearby_count=len(matching))
