"""
Driver matching and offer dispatch.

This package handles:
    - Scoring nearby drivers and building the short-list
    - Persisting offers with their expiry
    - Publishing offers to drivers
"""

from .scoring import (
    MatchingEngine,
    MatchResult,
    ScoredCandidate,
    REASON_NO_DRIVERS,
    REASON_NO_VEHICLE_MATCH,
    drivers_with_live_offers,
)
from .offer_builder import build_offers_for_ride, expire_pending_offers, has_live_offers
from .offer_dispatch import DispatchRound, dispatch_offers, match_ride

__all__ = [
    "MatchingEngine",
    "MatchResult",
    "ScoredCandidate",
    "REASON_NO_DRIVERS",
    "REASON_NO_VEHICLE_MATCH",
    "drivers_with_live_offers",
    "build_offers_for_ride",
    "expire_pending_offers",
    "has_live_offers",
    "DispatchRound",
    "dispatch_offers",
    "match_ride",
]
