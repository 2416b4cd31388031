"""
Ride management service - Core ride lifecycle operations.

This module handles:
    - Ride status transitions (state machine)
    - Requesting, accepting, rejecting, starting, tracking,
      completing, cancelling and rating rides
    - Scheduled ride activation
    - Querying rides and stats
"""

from .exceptions import (
    RideServiceError,
    InvalidRideRequestError,
    LocationUnavailableError,
    NotRideParticipantError,
    DriverNotApprovedError,
    RideNotFoundError,
    DriverNotFoundError,
    OfferNotFoundError,
    InvalidTransition,
    ActiveRideExistsError,
    DriverNotAvailableError,
    DriverTooFarError,
    OfferExpiredError,
    CancellationNotAllowedError,
)
from .state_machine import RideStateMachine
from .ride_lifecycle import (
    RideResult,
    DispatchOrchestrator,
    build_orchestrator,
    get_orchestrator,
    set_orchestrator,
)
from .scheduled import ScheduledRideActivator, SweepReport

__all__ = [
    # Lifecycle
    "RideStateMachine",
    "RideResult",
    "DispatchOrchestrator",
    "build_orchestrator",
    "get_orchestrator",
    "set_orchestrator",
    "ScheduledRideActivator",
    "SweepReport",
    # Exceptions
    "RideServiceError",
    "InvalidRideRequestError",
    "LocationUnavailableError",
    "NotRideParticipantError",
    "DriverNotApprovedError",
    "RideNotFoundError",
    "DriverNotFoundError",
    "OfferNotFoundError",
    "InvalidTransition",
    "ActiveRideExistsError",
    "DriverNotAvailableError",
    "DriverTooFarError",
    "OfferExpiredError",
    "CancellationNotAllowedError",
]
