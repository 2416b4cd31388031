"""Custom exceptions for ride management."""

from common.exceptions import ServiceError


class RideServiceError(ServiceError):
    """Ride operation failed."""


# ---------------------- Validation (400) ----------------------

class InvalidRideRequestError(RideServiceError):
    """Raised when a ride request or ride update carries invalid input."""
    status_code = 400
    reason = "INVALID_REQUEST"


class LocationUnavailableError(RideServiceError):
    """Could not determine your current location."""
    status_code = 400
    reason = "NO_LOCATION"


# ---------------------- Authorization (403) ----------------------

class NotRideParticipantError(RideServiceError):
    """You are not a participant of this ride."""
    status_code = 403
    reason = "NOT_PARTICIPANT"


class DriverNotApprovedError(RideServiceError):
    """Driver account is not approved yet."""
    status_code = 403
    reason = "DRIVER_NOT_APPROVED"


# ---------------------- Not found (404) ----------------------

class RideNotFoundError(RideServiceError):
    """Ride not found."""
    status_code = 404
    reason = "RIDE_NOT_FOUND"


class DriverNotFoundError(RideServiceError):
    """Driver profile not found."""
    status_code = 404
    reason = "DRIVER_NOT_FOUND"


class OfferNotFoundError(RideServiceError):
    """No offer for this ride was sent to you."""
    status_code = 404
    reason = "OFFER_NOT_FOUND"


# ---------------------- State conflicts (409) ----------------------

class InvalidTransition(RideServiceError):
    """Raised when a ride cannot move to the requested status."""
    status_code = 409
    reason = "INVALID_STATUS"


class ActiveRideExistsError(RideServiceError):
    """You already have an active ride."""
    status_code = 409
    reason = "ACTIVE_RIDE_EXISTS"


class DriverNotAvailableError(RideServiceError):
    """Raised when driver is not available to accept rides."""
    status_code = 409
    reason = "DRIVER_NOT_AVAILABLE"


class DriverTooFarError(RideServiceError):
    """You are too far from the pickup location."""
    status_code = 409
    reason = "DRIVER_TOO_FAR"


class OfferExpiredError(RideServiceError):
    """Raised when a ride offer has expired."""
    status_code = 409
    reason = "OFFER_EXPIRED"


class CancellationNotAllowedError(RideServiceError):
    """This ride cannot be cancelled."""
    status_code = 409
    reason = "CANCELLATION_NOT_ALLOWED"
