import logging

from rest_framework import status
from rest_framework.decorators import api_view, parser_classes, permission_classes
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import AllowAny, IsAuthenticated

from common.responses import success_response
from drivers.permissions import IsDriver
from drivers.serializers import LocationUpdateSerializer
from passengers.permissions import IsPassenger
from services.ride_management import get_orchestrator, queries
from services.safety import get_sos_pipeline
from .serializers import (
    CompleteRideSerializer,
    FareEstimateSerializer,
    RideCancelSerializer,
    RideHistoryFilterSerializer,
    RideRatingSerializer,
    RideRequestCreateSerializer,
    RideSerializer,
    SOSAlertCreateSerializer,
    StartRideSerializer,
)

logger = logging.getLogger(__name__)


def _ride_data(result, **extra):
    data = {"ride": RideSerializer(result.ride).data}
    data.update(result.extra or {})
    data.update(extra)
    return data


# ==================== Estimates ====================

@api_view(['GET'])
@permission_classes([AllowAny])
def fare_estimate(request):
    """Route and fare for a trip; nothing is created."""
    serializer = FareEstimateSerializer(data=request.query_params)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    estimate = get_orchestrator().estimate(
        (data["pickupLat"], data["pickupLng"]),
        (data["dropoffLat"], data["dropoffLng"]),
    )
    return success_response(estimate, message="Fare estimated")


# ==================== Passenger Ride APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsPassenger])
def create_ride_request(request):
    """Create a ride now, or a scheduled one when scheduledAt is sent."""
    serializer = RideRequestCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = get_orchestrator().request_ride(request.user, serializer.validated_data)
    return success_response(_ride_data(result), message=result.message, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_history(request):
    serializer = RideHistoryFilterSerializer(data=request.query_params)
    serializer.is_valid(raise_exception=True)

    rides = queries.ride_history(request.user, serializer.validated_data.get("status"))
    data = RideSerializer(rides, many=True).data
    return success_response({"rides": data, "count": len(data)}, message="Ride history")


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def active_rides(request):
    data = RideSerializer(queries.active_rides(request.user), many=True).data
    return success_response({"rides": data, "count": len(data)}, message="Active rides")


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def scheduled_rides(request):
    data = RideSerializer(queries.scheduled_rides(request.user), many=True).data
    return success_response({"rides": data, "count": len(data)}, message="Scheduled rides")


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_stats(request):
    return success_response(queries.ride_stats(request.user), message="Ride stats")


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_detail(request, ride_id):
    ride = queries.get_ride_for_user(request.user, ride_id)
    return success_response({"ride": RideSerializer(ride).data}, message="Ride details")


# ==================== Driver Ride Actions ====================

@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDriver])
def accept_ride(request, ride_id):
    """First driver to accept a Pending ride wins; everyone else gets 409."""
    result = get_orchestrator().accept_ride(request.user, ride_id)
    return success_response(_ride_data(result), message=result.message)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDriver])
def reject_ride_offer(request, ride_id):
    """Decline an offer; the ride is offered onward once no live offers remain."""
    result = get_orchestrator().reject_offer(request.user, ride_id)
    return success_response(_ride_data(result), message=result.message)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDriver])
@parser_classes([MultiPartParser, FormParser, JSONParser])
def start_ride(request, ride_id):
    """
    Start the trip at pickup.

    Multipart body: latitude, longitude and the driverPhoto verification image.
    """
    serializer = StartRideSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    result = get_orchestrator().start_ride(
        request.user, ride_id, data["latitude"], data["longitude"], data.get("driverPhoto")
    )
    return success_response(_ride_data(result), message=result.message)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDriver])
def update_ride_location(request, ride_id):
    serializer = LocationUpdateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    result = get_orchestrator().update_location(
        request.user, ride_id, data["latitude"], data["longitude"],
        ts=data.get("timestamp"), speed=data.get("speed"), heading=data.get("heading"),
    )
    return success_response(
        {"ride_id": ride_id, "sequence": result.extra["sequence"]}, message=result.message
    )


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDriver])
def complete_ride(request, ride_id):
    serializer = CompleteRideSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    result = get_orchestrator().complete_ride(
        request.user, ride_id, data["latitude"], data["longitude"],
        actual_distance_m=data.get("actual_distance_m"),
        actual_duration_s=data.get("actual_duration_s"),
    )
    return success_response(_ride_data(result), message=result.message)


# ==================== Either Participant ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_ride(request, ride_id):
    """Cancel by passenger, assigned driver or admin; the fee follows the cancellation policy."""
    serializer = RideCancelSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = get_orchestrator().cancel_ride(request.user, ride_id, serializer.validated_data["reason"])
    return success_response(_ride_data(result), message=result.message)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def rate_ride(request, ride_id):
    serializer = RideRatingSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    result = get_orchestrator().rate_ride(request.user, ride_id, data["rating"], data["review"])
    return success_response(_ride_data(result), message=result.message)


# ==================== Safety ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def trigger_sos(request):
    """Raise an SOS: emergency contacts by SMS, admins over the realtime bus."""
    serializer = SOSAlertCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = get_sos_pipeline().trigger(request.user, serializer.validated_data)
    return success_response(
        result.as_dict(),
        message="SOS alert sent. Help is on the way.",
        status=status.HTTP_201_CREATED,
    )
