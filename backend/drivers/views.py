from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated

from common.responses import success_response
from drivers import services
from drivers.permissions import IsDriver
from drivers.serializers import DriverStatusSerializer, LocationUpdateSerializer
from realtime.geo import get_driver_index


class DriverStatusView(APIView):
    """Availability toggle. Busy is set by ride acceptance, never here."""
    permission_classes = [IsAuthenticated, IsDriver]

    def get(self, request):
        profile = services.get_driver_profile(request.user)
        return success_response({
            "status": profile.status,
            "isApproved": profile.is_approved,
        })

    def put(self, request):
        serializer = DriverStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_status = serializer.validated_data["status"]

        profile = services.update_driver_status(request.user, new_status, get_driver_index())

        return success_response({"status": profile.status}, message=f"Status updated to {new_status}")


#    WS ws/driver/ carries the same updates; HTTP stays as a fallback.
class DriverLocationUpdateView(APIView):
    permission_classes = [IsAuthenticated, IsDriver]

    def get(self, request):
        profile = services.get_driver_profile(request.user)
        return success_response({
            "latitude": float(profile.current_latitude) if profile.has_location else None,
            "longitude": float(profile.current_longitude) if profile.has_location else None,
            "lastUpdated": profile.last_location_update,
            "status": profile.status,
        })

    def put(self, request):
        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        accepted = services.update_driver_location(
            request.user, data["latitude"], data["longitude"], get_driver_index(), data.get("timestamp")
        )

        return success_response(
            {"latitude": data["latitude"], "longitude": data["longitude"], "accepted": accepted},
            message="Location updated" if accepted else "Older location ignored",
        )
