"""
Request and response serializers for the ride endpoints.

Inputs use the camelCase names the mobile apps send and map them onto the
snake_case keys the orchestrator reads.
"""

from rest_framework import serializers

from drivers.models import VEHICLE_CLASS_CHOICES, VEHICLE_CAR
from drivers.serializers import DriverBasicSerializer
from passengers.serializers import PassengerBasicSerializer
from realtime.notifications import fare_payload, location_payload
from .constants import (
    PAYMENT_CASH, PAYMENT_METHOD_CHOICES,
    PRIORITY_CHOICES, PRIORITY_SPEED,
    RIDE_TYPE_CHOICES, RIDE_TYPE_ONE_TIME,
    STATUS_CHOICES,
)
from .models import Ride, SOSAlert


def _latitude(**kwargs):
    return serializers.FloatField(min_value=-90, max_value=90, **kwargs)


def _longitude(**kwargs):
    return serializers.FloatField(min_value=-180, max_value=180, **kwargs)


# ==================== Inputs ====================

class FareEstimateSerializer(serializers.Serializer):
    pickupLat = _latitude()
    pickupLng = _longitude()
    dropoffLat = _latitude()
    dropoffLng = _longitude()


class RideRequestCreateSerializer(serializers.Serializer):
    """Serializer for creating ride requests; each end needs coordinates or an address."""
    pickupLat = _latitude(source="pickup_latitude", required=False)
    pickupLng = _longitude(source="pickup_longitude", required=False)
    pickupAddress = serializers.CharField(source="pickup_address", required=False, allow_blank=True, default="")
    dropoffLat = _latitude(source="dropoff_latitude", required=False)
    dropoffLng = _longitude(source="dropoff_longitude", required=False)
    dropoffAddress = serializers.CharField(source="dropoff_address", required=False, allow_blank=True, default="")
    vehicleType = serializers.ChoiceField(source="vehicle_class", choices=VEHICLE_CLASS_CHOICES, default=VEHICLE_CAR)
    rideType = serializers.ChoiceField(source="ride_type", choices=RIDE_TYPE_CHOICES, default=RIDE_TYPE_ONE_TIME)
    priority = serializers.ChoiceField(choices=PRIORITY_CHOICES, default=PRIORITY_SPEED)
    paymentMethod = serializers.ChoiceField(source="payment_method", choices=PAYMENT_METHOD_CHOICES, default=PAYMENT_CASH)
    scheduledAt = serializers.DateTimeField(source="scheduled_at", required=False, allow_null=True)

    def validate(self, attrs):
        for prefix in ("pickup", "dropoff"):
            has_lat = attrs.get(f"{prefix}_latitude") is not None
            has_lon = attrs.get(f"{prefix}_longitude") is not None
            if has_lat != has_lon:
                raise serializers.ValidationError({prefix: "Latitude and longitude must be sent together."})
            if not has_lat and not attrs.get(f"{prefix}_address"):
                raise serializers.ValidationError({prefix: "Coordinates or an address are required."})
        return attrs


class StartRideSerializer(serializers.Serializer):
    latitude = _latitude()
    longitude = _longitude()
    driverPhoto = serializers.FileField(required=False, allow_empty_file=False)


class CompleteRideSerializer(serializers.Serializer):
    latitude = _latitude()
    longitude = _longitude()
    actualDistance = serializers.IntegerField(source="actual_distance_m", required=False, min_value=0)
    actualDuration = serializers.IntegerField(source="actual_duration_s", required=False, min_value=0)


class RideCancelSerializer(serializers.Serializer):
    """Serializer for ride cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class RideRatingSerializer(serializers.Serializer):
    rating = serializers.IntegerField()
    review = serializers.CharField(required=False, allow_blank=True, default="")


class RideHistoryFilterSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=STATUS_CHOICES, required=False)


class SOSAlertCreateSerializer(serializers.Serializer):
    rideId = serializers.IntegerField(source="ride_id", required=False, allow_null=True)
    latitude = _latitude(required=False)
    longitude = _longitude(required=False)
    address = serializers.CharField(required=False, allow_blank=True, default="")
    alertType = serializers.ChoiceField(source="alert_type", choices=SOSAlert.TYPE_CHOICES, default="manual")
    severity = serializers.ChoiceField(choices=SOSAlert.SEVERITY_CHOICES, default="high")
    description = serializers.CharField(required=False, allow_blank=True, default="")


# ==================== Outputs ====================

class RideSerializer(serializers.ModelSerializer):
    """Full ride view for participants and admins."""
    passenger = PassengerBasicSerializer(source="passenger.passenger_profile", read_only=True, default=None)
    driver = DriverBasicSerializer(source="driver.driver_profile", read_only=True, default=None)
    pickup = serializers.SerializerMethodField()
    dropoff = serializers.SerializerMethodField()
    route = serializers.SerializerMethodField()
    fare = serializers.SerializerMethodField()
    payment = serializers.SerializerMethodField()
    ratings = serializers.SerializerMethodField()

    class Meta:
        model = Ride
        fields = [
            "id", "status", "ride_type", "vehicle_class", "priority",
            "passenger", "driver",
            "pickup", "dropoff", "route", "fare", "payment", "ratings",
            "driver_photo_url", "cancellation_fee", "cancelled_by", "cancellation_reason",
            "requested_at", "scheduled_at", "accepted_at", "started_at", "completed_at", "cancelled_at",
        ]
        read_only_fields = fields

    def get_pickup(self, ride):
        return location_payload(ride.pickup_latitude, ride.pickup_longitude, ride.pickup_address)

    def get_dropoff(self, ride):
        return location_payload(ride.dropoff_latitude, ride.dropoff_longitude, ride.dropoff_address)

    def get_route(self, ride):
        return {
            "distance": ride.route_distance_m,
            "duration": ride.route_duration_s,
            "polyline": ride.route_polyline,
            "isEstimate": ride.route_is_estimate,
        }

    def get_fare(self, ride):
        return fare_payload(ride)

    def get_payment(self, ride):
        return {
            "method": ride.payment_method,
            "status": ride.payment_status,
            "transactionId": ride.payment_transaction_id or None,
            "paidAt": ride.paid_at.isoformat() if ride.paid_at else None,
        }

    def get_ratings(self, ride):
        return {
            "byPassenger": ride.rating_by_passenger,
            "byDriver": ride.rating_by_driver,
        }

