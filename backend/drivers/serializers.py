from rest_framework import serializers

from drivers.models import DriverProfile, STATUS_AVAILABLE, STATUS_OFFLINE


class DriverBasicSerializer(serializers.ModelSerializer):
    """
    Lite version of driver info for ride details (sent to passengers).
    """
    id = serializers.IntegerField(source="user.id", read_only=True)
    name = serializers.CharField(source="user.display_name", read_only=True)
    phone_number = serializers.CharField(source="user.phone_number", read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            "id",
            "name",
            "phone_number",
            "rating",
            "vehicle_class",
            "vehicle_model",
            "vehicle_number",
            "vehicle_color",
        ]


class DriverStatusSerializer(serializers.Serializer):
    """
    Serializer for updating driver availability (available/offline).
    """
    status = serializers.ChoiceField(choices=[STATUS_AVAILABLE, STATUS_OFFLINE])


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for a GPS fix, idle or during a ride.
    """
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    timestamp = serializers.DateTimeField(required=False)
    speed = serializers.FloatField(required=False, allow_null=True, min_value=0)
    heading = serializers.FloatField(required=False, allow_null=True, min_value=0, max_value=360)
