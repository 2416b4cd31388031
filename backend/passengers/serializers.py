from rest_framework import serializers

from .models import EmergencyContact, PassengerProfile


class PassengerBasicSerializer(serializers.ModelSerializer):
    """
    Basic passenger representation used inside ride responses.
    """
    id = serializers.IntegerField(source="user.id", read_only=True)
    name = serializers.CharField(source="user.display_name", read_only=True)
    phone_number = serializers.CharField(source="user.phone_number", read_only=True)

    class Meta:
        model = PassengerProfile
        fields = ["id", "name", "phone_number", "rating"]


class EmergencyContactSerializer(serializers.ModelSerializer):
    class Meta:
        model = EmergencyContact
        fields = ["id", "name", "phone_number", "relation"]
