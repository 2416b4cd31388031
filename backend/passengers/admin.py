from django.contrib import admin

from passengers.models import PassengerProfile, EmergencyContact


class EmergencyContactInline(admin.TabularInline):
    model = EmergencyContact
    extra = 0


@admin.register(PassengerProfile)
class PassengerProfileAdmin(admin.ModelAdmin):
    """Admin panel for passenger ratings and subscriptions"""

    list_display = [
        "user",
        "rating",
        "rating_count",
        "subscription_active",
        "subscription_rides_remaining",
        "subscription_expires_at",
    ]
    list_filter = ["subscription_active"]
    search_fields = ["user__username", "user__phone_number"]
    inlines = [EmergencyContactInline]
