from django.contrib import admin
from drivers.models import DriverProfile


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    """Admin panel for driver approval, vehicles and aggregates"""

    list_display = [
        "user",
        "vehicle_class",
        "vehicle_number",
        "is_approved",
        "status",
        "rating",
        "completed_rides",
        "total_earnings",
        "last_location_update",
    ]

    list_filter = [
        "is_approved",
        "status",
        "vehicle_class",
    ]

    search_fields = [
        "user__username",
        "vehicle_number",
    ]

    readonly_fields = [
        "rating",
        "rating_count",
        "total_rides",
        "completed_rides",
        "cancelled_rides",
        "total_earnings",
        "last_location_update",
    ]

    actions = ["approve_drivers"]
    ordering = ("user__username",)

    @admin.action(description="Approve selected drivers")
    def approve_drivers(self, request, queryset):
        updated = queryset.update(is_approved=True)
        self.message_user(request, f"{updated} driver(s) approved")
