"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin

from .constants import STATUS_SCHEDULED
from .models import Ride, RideLocationPoint, RideOffer, SOSAlert
from .tasks import activate_scheduled_ride_task


class RideOfferInline(admin.TabularInline):
    model = RideOffer
    extra = 0
    readonly_fields = ("driver", "order", "status", "score", "distance_km", "sent_at", "expires_at", "responded_at")


@admin.register(Ride)
class RideAdmin(admin.ModelAdmin):
    list_display = ['id', 'passenger', 'driver', 'status', 'ride_type', 'fare_estimated', 'fare_final',
                    'payment_status', 'requested_at', 'completed_at']
    list_filter = ['status', 'ride_type', 'vehicle_class', 'payment_method', 'payment_status']
    search_fields = ['passenger__username', 'driver__username', 'pickup_address', 'dropoff_address']
    readonly_fields = ['requested_at', 'activated_at', 'accepted_at', 'started_at', 'completed_at', 'cancelled_at']
    date_hierarchy = 'requested_at'
    inlines = [RideOfferInline]
    actions = ['dispatch_early']

    @admin.action(description="Dispatch selected scheduled rides now")
    def dispatch_early(self, request, queryset):
        ride_ids = list(queryset.filter(status=STATUS_SCHEDULED).values_list('id', flat=True))
        for ride_id in ride_ids:
            activate_scheduled_ride_task.delay(ride_id)
        self.message_user(request, f"Queued {len(ride_ids)} scheduled ride(s) for dispatch.")


@admin.register(RideOffer)
class RideOfferAdmin(admin.ModelAdmin):
    list_display = ("ride", "driver", "order", "status", "score", "sent_at", "expires_at", "responded_at")
    list_filter = ("status",)
    search_fields = ("ride__id", "driver__username")


@admin.register(RideLocationPoint)
class RideLocationPointAdmin(admin.ModelAdmin):
    list_display = ("ride", "sequence", "latitude", "longitude", "recorded_at")
    search_fields = ("ride__id",)


@admin.register(SOSAlert)
class SOSAlertAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "ride", "severity", "status", "admin_notified", "created_at")
    list_filter = ("status", "severity", "alert_type")
    search_fields = ("user__username", "address")
