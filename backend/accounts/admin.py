from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from accounts.models import User
from drivers.models import DriverProfile
from passengers.models import PassengerProfile


class DriverProfileInline(admin.StackedInline):
    model = DriverProfile
    can_delete = False
    extra = 0
    fields = ("vehicle_class", "vehicle_model", "vehicle_number", "vehicle_color", "is_approved", "status")


class PassengerProfileInline(admin.StackedInline):
    model = PassengerProfile
    can_delete = False
    extra = 0
    fields = ("subscription_active", "subscription_plan_id", "subscription_rides_remaining", "subscription_expires_at")


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Riders, drivers and dispatch admins, with their role profile inline"""

    list_display = ["username", "role", "phone_number", "completed_rides", "date_joined", "is_active"]
    list_filter = ["role", "is_active", "is_staff"]
    search_fields = ["username", "email", "phone_number"]
    ordering = ("username",)

    fieldsets = BaseUserAdmin.fieldsets + (
        ("Dispatch", {"fields": ("role", "phone_number", "completed_rides")}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Dispatch", {"fields": ("role", "phone_number")}),
    )
    readonly_fields = ("completed_rides",)

    def get_inlines(self, request, obj):
        if obj is None:
            return []
        if obj.is_driver:
            return [DriverProfileInline]
        if obj.is_passenger:
            return [PassengerProfileInline]
        return []
