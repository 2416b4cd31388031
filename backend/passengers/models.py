from decimal import Decimal

from django.db import models
from django.conf import settings
from django.utils import timezone

User = settings.AUTH_USER_MODEL


class PassengerProfile(models.Model):
    """Passenger rating aggregate and ride subscription"""

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='passenger_profile')

    rating = models.DecimalField(max_digits=3, decimal_places=2, default=Decimal('5.00'))
    rating_count = models.PositiveIntegerField(default=0)

    # Subscription (plans are managed elsewhere; only the counters live here)
    subscription_active = models.BooleanField(default=False)
    subscription_plan_id = models.CharField(max_length=64, blank=True)
    subscription_rides_remaining = models.PositiveIntegerField(default=0)
    subscription_expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'passenger_profiles'

    def __str__(self):
        return f"Passenger {self.user}"

    def subscription_is_current(self, now=None) -> bool:
        """Active and not expired, whatever rides are left on the plan."""
        now = now or timezone.now()
        if not self.subscription_active:
            return False
        return self.subscription_expires_at is None or self.subscription_expires_at > now

    def has_usable_subscription(self, now=None) -> bool:
        return self.subscription_rides_remaining > 0 and self.subscription_is_current(now)


class EmergencyContact(models.Model):
    passenger = models.ForeignKey(
        PassengerProfile,
        on_delete=models.CASCADE,
        related_name='emergency_contacts'
    )
    name = models.CharField(max_length=100)
    phone_number = models.CharField(max_length=20)
    relation = models.CharField(max_length=50, blank=True)

    class Meta:
        db_table = 'emergency_contacts'
        ordering = ['id']

    def __str__(self):
        return f"{self.name} ({self.relation}) for {self.passenger.user}"
