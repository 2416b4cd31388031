from decimal import Decimal

from django.db import models
from django.utils import timezone
from django.conf import settings

User = settings.AUTH_USER_MODEL

STATUS_AVAILABLE = 'available'
STATUS_BUSY = 'busy'
STATUS_OFFLINE = 'offline'

VEHICLE_CAR = 'car'
VEHICLE_BIKE = 'bike'
VEHICLE_AUTO = 'auto'

VEHICLE_CLASS_CHOICES = [
    (VEHICLE_CAR, 'Car'),
    (VEHICLE_BIKE, 'Bike'),
    (VEHICLE_AUTO, 'Auto Rickshaw'),
]


class DriverProfile(models.Model):
    """Driver-specific details, aggregates and availability status"""
    STATUS_CHOICES = [
        (STATUS_AVAILABLE, 'Available'),
        (STATUS_BUSY, 'Busy'),
        (STATUS_OFFLINE, 'Offline'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    # Vehicle details
    vehicle_class = models.CharField(max_length=10, choices=VEHICLE_CLASS_CHOICES, default=VEHICLE_CAR)
    vehicle_model = models.CharField(max_length=100, blank=True)
    vehicle_number = models.CharField(max_length=20, unique=True)
    vehicle_color = models.CharField(max_length=30, blank=True)

    # Approval & aggregates
    is_approved = models.BooleanField(default=False)
    rating = models.DecimalField(max_digits=3, decimal_places=2, default=Decimal('5.00'))
    rating_count = models.PositiveIntegerField(default=0)
    total_rides = models.PositiveIntegerField(default=0)
    completed_rides = models.PositiveIntegerField(default=0)
    cancelled_rides = models.PositiveIntegerField(default=0)
    total_earnings = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    pending_earnings = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    # Status & location
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_OFFLINE)
    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'driver_profiles'

    def __str__(self):
        return f"{self.user.username} - {self.vehicle_number}"

    @property
    def has_location(self) -> bool:
        return self.current_latitude is not None and self.current_longitude is not None
