from decimal import Decimal

from django.db import models
from django.conf import settings
from django.utils import timezone

from drivers.models import VEHICLE_CLASS_CHOICES, VEHICLE_CAR
from .constants import (
    STATUS_CHOICES, STATUS_PENDING, TERMINAL_STATUSES,
    RIDE_TYPE_CHOICES, RIDE_TYPE_ONE_TIME,
    PRIORITY_CHOICES, PRIORITY_SPEED,
    PAYMENT_METHOD_CHOICES, PAYMENT_CASH,
    PAYMENT_STATUS_CHOICES, PAYMENT_PENDING,
    CANCELLED_BY_CHOICES,
    OFFER_STATUS_CHOICES, OFFER_PENDING,
    CURRENCY_PKR,
)


def _coordinate(**kwargs):
    return models.DecimalField(max_digits=9, decimal_places=6, **kwargs)


def _money(**kwargs):
    return models.DecimalField(max_digits=10, decimal_places=2, **kwargs)


class Ride(models.Model):
    """
    A ride from request to a terminal state.

    Status, driver assignment and the fare columns are only written through
    services.ride_management; HTTP handlers never save a Ride directly.
    """

    passenger = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='rides'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='driven_rides'
    )

    vehicle_class = models.CharField(max_length=10, choices=VEHICLE_CLASS_CHOICES, default=VEHICLE_CAR)
    ride_type = models.CharField(max_length=20, choices=RIDE_TYPE_CHOICES, default=RIDE_TYPE_ONE_TIME)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default=PRIORITY_SPEED)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)

    # Pickup / destination
    pickup_latitude = _coordinate()
    pickup_longitude = _coordinate()
    pickup_address = models.TextField(blank=True)
    dropoff_latitude = _coordinate()
    dropoff_longitude = _coordinate()
    dropoff_address = models.TextField(blank=True)

    # Route
    route_distance_m = models.PositiveIntegerField(default=0)
    route_duration_s = models.PositiveIntegerField(default=0)
    route_polyline = models.TextField(null=True, blank=True)
    route_is_estimate = models.BooleanField(default=False)

    # Fare
    fare_currency = models.CharField(max_length=3, default=CURRENCY_PKR)
    fare_base = _money(default=Decimal('0'))
    fare_distance = _money(default=Decimal('0'))
    fare_time = _money(default=Decimal('0'))
    fare_surge = models.DecimalField(max_digits=4, decimal_places=2, default=Decimal('1.00'))
    fare_estimated = _money(default=Decimal('0'))
    fare_final = _money(null=True, blank=True)
    cancellation_fee = _money(default=Decimal('0'))
    driver_earnings = _money(null=True, blank=True)

    # Payment
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES, default=PAYMENT_CASH)
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PENDING)
    payment_transaction_id = models.CharField(max_length=100, blank=True)
    payment_details = models.JSONField(default=dict, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    # Tracking
    start_latitude = _coordinate(null=True, blank=True)
    start_longitude = _coordinate(null=True, blank=True)
    end_latitude = _coordinate(null=True, blank=True)
    end_longitude = _coordinate(null=True, blank=True)
    current_latitude = _coordinate(null=True, blank=True)
    current_longitude = _coordinate(null=True, blank=True)
    current_location_at = models.DateTimeField(null=True, blank=True)
    current_speed = models.FloatField(null=True, blank=True)
    current_heading = models.FloatField(null=True, blank=True)

    # Safety
    driver_photo_url = models.URLField(max_length=500, blank=True)
    verified_at = models.DateTimeField(null=True, blank=True)

    # Ratings (each side writes once, after completion)
    rating_by_passenger = models.PositiveSmallIntegerField(null=True, blank=True)
    review_by_passenger = models.TextField(blank=True)
    rating_by_driver = models.PositiveSmallIntegerField(null=True, blank=True)
    review_by_driver = models.TextField(blank=True)

    # Timestamps
    requested_at = models.DateTimeField(default=timezone.now)
    scheduled_at = models.DateTimeField(null=True, blank=True, db_index=True)
    activated_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    cancelled_by = models.CharField(max_length=10, choices=CANCELLED_BY_CHOICES, null=True, blank=True)
    cancellation_reason = models.TextField(null=True, blank=True)

    class Meta:
        db_table = 'rides'
        ordering = ['-requested_at']

    def __str__(self):
        return f"Ride #{self.id} - {self.passenger} - {self.status}"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def pickup_point(self):
        return float(self.pickup_latitude), float(self.pickup_longitude)

    @property
    def dropoff_point(self):
        return float(self.dropoff_latitude), float(self.dropoff_longitude)

    @property
    def current_point(self):
        if self.current_latitude is None or self.current_longitude is None:
            return None
        return float(self.current_latitude), float(self.current_longitude)

    def is_participant(self, user) -> bool:
        return user.id in (self.passenger_id, self.driver_id)


class RideLocationPoint(models.Model):
    """One entry of a ride's tracking path, in arrival order."""

    ride = models.ForeignKey(Ride, on_delete=models.CASCADE, related_name='path_points')
    sequence = models.PositiveIntegerField()
    latitude = _coordinate()
    longitude = _coordinate()
    recorded_at = models.DateTimeField()
    speed = models.FloatField(null=True, blank=True)
    heading = models.FloatField(null=True, blank=True)

    class Meta:
        db_table = 'ride_location_points'
        ordering = ['sequence']
        constraints = [
            models.UniqueConstraint(fields=['ride', 'sequence'], name='unique_ride_path_sequence')
        ]

    def __str__(self):
        return f"Ride {self.ride_id} #{self.sequence} ({self.latitude}, {self.longitude})"


class RideOffer(models.Model):
    """A dispatch proposal to one driver for one ride, valid until expires_at."""

    ride = models.ForeignKey(Ride, on_delete=models.CASCADE, related_name='offers')

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ride_offers',
        limit_choices_to={'role': 'driver'}
    )

    order = models.PositiveIntegerField()  # 0 = best match
    status = models.CharField(max_length=20, choices=OFFER_STATUS_CHOICES, default=OFFER_PENDING)

    score = models.FloatField(default=0)
    distance_km = models.FloatField(default=0)
    eta_seconds = models.PositiveIntegerField(default=0)

    sent_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField()
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'ride_offers'
        ordering = ['order']
        constraints = [
            models.UniqueConstraint(
                fields=['ride', 'driver'],
                name='unique_ride_driver'
            )
        ]

    def __str__(self):
        return f"Offer #{self.id} - Ride {self.ride_id} -> Driver {self.driver_id}"

    def is_live(self, now=None) -> bool:
        now = now or timezone.now()
        return self.status == OFFER_PENDING and self.expires_at > now


class SOSAlert(models.Model):
    """Safety alert raised by a rider, optionally tied to a ride."""

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('resolved', 'Resolved'),
        ('false_alarm', 'False Alarm'),
    ]

    TYPE_CHOICES = [
        ('manual', 'Manual'),
        ('automatic', 'Automatic'),
        ('driver_detected', 'Driver Detected'),
    ]

    SEVERITY_CHOICES = [
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('critical', 'Critical'),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='sos_alerts')
    ride = models.ForeignKey(Ride, on_delete=models.SET_NULL, null=True, blank=True, related_name='sos_alerts')

    latitude = _coordinate()
    longitude = _coordinate()
    address = models.TextField(blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    alert_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='manual')
    severity = models.CharField(max_length=10, choices=SEVERITY_CHOICES, default='high')
    description = models.TextField(blank=True)

    contacts_notified = models.JSONField(default=list, blank=True)
    admin_notified = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'sos_alerts'
        ordering = ['-created_at']

    def __str__(self):
        return f"SOS #{self.id} by {self.user} ({self.severity})"
