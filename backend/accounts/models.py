from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Extended user model with role selection"""
    ROLE_PASSENGER = 'passenger'
    ROLE_DRIVER = 'driver'
    ROLE_ADMIN = 'admin'

    ROLE_CHOICES = [
        (ROLE_PASSENGER, 'Passenger'),
        (ROLE_DRIVER, 'Driver'),
        (ROLE_ADMIN, 'Admin'),
    ]

    # Role & basic info
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_PASSENGER)
    phone_number = models.CharField(max_length=20, blank=True)
    completed_rides = models.IntegerField(default=0)

    class Meta:
        db_table = 'users'

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username

    @property
    def is_passenger(self) -> bool:
        return self.role == self.ROLE_PASSENGER

    @property
    def is_driver(self) -> bool:
        return self.role == self.ROLE_DRIVER

    @property
    def is_dispatch_admin(self) -> bool:
        return self.role == self.ROLE_ADMIN or self.is_staff
