import django.db.models.deletion
import django.utils.timezone
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="DriverProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("vehicle_class", models.CharField(choices=[("car", "Car"), ("bike", "Bike"), ("auto", "Auto Rickshaw")], default="car", max_length=10)),
                ("vehicle_model", models.CharField(blank=True, max_length=100)),
                ("vehicle_number", models.CharField(max_length=20, unique=True)),
                ("vehicle_color", models.CharField(blank=True, max_length=30)),
                ("is_approved", models.BooleanField(default=False)),
                ("rating", models.DecimalField(decimal_places=2, default=Decimal("5.00"), max_digits=3)),
                ("rating_count", models.PositiveIntegerField(default=0)),
                ("total_rides", models.PositiveIntegerField(default=0)),
                ("completed_rides", models.PositiveIntegerField(default=0)),
                ("cancelled_rides", models.PositiveIntegerField(default=0)),
                ("total_earnings", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("pending_earnings", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("status", models.CharField(choices=[("available", "Available"), ("busy", "Busy"), ("offline", "Offline")], default="offline", max_length=20)),
                ("current_latitude", models.DecimalField(blank=True, decimal_places=6, max_digits=10, null=True)),
                ("current_longitude", models.DecimalField(blank=True, decimal_places=6, max_digits=10, null=True)),
                ("last_location_update", models.DateTimeField(default=django.utils.timezone.now)),
                ("user", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="driver_profile", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "driver_profiles",
            },
        ),
    ]
