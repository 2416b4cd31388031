import django.db.models.deletion
import django.utils.timezone
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


def coordinate(**kwargs):
    return models.DecimalField(decimal_places=6, max_digits=9, **kwargs)


def money(**kwargs):
    return models.DecimalField(decimal_places=2, max_digits=10, **kwargs)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Ride",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("vehicle_class", models.CharField(choices=[("car", "Car"), ("bike", "Bike"), ("auto", "Auto Rickshaw")], default="car", max_length=10)),
                ("ride_type", models.CharField(choices=[("one-time", "One-time"), ("subscription", "Subscription"), ("scheduled", "Scheduled")], default="one-time", max_length=20)),
                ("priority", models.CharField(choices=[("speed", "Speed"), ("rating", "Rating"), ("distance", "Distance")], default="speed", max_length=10)),
                ("status", models.CharField(choices=[("scheduled", "Scheduled"), ("pending", "Pending"), ("accepted", "Accepted"), ("in_progress", "In Progress"), ("completed", "Completed"), ("cancelled", "Cancelled")], db_index=True, default="pending", max_length=20)),
                ("pickup_latitude", coordinate()),
                ("pickup_longitude", coordinate()),
                ("pickup_address", models.TextField(blank=True)),
                ("dropoff_latitude", coordinate()),
                ("dropoff_longitude", coordinate()),
                ("dropoff_address", models.TextField(blank=True)),
                ("route_distance_m", models.PositiveIntegerField(default=0)),
                ("route_duration_s", models.PositiveIntegerField(default=0)),
                ("route_polyline", models.TextField(blank=True, null=True)),
                ("route_is_estimate", models.BooleanField(default=False)),
                ("fare_currency", models.CharField(default="PKR", max_length=3)),
                ("fare_base", money(default=Decimal("0"))),
                ("fare_distance", money(default=Decimal("0"))),
                ("fare_time", money(default=Decimal("0"))),
                ("fare_surge", models.DecimalField(decimal_places=2, default=Decimal("1.00"), max_digits=4)),
                ("fare_estimated", money(default=Decimal("0"))),
                ("fare_final", money(blank=True, null=True)),
                ("cancellation_fee", money(default=Decimal("0"))),
                ("driver_earnings", money(blank=True, null=True)),
                ("payment_method", models.CharField(choices=[("cash", "Cash"), ("easypaisa", "Easypaisa"), ("jazzcash", "JazzCash"), ("card", "Card")], default="cash", max_length=20)),
                ("payment_status", models.CharField(choices=[("pending", "Pending"), ("completed", "Completed"), ("failed", "Failed"), ("refunded", "Refunded")], default="pending", max_length=20)),
                ("payment_transaction_id", models.CharField(blank=True, max_length=100)),
                ("payment_details", models.JSONField(blank=True, default=dict)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("start_latitude", coordinate(blank=True, null=True)),
                ("start_longitude", coordinate(blank=True, null=True)),
                ("end_latitude", coordinate(blank=True, null=True)),
                ("end_longitude", coordinate(blank=True, null=True)),
                ("current_latitude", coordinate(blank=True, null=True)),
                ("current_longitude", coordinate(blank=True, null=True)),
                ("current_location_at", models.DateTimeField(blank=True, null=True)),
                ("current_speed", models.FloatField(blank=True, null=True)),
                ("current_heading", models.FloatField(blank=True, null=True)),
                ("driver_photo_url", models.URLField(blank=True, max_length=500)),
                ("verified_at", models.DateTimeField(blank=True, null=True)),
                ("rating_by_passenger", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("review_by_passenger", models.TextField(blank=True)),
                ("rating_by_driver", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("review_by_driver", models.TextField(blank=True)),
                ("requested_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("scheduled_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("activated_at", models.DateTimeField(blank=True, null=True)),
                ("accepted_at", models.DateTimeField(blank=True, null=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_by", models.CharField(blank=True, choices=[("passenger", "Passenger"), ("driver", "Driver"), ("admin", "Admin")], max_length=10, null=True)),
                ("cancellation_reason", models.TextField(blank=True, null=True)),
                ("driver", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="driven_rides", to=settings.AUTH_USER_MODEL)),
                ("passenger", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="rides", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "rides",
                "ordering": ["-requested_at"],
            },
        ),
        migrations.CreateModel(
            name="RideLocationPoint",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sequence", models.PositiveIntegerField()),
                ("latitude", coordinate()),
                ("longitude", coordinate()),
                ("recorded_at", models.DateTimeField()),
                ("speed", models.FloatField(blank=True, null=True)),
                ("heading", models.FloatField(blank=True, null=True)),
                ("ride", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="path_points", to="rides.ride")),
            ],
            options={
                "db_table": "ride_location_points",
                "ordering": ["sequence"],
            },
        ),
        migrations.AddConstraint(
            model_name="ridelocationpoint",
            constraint=models.UniqueConstraint(fields=("ride", "sequence"), name="unique_ride_path_sequence"),
        ),
        migrations.CreateModel(
            name="RideOffer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("order", models.PositiveIntegerField()),
                ("status", models.CharField(choices=[("pending", "Pending"), ("accepted", "Accepted"), ("rejected", "Rejected"), ("expired", "Expired")], default="pending", max_length=20)),
                ("score", models.FloatField(default=0)),
                ("distance_km", models.FloatField(default=0)),
                ("eta_seconds", models.PositiveIntegerField(default=0)),
                ("sent_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("expires_at", models.DateTimeField()),
                ("responded_at", models.DateTimeField(blank=True, null=True)),
                ("driver", models.ForeignKey(limit_choices_to={"role": "driver"}, on_delete=django.db.models.deletion.CASCADE, related_name="ride_offers", to=settings.AUTH_USER_MODEL)),
                ("ride", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="offers", to="rides.ride")),
            ],
            options={
                "db_table": "ride_offers",
                "ordering": ["order"],
            },
        ),
        migrations.AddConstraint(
            model_name="rideoffer",
            constraint=models.UniqueConstraint(fields=("ride", "driver"), name="unique_ride_driver"),
        ),
        migrations.CreateModel(
            name="SOSAlert",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("latitude", coordinate()),
                ("longitude", coordinate()),
                ("address", models.TextField(blank=True)),
                ("status", models.CharField(choices=[("active", "Active"), ("resolved", "Resolved"), ("false_alarm", "False Alarm")], default="active", max_length=20)),
                ("alert_type", models.CharField(choices=[("manual", "Manual"), ("automatic", "Automatic"), ("driver_detected", "Driver Detected")], default="manual", max_length=20)),
                ("severity", models.CharField(choices=[("low", "Low"), ("medium", "Medium"), ("high", "High"), ("critical", "Critical")], default="high", max_length=10)),
                ("description", models.TextField(blank=True)),
                ("contacts_notified", models.JSONField(blank=True, default=list)),
                ("admin_notified", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("ride", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="sos_alerts", to="rides.ride")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="sos_alerts", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "sos_alerts",
                "ordering": ["-created_at"],
            },
        ),
    ]
