import django.db.models.deletion
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
            name="PassengerProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("rating", models.DecimalField(decimal_places=2, default=Decimal("5.00"), max_digits=3)),
                ("rating_count", models.PositiveIntegerField(default=0)),
                ("subscription_active", models.BooleanField(default=False)),
                ("subscription_plan_id", models.CharField(blank=True, max_length=64)),
                ("subscription_rides_remaining", models.PositiveIntegerField(default=0)),
                ("subscription_expires_at", models.DateTimeField(blank=True, null=True)),
                ("user", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="passenger_profile", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "passenger_profiles",
            },
        ),
        migrations.CreateModel(
            name="EmergencyContact",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100)),
                ("phone_number", models.CharField(max_length=20)),
                ("relation", models.CharField(blank=True, max_length=50)),
                ("passenger", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="emergency_contacts", to="passengers.passengerprofile")),
            ],
            options={
                "db_table": "emergency_contacts",
                "ordering": ["id"],
            },
        ),
    ]
