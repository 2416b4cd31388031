"""Rides app configuration."""

import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class RidesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'rides'

    def ready(self):
        if getattr(settings, "MONGODB_URI", None):
            logger.warning("MONGODB_URI is set but unused; rides are stored in the Django database")

        # Celery beat runs the scheduled-ride sweep; the thread is for single-box setups.
        from .scheduled_ride_monitor import start_scheduled_ride_monitor

        start_scheduled_ride_monitor()
