"""It runs a background thread that activates scheduled rides when celery beat is not running"""

import logging
import os
import threading
from typing import Optional

from django.conf import settings

logger = logging.getLogger(__name__)

_monitor_instance: Optional["ScheduledRideMonitor"] = None


class ScheduledRideMonitor:
    def __init__(self, activator, interval_seconds: int):
        self.activator = activator
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name="scheduled-ride-monitor", daemon=True)

    def start(self):
        if not self._thread.is_alive():
            logger.info("starting scheduled ride monitor interval=%ss", self.interval_seconds)
            self._thread.start()

    def stop(self):
        self._stop_event.set()

    def _run(self):
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.activator.run_once()
            except Exception:
                logger.exception("scheduled ride monitor sweep failed")


def start_scheduled_ride_monitor():
    global _monitor_instance

    if not getattr(settings, "ENABLE_SCHEDULED_RIDE_MONITOR", False):
        return None

    # Avoid double-start in Django's autoreload parent process
    run_main = os.environ.get("RUN_MAIN")
    if run_main not in (None, "true"):
        return None

    if _monitor_instance is None:
        from services.ride_management import ScheduledRideActivator, get_orchestrator

        _monitor_instance = ScheduledRideMonitor(
            ScheduledRideActivator(get_orchestrator()),
            settings.SCHEDULED_RIDE_SWEEP_SECONDS,
        )
        _monitor_instance.start()
    return _monitor_instance


def stop_scheduled_ride_monitor():
    global _monitor_instance
    if _monitor_instance is not None:
        _monitor_instance.stop()
        _monitor_instance = None
