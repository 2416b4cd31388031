"""
Scheduled ride activation.

One sweep promotes every Scheduled ride whose pickup falls inside the
activation window. A failure on one ride is logged and the sweep moves on.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from django.conf import settings

from rides.constants import STATUS_SCHEDULED
from rides.models import Ride

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    checked: int = 0
    activated: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    drivers_notified: int = 0


class ScheduledRideActivator:
    def __init__(self, orchestrator, window_minutes: Optional[int] = None):
        self.orchestrator = orchestrator
        self.window = timedelta(minutes=window_minutes or settings.DISPATCH["ACTIVATION_WINDOW_MINUTES"])

    def due_rides(self, now: datetime):
        return Ride.objects.filter(
            status=STATUS_SCHEDULED,
            scheduled_at__lte=now + self.window,
        ).order_by("scheduled_at")

    def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.orchestrator.clock()
        report = SweepReport()
        for ride_id in list(self.due_rides(now).values_list("id", flat=True)):
            report.checked += 1
            try:
                dispatch_round = self.orchestrator.activate_scheduled_ride(ride_id, now=now)
            except Exception:
                logger.exception("scheduled activation failed ride_id=%s", ride_id)
                report.failed.append(ride_id)
                continue
            report.activated.append(ride_id)
            report.drivers_notified += dispatch_round.delivered

        logger.info(
            "scheduled sweep checked=%s activated=%s failed=%s drivers_notified=%s",
            report.checked, len(report.activated), len(report.failed), report.drivers_notified,
        )
        return report
