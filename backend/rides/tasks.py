"""Celery tasks for ride-related background processing."""

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def activate_scheduled_rides_task(window_minutes=None):
    """
    Promote Scheduled rides whose pickup is inside the activation window.

    Run by celery beat every few minutes (see CELERY_BEAT_SCHEDULE).
    """
    from services.ride_management import ScheduledRideActivator, get_orchestrator

    report = ScheduledRideActivator(get_orchestrator(), window_minutes).run_once()
    return {
        "checked": report.checked,
        "activated": report.activated,
        "failed": report.failed,
        "drivers_notified": report.drivers_notified,
    }


@shared_task
def activate_scheduled_ride_task(ride_id: int):
    """Activate one Scheduled ride now, ahead of its window (admin "dispatch early")."""
    from services.ride_management import get_orchestrator

    dispatch_round = get_orchestrator().activate_scheduled_ride(ride_id, force=True)
    logger.info("scheduled ride activated ride_id=%s delivered=%s", ride_id, dispatch_round.delivered)
    return dispatch_round.delivered
