from django.core.management.base import BaseCommand

from services.ride_management import ScheduledRideActivator, get_orchestrator


class Command(BaseCommand):
    help = "Activate scheduled rides whose pickup time is inside the activation window and offer them to drivers."

    def add_arguments(self, parser):
        parser.add_argument(
            "--window-minutes",
            type=int,
            default=None,
            help="Activate rides scheduled within this many minutes (default: DISPATCH ACTIVATION_WINDOW_MINUTES).",
        )

    def handle(self, *args, **options):
        activator = ScheduledRideActivator(get_orchestrator(), options["window_minutes"])
        report = activator.run_once()

        self.stdout.write(
            self.style.SUCCESS(
                f"Checked {report.checked} ride(s); activated {len(report.activated)}, "
                f"failed {len(report.failed)}, notified {report.drivers_notified} driver(s)."
            )
        )
