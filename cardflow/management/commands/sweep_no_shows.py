from django.core.management.base import BaseCommand

from cardflow.services.scheduling import sweep_no_shows


class Command(BaseCommand):
    help = "Mark orientation bookings past their start plus the grace window as missed (idempotent)."

    def handle(self, *args, **opts):
        report = sweep_no_shows()
        for booking_id in report.failed:
            self.stderr.write(self.style.WARNING(f"failed: booking {booking_id}"))
        self.stdout.write(self.style.SUCCESS(
            f"{len(report.missed)} bookings marked missed, {len(report.failed)} failed."
        ))
