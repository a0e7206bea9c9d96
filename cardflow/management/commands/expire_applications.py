from django.core.management.base import BaseCommand

from cardflow.services.applications import expire_stale


class Command(BaseCommand):
    help = "Expire applications idle longer than CARDFLOW['APPLICATION_TIMEOUT_DAYS']."

    def handle(self, *args, **opts):
        expired = expire_stale()
        for application_id in expired:
            self.stdout.write(f"expired: application {application_id}")
        self.stdout.write(self.style.SUCCESS(f"{len(expired)} applications expired."))
