from django.core.management.base import BaseCommand

from cardflow.services.health_cards import expire_cards


class Command(BaseCommand):
    help = "Move active health cards past their expiry date to expired."

    def handle(self, *args, **opts):
        count = expire_cards()
        self.stdout.write(self.style.SUCCESS(f"{count} health cards expired."))
