"""
Create next week's orientation sessions (Monday to Friday).

Sessions that already exist for a date and start time are skipped, so
the command is safe to run on every weekly tick.
"""
import datetime

from django.core.management.base import BaseCommand
from django.utils import timezone

from cardflow.models import OrientationSchedule
from cardflow.services.scheduling import create_schedule

TIME_SLOTS = [
    (datetime.time(9, 0), datetime.time(11, 0)),
    (datetime.time(14, 0), datetime.time(16, 0)),
]


class Command(BaseCommand):
    help = "Generate next week's orientation schedules (skips existing sessions)."

    def add_arguments(self, parser):
        parser.add_argument("--slots", type=int, default=25)
        parser.add_argument("--venue", default="City Health Office")
        parser.add_argument("--address", default="")
        parser.add_argument("--capacity", type=int, default=30)
        parser.add_argument("--instructor", default="")
        parser.add_argument("--start", type=datetime.date.fromisoformat, default=None,
                            help="First day to generate (YYYY-MM-DD); defaults to next Monday.")
        parser.add_argument("--days", type=int, default=5)

    def handle(self, *args, **opts):
        start = opts["start"]
        if start is None:
            today = timezone.localdate()
            start = today + datetime.timedelta(days=7 - today.weekday())
        created = skipped = 0
        for offset in range(opts["days"]):
            day = start + datetime.timedelta(days=offset)
            for begins, ends in TIME_SLOTS:
                if OrientationSchedule.objects.filter(date=day, time=begins).exists():
                    skipped += 1
                    continue
                create_schedule(
                    date=day,
                    time=begins,
                    end_time=ends,
                    venue_name=opts["venue"],
                    venue_address=opts["address"],
                    venue_capacity=opts["capacity"],
                    instructor=opts["instructor"],
                    total_slots=opts["slots"],
                )
                created += 1
        self.stdout.write(self.style.SUCCESS(f"Created {created} schedules, skipped {skipped} existing."))
