"""
Create the demo accounts used against a development database (idempotent).

Besides one account per role, ``admin_food`` is an administrator whose
review queue is narrowed to the food category; run ``seed_catalog``
first so that category exists.
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from cardflow.models import JobCategory, Role, User

# username, role, codes of the job categories the account manages
DEMO_ACCOUNTS = [
    ("applicant1", Role.APPLICANT, ()),
    ("admin1", Role.ADMIN, ()),
    ("admin_food", Role.ADMIN, ("food",)),
    ("inspector1", Role.INSPECTOR, ()),
    ("super", Role.SUPER, ()),
]


class Command(BaseCommand):
    help = "Ensure one demo account per role plus a category-scoped administrator."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="123456", help="Password set on every demo account.")

    @transaction.atomic
    def handle(self, *args, **opts):
        password = opts["password"]
        for username, role, category_codes in DEMO_ACCOUNTS:
            user = User.objects.filter(username=username).first() or User(username=username)
            user.role = role
            user.is_active = True
            user.set_password(password)
            user.save()

            categories = list(JobCategory.objects.filter(code__in=category_codes))
            missing = set(category_codes) - {c.code for c in categories}
            if missing:
                # an empty set would widen the account to every category
                raise CommandError(f"{username}: unknown categories {', '.join(sorted(missing))}; run seed_catalog first")
            user.managed_categories.set(categories)

            scope = ", ".join(c.code for c in categories) or "all categories"
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role}, {scope})"))
        self.stdout.write(self.style.SUCCESS(f"{len(DEMO_ACCOUNTS)} demo accounts ensured."))
