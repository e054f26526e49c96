# labs/management/commands/ensure_lab_users.py
from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand

from labs.models import User

DEMO_USERS = [
    ("admin1", User.ROLE_ADMIN),
    ("doctor1", User.ROLE_DOCTOR),
    ("reception1", User.ROLE_RECEPTIONIST),
    ("labtech1", User.ROLE_LAB_TECHNICIAN),
    ("pharmacist1", User.ROLE_PHARMACIST),
    ("patient1", User.ROLE_PATIENT),
]


class Command(BaseCommand):
    help = "Ensure one demo user per clinic role exists with the given password (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="123456")

    def handle(self, *args, **opts):
        password = make_password(opts["password"])
        for username, role in DEMO_USERS:
            u, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "password": password, "is_active": True},
            )
            if not created:
                # reset password, role and activation on every run
                u.password = password
                u.role = role
                u.is_active = True
                u.save(update_fields=["password", "role", "is_active"])
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role})"))
        self.stdout.write(self.style.SUCCESS("All lab demo users ensured."))
