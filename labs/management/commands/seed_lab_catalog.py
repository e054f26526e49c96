from django.core.management.base import BaseCommand
from django.db import transaction

from labs.models import LabTest

# code, name, department, turnaround hours, accepted units
CATALOG = [
    ("HEM001", "Complete Blood Count (CBC)", "Hematology", 24, ["g/dL", "%", "x10^9/L", "x10^12/L", "fL", "pg"]),
    ("BIO001", "Lipid Profile", "Biochemistry", 24, ["mg/dL", "mmol/L"]),
    ("BIO002", "Thyroid Function Test (TFT)", "Biochemistry", 48, ["mIU/L", "pmol/L", "ng/dL"]),
    ("CLI001", "Urinalysis Routine", "Clinical Pathology", 4, []),
    ("BIO003", "Liver Function Test (LFT)", "Biochemistry", 24, ["U/L", "mg/dL", "g/dL"]),
    ("MIC001", "Blood Culture", "Microbiology", 72, []),
    ("BIO004", "HbA1c", "Biochemistry", 4, ["%", "mmol/mol"]),
    ("BIO005", "Serum Electrolytes", "Biochemistry", 4, ["mmol/L", "mEq/L"]),
]


class Command(BaseCommand):
    help = "Create or update the standard lab test catalog (idempotent)."

    @transaction.atomic
    def handle(self, *args, **opts):
        created_n = 0
        for code, name, department, hours, units in CATALOG:
            _, created = LabTest.objects.update_or_create(
                code=code,
                defaults={
                    "name": name,
                    "department": department,
                    "turnaround_hours": hours,
                    "units": units,
                    "is_active": True,
                },
            )
            created_n += int(created)
        self.stdout.write(self.style.SUCCESS(
            f"Lab catalog seeded: {created_n} created, {len(CATALOG) - created_n} updated."
        ))
