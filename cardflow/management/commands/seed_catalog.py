"""
Seed job categories, document types and their requirements (idempotent).
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from cardflow.models import CardType, DocumentType, JobCategory

DOCUMENT_TYPES = [
    ("valid_id", "Valid Government ID", "Any valid government-issued ID"),
    ("picture", "2x2 ID Picture", "Recent colored 2x2 ID picture"),
    ("chest_xray", "Chest X-ray", "Recent chest X-ray result"),
    ("urinalysis", "Urinalysis", "Complete urinalysis test"),
    ("stool_exam", "Stool Examination", "Stool examination result"),
    ("cedula", "Cedula", "Community Tax Certificate"),
    ("drug_test", "Drug Test", "Drug test result (for security guards)"),
    ("neuro_exam", "Neuropsychiatric Test", "Neuropsychiatric evaluation (for security guards)"),
    ("hepatitis_b", "Hepatitis B Antibody Test", "Hepatitis B surface antibody test result"),
]

BASE_REQUIREMENTS = ["valid_id", "picture", "chest_xray", "urinalysis", "stool_exam", "cedula"]

JOB_CATEGORIES = [
    ("food", "Food Category", CardType.YELLOW, True, BASE_REQUIREMENTS),
    ("non_food", "Non-Food Category", CardType.GREEN, False, BASE_REQUIREMENTS),
    ("skin_to_skin", "Skin-to-Skin Category", CardType.PINK, False, BASE_REQUIREMENTS),
]


class Command(BaseCommand):
    help = "Seed job categories and document types (idempotent)."

    @transaction.atomic
    def handle(self, *args, **opts):
        docs = {}
        for code, name, description in DOCUMENT_TYPES:
            doc, created = DocumentType.objects.update_or_create(
                code=code, defaults={"name": name, "description": description},
            )
            docs[code] = doc
            if created:
                self.stdout.write(f"document type: {code}")

        for code, name, card_type, requires_orientation, required in JOB_CATEGORIES:
            category, _ = JobCategory.objects.update_or_create(
                code=code,
                defaults={"name": name, "card_type": card_type, "requires_orientation": requires_orientation},
            )
            category.required_documents.set([docs[c] for c in required])
            self.stdout.write(self.style.SUCCESS(f"ok: {name} ({len(required)} documents)"))
        self.stdout.write(self.style.SUCCESS("Catalog seeded."))
