from django.core.management.base import BaseCommand

from billing.services.catalog import seed_default_catalog


class Command(BaseCommand):
    help = "Add the default billable services to the catalog (idempotent)."

    def handle(self, *args, **options):
        added = seed_default_catalog()
        self.stdout.write(self.style.SUCCESS(f"Service catalog seeded: {added} added."))
