import logging

from django.core.management.base import BaseCommand
from django.db import transaction

from billing.models import Bill
from billing.services import stats
from billing.services.bills import reconcile_bill

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Re-derive total, paid amount and status of bills from their items and payment history."

    def add_arguments(self, parser):
        parser.add_argument("bill_ids", nargs="*", type=int, help="bills to check (default: all)")
        parser.add_argument("--dry-run", action="store_true", help="report mismatches without saving")

    def handle(self, *args, **options):
        ids = options["bill_ids"] or list(Bill.objects.order_by("id").values_list("id", flat=True))
        corrected = 0
        for bill_id in ids:
            with transaction.atomic():
                bill = Bill.objects.select_for_update().filter(pk=bill_id).first()
                if bill is None:
                    self.stderr.write(f"bill {bill_id} not found")
                    continue
                before = (bill.total_amount, bill.paid_amount, bill.status)
                if not reconcile_bill(bill):
                    continue
                corrected += 1
                after = (bill.total_amount, bill.paid_amount, bill.status)
                logger.warning("bill %s reconciled: %s -> %s", bill_id, before, after)
                self.stdout.write(f"bill {bill_id}: {before} -> {after}")
                if options["dry_run"]:
                    transaction.set_rollback(True)
        if corrected and not options["dry_run"]:
            stats.invalidate()
        self.stdout.write(self.style.SUCCESS(f"Checked {len(ids)} bills, {corrected} out of sync."))
