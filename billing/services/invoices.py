"""Invoice rendering.  Read-only over the bill aggregate."""
from django.conf import settings
from django.template.loader import render_to_string
from django.utils import timezone

from billing import ledger
from billing.models import Bill


def invoice_number(bill: Bill) -> str:
    return f"INV-{bill.created_at:%Y%m}-{bill.pk:06d}"


def render_invoice(bill: Bill) -> str:
    items = list(bill.items.all())
    payments = sorted(bill.payments.all(), key=lambda p: (p.paid_at, p.pk))
    return render_to_string('billing/invoice.html', {
        'bill': bill,
        'invoice_number': invoice_number(bill),
        'hospital_name': settings.BILLING_HOSPITAL_NAME,
        'currency': settings.BILLING_CURRENCY,
        'items': items,
        'payments': payments,
        'remaining': ledger.remaining_balance(bill.total_amount, bill.paid_amount),
        'generated_at': timezone.localtime(),
    })
