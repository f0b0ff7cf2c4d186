from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command

from billing.models import Bill, PaymentHistory
from billing.services import bills as bill_service

pytestmark = pytest.mark.django_db


def test_reconcile_is_a_no_op_on_consistent_bill(make_bill):
    bill = make_bill([(1, '1000'), (2, '400')])
    assert bill.total_amount == Decimal('1800.00')
    assert bill_service.reconcile_bill(bill) is False
    assert bill_service.reconcile_bill(bill) is False


def test_reconcile_command_repairs_drifted_columns(make_bill, users):
    bill = make_bill([(1, '1000')])
    PaymentHistory.objects.create(bill=bill, amount=Decimal('300.00'), payment_method='cash', paid_by=users['accountant'])
    Bill.objects.filter(pk=bill.pk).update(total_amount=Decimal('999.00'), paid_amount=Decimal('0.00'), status='pending')

    out = StringIO()
    call_command('reconcile_bills', '--dry-run', stdout=out)
    assert '1 out of sync' in out.getvalue()
    assert Bill.objects.get(pk=bill.pk).total_amount == Decimal('999.00')

    call_command('reconcile_bills', str(bill.pk), stdout=StringIO())
    bill.refresh_from_db()
    assert (bill.total_amount, bill.paid_amount, bill.status) == (Decimal('1000.00'), Decimal('300.00'), 'partial')


def test_reconcile_keeps_cancellation(make_bill, users):
    bill = make_bill([(1, '500')])
    bill_service.cancel_bill(users['admin'], bill.pk)
    bill.refresh_from_db()
    assert bill_service.reconcile_bill(bill) is False
    assert bill.status == Bill.STATUS_CANCELLED


def test_payments_replay_to_the_same_state(make_bill, users):
    bill = make_bill([(1, '1000')])
    bill_service.record_payment(users['accountant'], bill_id=bill.pk, amount='300', payment_method='cash')
    bill_service.record_payment(users['admin'], bill_id=bill.pk, amount='700', payment_method='card')
    bill.refresh_from_db()
    assert bill.status == Bill.STATUS_PAID

    Bill.objects.filter(pk=bill.pk).update(paid_amount=Decimal('0.00'), status='pending')
    bill.refresh_from_db()
    assert bill_service.reconcile_bill(bill) is True
    assert (bill.paid_amount, bill.status) == (Decimal('1000.00'), Bill.STATUS_PAID)
