"""
Bill ledger operations.

All writes to a bill go through this module.  Each write runs in one
database transaction that first locks the bill row
(``select_for_update``), validates against the state read under that
lock, writes items or payments, and finally calls :func:`reconcile_bill`,
the only code that sets ``total_amount``, ``paid_amount`` and ``status``.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional

import bleach
from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound

from billing import ledger
from billing.exceptions import (
    BillingValidationError,
    DuplicateSubmission,
    EditNotAllowed,
    InvalidPayment,
    OverpaymentError,
    StorageError,
)
from billing.models import Bill, BillItem, Patient, PaymentHistory, User
from billing.permissions import capabilities_for, require_capability
from billing.services import notify, stats
from billing.services.audit import log_action

logger = logging.getLogger(__name__)

ITEM_TYPES = {value for value, _ in BillItem.TYPE_CHOICES}
PAYMENT_METHODS = {value for value, _ in PaymentHistory.METHOD_CHOICES}


def _clean(text: Optional[str]) -> str:
    return bleach.clean((text or '').strip(), strip=True)


@contextmanager
def _ledger_transaction():
    """``transaction.atomic`` that reports data-store failures as :class:`StorageError`."""
    try:
        with transaction.atomic():
            yield
    except DatabaseError as exc:
        logger.exception('billing transaction failed')
        raise StorageError(f'billing storage failure: {exc}') from exc


def _lock_bill(bill_id: int) -> Bill:
    bill = Bill.objects.select_for_update().filter(pk=bill_id).first()
    if bill is None:
        raise NotFound('bill not found')
    return bill


def _after_write(event: str, bill: Bill, data: Optional[dict] = None) -> None:
    transaction.on_commit(stats.invalidate)
    notify.publish_on_commit(event, bill.pk, {
        'status': bill.status,
        'totalAmount': str(bill.total_amount),
        'paidAmount': str(bill.paid_amount),
        **(data or {}),
    })


# ---------------------------------------------------------------------------
# Derived fields
# ---------------------------------------------------------------------------

def reconcile_bill(bill: Bill) -> bool:
    """Re-derive ``total_amount``, ``paid_amount`` and ``status`` from rows.

    Reads the bill's items and payment history, recomputes the money
    columns and the status, and saves them when they differ from what is
    stored.  Calling it again with unchanged rows is a no-op.  Must run
    inside the transaction that changed the items or payments.

    Returns ``True`` when stored values were corrected.
    """
    total = ledger.compute_total(bill.items.values_list('quantity', 'unit_price'))
    paid = ledger.compute_paid(bill.payments.values_list('amount', flat=True))
    status = ledger.derive_status(total, paid, cancelled=bill.is_cancelled)
    if (bill.total_amount, bill.paid_amount, bill.status) == (total, paid, status):
        return False
    bill.total_amount, bill.paid_amount, bill.status = total, paid, status
    bill.save(update_fields=['total_amount', 'paid_amount', 'status', 'updated_at'])
    return True


def _build_items(bill: Bill, items: Optional[Iterable[dict]]) -> list[BillItem]:
    rows: list[BillItem] = []
    for index, item in enumerate(items or [], start=1):
        item_type = item.get('item_type')
        if item_type not in ITEM_TYPES:
            raise BillingValidationError(f'item {index}: unknown item type {item_type!r}')
        description = _clean(item.get('description'))
        if not description:
            raise BillingValidationError(f'item {index}: description is required')
        try:
            quantity = ledger.to_quantity(item.get('quantity'))
            unit_price = ledger.to_money(item.get('unit_price'))
        except ValueError as exc:
            raise BillingValidationError(f'item {index}: {exc}')
        if quantity <= 0:
            raise BillingValidationError(f'item {index}: quantity must be greater than zero')
        if quantity > ledger.MAX_QUANTITY:
            raise BillingValidationError(f'item {index}: quantity cannot exceed {ledger.MAX_QUANTITY}')
        if unit_price < 0:
            raise BillingValidationError(f'item {index}: unit price cannot be negative')
        total_price = ledger.line_total(quantity, unit_price)
        if ledger.exceeds_amount_limit(unit_price) or ledger.exceeds_amount_limit(total_price):
            raise BillingValidationError(f'item {index}: line total cannot exceed {ledger.MAX_AMOUNT}')
        rows.append(BillItem(
            bill=bill,
            item_type=item_type,
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
        ))
    if ledger.exceeds_amount_limit(ledger.compute_total((r.quantity, r.unit_price) for r in rows)):
        raise BillingValidationError(f'bill total cannot exceed {ledger.MAX_AMOUNT}')
    return rows


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def visible_bills(user):
    """Bills ``user`` may see: everything for staff with the view capability,
    the linked patient record's bills for patients, nothing otherwise."""
    qs = Bill.objects.all()
    if not capabilities_for(user).can_view_bill:
        return qs.none()
    if user.role == User.ROLE_PATIENT:
        return qs.filter(patient__user=user)
    return qs


def get_bill(user, bill_id: int) -> Bill:
    bill = (
        visible_bills(user)
        .select_related('patient', 'created_by')
        .prefetch_related('items', 'payments__paid_by')
        .filter(pk=bill_id)
        .first()
    )
    if bill is None:
        raise NotFound('bill not found')
    return bill


def list_bills(user, *, patient_id: Optional[int] = None, status: Optional[str] = None,
               payment_method: Optional[str] = None, created_by: Optional[int] = None,
               date_from: Optional[date] = None, date_to: Optional[date] = None,
               page: int = 1, page_size: int = 20) -> tuple[list[dict], int]:
    qs = visible_bills(user)
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if status:
        qs = qs.filter(status=status)
    if payment_method:
        qs = qs.filter(payments__payment_method=payment_method).distinct()
    if created_by:
        qs = qs.filter(created_by_id=created_by)
    if date_from:
        qs = qs.filter(created_at__date__gte=date_from)
    if date_to:
        qs = qs.filter(created_at__date__lte=date_to)

    total = qs.count()
    page = max(1, int(page or 1))
    page_size = min(100, max(1, int(page_size or 20)))
    start = (page - 1) * page_size
    bills = (
        qs.select_related('patient', 'created_by')
        .prefetch_related('items', 'payments__paid_by')
        .order_by('-created_at', '-id')[start:start + page_size]
    )
    return [format_bill(b) for b in bills], total


def payment_summary(bill: Bill) -> dict:
    payments = list(bill.payments.all())
    last = max((p.paid_at for p in payments), default=None)
    return {
        'billId': bill.pk,
        'totalAmount': str(bill.total_amount),
        'paidAmount': str(bill.paid_amount),
        'remainingAmount': str(ledger.remaining_balance(bill.total_amount, bill.paid_amount)),
        'status': bill.status,
        'paymentCount': len(payments),
        'lastPaymentDate': last.isoformat() if last else None,
    }


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def create_bill(user, *, patient_id: Optional[int], items: Optional[Iterable[dict]] = None,
                notes: Optional[str] = '') -> Bill:
    require_capability(user, 'can_create_bill')
    if not patient_id:
        raise BillingValidationError('patient is required')
    patient = Patient.objects.filter(pk=patient_id).first()
    if patient is None:
        raise BillingValidationError('patient not found')

    bill = Bill(patient=patient, created_by=user, notes=_clean(notes))
    rows = _build_items(bill, items)
    with _ledger_transaction():
        bill.save()
        BillItem.objects.bulk_create(rows)
        reconcile_bill(bill)
        log_action(user=user, action='bill_create', object_type='bill', object_id=bill.pk,
                   detail={'patientId': patient.pk, 'totalAmount': str(bill.total_amount)})
        _after_write(notify.BILL_CREATED, bill)
    logger.info('bill %s created for patient %s total=%s', bill.pk, patient.pk, bill.total_amount)
    return bill


def update_bill(user, bill_id: int, *, items: Optional[Iterable[dict]] = None,
                notes: Optional[str] = None) -> Bill:
    """Replace the item set and/or the notes of an unpaid bill.

    ``items=None`` leaves items untouched; a list (even empty) replaces
    them all.  A new item set whose total is below what has already been
    paid is refused, so ``paid_amount <= total_amount`` always holds.
    """
    require_capability(user, 'can_edit_bill')
    with _ledger_transaction():
        bill = _lock_bill(bill_id)
        if bill.status == Bill.STATUS_PAID:
            raise EditNotAllowed('paid bills cannot be edited')
        if bill.is_cancelled:
            raise EditNotAllowed('cancelled bills cannot be edited')
        previous_status = bill.status

        if notes is not None:
            bill.notes = _clean(notes)
            bill.save(update_fields=['notes', 'updated_at'])

        if items is not None:
            new_items = _build_items(bill, items)
            new_total = ledger.compute_total((i.quantity, i.unit_price) for i in new_items)
            paid = ledger.compute_paid(bill.payments.values_list('amount', flat=True))
            if new_total < paid:
                raise BillingValidationError(
                    f'new total {new_total} is below the {paid} already paid on this bill'
                )
            bill.items.all().delete()
            BillItem.objects.bulk_create(new_items)

        reconcile_bill(bill)
        log_action(user=user, action='bill_update', object_type='bill', object_id=bill.pk,
                   detail={'itemsReplaced': items is not None, 'totalAmount': str(bill.total_amount)})
        _after_write(notify.BILL_UPDATED, bill)
        if bill.status != previous_status:
            notify.publish_on_commit(notify.BILL_STATUS_CHANGED, bill.pk, {'status': bill.status})
    return bill


def cancel_bill(user, bill_id: int, *, reason: Optional[str] = '') -> Bill:
    """Mark a bill cancelled.  Cancellation is permanent; paid bills cannot be cancelled."""
    require_capability(user, 'can_edit_bill')
    with _ledger_transaction():
        bill = _lock_bill(bill_id)
        if bill.is_cancelled:
            return bill
        if bill.status == Bill.STATUS_PAID:
            raise EditNotAllowed('paid bills cannot be cancelled')
        bill.status = Bill.STATUS_CANCELLED
        bill.cancelled_at = timezone.now()
        bill.save(update_fields=['status', 'cancelled_at', 'updated_at'])
        log_action(user=user, action='bill_cancel', object_type='bill', object_id=bill.pk,
                   detail={'reason': _clean(reason)})
        _after_write(notify.BILL_STATUS_CHANGED, bill)
    logger.info('bill %s cancelled by %s', bill.pk, getattr(user, 'pk', None))
    return bill


def delete_bill(user, bill_id: int) -> None:
    """Delete a bill and its items.  Bills with recorded payments are kept."""
    require_capability(user, 'can_delete_bill')
    with _ledger_transaction():
        bill = _lock_bill(bill_id)
        if bill.payments.exists():
            raise EditNotAllowed('bills with recorded payments cannot be deleted')
        bill_pk = bill.pk
        bill.delete()
        log_action(user=user, action='bill_delete', object_type='bill', object_id=bill_pk,
                   detail={'patientId': bill.patient_id})
        transaction.on_commit(stats.invalidate)
        notify.publish_on_commit(notify.BILL_DELETED, bill_pk)


def _check_recent_duplicate(bill: Bill, user, amount: Decimal) -> None:
    window = getattr(settings, 'BILLING_DUPLICATE_WINDOW_SECONDS', 0)
    if window <= 0:
        return
    since = timezone.now() - timedelta(seconds=window)
    if bill.payments.filter(paid_by=user, amount=amount, paid_at__gte=since).exists():
        raise DuplicateSubmission(
            'a payment with the same amount was just recorded by you on this bill'
        )


def record_payment(user, *, bill_id: int, amount: Any, payment_method: str,
                   notes: Optional[str] = '', idempotency_key: Optional[str] = None) -> PaymentHistory:
    """Append a payment to a bill's ledger.

    The bill row is locked, the remaining balance is computed from the
    items and payment history read under that lock, the payment is
    validated against it, written, and the bill's derived fields are
    re-derived, all in one transaction.  Two concurrent payments against
    the same bill are therefore serialized and the second one sees the
    first one's effect.

    Raises :class:`InvalidPayment` for non-positive amounts, unsupported
    methods or cancelled bills, :class:`OverpaymentError` when the amount
    exceeds the remaining balance, and :class:`DuplicateSubmission` for a
    reused idempotency key or a same-amount resubmission within
    ``BILLING_DUPLICATE_WINDOW_SECONDS``.
    """
    require_capability(user, 'can_record_payment')
    if payment_method not in PAYMENT_METHODS:
        raise InvalidPayment(f'unsupported payment method {payment_method!r}')
    try:
        amount = ledger.to_money(amount)
    except ValueError as exc:
        raise InvalidPayment(str(exc))
    key = (idempotency_key or '').strip() or None

    with _ledger_transaction():
        bill = _lock_bill(bill_id)
        if key and bill.payments.filter(idempotency_key=key).exists():
            raise DuplicateSubmission('a payment with this idempotency key was already recorded')
        if bill.is_cancelled:
            raise InvalidPayment('cannot record a payment against a cancelled bill')

        total = ledger.compute_total(bill.items.values_list('quantity', 'unit_price'))
        paid = ledger.compute_paid(bill.payments.values_list('amount', flat=True))
        problem = ledger.check_payment(amount, total, paid)
        if problem == 'non_positive':
            raise InvalidPayment('payment amount must be greater than zero')
        if problem == 'exceeds_balance':
            remaining = ledger.remaining_balance(total, paid)
            logger.warning('overpayment refused on bill %s: amount=%s remaining=%s', bill.pk, amount, remaining)
            raise OverpaymentError(f'payment of {amount} exceeds the remaining balance of {remaining}')
        _check_recent_duplicate(bill, user, amount)

        previous_status = bill.status
        try:
            with transaction.atomic():
                payment = PaymentHistory.objects.create(
                    bill=bill,
                    paid_by=user,
                    amount=amount,
                    payment_method=payment_method,
                    notes=_clean(notes),
                    idempotency_key=key,
                )
        except IntegrityError as exc:
            raise DuplicateSubmission('a payment with this idempotency key was already recorded') from exc

        reconcile_bill(bill)
        log_action(user=user, action='payment_record', object_type='bill', object_id=bill.pk,
                   detail={'paymentId': payment.pk, 'amount': str(amount), 'method': payment_method})
        _after_write(notify.PAYMENT_RECORDED, bill, {'paymentId': payment.pk, 'amount': str(amount)})
        if bill.status != previous_status:
            notify.publish_on_commit(notify.BILL_STATUS_CHANGED, bill.pk, {'status': bill.status})

    logger.info('payment %s of %s recorded on bill %s (%s -> %s)',
                payment.pk, amount, bill.pk, previous_status, bill.status)
    return payment


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def _user_name(user: Optional[User]) -> Optional[str]:
    if user is None:
        return None
    return user.get_full_name() or user.username


def format_item(item: BillItem) -> dict:
    return {
        'id': item.pk,
        'itemType': item.item_type,
        'description': item.description,
        'quantity': str(item.quantity),
        'unitPrice': str(item.unit_price),
        'totalPrice': str(item.total_price),
    }


def format_payment(payment: PaymentHistory) -> dict:
    return {
        'id': payment.pk,
        'billId': payment.bill_id,
        'amount': str(payment.amount),
        'paymentMethod': payment.payment_method,
        'paidAt': payment.paid_at.isoformat(),
        'paidBy': payment.paid_by_id,
        'paidByName': _user_name(payment.paid_by),
        'notes': payment.notes,
    }


def format_bill(bill: Bill) -> dict:
    return {
        'id': bill.pk,
        'patientId': bill.patient_id,
        'patient': {
            'id': bill.patient.pk,
            'name': bill.patient.full_name,
            'mrn': bill.patient.mrn,
        },
        'createdBy': bill.created_by_id,
        'createdByName': _user_name(bill.created_by),
        'totalAmount': str(bill.total_amount),
        'paidAmount': str(bill.paid_amount),
        'remainingAmount': str(ledger.remaining_balance(bill.total_amount, bill.paid_amount)),
        'status': bill.status,
        'notes': bill.notes,
        'createdAt': bill.created_at.isoformat() if bill.created_at else None,
        'updatedAt': bill.updated_at.isoformat() if bill.updated_at else None,
        'cancelledAt': bill.cancelled_at.isoformat() if bill.cancelled_at else None,
        'items': [format_item(i) for i in bill.items.all()],
        'payments': [format_payment(p) for p in sorted(bill.payments.all(), key=lambda p: (p.paid_at, p.pk))],
    }
