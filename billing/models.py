"""
Database models for the hospital billing backend.

The billing ledger is the heart of the data model: a :class:`Bill` owns
its :class:`BillItem` lines and an append-only :class:`PaymentHistory`.
The money columns on the bill (``total_amount``, ``paid_amount``) and its
``status`` are derived values; they are written only by
:func:`billing.services.bills.reconcile_bill` inside the transaction that
changed the underlying rows.
"""
from __future__ import annotations

from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from billing import ledger

ZERO = ledger.ZERO


class User(AbstractUser):
    """Custom user model carrying the hospital role.

    What a role may do in billing is defined once, in
    :data:`billing.permissions.ROLE_CAPABILITIES`.
    """
    ROLE_ADMIN = 'admin'
    ROLE_RECEPTIONIST = 'receptionist'
    ROLE_DOCTOR = 'doctor'
    ROLE_NURSE = 'nurse'
    ROLE_LAB_TECHNICIAN = 'lab_technician'
    ROLE_ACCOUNTANT = 'accountant'
    ROLE_PATIENT = 'patient'
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Administrator'),
        (ROLE_RECEPTIONIST, 'Receptionist'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_NURSE, 'Nurse'),
        (ROLE_LAB_TECHNICIAN, 'Lab technician'),
        (ROLE_ACCOUNTANT, 'Accountant'),
        (ROLE_PATIENT, 'Patient'),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_PATIENT, db_index=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Patient(models.Model):
    """A registered patient.

    ``user`` is optional and links the record to a portal account so that
    a patient can see their own bills.
    """
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    # Medical record number, unique across the hospital
    mrn = models.CharField(max_length=32, unique=True)
    contact = models.CharField(max_length=64, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    user = models.OneToOneField(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='patient_record'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['last_name', 'first_name'], name='billing_pat_last_na_3c1f0e_idx'),
        ]

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self) -> str:
        return f"{self.full_name} ({self.mrn})"


class ServiceCatalogItem(models.Model):
    """A billable service with its list price."""
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=64, db_index=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(price__gte=0), name='ck_service_price_non_negative'),
        ]

    def __str__(self) -> str:
        return f"{self.name} [{self.category}] {self.price}"


class Bill(models.Model):
    """One patient's invoice.

    ``total_amount``, ``paid_amount`` and ``status`` are derived from the
    items and the payment ledger; ``cancelled`` is the only status that is
    set explicitly and it never reverts.
    """
    STATUS_PENDING = ledger.STATUS_PENDING
    STATUS_PARTIAL = ledger.STATUS_PARTIAL
    STATUS_PAID = ledger.STATUS_PAID
    STATUS_CANCELLED = ledger.STATUS_CANCELLED
    STATUS_CHOICES = (
        (STATUS_PENDING, 'pending'),
        (STATUS_PARTIAL, 'partial'),
        (STATUS_PAID, 'paid'),
        (STATUS_CANCELLED, 'cancelled'),
    )

    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='bills')
    created_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='bills_created'
    )
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    notes = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['patient', 'created_at'], name='billing_bil_patient_5b7e2d_idx'),
            models.Index(fields=['status', 'created_at'], name='billing_bil_status_8d4a91_idx'),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(total_amount__gte=0), name='ck_bill_total_non_negative'),
            models.CheckConstraint(condition=Q(paid_amount__gte=0), name='ck_bill_paid_non_negative'),
            models.CheckConstraint(
                condition=Q(paid_amount__lte=F('total_amount')), name='ck_bill_paid_within_total'
            ),
        ]

    @property
    def remaining_amount(self) -> Decimal:
        return self.total_amount - self.paid_amount

    @property
    def is_cancelled(self) -> bool:
        return self.status == self.STATUS_CANCELLED

    def __str__(self) -> str:
        return f"Bill #{self.pk} p={self.patient_id} {self.status} {self.paid_amount}/{self.total_amount}"


class BillItem(models.Model):
    """A billable line; replaced wholesale when the bill's items are edited."""
    TYPE_APPOINTMENT = 'appointment'
    TYPE_LAB_TEST = 'lab_test'
    TYPE_PROCEDURE = 'procedure'
    TYPE_MEDICATION = 'medication'
    TYPE_CHOICES = (
        (TYPE_APPOINTMENT, 'appointment'),
        (TYPE_LAB_TEST, 'lab_test'),
        (TYPE_PROCEDURE, 'procedure'),
        (TYPE_MEDICATION, 'medication'),
    )

    bill = models.ForeignKey(Bill, on_delete=models.CASCADE, related_name='items')
    item_type = models.CharField(max_length=16, choices=TYPE_CHOICES)
    description = models.CharField(max_length=255)
    quantity = models.DecimalField(max_digits=10, decimal_places=2)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name='ck_bill_item_quantity_positive'),
            models.CheckConstraint(condition=Q(unit_price__gte=0), name='ck_bill_item_price_non_negative'),
        ]

    def __str__(self) -> str:
        return f"{self.description} x{self.quantity} @ {self.unit_price}"


class PaymentHistory(models.Model):
    """One payment against a bill.

    Rows are append-only: the application creates them and never updates
    or deletes them.  ``idempotency_key`` is unique per bill, so a client
    retrying the same submission cannot record it twice.
    """
    METHOD_CASH = 'cash'
    METHOD_CARD = 'card'
    METHOD_INSURANCE = 'insurance'
    METHOD_CHOICES = (
        (METHOD_CASH, 'cash'),
        (METHOD_CARD, 'card'),
        (METHOD_INSURANCE, 'insurance'),
    )

    bill = models.ForeignKey(Bill, on_delete=models.PROTECT, related_name='payments')
    paid_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='payments_recorded'
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=16, choices=METHOD_CHOICES)
    paid_at = models.DateTimeField(default=timezone.now, db_index=True)
    notes = models.TextField(blank=True)
    idempotency_key = models.CharField(max_length=64, null=True, blank=True)

    class Meta:
        verbose_name_plural = 'payment history'
        indexes = [
            models.Index(fields=['bill', 'paid_at'], name='billing_pay_bill_id_e2c7a4_idx'),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name='ck_payment_amount_positive'),
            models.UniqueConstraint(fields=['bill', 'idempotency_key'], name='uq_payment_idempotency_key'),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            from billing.exceptions import EditNotAllowed
            raise EditNotAllowed('payment records are append-only')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        from billing.exceptions import EditNotAllowed
        raise EditNotAllowed('payment records are append-only')

    def __str__(self) -> str:
        return f"{self.amount} {self.payment_method} -> bill {self.bill_id}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='billing_aud_action_7f3b20_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='billing_aud_object__a91c5e_idx'),
        ]

    def __str__(self):
        return f"{self.action}:{self.object_type}:{self.object_id}"
