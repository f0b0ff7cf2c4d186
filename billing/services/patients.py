import secrets
from typing import Optional

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework.exceptions import ValidationError as DRFValidation

from billing.models import Patient, User


def generate_mrn() -> str:
    # e.g. MRN-20261018-3F9A1C
    return f"MRN-{timezone.localdate():%Y%m%d}-{secrets.token_hex(3).upper()}"


def create_patient(*, first_name, last_name='', mrn=None, contact='',
                   date_of_birth=None, user_id: Optional[int] = None) -> Patient:
    """Register a patient, generating an MRN when none is given.

    ``user_id`` links the record to an existing portal account with the
    ``patient`` role.
    """
    portal_user = None
    if user_id:
        portal_user = User.objects.filter(id=user_id, role=User.ROLE_PATIENT).first()
        if portal_user is None:
            raise DRFValidation({'userId': 'no patient account with this id'})
        if Patient.objects.filter(user=portal_user).exists():
            raise DRFValidation({'userId': 'account is already linked to a patient'})

    if mrn and Patient.objects.filter(mrn=mrn).exists():
        raise DRFValidation({'mrn': 'medical record number already in use'})

    # a generated MRN may collide; retry a few times
    for _ in range(5):
        try:
            with transaction.atomic():
                return Patient.objects.create(
                    first_name=first_name,
                    last_name=last_name or '',
                    mrn=mrn or generate_mrn(),
                    contact=contact or '',
                    date_of_birth=date_of_birth,
                    user=portal_user,
                )
        except IntegrityError:
            if mrn:
                raise DRFValidation({'mrn': 'medical record number already in use'})
    raise DRFValidation({'mrn': 'could not allocate a medical record number'})


def list_patients(*, search=None, page=1, page_size=20):
    qs = Patient.objects.select_related('user')
    if search:
        qs = qs.filter(
            Q(first_name__icontains=search) | Q(last_name__icontains=search)
            | Q(mrn__icontains=search) | Q(contact__icontains=search)
        )
    total = qs.count()
    start = (page - 1) * page_size
    return list(qs.order_by('last_name', 'first_name', 'id')[start:start + page_size]), total


def format_patient(p: Patient) -> dict:
    return {
        'id': p.id,
        'firstName': p.first_name,
        'lastName': p.last_name,
        'name': p.full_name,
        'mrn': p.mrn,
        'contact': p.contact,
        'dateOfBirth': p.date_of_birth.isoformat() if p.date_of_birth else None,
        'userId': p.user_id,
    }
