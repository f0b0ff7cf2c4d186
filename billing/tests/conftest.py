import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from billing.models import BillItem, Patient, User
from billing.services import bills as bill_service


@pytest.fixture(autouse=True)
def _clear_cache():
    # stats and throttle counters live in the cache
    cache.clear()
    yield
    cache.clear()


def make_user(username, role, password='P@ssw0rd1'):
    return User.objects.create_user(username=username, password=password, role=role)


@pytest.fixture
def users(db):
    return {role: make_user(f'{role}1', role) for role, _ in User.ROLE_CHOICES}


@pytest.fixture
def patient(db):
    return Patient.objects.create(first_name='Asha', last_name='Rao', mrn='MRN-TEST-0001')


@pytest.fixture
def client_for():
    def _client(user):
        c = APIClient()
        c.force_authenticate(user=user)
        return c
    return _client


@pytest.fixture
def make_bill(users, patient):
    """Bill built through the service layer, e.g. ``make_bill([(1, '1000.00')])``."""
    def _make(lines=(), *, by=None, for_patient=None):
        items = [
            {'item_type': BillItem.TYPE_PROCEDURE, 'description': f'line {n}', 'quantity': q, 'unit_price': p}
            for n, (q, p) in enumerate(lines, start=1)
        ]
        return bill_service.create_bill(by or users['admin'], patient_id=(for_patient or patient).pk, items=items)
    return _make
