import pytest
from django.core.management import call_command
from django.urls import reverse
from rest_framework.test import APIClient

from billing.models import AuditEvent, Patient, User
from billing.permissions import ROLE_CAPABILITIES, capabilities_for

pytestmark = pytest.mark.django_db


def login(client, username, password):
    return client.post(reverse('auth-login'), {'username': username, 'password': password}, format='json')


def test_login_returns_jwt_legacy_token_and_capabilities():
    client = APIClient()
    User.objects.create_user(username='acct', password='P@ssw0rd1', role='accountant')
    r = login(client, 'acct', 'P@ssw0rd1')
    assert r.status_code == 200
    assert r.data['token'] and r.data['jwt_access'] and r.data['jwt_refresh']
    caps = r.data['user']['capabilities']
    assert caps['can_record_payment'] is True
    assert caps['can_create_bill'] is False


def test_no_role_bypass_in_login():
    client = APIClient()
    u = User.objects.create_user(username='u1', password='P@ssw0rd1', role='patient')
    r = client.post(reverse('auth-login'), {'username': 'u1', 'password': 'P@ssw0rd1', 'role': 'admin'}, format='json')
    assert r.status_code == 200
    assert r.data['role'] == 'patient'
    u.refresh_from_db()
    assert u.role == 'patient'


def test_failed_login_is_audited():
    client = APIClient()
    r = login(client, 'ghost', 'nope')
    assert r.status_code == 401
    assert r.data['error']['code'] == 'authentication_failed'
    assert AuditEvent.objects.filter(action='login', detail__result='fail').exists()


def test_token_and_bearer_auth_both_work():
    client = APIClient()
    User.objects.create_user(username='doc', password='P@ssw0rd1', role='doctor')
    r = login(client, 'doc', 'P@ssw0rd1')

    client.credentials(HTTP_AUTHORIZATION=f"Token {r.data['token']}")
    assert client.get(reverse('auth-me')).data['data']['role'] == 'doctor'

    client.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['jwt_access']}")
    assert client.get(reverse('auth-me')).status_code == 200


def test_logout_blacklists_refresh_token():
    client = APIClient()
    User.objects.create_user(username='n1', password='P@ssw0rd1', role='nurse')
    r = login(client, 'n1', 'P@ssw0rd1')
    refresh = r.data['jwt_refresh']
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['jwt_access']}")
    out = client.post(reverse('auth-logout'), {'refresh': refresh}, format='json')
    assert out.status_code == 200 and out.data['blacklisted'] == 1

    anon = APIClient()
    again = anon.post(reverse('auth-refresh'), {'refresh': refresh}, format='json')
    assert again.status_code == 401


def test_capability_table_covers_every_role():
    assert set(ROLE_CAPABILITIES) == {role for role, _ in User.ROLE_CHOICES}
    assert not any(vars(ROLE_CAPABILITIES['lab_technician']).values())
    admin = ROLE_CAPABILITIES['admin']
    assert all(vars(admin).values())


def test_unknown_or_anonymous_user_has_no_capabilities():
    assert not capabilities_for(None).can_view_bill
    u = User(username='x', role='janitor')
    assert not capabilities_for(u).can_view_bill


def test_staff_register_patients_and_patients_cannot(users, client_for):
    c = client_for(users['receptionist'])
    r = c.post(reverse('patients'), {'firstName': 'Meera', 'lastName': 'Iyer', 'contact': '98450 00000'}, format='json')
    assert r.status_code == 201
    assert r.data['data']['mrn'].startswith('MRN-')

    dup = c.post(reverse('patients'), {'firstName': 'Other', 'mrn': r.data['data']['mrn']}, format='json')
    assert dup.status_code == 400

    found = c.get(reverse('patients'), {'q': 'iyer'})
    assert found.data['total'] == 1

    assert client_for(users['patient']).get(reverse('patients')).status_code == 403


def test_patient_can_be_linked_to_portal_account(users, client_for):
    c = client_for(users['admin'])
    r = c.post(reverse('patients'), {'firstName': 'Ravi', 'userId': users['patient'].pk}, format='json')
    assert r.status_code == 201
    assert Patient.objects.get(pk=r.data['data']['id']).user == users['patient']

    again = c.post(reverse('patients'), {'firstName': 'Ravi', 'userId': users['patient'].pk}, format='json')
    assert again.status_code == 400


def test_service_catalog_seed_and_admin_create(users, client_for):
    call_command('seed_service_catalog')
    call_command('seed_service_catalog')
    c = client_for(users['doctor'])
    r = c.get(reverse('services'))
    assert len(r.data['data']) == 6
    labs = c.get(reverse('services'), {'category': 'lab_test'})
    assert {s['name'] for s in labs.data['data']} == {'Blood Test - Basic', 'Blood Test - Comprehensive'}

    assert c.post(reverse('services'), {'name': 'MRI', 'category': 'imaging', 'price': '9000'}, format='json').status_code == 403
    created = client_for(users['admin']).post(
        reverse('services'), {'name': 'MRI Brain', 'category': 'Imaging', 'price': '9000'}, format='json'
    )
    assert created.status_code == 201
    assert created.data['data']['price'] == '9000.00'
    assert created.data['data']['category'] == 'imaging'


def test_healthz():
    r = APIClient().get(reverse('healthz'))
    assert r.status_code == 200
    assert r.json()['db'] is True


def test_ensure_test_users_creates_one_per_role():
    call_command('ensure_test_users', password='Secr3t!pw')
    assert set(User.objects.values_list('role', flat=True)) == {role for role, _ in User.ROLE_CHOICES}
    assert User.objects.get(username='accountant1').check_password('Secr3t!pw')
