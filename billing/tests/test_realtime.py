"""
Websocket access rules and event delivery.

Each test drives the consumers through ``WebsocketCommunicator`` from a
plain test function: the async part runs under ``async_to_sync`` and
database work is routed back to the test thread, so the ordinary ``db``
fixture is enough.  Commit callbacks are executed with
``django_capture_on_commit_callbacks``.
"""
import pytest
from asgiref.sync import async_to_sync, sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator

from billing.exceptions import OverpaymentError
from billing.models import Patient
from billing.realtime.routing import websocket_urlpatterns
from billing.services import bills as bill_service

application = URLRouter(websocket_urlpatterns)


def communicator(user, path):
    comm = WebsocketCommunicator(application, path)
    comm.scope['user'] = user
    return comm


async def try_connect(user, path):
    comm = communicator(user, path)
    connected, code = await comm.connect()
    await comm.disconnect()
    return connected, code


@pytest.mark.django_db
def test_patients_are_refused_the_billing_desk_stream(users):
    assert async_to_sync(try_connect)(users['patient'], '/ws/billing/') == (False, 4003)


@pytest.mark.django_db
def test_roles_without_bill_access_are_refused(users, make_bill):
    bill = make_bill([(1, '100.00')])
    lab = users['lab_technician']
    assert async_to_sync(try_connect)(lab, '/ws/billing/') == (False, 4003)
    assert async_to_sync(try_connect)(lab, f'/ws/billing/bills/{bill.pk}/') == (False, 4003)


@pytest.mark.django_db
def test_staff_receive_welcome_on_the_billing_desk_stream(users):
    async def run():
        comm = communicator(users['accountant'], '/ws/billing/')
        connected, _ = await comm.connect()
        welcome = await comm.receive_json_from()
        await comm.disconnect()
        return connected, welcome

    connected, welcome = async_to_sync(run)()
    assert connected
    assert welcome['type'] == 'welcome'


@pytest.mark.django_db
def test_bill_stream_is_closed_for_bills_the_user_cannot_see(users, make_bill):
    other_bill = make_bill([(1, '100.00')])
    own_record = Patient.objects.create(first_name='Meera', mrn='MRN-TEST-0002', user=users['patient'])
    own_bill = make_bill([(1, '100.00')], for_patient=own_record)

    assert async_to_sync(try_connect)(users['patient'], f'/ws/billing/bills/{other_bill.pk}/') == (False, 4004)
    assert async_to_sync(try_connect)(users['admin'], '/ws/billing/bills/999999/') == (False, 4004)

    connected, _ = async_to_sync(try_connect)(users['patient'], f'/ws/billing/bills/{own_bill.pk}/')
    assert connected


@pytest.mark.django_db
def test_payment_events_reach_bill_subscribers_after_commit(users, make_bill, django_capture_on_commit_callbacks):
    bill = make_bill([(1, '1000.00')])

    def pay(amount):
        with django_capture_on_commit_callbacks(execute=True):
            bill_service.record_payment(users['accountant'], bill_id=bill.pk, amount=amount, payment_method='cash')

    async def run():
        comm = communicator(users['accountant'], f'/ws/billing/bills/{bill.pk}/')
        connected, _ = await comm.connect()
        assert connected
        welcome = await comm.receive_json_from()
        await sync_to_async(pay)('1000.00')
        events = [await comm.receive_json_from(timeout=2), await comm.receive_json_from(timeout=2)]
        await comm.disconnect()
        return welcome, events

    welcome, events = async_to_sync(run)()
    assert welcome['billId'] == bill.pk
    assert [e['event'] for e in events] == ['payment_recorded', 'bill_status_changed']
    assert events[0]['billId'] == bill.pk
    assert events[0]['amount'] == '1000.00'
    assert events[0]['paidAmount'] == '1000.00'
    assert events[1]['status'] == 'paid'


@pytest.mark.django_db
def test_refused_payment_publishes_nothing(users, make_bill, django_capture_on_commit_callbacks):
    bill = make_bill([(1, '100.00')])

    def overpay():
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            with pytest.raises(OverpaymentError):
                bill_service.record_payment(users['accountant'], bill_id=bill.pk, amount='500.00',
                                            payment_method='cash')
        return len(callbacks)

    async def run():
        comm = communicator(users['accountant'], f'/ws/billing/bills/{bill.pk}/')
        await comm.connect()
        await comm.receive_json_from()
        registered = await sync_to_async(overpay)()
        quiet = await comm.receive_nothing(timeout=0.2)
        await comm.disconnect()
        return registered, quiet

    registered, quiet = async_to_sync(run)()
    assert registered == 0
    assert quiet
