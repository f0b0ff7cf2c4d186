"""
Bill and payment endpoints.

Views only parse input and shape output; every rule about totals,
statuses and payments lives in :mod:`billing.services.bills`.
"""
from __future__ import annotations

from django.http import HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from billing.permissions import CanEditBill, CanRecordPayment, CanViewBill, require_capability
from billing.serializers.billing import (
    BillListQuerySerializer,
    CancelBillSerializer,
    CreateBillSerializer,
    RecordPaymentSerializer,
    UpdateBillSerializer,
    items_for_service,
)
from billing.services import bills as bill_service
from billing.services.invoices import invoice_number, render_invoice
from billing.throttles import PaymentWriteThrottle


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def bills(request):
    if request.method == 'POST':
        return _create_bill(request)
    return _list_bills(request)


def _list_bills(request):
    require_capability(request.user, 'can_view_bill')
    q = BillListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    page = vd.get('page') or 1
    page_size = vd.get('pageSize') or 20
    data, total = bill_service.list_bills(
        request.user,
        patient_id=vd.get('patientId'),
        status=vd.get('status'),
        payment_method=vd.get('paymentMethod'),
        created_by=vd.get('createdBy'),
        date_from=vd.get('dateFrom'),
        date_to=vd.get('dateTo'),
        page=page,
        page_size=page_size,
    )
    return Response({'ok': True, 'data': data, 'total': total, 'page': page, 'pageSize': page_size})


def _create_bill(request):
    require_capability(request.user, 'can_create_bill')
    s = CreateBillSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    bill = bill_service.create_bill(
        request.user,
        patient_id=vd.get('patientId'),
        items=items_for_service(vd.get('items') or []),
        notes=vd.get('notes', ''),
    )
    bill = bill_service.get_bill(request.user, bill.pk)
    return Response({'ok': True, 'data': bill_service.format_bill(bill)}, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def bill_detail(request, bill_id: int):
    if request.method == 'PATCH':
        require_capability(request.user, 'can_edit_bill')
        s = UpdateBillSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        vd = s.validated_data
        bill_service.update_bill(
            request.user,
            bill_id,
            items=items_for_service(vd['items']) if 'items' in vd else None,
            notes=vd.get('notes'),
        )
    elif request.method == 'DELETE':
        require_capability(request.user, 'can_delete_bill')
        bill_service.delete_bill(request.user, bill_id)
        return Response({'ok': True}, status=status.HTTP_200_OK)

    bill = bill_service.get_bill(request.user, bill_id)
    return Response({'ok': True, 'data': bill_service.format_bill(bill)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanEditBill])
def cancel_bill(request, bill_id: int):
    s = CancelBillSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    bill_service.cancel_bill(request.user, bill_id, reason=s.validated_data.get('reason', ''))
    bill = bill_service.get_bill(request.user, bill_id)
    return Response({'ok': True, 'data': bill_service.format_bill(bill)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanRecordPayment])
@throttle_classes([PaymentWriteThrottle])
def record_payment(request):
    """Record a payment against a bill.

    An ``Idempotency-Key`` header is accepted as an alternative to the
    ``idempotencyKey`` body field.
    """
    s = RecordPaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    payment = bill_service.record_payment(
        request.user,
        bill_id=vd['billId'],
        amount=vd['amount'],
        payment_method=vd['paymentMethod'],
        notes=vd.get('notes', ''),
        idempotency_key=vd.get('idempotencyKey') or request.headers.get('Idempotency-Key'),
    )
    bill = bill_service.get_bill(request.user, payment.bill_id)
    return Response({
        'ok': True,
        'data': {
            'payment': bill_service.format_payment(payment),
            'bill': bill_service.format_bill(bill),
        },
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanViewBill])
def bill_payments(request, bill_id: int):
    bill = bill_service.get_bill(request.user, bill_id)
    payments = sorted(bill.payments.all(), key=lambda p: (p.paid_at, p.pk))
    return Response({'ok': True, 'data': [bill_service.format_payment(p) for p in payments]})


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanViewBill])
def payment_summary(request, bill_id: int):
    bill = bill_service.get_bill(request.user, bill_id)
    return Response({'ok': True, 'data': bill_service.payment_summary(bill)})


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanViewBill])
def bill_invoice(request, bill_id: int):
    """Invoice as HTML; ``?download=1`` serves it as an attachment."""
    bill = bill_service.get_bill(request.user, bill_id)
    resp = HttpResponse(render_invoice(bill), content_type='text/html; charset=utf-8')
    if request.query_params.get('download') in ('1', 'true', 'yes'):
        resp['Content-Disposition'] = f'attachment; filename="{invoice_number(bill)}.html"'
    return resp
