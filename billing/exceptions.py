"""
Billing error taxonomy and the unified API exception handler.

Every domain error is a DRF ``APIException`` so that services can raise
it directly and views need no per-error translation; the handler below
renders all of them as ``{"ok": false, "error": {"code", "message"}}``.
"""
import logging

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class BillingError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'billing error'
    default_code = 'billing_error'


class BillingValidationError(BillingError):
    """Missing patient, empty item list entries or invalid field values."""
    default_detail = 'invalid billing request'
    default_code = 'validation_error'


class InvalidPayment(BillingValidationError):
    """The payment can never be accepted as submitted (non-positive amount, cancelled bill)."""
    default_detail = 'invalid payment'
    default_code = 'invalid_payment'


class OverpaymentError(InvalidPayment):
    """The payment exceeds the bill's remaining balance."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'payment amount exceeds remaining balance'
    default_code = 'overpayment'


class EditNotAllowed(BillingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'bill can no longer be edited'
    default_code = 'edit_not_allowed'


class DuplicateSubmission(BillingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'this payment was already submitted'
    default_code = 'duplicate_submission'


class StorageError(BillingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'billing storage is unavailable'
    default_code = 'storage_error'


def _error_code(exc) -> str:
    if isinstance(exc, BillingError):
        return exc.default_code
    if isinstance(exc, ValidationError):
        return 'validation_error'
    if isinstance(exc, Http404):
        return 'not_found'
    if isinstance(exc, APIException):
        codes = exc.get_codes()
        return codes if isinstance(codes, str) else 'invalid'
    return 'api_error'


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('unhandled API error', exc_info=exc)
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    detail = None
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data if isinstance(resp.data, list) else str(resp.data)
    out = Response({'ok': False, 'error': {'code': _error_code(exc), 'message': detail}}, status=resp.status_code)
    for header in ('WWW-Authenticate', 'Retry-After'):
        if header in resp:
            out[header] = resp[header]
    return out
