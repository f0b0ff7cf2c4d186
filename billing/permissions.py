"""
Role capabilities and the DRF permission classes built on them.

``ROLE_CAPABILITIES`` is the single place that says what each hospital
role may do with bills.  Views gate requests with the permission
classes below and the service layer re-checks with
:func:`require_capability`, so callers that bypass HTTP (management
commands, websocket consumers) get the same answer.
"""
from __future__ import annotations

from dataclasses import dataclass

from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import BasePermission


@dataclass(frozen=True)
class BillingCapabilities:
    can_create_bill: bool = False
    can_view_bill: bool = False
    can_edit_bill: bool = False
    can_record_payment: bool = False
    can_generate_reports: bool = False
    can_delete_bill: bool = False


NO_CAPABILITIES = BillingCapabilities()

ROLE_CAPABILITIES: dict[str, BillingCapabilities] = {
    'admin': BillingCapabilities(
        can_create_bill=True,
        can_view_bill=True,
        can_edit_bill=True,
        can_record_payment=True,
        can_generate_reports=True,
        can_delete_bill=True,
    ),
    # Receptionists edit bills before payment but do not take money
    'receptionist': BillingCapabilities(can_create_bill=True, can_view_bill=True, can_edit_bill=True),
    'doctor': BillingCapabilities(can_create_bill=True, can_view_bill=True),
    'nurse': BillingCapabilities(can_create_bill=True, can_view_bill=True),
    'lab_technician': NO_CAPABILITIES,
    'accountant': BillingCapabilities(can_view_bill=True, can_record_payment=True, can_generate_reports=True),
    # Patients see their own bills only; scoping happens in the queries
    'patient': BillingCapabilities(can_view_bill=True),
}


def capabilities_for(user) -> BillingCapabilities:
    if not (user and getattr(user, 'is_authenticated', False)):
        return NO_CAPABILITIES
    return ROLE_CAPABILITIES.get(getattr(user, 'role', ''), NO_CAPABILITIES)


def require_capability(user, capability: str) -> None:
    if not getattr(capabilities_for(user), capability):
        raise PermissionDenied(f'{capability} is not granted to this role')


class HasBillingCapability(BasePermission):
    """Allow the request when the user's role grants ``capability``."""
    capability = ''

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return bool(getattr(capabilities_for(getattr(request, 'user', None)), self.capability, False))


class CanCreateBill(HasBillingCapability):
    capability = 'can_create_bill'


class CanViewBill(HasBillingCapability):
    capability = 'can_view_bill'


class CanEditBill(HasBillingCapability):
    capability = 'can_edit_bill'


class CanRecordPayment(HasBillingCapability):
    capability = 'can_record_payment'


class CanGenerateReports(HasBillingCapability):
    capability = 'can_generate_reports'


class CanDeleteBill(HasBillingCapability):
    capability = 'can_delete_bill'


class IsAdminRole(BasePermission):
    """Allow access only to users with the admin role."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) == "admin")


class IsStaffRole(BasePermission):
    """Any hospital role other than patient."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) not in (None, '', 'patient'))
