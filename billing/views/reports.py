from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from billing.models import User
from billing.permissions import capabilities_for
from billing.services import stats
from billing.services.bills import visible_bills


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def billing_stats(request):
    """Billing statistics.

    Report roles get hospital-wide figures (cached until the next billing
    write); patients get figures for their own bills only.
    """
    user = request.user
    if capabilities_for(user).can_generate_reports:
        data = stats.billing_stats()
    elif user.role == User.ROLE_PATIENT:
        data = stats.billing_stats(visible_bills(user))
    else:
        raise PermissionDenied('can_generate_reports is not granted to this role')
    return Response({'ok': True, 'data': data})
