from rest_framework import status
from rest_framework.exceptions import PermissionDenied
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from billing.serializers.catalog import ServiceCreateSerializer, ServiceListQuerySerializer
from billing.services import catalog as catalog_service
from billing.services.audit import log_action


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def services(request):
    """Active billable services; admins may add new ones."""
    if request.method == 'POST':
        if getattr(request.user, 'role', '') != 'admin':
            raise PermissionDenied('only administrators can add services')
        s = ServiceCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        item = catalog_service.create_service(**s.validated_data)
        log_action(user=request.user, action='service_create', object_type='service', object_id=item.id,
                   detail={'name': item.name, 'price': str(item.price)})
        return Response({'ok': True, 'data': catalog_service.format_service(item)}, status=status.HTTP_201_CREATED)

    q = ServiceListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = catalog_service.active_services(search=q.validated_data.get('q'),
                                         category=q.validated_data.get('category'))
    return Response({'ok': True, 'data': [catalog_service.format_service(s) for s in qs]})
