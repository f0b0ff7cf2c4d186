"""
Patient registry views.

Hospital staff register and look up patients; bills reference these
records.  Patients themselves cannot list the registry.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from billing.permissions import IsStaffRole
from billing.serializers.patient import PatientCreateSerializer, PatientListQuerySerializer
from billing.services.audit import log_action
from billing.services.patients import create_patient, format_patient, list_patients


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def patients(request):
    if request.method == 'POST':
        s = PatientCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        vd = s.validated_data
        patient = create_patient(
            first_name=vd['firstName'],
            last_name=vd.get('lastName', ''),
            mrn=vd.get('mrn') or None,
            contact=vd.get('contact', ''),
            date_of_birth=vd.get('dateOfBirth'),
            user_id=vd.get('userId'),
        )
        log_action(user=request.user, action='patient_create', object_type='patient',
                   object_id=patient.id, detail={'mrn': patient.mrn})
        return Response({'ok': True, 'data': format_patient(patient)}, status=status.HTTP_201_CREATED)

    q = PatientListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page = q.validated_data.get('page') or 1
    page_size = q.validated_data.get('pageSize') or 20
    rows, total = list_patients(search=q.validated_data.get('q'), page=page, page_size=page_size)
    return Response({'ok': True, 'data': [format_patient(p) for p in rows], 'total': total})
