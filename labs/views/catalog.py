"""Lab test catalog: read by everyone signed in, maintained by the lab."""
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..models import LabTest
from ..permissions import CanManageCatalogOrReadOnly
from ..serializers.lab import LabTestSerializer
from ..services.audit import log_action


@api_view(['GET', 'POST'])
@permission_classes([CanManageCatalogOrReadOnly])
def lab_tests(request):
    if request.method == 'GET':
        qs = LabTest.objects.all()
        active = (request.query_params.get('active') or '').lower()
        if active in ('1', 'true'):
            qs = qs.filter(is_active=True)
        elif active in ('0', 'false'):
            qs = qs.filter(is_active=False)
        department = request.query_params.get('department')
        if department:
            qs = qs.filter(department=department)
        return Response({'ok': True, 'items': LabTestSerializer(qs, many=True).data})

    s = LabTestSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    test = s.save()
    log_action(user=request.user, action='lab_test_create', object_type='lab_test',
               object_id=test.id, detail={'code': test.code})
    return Response({'ok': True, 'data': LabTestSerializer(test).data}, status=status.HTTP_201_CREATED)
