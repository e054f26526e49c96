"""
Lab order endpoints.

Thin wrappers over :mod:`labs.services.orders` and
:mod:`labs.services.queries`.  Errors raised by the services propagate
to ``labs.exceptions.api_exception_handler``; views never translate
them by hand.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..permissions import CanViewLabOrders
from ..serializers.lab import (
    CancelSerializer,
    ConfirmPaymentSerializer,
    LabOrderCreateSerializer,
    LabOrderListQuerySerializer,
    LabResultSubmitSerializer,
    StatusUpdateSerializer,
)
from ..services import orders, queries


def _order_response(order, user, http_status=status.HTTP_200_OK):
    data = queries.format_order(order)
    data['actions'] = orders.available_actions(order, user)
    return Response({'ok': True, 'data': data}, status=http_status)


def _list_response(request, *, mine: bool = False):
    q = LabOrderListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    limit = vd.get('limit', 50)
    offset = vd.get('offset', 0)
    items, total = queries.list_orders(
        request.user,
        status=vd.get('status'),
        priority=vd.get('priority'),
        patient_id=vd.get('patientId'),
        ordered_by_id=request.user.id if mine else None,
        date_from=vd.get('dateFrom'),
        date_to=vd.get('dateTo'),
        overdue=vd.get('overdue'),
        ordering=vd.get('ordering', queries.ORDERING_NEWEST),
        limit=limit,
        offset=offset,
    )
    return Response({'ok': True, 'items': items, 'pagination': {'total': total, 'limit': limit, 'offset': offset}})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanViewLabOrders])
def lab_orders(request):
    """List visible orders (GET) or create a new order (POST)."""
    if request.method == 'GET':
        return _list_response(request)

    s = LabOrderCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    order = orders.create_order(
        vd['patientId'],
        vd.get('doctorId') or request.user.id,
        vd.get('testName'),
        vd['priority'],
        vd.get('notes'),
        requires_payment=vd['requiresPayment'],
        test_code=vd.get('testCode'),
        actor=request.user,
    )
    return _order_response(order, request.user, status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanViewLabOrders])
def my_lab_orders(request):
    """Orders placed by the current user (doctor dashboards)."""
    return _list_response(request, mine=True)


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanViewLabOrders])
def lab_order_stats(request):
    return Response({'ok': True, 'data': queries.order_stats(request.user)})


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanViewLabOrders])
def lab_order_detail(request, order_id):
    order = queries.get_order(order_id, request.user)
    data = queries.format_order(order)
    data['actions'] = orders.available_actions(order, request.user)
    data['transitionHistory'] = [
        {
            'from': t.from_status,
            'to': t.to_status,
            'operatorId': t.operator_id,
            'timestamp': t.timestamp.isoformat(),
            'reason': t.reason,
        }
        for t in order.transitions.all()
    ]
    return Response({'ok': True, 'data': data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def lab_order_confirm_payment(request, order_id):
    s = ConfirmPaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = orders.confirm_payment(order_id, request.user, bill_id=s.validated_data.get('billId') or None)
    return _order_response(order, request.user)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def lab_order_collect_sample(request, order_id):
    order = orders.collect_sample(order_id, request.user)
    return _order_response(order, request.user)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def lab_order_start_processing(request, order_id):
    order = orders.start_processing(order_id, request.user)
    return _order_response(order, request.user)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def lab_order_cancel(request, order_id):
    s = CancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = orders.cancel(order_id, request.user, s.validated_data.get('reason'))
    return _order_response(order, request.user)


@api_view(['PATCH'])
@permission_classes([IsAuthenticated])
def lab_order_update_status(request, order_id):
    """Generic status change used by the queue screens (``{"status": ...}``)."""
    s = StatusUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = orders.transition_to(order_id, request.user, s.validated_data['status'],
                                 s.validated_data.get('reason'))
    return _order_response(order, request.user)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def lab_result_submit(request):
    s = LabResultSubmitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = orders.record_result(s.validated_data['orderId'], request.user, s.to_result())
    return _order_response(order, request.user, status.HTTP_201_CREATED)


# ScopedRateThrottle reads throttle_scope from the wrapped APIView class
for _view in (lab_order_confirm_payment, lab_order_collect_sample, lab_order_start_processing,
              lab_order_cancel, lab_order_update_status, lab_result_submit):
    _view.cls.throttle_scope = 'lab_write'
