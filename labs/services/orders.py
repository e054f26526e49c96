"""
Lab order lifecycle engine.

Every mutation goes through :func:`_apply`, which

* locks the order row (``select_for_update``) inside a transaction,
* checks visibility, capability and the transition table,
* writes the new status with a compare-and-swap on ``(status, version)``
  so a writer holding a stale snapshot loses with ``InvalidTransition``
  instead of duplicating the effect,
* records the transition and an audit event in the same transaction,
* reports a SQLite lock timeout as ``InvalidTransition``.

Listing caches are invalidated immediately and again once the
transaction commits; WebSocket subscribers are notified after commit.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, Optional

from django.contrib.auth import get_user_model
from django.db import OperationalError, transaction
from django.db.models import F
from django.utils import timezone

from labs.exceptions import InvalidInput, InvalidTransition, NotFound, Unauthorized
from labs.models import LabOrder, LabOrderTransition, LabResult, LabTest
from labs.permissions import Capability, can_view_order, has_capability, require_capability
from labs.services import lifecycle, queries, sla
from labs.services.audit import log_action
from labs.services.lifecycle import Action, OrderStatus, Priority
from labs.services.notify import publish_order_event
from labs.services.results import validate_result

logger = logging.getLogger(__name__)

User = get_user_model()

ACTION_CAPABILITY = {
    Action.CONFIRM_PAYMENT: Capability.CONFIRM_PAYMENT,
    Action.COLLECT_SAMPLE: Capability.COLLECT_SAMPLE,
    Action.START_PROCESSING: Capability.PROCESS,
    Action.RECORD_RESULT: Capability.RECORD_RESULT,
    Action.CANCEL: Capability.CANCEL,
}

ORDERING_ROLES = {User.ROLE_DOCTOR, User.ROLE_ADMIN}


def _resolve_user(value, field: str):
    if value is None or value == '':
        raise InvalidInput(f'{field} is required', detail={field: 'required'})
    if isinstance(value, User):
        return value
    user = User.objects.filter(pk=value).first() if str(value).isdigit() else None
    if user is None:
        raise InvalidInput(f'{field} does not exist', detail={field: 'unknown'})
    return user


def create_order(patient, doctor, test_name: Optional[str], priority: Optional[str],
                 notes: Optional[str] = None, *, requires_payment: bool,
                 test_code: Optional[str] = None, actor=None) -> LabOrder:
    """Create an order in ``PAYMENT_PENDING`` or ``ORDERED``.

    ``requires_payment`` selects the workflow variant and has no default:
    the caller's context decides whether the billing gate applies.
    ``patient`` and ``doctor`` may be users or user ids.  When ``test_code``
    matches an active catalog test, that test backs the order and supplies
    the name if none was given.
    """
    if requires_payment not in (True, False):
        raise InvalidInput('requires_payment must be true or false', detail={'requiresPayment': 'required'})
    if priority not in Priority.values:
        raise InvalidInput(f'priority must be one of {", ".join(Priority.values)}',
                           detail={'priority': 'invalid'})

    patient = _resolve_user(patient, 'patientId')
    doctor = _resolve_user(doctor, 'doctorId')
    if patient.role != User.ROLE_PATIENT:
        raise InvalidInput('patientId must reference a patient', detail={'patientId': 'not a patient'})
    if doctor.role not in ORDERING_ROLES:
        raise InvalidInput('doctorId must reference a doctor', detail={'doctorId': 'not a doctor'})

    if actor is not None:
        require_capability(actor, Capability.ORDER_TEST)
        if actor.role == User.ROLE_DOCTOR and actor.pk != doctor.pk:
            raise Unauthorized('Doctors may only order tests under their own name')

    test_code = (test_code or '').strip() or None
    test = LabTest.objects.filter(code=test_code, is_active=True).first() if test_code else None
    test_name = (test_name or '').strip() or (test.name if test else '')
    if not test_name:
        raise InvalidInput('testName is required', detail={'testName': 'required'})

    status = lifecycle.initial_status(requires_payment)
    now = timezone.now()
    with transaction.atomic():
        order = LabOrder.objects.create(
            patient=patient,
            ordered_by=doctor,
            test=test,
            test_name=test_name,
            test_code=test_code,
            priority=priority,
            status=status,
            requires_payment=requires_payment,
            notes=(notes or '').strip() or None,
            due_at=sla.compute_due_at(now, priority, test),
        )
        LabOrderTransition.objects.create(order=order, from_status=None, to_status=status,
                                          operator=actor or doctor, reason='created')
        log_action(user=actor or doctor, action='lab_order_create', object_type='lab_order',
                   object_id=order.id, detail={'priority': priority, 'status': status.value})
        _after_write(order, 'created')

    logger.info('lab order %s created (%s, %s) for patient %s', order.id, priority, status.value, patient.pk)
    return order


def _order_pk(order_id) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(order_id))
    except ValueError:
        return None


def _lock_order(order_id) -> Optional[LabOrder]:
    pk = _order_pk(order_id)
    if pk is None:
        return None
    return LabOrder.objects.select_for_update().filter(pk=pk).first()


def _after_write(order: LabOrder, event: str) -> None:
    queries.invalidate_listings()
    transaction.on_commit(queries.invalidate_listings)
    transaction.on_commit(lambda: publish_order_event(order, event))


def _apply(order_id, actor, action: Action, **kwargs) -> LabOrder:
    target = lifecycle.target_of(action)
    try:
        return _transition(order_id, actor, action, target, **kwargs)
    except OperationalError as exc:
        # SQLite gives up waiting for the write lock; the other writer won
        if 'locked' not in str(exc):
            raise
        current = _current_status(order_id)
        logger.warning('lock timeout on %s for order %s (now %s)', action.value, order_id, current)
        raise InvalidTransition(current, target) from exc


def _current_status(order_id) -> Optional[str]:
    return LabOrder.objects.filter(pk=_order_pk(order_id)).values_list('status', flat=True).first()


def _transition(order_id, actor, action: Action, target: OrderStatus, *, reason: str = '',
                result: Optional[Mapping[str, Any]] = None, extra_fields: Optional[dict] = None) -> LabOrder:
    with transaction.atomic():
        order = _lock_order(order_id)
        if order is None or not can_view_order(actor, order):
            raise NotFound()
        require_capability(actor, ACTION_CAPABILITY[action])

        if action is Action.CANCEL and order.status == OrderStatus.CANCELLED:
            return order

        if not lifecycle.can_apply(action, order.status):
            logger.warning('rejected %s on order %s in %s by user %s',
                           action.value, order.id, order.status, getattr(actor, 'pk', None))
            raise InvalidTransition(order.status, target)

        now = timezone.now()
        cleaned = validate_result(result, test=order.test) if action is Action.RECORD_RESULT else None

        fields = dict(extra_fields or {})
        if action is Action.RECORD_RESULT:
            fields['completed_at'] = now
        elif action is Action.CANCEL:
            fields['cancelled_at'] = now
            fields['cancel_reason'] = (reason or '')[:255]

        swapped = LabOrder.objects.filter(pk=order.pk, status=order.status, version=order.version).update(
            status=target, version=F('version') + 1, updated_at=now, **fields,
        )
        if swapped != 1:
            current = LabOrder.objects.filter(pk=order.pk).values_list('status', flat=True).first()
            logger.warning('lost race on %s for order %s (now %s)', action.value, order.pk, current)
            raise InvalidTransition(current, target)

        if cleaned is not None:
            LabResult.objects.create(order=order, technician=actor, completed_at=now, **cleaned)

        previous = order.status
        LabOrderTransition.objects.create(order=order, from_status=previous, to_status=target,
                                          operator=actor, reason=(reason or action.value)[:255])
        log_action(user=actor, action=f'lab_order_{action.value}', object_type='lab_order',
                   object_id=order.pk, detail={'from': str(previous), 'to': target.value})

        order.refresh_from_db()
        _after_write(order, action.value)

    logger.info('lab order %s: %s -> %s by user %s', order.pk, previous, target.value, getattr(actor, 'pk', None))
    return order


def confirm_payment(order_id, actor, *, bill_id: Optional[str] = None) -> LabOrder:
    """Reception/billing marks the order paid; it becomes collectable."""
    extra = {'bill_status': 'PAID'}
    if bill_id:
        extra['bill_id'] = str(bill_id)[:64]
    return _apply(order_id, actor, Action.CONFIRM_PAYMENT, extra_fields=extra)


def collect_sample(order_id, actor) -> LabOrder:
    return _apply(order_id, actor, Action.COLLECT_SAMPLE)


def start_processing(order_id, actor) -> LabOrder:
    return _apply(order_id, actor, Action.START_PROCESSING)


def record_result(order_id, actor, result: Mapping[str, Any]) -> LabOrder:
    """Attach ``result`` and complete the order.

    The status check runs before payload validation so that a late
    submission against a finished order reports ``InvalidTransition``.
    """
    return _apply(order_id, actor, Action.RECORD_RESULT, result=result)


def cancel(order_id, actor, reason: Optional[str] = None) -> LabOrder:
    """Cancel from any non-terminal status.

    Cancelling an already cancelled order returns it unchanged so UI
    retries are safe; cancelling a completed order is a transition error.
    """
    return _apply(order_id, actor, Action.CANCEL, reason=reason or '')


def transition_to(order_id, actor, target_status: str, reason: Optional[str] = None) -> LabOrder:
    """Move an order to ``target_status`` through the matching operation.

    ``COMPLETED`` needs a result and is only reachable via :func:`record_result`.
    """
    if target_status not in OrderStatus.values:
        raise InvalidInput('Unknown status', detail={'status': target_status})
    if target_status == OrderStatus.COMPLETED:
        raise InvalidInput('Use the results endpoint to complete an order', detail={'status': target_status})

    current = queries.get_order(order_id, actor).status
    action = lifecycle.action_for_target(current, target_status)
    if action is None:
        # only the initial statuses have no inbound edge
        raise InvalidTransition(current, target_status)
    if action is Action.CANCEL:
        return cancel(order_id, actor, reason)
    return _apply(order_id, actor, action, reason=reason or '')


def available_actions(order: LabOrder, actor) -> list[str]:
    """Actions ``actor`` may currently take on ``order`` (for UI buttons)."""
    return [
        action.value for action, capability in ACTION_CAPABILITY.items()
        if lifecycle.can_apply(action, order.status) and has_capability(actor, capability)
    ]
