"""
Role-scoped read side of the lab workflow.

Listings are cached in Django's cache framework.  Keys embed a
generation number that every write bumps (see
:func:`invalidate_listings`), so a write makes every cached listing
unreachable at once; stale entries age out through the TTL and the
backend's own size bound.
"""
from __future__ import annotations

import hashlib
import json
import uuid
from datetime import date, datetime, time, timedelta
from time import time_ns
from typing import Optional

from django.conf import settings
from django.core.cache import cache
from django.db.models import Count
from django.utils import timezone

from labs.exceptions import NotFound
from labs.models import LabOrder
from labs.permissions import SCOPE_ALL, SCOPE_ORDERED_BY, SCOPE_PATIENT, can_view_order, order_scope
from labs.services import sla
from labs.services.lifecycle import OrderStatus, Priority

GENERATION_KEY = 'lab:orders:gen'

ORDERING_NEWEST = 'newest'
ORDERING_TRIAGE = 'triage'


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _display_name(user) -> str:
    return user.get_full_name() or user.username


def format_result(result) -> dict:
    return {
        'parameters': result.parameters,
        'interpretation': result.interpretation,
        'attachments': result.attachments,
        'technicianId': result.technician_id,
        'completedAt': _iso(result.completed_at),
    }


def format_order(order: LabOrder, now: Optional[datetime] = None) -> dict:
    result = getattr(order, 'result', None) if str(order.status) == OrderStatus.COMPLETED else None
    return {
        'id': str(order.id),
        'patientId': order.patient_id,
        'patientName': _display_name(order.patient),
        'orderedById': order.ordered_by_id,
        'orderedByName': _display_name(order.ordered_by),
        'testName': order.test_name,
        'testCode': order.test_code,
        'priority': str(order.priority),
        'status': str(order.status),
        'requiresPayment': order.requires_payment,
        'notes': order.notes,
        'bill': {'id': order.bill_id, 'status': order.bill_status} if order.bill_id else None,
        'createdAt': _iso(order.created_at),
        'dueAt': _iso(order.due_at),
        'overdue': sla.is_overdue(order, now),
        'completedAt': _iso(order.completed_at),
        'cancelledAt': _iso(order.cancelled_at),
        'cancelReason': order.cancel_reason or None,
        'result': format_result(result) if result is not None else None,
    }


def visible_orders(actor):
    qs = LabOrder.objects.all()
    scope = order_scope(actor)
    if scope == SCOPE_ALL:
        return qs
    if scope == SCOPE_ORDERED_BY:
        return qs.filter(ordered_by_id=actor.id)
    if scope == SCOPE_PATIENT:
        return qs.filter(patient_id=actor.id)
    return qs.none()


def get_order(order_id, actor) -> LabOrder:
    """Direct read under the listing visibility rule.

    Orders outside the actor's scope are reported exactly like missing ones.
    """
    try:
        pk = uuid.UUID(str(order_id))
    except ValueError:
        raise NotFound()
    order = (LabOrder.objects.select_related('patient', 'ordered_by', 'result')
             .filter(pk=pk).first())
    if order is None or not can_view_order(actor, order):
        raise NotFound()
    return order


def _generation() -> int:
    gen = cache.get(GENERATION_KEY)
    if gen is None:
        # seed from the clock so a lost counter never restarts below an old key
        cache.add(GENERATION_KEY, time_ns(), None)
        gen = cache.get(GENERATION_KEY) or time_ns()
    return gen


def invalidate_listings() -> None:
    try:
        cache.incr(GENERATION_KEY)
    except ValueError:
        cache.set(GENERATION_KEY, time_ns(), None)


def _cache_key(actor, filters: dict) -> str:
    scope = order_scope(actor)
    owner = None if scope == SCOPE_ALL else actor.id
    raw = json.dumps({'scope': scope, 'owner': owner, **filters}, sort_keys=True, default=str)
    digest = hashlib.sha1(raw.encode('utf-8')).hexdigest()
    return f'lab:orders:g={_generation()}:{digest}'


def _day_start(d: date) -> datetime:
    return timezone.make_aware(datetime.combine(d, time.min))


def list_orders(actor, *, status: Optional[str] = None, priority: Optional[str] = None,
                patient_id: Optional[int] = None, ordered_by_id: Optional[int] = None,
                date_from: Optional[date] = None, date_to: Optional[date] = None,
                overdue: Optional[bool] = None, ordering: str = ORDERING_NEWEST,
                limit: int = 50, offset: int = 0):
    """Return ``(items, total)`` of formatted orders visible to ``actor``.

    ``newest`` ordering is by ``created_at`` descending with the id as a
    tie-breaker so pages are stable; ``triage`` puts stat before urgent
    before routine and the oldest first within a tier.
    """
    limit = min(settings.LAB_LIST_MAX_LIMIT, max(1, int(limit or 50)))
    offset = max(0, int(offset or 0))
    filters = {
        'status': status, 'priority': priority, 'patient': patient_id, 'orderedBy': ordered_by_id,
        'from': date_from, 'to': date_to, 'overdue': overdue, 'ordering': ordering,
        'limit': limit, 'offset': offset,
    }

    ttl = settings.LAB_LIST_CACHE_TTL
    key = _cache_key(actor, filters) if ttl > 0 else None
    if key:
        cached = cache.get(key)
        if cached is not None:
            return cached

    qs = visible_orders(actor)
    if status:
        qs = qs.filter(status=status)
    if priority:
        qs = qs.filter(priority=priority)
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if ordered_by_id:
        qs = qs.filter(ordered_by_id=ordered_by_id)
    if date_from:
        qs = qs.filter(created_at__gte=_day_start(date_from))
    if date_to:
        qs = qs.filter(created_at__lt=_day_start(date_to + timedelta(days=1)))
    now = timezone.now()
    if overdue is True:
        qs = qs.filter(sla.overdue_q(now))
    elif overdue is False:
        qs = qs.exclude(sla.overdue_q(now))

    if ordering == ORDERING_TRIAGE:
        qs = qs.annotate(rank=sla.priority_rank()).order_by('rank', 'created_at', 'id')
    else:
        qs = qs.order_by('-created_at', '-id')

    total = qs.count()
    page = qs.select_related('patient', 'ordered_by', 'result')[offset:offset + limit]
    items = [format_order(o, now) for o in page]

    if key:
        cache.set(key, (items, total), ttl)
    return items, total


def order_stats(actor) -> dict:
    qs = visible_orders(actor)
    by_status = {s.value: 0 for s in OrderStatus}
    for row in qs.values('status').annotate(n=Count('id')):
        by_status[row['status']] = row['n']
    by_priority = {p.value: 0 for p in Priority}
    for row in qs.values('priority').annotate(n=Count('id')):
        by_priority[row['priority']] = row['n']
    return {
        'total': sum(by_status.values()),
        'byStatus': by_status,
        'byPriority': by_priority,
        'overdue': qs.filter(sla.overdue_q()).count(),
    }
