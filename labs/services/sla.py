"""Turnaround targets, overdue detection and triage ordering."""
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.db.models import Case, IntegerField, Q, Value, When
from django.utils import timezone

from labs.services.lifecycle import ACTIVE_STATUSES, PRIORITY_RANK, Priority


def turnaround_for(priority: str, test=None) -> timedelta:
    if priority == Priority.ROUTINE and test is not None and test.turnaround_hours:
        return timedelta(hours=test.turnaround_hours)
    return timedelta(minutes=settings.LAB_TURNAROUND_MINUTES[str(priority)])


def compute_due_at(created_at: datetime, priority: str, test=None) -> datetime:
    return created_at + turnaround_for(priority, test)


def is_overdue(order, now: Optional[datetime] = None) -> bool:
    if order.due_at is None or str(order.status) not in ACTIVE_STATUSES:
        return False
    return (now or timezone.now()) > order.due_at


def overdue_q(now: Optional[datetime] = None) -> Q:
    return Q(status__in=ACTIVE_STATUSES, due_at__lt=now or timezone.now())


def priority_rank():
    """Annotation expression ranking stat before urgent before routine."""
    return Case(
        *[When(priority=p, then=Value(rank)) for p, rank in PRIORITY_RANK.items()],
        default=Value(len(PRIORITY_RANK)),
        output_field=IntegerField(),
    )
