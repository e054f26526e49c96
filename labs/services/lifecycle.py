"""
Lab order state machine.

Statuses, priorities and the actions that move an order between
statuses are closed enumerations.  ``TRANSITIONS`` is the single source
of truth for which action is legal from which status; the engine in
:mod:`labs.services.orders` never compares status strings by hand.
"""
from __future__ import annotations

import enum
from typing import Optional

from django.db import models


class OrderStatus(models.TextChoices):
    PAYMENT_PENDING = 'PAYMENT_PENDING', 'Payment pending'
    READY_FOR_SAMPLE_COLLECTION = 'READY_FOR_SAMPLE_COLLECTION', 'Ready for sample collection'
    ORDERED = 'ORDERED', 'Ordered'
    SAMPLE_COLLECTED = 'SAMPLE_COLLECTED', 'Sample collected'
    PROCESSING = 'PROCESSING', 'Processing'
    COMPLETED = 'COMPLETED', 'Completed'
    CANCELLED = 'CANCELLED', 'Cancelled'


class Priority(models.TextChoices):
    ROUTINE = 'routine', 'Routine'
    URGENT = 'urgent', 'Urgent'
    STAT = 'stat', 'STAT'


class Action(enum.Enum):
    CONFIRM_PAYMENT = 'confirm_payment'
    COLLECT_SAMPLE = 'collect_sample'
    START_PROCESSING = 'start_processing'
    RECORD_RESULT = 'record_result'
    CANCEL = 'cancel'


# Sets and maps below are keyed by the plain string values stored in the
# database, not by the enum members.
TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value})
ACTIVE_STATUSES = frozenset(s.value for s in OrderStatus if s.value not in TERMINAL_STATUSES)

# action -> (legal source statuses, target status)
TRANSITIONS: dict[Action, tuple[frozenset, OrderStatus]] = {
    Action.CONFIRM_PAYMENT: (
        frozenset({OrderStatus.PAYMENT_PENDING.value}),
        OrderStatus.READY_FOR_SAMPLE_COLLECTION,
    ),
    Action.COLLECT_SAMPLE: (
        frozenset({OrderStatus.READY_FOR_SAMPLE_COLLECTION.value, OrderStatus.ORDERED.value}),
        OrderStatus.SAMPLE_COLLECTED,
    ),
    Action.START_PROCESSING: (
        frozenset({OrderStatus.SAMPLE_COLLECTED.value}),
        OrderStatus.PROCESSING,
    ),
    Action.RECORD_RESULT: (
        frozenset({OrderStatus.PROCESSING.value}),
        OrderStatus.COMPLETED,
    ),
    Action.CANCEL: (
        ACTIVE_STATUSES,
        OrderStatus.CANCELLED,
    ),
}

# Lower rank is served first.
PRIORITY_RANK = {
    Priority.STAT.value: 0,
    Priority.URGENT.value: 1,
    Priority.ROUTINE.value: 2,
}


def initial_status(requires_payment: bool) -> OrderStatus:
    return OrderStatus.PAYMENT_PENDING if requires_payment else OrderStatus.ORDERED


def target_of(action: Action) -> OrderStatus:
    return TRANSITIONS[action][1]


def can_apply(action: Action, current: str) -> bool:
    """Return True if ``action`` is legal while the order is in ``current``."""
    sources, _ = TRANSITIONS[action]
    return str(current) in sources


def is_terminal(status: str) -> bool:
    return str(status) in TERMINAL_STATUSES


def action_for_target(current: str, target: str) -> Optional[Action]:
    """Map a requested target status to the action that reaches it.

    Used by the generic ``PATCH .../status`` endpoint.  Returns ``None``
    when no action leads to ``target`` at all; legality from ``current``
    is still checked by the engine so that the caller gets a proper
    ``InvalidTransition``.
    """
    candidates = [a for a, (_, t) in TRANSITIONS.items() if t == target]
    for action in candidates:
        if can_apply(action, current):
            return action
    return candidates[0] if candidates else None


def _check_table() -> None:
    # every non-terminal status must have a way forward, terminal ones none
    for status in OrderStatus:
        outgoing = [a for a, (sources, _) in TRANSITIONS.items() if status.value in sources]
        if status.value in TERMINAL_STATUSES and outgoing:
            raise RuntimeError(f"terminal status {status} has outgoing transitions")
        if status.value not in TERMINAL_STATUSES and not outgoing:
            raise RuntimeError(f"status {status} has no outgoing transition")
    missing = set(Action) - set(TRANSITIONS)
    if missing:
        raise RuntimeError(f"actions without transition: {sorted(a.value for a in missing)}")


_check_table()
