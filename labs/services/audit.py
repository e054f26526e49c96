"""Append-only audit trail for lab actions.

Rows are written in the caller's transaction, so an audit entry exists
exactly when the change it describes was committed.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from labs.models import AuditEvent

logger = logging.getLogger(__name__)

FIELD_MAX = 64


def _actor_or_none(user):
    # anonymous and unsaved users are recorded as "no user"
    if user is None or not getattr(user, 'is_authenticated', False) or not getattr(user, 'pk', None):
        return None
    return user


def _bounded(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)[:FIELD_MAX]


def log_action(*, user, action: str, object_type: Optional[str] = None,
               object_id: Any = None, detail: Optional[Mapping[str, Any]] = None) -> AuditEvent:
    event = AuditEvent.objects.create(
        user=_actor_or_none(user),
        action=action[:FIELD_MAX],
        object_type=_bounded(object_type),
        object_id=_bounded(object_id),
        detail=dict(detail or {}),
    )
    logger.debug('audit %s on %s %s by user %s', event.action, event.object_type, event.object_id,
                 event.user_id)
    return event
