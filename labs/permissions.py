"""
Capability based access control for the lab workflow.

Roles are mapped once to a set of :class:`Capability` values; services
and views only ever ask whether an actor holds a capability, never which
role string it carries.
"""
from __future__ import annotations

import enum
from typing import Optional

from rest_framework.permissions import BasePermission, SAFE_METHODS

from .exceptions import Unauthorized


class Capability(enum.Enum):
    ORDER_TEST = 'order_test'
    CONFIRM_PAYMENT = 'confirm_payment'
    COLLECT_SAMPLE = 'collect_sample'
    PROCESS = 'process'
    RECORD_RESULT = 'record_result'
    CANCEL = 'cancel'
    VIEW_ALL = 'view_all'
    VIEW_OWN = 'view_own'
    MANAGE_CATALOG = 'manage_catalog'


ROLE_CAPABILITIES: dict[str, frozenset[Capability]] = {
    'admin': frozenset(Capability),
    'receptionist': frozenset({
        Capability.ORDER_TEST,
        Capability.CONFIRM_PAYMENT,
        Capability.CANCEL,
        Capability.VIEW_ALL,
    }),
    'lab_technician': frozenset({
        Capability.COLLECT_SAMPLE,
        Capability.PROCESS,
        Capability.RECORD_RESULT,
        Capability.CANCEL,
        Capability.VIEW_ALL,
        Capability.MANAGE_CATALOG,
    }),
    'doctor': frozenset({
        Capability.ORDER_TEST,
        Capability.CANCEL,
        Capability.VIEW_OWN,
    }),
    'patient': frozenset({Capability.VIEW_OWN}),
    'pharmacist': frozenset(),
}

# Which side of the order an own-scope viewer is matched against.
SCOPE_ALL = 'all'
SCOPE_ORDERED_BY = 'ordered_by'
SCOPE_PATIENT = 'patient'


def capabilities_for(user) -> frozenset[Capability]:
    if not (user and getattr(user, 'is_authenticated', False)):
        return frozenset()
    if getattr(user, 'is_superuser', False):
        return ROLE_CAPABILITIES['admin']
    return ROLE_CAPABILITIES.get(getattr(user, 'role', None), frozenset())


def has_capability(user, capability: Capability) -> bool:
    return capability in capabilities_for(user)


def require_capability(user, capability: Capability) -> None:
    if not has_capability(user, capability):
        raise Unauthorized(f'Requires {capability.value} capability')


def order_scope(user) -> Optional[str]:
    """Return how far ``user`` can see into lab orders, or None."""
    caps = capabilities_for(user)
    if Capability.VIEW_ALL in caps:
        return SCOPE_ALL
    if Capability.VIEW_OWN in caps:
        return SCOPE_PATIENT if getattr(user, 'role', None) == 'patient' else SCOPE_ORDERED_BY
    return None


def can_view_order(user, order) -> bool:
    scope = order_scope(user)
    if scope == SCOPE_ALL:
        return True
    if scope == SCOPE_ORDERED_BY:
        return order.ordered_by_id == user.id
    if scope == SCOPE_PATIENT:
        return order.patient_id == user.id
    return False


class CanViewLabOrders(BasePermission):
    """Allow access to users with any lab order visibility."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return order_scope(getattr(request, 'user', None)) is not None


class CanManageCatalogOrReadOnly(BasePermission):
    """Everyone authenticated reads the catalog; only catalog managers write."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, 'user', None)
        if not (user and user.is_authenticated):
            return False
        if request.method in SAFE_METHODS:
            return True
        return has_capability(user, Capability.MANAGE_CATALOG)
