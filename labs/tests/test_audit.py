import uuid

import pytest
from django.contrib.auth.models import AnonymousUser

from labs.models import AuditEvent
from labs.services import orders
from labs.services.audit import log_action

pytestmark = pytest.mark.django_db


def test_anonymous_actor_is_stored_without_user():
    event = log_action(user=AnonymousUser(), action='login', object_type='user', detail={'result': 'fail'})
    assert event.user is None
    assert event.detail == {'result': 'fail'}


def test_identifiers_are_stored_as_bounded_text(tech):
    order_id = uuid.uuid4()
    event = log_action(user=tech, action='lab_order_note', object_type='lab_order', object_id=order_id)
    assert event.user == tech
    assert event.object_id == str(order_id)

    long_event = log_action(user=tech, action='x' * 80, object_type='lab_order', object_id='9' * 80)
    assert len(long_event.action) == len(long_event.object_id) == 64


def test_every_transition_leaves_one_audit_row(patient, doctor, tech):
    order = orders.create_order(patient, doctor, 'CBC', 'routine', requires_payment=False)
    orders.collect_sample(order.id, tech)
    rows = AuditEvent.objects.filter(object_type='lab_order', object_id=str(order.id)).order_by('id')
    assert [r.action for r in rows] == ['lab_order_create', 'lab_order_collect_sample']
    assert rows[1].user == tech
    assert rows[1].detail == {'from': 'ORDERED', 'to': 'SAMPLE_COLLECTED'}
