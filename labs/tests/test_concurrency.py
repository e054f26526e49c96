"""
Concurrent writers on the same order, on real connections.

Each worker thread opens its own database connection, waits at a barrier
and then fires the same action. Exactly one may win; every other writer
must see ``InvalidTransition`` rather than a server error or a second
effect.
"""
import threading

import pytest
from django.db import OperationalError, connection
from rest_framework.test import APIClient

from labs.exceptions import InvalidTransition
from labs.models import LabOrder, LabOrderTransition, LabResult
from labs.services import orders
from labs.services.lifecycle import OrderStatus

WORKERS = 4


def race(call, payloads):
    barrier = threading.Barrier(len(payloads))
    outcomes = [None] * len(payloads)

    def worker(i, payload):
        try:
            barrier.wait()
            call(payload)
            outcomes[i] = 'ok'
        except Exception as exc:  # recorded for the assertion below
            outcomes[i] = type(exc).__name__
        finally:
            connection.close()

    threads = [threading.Thread(target=worker, args=(i, p)) for i, p in enumerate(payloads)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def assert_one_winner(outcomes):
    assert outcomes.count('ok') == 1, outcomes
    assert outcomes.count('InvalidTransition') == len(outcomes) - 1, outcomes


@pytest.mark.django_db(transaction=True)
def test_simultaneous_collects_apply_once(patient, doctor, tech):
    order = orders.create_order(patient, doctor, 'CBC', 'routine', requires_payment=False)

    outcomes = race(lambda _: orders.collect_sample(order.id, tech), list(range(WORKERS)))

    assert_one_winner(outcomes)
    order.refresh_from_db()
    assert order.status == OrderStatus.SAMPLE_COLLECTED
    assert order.version == 1
    assert LabOrderTransition.objects.filter(order=order, to_status='SAMPLE_COLLECTED').count() == 1


@pytest.mark.django_db(transaction=True)
def test_simultaneous_results_keep_a_single_winner(patient, doctor, receptionist, tech):
    order = orders.create_order(patient, doctor, 'TSH', 'urgent', requires_payment=True)
    orders.confirm_payment(order.id, receptionist)
    orders.collect_sample(order.id, tech)
    orders.start_processing(order.id, tech)

    payloads = [
        {'parameters': [{'name': 'TSH', 'value': 1.0 + i, 'unit': 'mIU/L'}], 'interpretation': f'run {i}'}
        for i in range(WORKERS)
    ]
    outcomes = race(lambda payload: orders.record_result(order.id, tech, payload), payloads)

    assert_one_winner(outcomes)
    winner = payloads[outcomes.index('ok')]
    result = LabResult.objects.get(order=order)
    assert result.parameters == winner['parameters']
    assert result.interpretation == winner['interpretation']
    order.refresh_from_db()
    assert order.status == OrderStatus.COMPLETED
    assert order.version == 4


@pytest.mark.django_db
def test_lock_timeout_is_reported_as_conflict(monkeypatch, patient, doctor, tech):
    order = orders.create_order(patient, doctor, 'CBC', 'routine', requires_payment=False)

    def locked(*args, **kwargs):
        raise OperationalError('database is locked')

    monkeypatch.setattr(orders, '_transition', locked)
    with pytest.raises(InvalidTransition) as exc:
        orders.collect_sample(order.id, tech)
    assert exc.value.current == 'ORDERED'
    assert exc.value.attempted == 'SAMPLE_COLLECTED'

    client = APIClient()
    client.force_authenticate(tech)
    r = client.post(f'/api/lab/orders/{order.id}/collect-sample', {}, format='json')
    assert r.status_code == 409
    assert r.data['error']['code'] == 'invalid_transition'
    assert LabOrder.objects.get(pk=order.pk).version == 0


@pytest.mark.django_db
def test_other_database_errors_propagate(monkeypatch, patient, doctor, tech):
    order = orders.create_order(patient, doctor, 'CBC', 'routine', requires_payment=False)

    def broken(*args, **kwargs):
        raise OperationalError('no such table: labs_laborder')

    monkeypatch.setattr(orders, '_transition', broken)
    with pytest.raises(OperationalError):
        orders.collect_sample(order.id, tech)
