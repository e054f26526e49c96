"""Fan-out of lab order changes to WebSocket subscribers.

Delivery to devices is out of scope; this only publishes an event to the
channel groups that are allowed to see the order.
"""
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

GROUP_ALL = 'lab.orders.all'


def doctor_group(user_id) -> str:
    return f'lab.orders.doctor.{user_id}'


def patient_group(user_id) -> str:
    return f'lab.orders.patient.{user_id}'


def publish_order_event(order, event: str) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    payload = {
        'type': 'lab.order',
        'event': event,
        'orderId': str(order.id),
        'status': str(order.status),
        'priority': str(order.priority),
        'patientId': order.patient_id,
        'orderedById': order.ordered_by_id,
        'version': order.version,
    }
    for group in (GROUP_ALL, doctor_group(order.ordered_by_id), patient_group(order.patient_id)):
        async_to_sync(channel_layer.group_send)(group, payload)
    logger.debug('published %s for order %s', event, order.id)
