import json

from channels.generic.websocket import AsyncWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from labs.permissions import SCOPE_ALL, SCOPE_ORDERED_BY, SCOPE_PATIENT, order_scope
from labs.services.notify import GROUP_ALL, doctor_group, patient_group


def groups_for(user) -> list[str]:
    """Channel groups ``user`` may listen on; mirrors the REST visibility rule."""
    scope = order_scope(user)
    if scope == SCOPE_ALL:
        return [GROUP_ALL]
    if scope == SCOPE_ORDERED_BY:
        return [doctor_group(user.id)]
    if scope == SCOPE_PATIENT:
        return [patient_group(user.id)]
    return []


class LabOrdersConsumer(AsyncWebsocketConsumer):
    """Pushes ``lab.order`` events for orders the connected user can see."""

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        if not user.is_authenticated:
            await self.close(code=4001)
            return
        self.groups_joined = groups_for(user)
        if not self.groups_joined:
            await self.close(code=4003)
            return
        for group in self.groups_joined:
            await self.channel_layer.group_add(group, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "groups": len(self.groups_joined)}))

    async def disconnect(self, close_code):
        for group in getattr(self, "groups_joined", []):
            await self.channel_layer.group_discard(group, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        # clients only ever ping; everything else is ignored
        if text_data and text_data.strip() == "ping":
            await self.send(json.dumps({"type": "pong"}))

    async def lab_order(self, event):
        # event: {"type": "lab.order", "event": ..., "orderId": ..., "status": ..., "version": ...}
        await self.send(json.dumps(event))
