"""
Websocket consumers pushing billing events.

Events are published by :mod:`billing.services.notify` once the writing
transaction has committed, so a client never sees a payment that was
rolled back.
"""
import json

from asgiref.sync import sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from billing.models import User
from billing.permissions import capabilities_for
from billing.services import notify
from billing.services.bills import visible_bills

# close codes: 4003 forbidden, 4004 unknown bill


class BillingUpdatesConsumer(AsyncWebsocketConsumer):
    """All bill events; staff roles that may view bills."""

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        if not capabilities_for(user).can_view_bill or user.role == User.ROLE_PATIENT:
            await self.close(code=4003)
            return
        self.group_name = notify.UPDATES_GROUP
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        if getattr(self, "group_name", None):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def billing_event(self, event):
        # event: {"type": "billing.event", "event": "...", "billId": int, ...}
        await self.send(json.dumps(event))


class BillUpdatesConsumer(BillingUpdatesConsumer):
    """Events for one bill; anyone who can see that bill, patients included."""

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        self.bill_id = int(self.scope["url_route"]["kwargs"]["bill_id"])
        if not capabilities_for(user).can_view_bill:
            await self.close(code=4003)
            return
        visible = await sync_to_async(lambda: visible_bills(user).filter(pk=self.bill_id).exists())()
        if not visible:
            await self.close(code=4004)
            return
        self.group_name = notify.bill_group(self.bill_id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected", "billId": self.bill_id}))
