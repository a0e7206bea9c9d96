import json

from channels.generic.websocket import AsyncWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from cardflow.services.notifications import recipient_group


class NotificationsConsumer(AsyncWebsocketConsumer):
    """Pushes committed notification intents to the recipient's sockets."""

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        if not user.is_authenticated:
            await self.close(code=4001)
            return
        self.group_name = recipient_group(user.pk)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "recipientId": user.pk}))

    async def disconnect(self, close_code):
        if hasattr(self, "group_name"):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def notification_intent(self, event):
        # event: {"type": "notification.intent", "recipientId": int, "kind": str, "payload": {...}}
        await self.send(json.dumps({
            "type": "notification",
            "recipientId": event["recipientId"],
            "kind": event["kind"],
            "payload": event["payload"],
        }))
