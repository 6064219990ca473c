"""WebSocket consumer pushing workflow events to workshop staff."""

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from django.conf import settings

from inspections.models import Site

logger = logging.getLogger(__name__)


class WorkshopUpdatesConsumer(AsyncJsonWebsocketConsumer):
    """Streams status changes, clock events and customer actions.

    A staff member joins the group of their organization and of every
    site in it; events are published per site (or per organization for
    jobs without a site).
    """

    async def connect(self):
        self.groups_joined = []

        if getattr(settings, "SECURE_WEBSOCKET", True):
            if self.scope.get("scheme", "") == "ws":
                await self.close()
                return

        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            await self.close()
            return
        if user.organization_id is None:
            await self.close()
            return

        for group in await self._groups_for(user.organization_id):
            await self.channel_layer.group_add(group, self.channel_name)
            self.groups_joined.append(group)

        await self.accept()
        await self.send_json(
            {"type": "subscribed", "groups": self.groups_joined}
        )

    async def disconnect(self, close_code):
        for group in getattr(self, "groups_joined", []):
            await self.channel_layer.group_discard(group, self.channel_name)

    async def receive_json(self, content, **kwargs):
        if content.get("type") == "ping":
            await self.send_json({"type": "pong"})

    @database_sync_to_async
    def _groups_for(self, organization_id):
        site_ids = Site.objects.filter(
            organization_id=organization_id
        ).values_list("pk", flat=True)
        return [f"org_{organization_id}"] + [f"site_{pk}" for pk in site_ids]

    async def workflow_event(self, event):
        """Relay a ``workflow.event`` group message to the client."""
        message = dict(event)
        message["type"] = message.pop("event", "workflow_event")
        await self.send_json(message)
