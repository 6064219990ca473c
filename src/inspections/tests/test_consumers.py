"""Tests for the workshop updates WebSocket consumer."""

import pytest
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator

from django.contrib.auth.models import AnonymousUser
from django.urls import path

from inspections.consumers import WorkshopUpdatesConsumer

_ws_app = URLRouter(
    [path("ws/workshop/", WorkshopUpdatesConsumer.as_asgi())]
)


def _make_communicator(user):
    communicator = WebsocketCommunicator(_ws_app, "ws/workshop/")
    communicator.scope["user"] = user
    return communicator


@pytest.fixture
def insecure_websocket(settings):
    settings.SECURE_WEBSOCKET = False


@pytest.mark.django_db(transaction=True)
@pytest.mark.usefixtures("insecure_websocket")
class TestWorkshopUpdatesConsumer:
    pytestmark = pytest.mark.asyncio(loop_scope="function")

    async def test_anonymous_rejected(self):
        communicator = _make_communicator(AnonymousUser())
        connected, _ = await communicator.connect()
        assert connected is False

    async def test_user_without_organization_rejected(self, superuser):
        communicator = _make_communicator(superuser)
        connected, _ = await communicator.connect()
        assert connected is False

    async def test_subscribes_to_org_and_sites(
        self, advisor, organization, site
    ):
        communicator = _make_communicator(advisor)
        connected, _ = await communicator.connect()
        assert connected is True

        message = await communicator.receive_json_from()
        assert message == {
            "type": "subscribed",
            "groups": [f"org_{organization.pk}", f"site_{site.pk}"],
        }
        await communicator.disconnect()

    async def test_relays_workflow_events(self, advisor, site):
        communicator = _make_communicator(advisor)
        await communicator.connect()
        await communicator.receive_json_from()

        await get_channel_layer().group_send(
            f"site_{site.pk}",
            {
                "type": "workflow.event",
                "event": "status_changed",
                "job_id": 42,
                "to_status": "in_progress",
            },
        )

        message = await communicator.receive_json_from()
        assert message["type"] == "status_changed"
        assert message["job_id"] == 42
        assert message["to_status"] == "in_progress"
        await communicator.disconnect()

    async def test_ping(self, advisor, site):
        communicator = _make_communicator(advisor)
        await communicator.connect()
        await communicator.receive_json_from()

        await communicator.send_json_to({"type": "ping"})
        assert await communicator.receive_json_from() == {"type": "pong"}
        await communicator.disconnect()
