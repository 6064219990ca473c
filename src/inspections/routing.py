"""WebSocket URL routing for the inspections app."""

from django.urls import path

from inspections.consumers import WorkshopUpdatesConsumer

websocket_urlpatterns = [
    path("ws/workshop/", WorkshopUpdatesConsumer.as_asgi()),
]
