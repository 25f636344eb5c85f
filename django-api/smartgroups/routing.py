"""WebSocket URL routing for smart group updates.

One socket per client; subscriptions to individual offerings are
multiplexed over it with subscribe/unsubscribe messages.
"""

from django.urls import path

from smartgroups.handlers.consumers import OfferingEventsConsumer

websocket_urlpatterns = [
    path("ws/offerings/", OfferingEventsConsumer.as_asgi()),
]
