"""WebSocket consumer for live smart group updates.

Protocol (JSON frames):
    client -> {"type": "subscribe", "offeringId": "<uuid>"}
    client -> {"type": "unsubscribe", "offeringId": "<uuid>"}
    client -> {"type": "ping"}
    server -> {"type": "subscribed", "offeringId": ..., "sequence": n, "snapshot": {...}}
    server -> {"type": "participantJoined" | "participantLeft" | "statusChanged", ...}
    server -> {"type": "error", "code": ..., "message": ...}

The snapshot in the ``subscribed`` frame is the state to render from. It
already includes every event up to its ``sequence``; events with a lower or
equal sequence that arrive after it are stale and can be dropped.
"""

import logging

from asgiref.sync import async_to_sync
from channels.generic.websocket import JsonWebsocketConsumer
from django.utils import timezone

from smartgroups.domain.errors import DomainError
from smartgroups.handlers.serializers import OfferingSnapshotSerializer
from smartgroups.services import get_engine
from smartgroups.services.offering_service import parse_offering_id

logger = logging.getLogger(__name__)

EVENT_MESSAGE_TYPE = "offering.event"


class ChannelLayerSubscriber:
    """Pushes fan-out messages to one consumer through the channel layer."""

    def __init__(self, channel_layer, channel_name: str) -> None:
        self._channel_name = channel_name
        # Bound on the consumer thread so fan-out workers schedule onto the server loop.
        self._send = async_to_sync(channel_layer.send)

    def send(self, message: dict) -> None:
        self._send(
            self._channel_name, {"type": EVENT_MESSAGE_TYPE, "message": message}
        )


class OfferingEventsConsumer(JsonWebsocketConsumer):
    """One live connection; may follow many offerings at once."""

    def connect(self):
        self.accept()
        logger.info("Offering events socket connected: %s", self.channel_name)

    def disconnect(self, code):
        removed = get_engine().registry.connection_closed(self.channel_name)
        logger.info("Offering events socket %s closed (%s), %d subscriptions dropped", self.channel_name, code, removed)

    def receive_json(self, content, **kwargs):
        msg_type = content.get("type") if isinstance(content, dict) else None

        if msg_type == "subscribe":
            self._subscribe(content.get("offeringId"))
        elif msg_type == "unsubscribe":
            self._unsubscribe(content.get("offeringId"))
        elif msg_type == "ping":
            self.send_json({"type": "pong", "timestamp": timezone.now().isoformat()})
        else:
            logger.warning("Unknown message type from %s: %r", self.channel_name, msg_type)
            self.send_json({"type": "error", "code": "UnknownMessageType", "message": "Unsupported message type"})

    def offering_event(self, event):
        self.send_json(event["message"])

    def _subscribe(self, raw_offering_id) -> None:
        engine = get_engine()
        try:
            offering_id = parse_offering_id(raw_offering_id)
        except DomainError as exc:
            self._send_error(exc)
            return
        engine.registry.subscribe(
            self.channel_name,
            offering_id,
            ChannelLayerSubscriber(self.channel_layer, self.channel_name),
        )
        try:
            snapshot, sequence = engine.coordinator.observe(offering_id)
        except DomainError as exc:
            engine.registry.unsubscribe(self.channel_name, offering_id)
            self._send_error(exc)
            return
        self.send_json(
            {
                "type": "subscribed",
                "offeringId": str(snapshot.offering_id),
                "sequence": sequence,
                "snapshot": OfferingSnapshotSerializer(snapshot).data,
            }
        )

    def _unsubscribe(self, raw_offering_id) -> None:
        try:
            offering_id = parse_offering_id(raw_offering_id)
        except DomainError as exc:
            self._send_error(exc)
            return
        get_engine().registry.unsubscribe(self.channel_name, offering_id)
        self.send_json({"type": "unsubscribed", "offeringId": str(offering_id)})

    def _send_error(self, error: DomainError) -> None:
        self.send_json({"type": "error", "code": error.code.value, "message": error.message})
