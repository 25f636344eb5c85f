"""Subscription registry: which live connections follow which offerings.

State is ephemeral. After a restart clients reconnect and subscribe again.
Each offering's subscriber map has its own lock, so subscribing to one
offering never stalls fan-out iteration for another.
"""

import logging
import threading
from typing import Protocol

from smartgroups.domain import OfferingId
from smartgroups.services.locks import KeyedLocks

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    """Anything able to push one JSON-able message to a live connection."""

    def send(self, message: dict) -> None: ...


class SubscriptionRegistry:
    def __init__(self) -> None:
        self._locks = KeyedLocks()
        self._by_offering: dict[OfferingId, dict[str, Subscriber]] = {}
        self._connections_lock = threading.Lock()
        self._by_connection: dict[str, set[OfferingId]] = {}

    def subscribe(self, connection_id: str, offering_id: OfferingId, subscriber: Subscriber) -> None:
        with self._locks.hold(offering_id):
            self._by_offering.setdefault(offering_id, {})[connection_id] = subscriber
        with self._connections_lock:
            self._by_connection.setdefault(connection_id, set()).add(offering_id)
        logger.debug("Connection %s subscribed to %s", connection_id, offering_id)

    def unsubscribe(self, connection_id: str, offering_id: OfferingId) -> bool:
        with self._connections_lock:
            offerings = self._by_connection.get(connection_id)
            if offerings is not None:
                offerings.discard(offering_id)
                if not offerings:
                    del self._by_connection[connection_id]
        removed = self._remove(connection_id, offering_id)
        if removed:
            logger.debug("Connection %s unsubscribed from %s", connection_id, offering_id)
        return removed

    def connection_closed(self, connection_id: str) -> int:
        """Drop every subscription held by a connection; returns how many were removed."""
        with self._connections_lock:
            offerings = self._by_connection.pop(connection_id, set())
        removed = sum(1 for offering_id in offerings if self._remove(connection_id, offering_id))
        logger.debug("Connection %s closed, dropped %d subscriptions", connection_id, removed)
        return removed

    def subscribers(self, offering_id: OfferingId) -> list[tuple[str, Subscriber]]:
        """Snapshot of an offering's subscribers, safe to iterate without the lock."""
        with self._locks.hold(offering_id):
            return list(self._by_offering.get(offering_id, {}).items())

    def _remove(self, connection_id: str, offering_id: OfferingId) -> bool:
        with self._locks.hold(offering_id):
            subscribers = self._by_offering.get(offering_id)
            if not subscribers or connection_id not in subscribers:
                return False
            del subscribers[connection_id]
            if not subscribers:
                del self._by_offering[offering_id]
            return True
