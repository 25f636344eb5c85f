"""Notification fan-out for smart group state changes.

Events are staged into a per-offering outbox while the offering lock is
held, which fixes their order and sequence number. Delivery happens on a
worker pool, never on the caller's thread: ``dispatch`` hands the outbox to
a worker unless one is already draining it, and that worker delivers the
queued events oldest first, looking up display names and pushing each
message to every subscriber. At most one worker drains a given outbox at a
time. Delivery is best effort and at most once; a failing subscriber is
logged and skipped.
"""

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum

from smartgroups.domain import OfferingId, OfferingStatus, ParticipantId, PriceQuote
from smartgroups.services.profiles import ProfileDirectory
from smartgroups.services.subscriptions import SubscriptionRegistry

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    PARTICIPANT_JOINED = "participantJoined"
    PARTICIPANT_LEFT = "participantLeft"
    STATUS_CHANGED = "statusChanged"


@dataclass(frozen=True)
class OfferingEvent:
    kind: EventKind
    offering_id: OfferingId
    new_count: int
    quote: PriceQuote
    status: OfferingStatus
    participant_id: ParticipantId | None = None
    sequence: int = 0

    def to_message(self, participant_name: str | None = None) -> dict:
        message = {
            "type": self.kind.value,
            "offeringId": str(self.offering_id),
            "newCount": self.new_count,
            "effectivePrice": f"{self.quote.effective_price:.2f}",
            "discountPercent": f"{self.quote.discount_percent:.2f}",
            "status": self.status.value,
            "sequence": self.sequence,
        }
        if self.quote.original_price is not None:
            message["originalPrice"] = f"{self.quote.original_price:.2f}"
        if participant_name is not None:
            message["participantName"] = participant_name
        return message


@dataclass
class _Outbox:
    lock: threading.Lock = field(default_factory=threading.Lock)
    pending: deque = field(default_factory=deque)
    last_sequence: int = 0
    draining: bool = False


class NotificationFanout:
    def __init__(
        self,
        registry: SubscriptionRegistry,
        profiles: ProfileDirectory,
        placeholder_name: str = "A fellow traveler",
        max_workers: int = 4,
    ) -> None:
        self._registry = registry
        self._profiles = profiles
        self._placeholder_name = placeholder_name
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="smartgroups-fanout")
        self._guard = threading.Lock()
        self._outboxes: dict[OfferingId, _Outbox] = {}

    def publish(self, event: OfferingEvent) -> OfferingEvent:
        """Stage one event and schedule its delivery; returns the staged event."""
        staged = self.stage(event)
        self.dispatch(event.offering_id)
        return staged

    def stage(self, event: OfferingEvent) -> OfferingEvent:
        """Queue an event in commit order. Call while holding the offering lock."""
        outbox = self._outbox(event.offering_id)
        with outbox.lock:
            outbox.last_sequence += 1
            staged = replace(event, sequence=outbox.last_sequence)
            outbox.pending.append(staged)
        return staged

    def dispatch(self, offering_id: OfferingId) -> None:
        """Schedule delivery of an offering's staged events without waiting for it."""
        outbox = self._outbox(offering_id)
        with outbox.lock:
            if outbox.draining or not outbox.pending:
                return
            outbox.draining = True
        try:
            self._executor.submit(self._drain, offering_id, outbox)
        except RuntimeError:
            logger.warning("Fan-out is shut down; %d events for %s not delivered", len(outbox.pending), offering_id)
            with outbox.lock:
                outbox.draining = False

    def last_sequence(self, offering_id: OfferingId) -> int:
        """Sequence of the newest staged event. Read under the offering lock for a consistent view."""
        outbox = self._outbox(offering_id)
        with outbox.lock:
            return outbox.last_sequence

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; with ``wait`` block until scheduled deliveries finish."""
        self._executor.shutdown(wait=wait)

    def _drain(self, offering_id: OfferingId, outbox: _Outbox) -> None:
        while True:
            with outbox.lock:
                if not outbox.pending:
                    outbox.draining = False
                    return
                event = outbox.pending.popleft()
            try:
                self._deliver(event)
            except Exception:
                logger.exception("Fan-out of %s #%d for %s failed", event.kind.value, event.sequence, offering_id)

    def _deliver(self, event: OfferingEvent) -> None:
        name = None
        if event.kind is EventKind.PARTICIPANT_JOINED and event.participant_id is not None:
            name = self._display_name(event.participant_id)
        message = event.to_message(participant_name=name)

        delivered = 0
        for connection_id, subscriber in self._registry.subscribers(event.offering_id):
            try:
                subscriber.send(message)
            except Exception:
                logger.warning(
                    "Dropped %s #%d for connection %s",
                    event.kind.value,
                    event.sequence,
                    connection_id,
                    exc_info=True,
                )
                continue
            delivered += 1
        logger.debug(
            "Delivered %s #%d for %s to %d subscribers",
            event.kind.value,
            event.sequence,
            event.offering_id,
            delivered,
        )

    def _display_name(self, participant_id: ParticipantId) -> str:
        try:
            name = self._profiles.get_display_name(participant_id)
        except Exception:
            logger.debug("Profile lookup failed for %s", participant_id, exc_info=True)
            name = None
        return name or self._placeholder_name

    def _outbox(self, offering_id: OfferingId) -> _Outbox:
        with self._guard:
            outbox = self._outboxes.get(offering_id)
            if outbox is None:
                outbox = self._outboxes[offering_id] = _Outbox()
            return outbox
