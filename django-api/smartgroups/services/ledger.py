"""Capacity ledger: the authoritative participant counter per offering.

Every read-modify-write of an offering's count and status happens under
that offering's keyed lock, inside one store transaction that reads the
offering row for update, so no observer can see the target count with an
``active`` status and no other process can write between the read and the
write.
"""

import logging
from datetime import datetime
from enum import Enum

from smartgroups.domain import LedgerEntry, Offering, OfferingId, OfferingStatus
from smartgroups.services.locks import HeldLock, KeyedLocks
from smartgroups.stores.interfaces import OfferingStore

logger = logging.getLogger(__name__)


class CapacityRejection(Enum):
    FULL = "full"
    NOT_JOINABLE = "not_joinable"
    NOT_FOUND = "not_found"
    EMPTY = "empty"


class CapacityError(Exception):
    """Internal ledger failure; translated to public errors by the coordinator."""

    def __init__(self, reason: CapacityRejection, offering_id: OfferingId, status: OfferingStatus | None = None) -> None:
        super().__init__(f"{reason.value}: {offering_id}")
        self.reason = reason
        self.offering_id = offering_id
        self.status = status


def is_overdue(offering: Offering, now: datetime) -> bool:
    return offering.expires_at is not None and offering.expires_at <= now and not offering.status.is_terminal


class CapacityLedger:
    def __init__(self, store: OfferingStore, locks: KeyedLocks | None = None) -> None:
        self._store = store
        self._locks = locks or KeyedLocks()

    def hold(self, offering_id: OfferingId, timeout: float | None = None) -> HeldLock:
        """Return the offering's critical section; re-entrant for ledger calls made inside it."""
        return self._locks.hold(offering_id, timeout)

    def read(self, offering_id: OfferingId) -> Offering:
        """Read the offering row for update. Call inside ``store.atomic()``."""
        offering = self._store.lock_offering(offering_id)
        if offering is None:
            raise CapacityError(CapacityRejection.NOT_FOUND, offering_id)
        return offering

    def try_increment(self, offering_id: OfferingId, now: datetime | None = None) -> LedgerEntry:
        """Take one place. Offerings past their deadline at ``now`` are not joinable."""
        with self.hold(offering_id), self._store.atomic():
            offering = self.read(offering_id)
            if offering.status.is_terminal or (now is not None and is_overdue(offering, now)):
                raise CapacityError(CapacityRejection.NOT_JOINABLE, offering_id, offering.status)
            if offering.status is OfferingStatus.FULL or offering.is_at_capacity:
                raise CapacityError(CapacityRejection.FULL, offering_id, offering.status)

            new_count = offering.current_participants + 1
            new_status = (
                OfferingStatus.FULL
                if new_count == offering.target_participants.value
                else OfferingStatus.ACTIVE
            )
            self._store.save_state(offering_id, new_count, new_status)
            logger.debug("Offering %s count %d -> %d", offering_id, offering.current_participants, new_count)
            return LedgerEntry(offering=offering.with_count(new_count, new_status), previous_status=offering.status)

    def try_decrement(self, offering_id: OfferingId) -> LedgerEntry:
        with self.hold(offering_id), self._store.atomic():
            offering = self.read(offering_id)
            if offering.status.is_terminal:
                raise CapacityError(CapacityRejection.NOT_JOINABLE, offering_id, offering.status)
            if offering.current_participants == 0:
                raise CapacityError(CapacityRejection.EMPTY, offering_id, offering.status)

            new_count = offering.current_participants - 1
            self._store.save_state(offering_id, new_count, OfferingStatus.ACTIVE)
            logger.debug("Offering %s count %d -> %d", offering_id, offering.current_participants, new_count)
            return LedgerEntry(
                offering=offering.with_count(new_count, OfferingStatus.ACTIVE),
                previous_status=offering.status,
            )

    def transition(self, offering_id: OfferingId, status: OfferingStatus) -> LedgerEntry:
        """Move an open offering to a terminal status (expired or completed)."""
        if not status.is_terminal:
            raise ValueError(f"Only terminal transitions are external, got {status.value}")
        with self.hold(offering_id), self._store.atomic():
            offering = self.read(offering_id)
            if offering.status.is_terminal:
                raise CapacityError(CapacityRejection.NOT_JOINABLE, offering_id, offering.status)
            self._store.save_state(offering_id, offering.current_participants, status)
            return LedgerEntry(
                offering=offering.with_count(offering.current_participants, status),
                previous_status=offering.status,
            )

    def expire_if_due(self, offering_id: OfferingId, now: datetime) -> LedgerEntry | None:
        """Expire an open offering whose deadline has passed; None when it is not due or not found."""
        with self.hold(offering_id), self._store.atomic():
            offering = self._store.lock_offering(offering_id)
            if offering is None or not is_overdue(offering, now):
                return None
            self._store.save_state(offering_id, offering.current_participants, OfferingStatus.EXPIRED)
            logger.info("Offering %s passed its deadline %s", offering_id, offering.expires_at.isoformat())
            return LedgerEntry(
                offering=offering.with_count(offering.current_participants, OfferingStatus.EXPIRED),
                previous_status=offering.status,
            )
