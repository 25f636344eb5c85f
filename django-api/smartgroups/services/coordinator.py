"""Join coordinator - all group membership business logic lives here.

Coordinator:
- Serialises joins and leaves per offering through the ledger's lock
- Expires offerings whose deadline has passed before letting anyone in or out
- Resolves prices with the post-change participant count
- Persists participant records inside the same critical section
- Stages notifications in commit order; delivery runs on the fan-out workers
- Is the only place translating ledger failures into domain errors
"""

import logging
from datetime import datetime
from typing import Callable

from django.utils import timezone

from smartgroups.domain import (
    JoinOutcome,
    LeaveOutcome,
    LedgerEntry,
    Money,
    OfferingId,
    OfferingSnapshot,
    OfferingStatus,
    ParticipantId,
    ParticipantRecord,
    PriceQuote,
)
from smartgroups.domain.errors import (
    AlreadyJoinedError,
    BusyError,
    DomainError,
    NotParticipantError,
    OfferingFullError,
    OfferingNotFoundError,
    OfferingNotJoinableError,
)
from smartgroups.domain.pricing import resolve
from smartgroups.services.fanout import EventKind, NotificationFanout, OfferingEvent
from smartgroups.services.ledger import CapacityError, CapacityLedger, CapacityRejection
from smartgroups.services.locks import LockTimeout
from smartgroups.services.offering_service import OfferingService, parse_offering_id
from smartgroups.stores.interfaces import OfferingStore

logger = logging.getLogger(__name__)


class JoinCoordinator:
    """Service for joining, leaving and closing smart groups."""

    def __init__(
        self,
        store: OfferingStore,
        ledger: CapacityLedger,
        fanout: NotificationFanout,
        read_model: OfferingService | None = None,
        lock_timeout: float = 2.0,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._fanout = fanout
        self._read_model = read_model or OfferingService(store)
        self._lock_timeout = lock_timeout
        self._clock = clock

    def join(self, offering_id: str | OfferingId, participant_id: str | ParticipantId) -> JoinOutcome:
        """Add a participant to a group at the price for the new count.

        Raises:
            InvalidOfferingIdError: If the offering_id is not a valid UUID.
            AlreadyJoinedError: If the participant already holds a place.
            OfferingFullError, OfferingNotJoinableError, OfferingNotFoundError:
                If the ledger rejects the increment.
            BusyError: If the offering lock is not acquired in time.
        """
        oid = parse_offering_id(offering_id)
        pid = participant_id if isinstance(participant_id, ParticipantId) else ParticipantId(participant_id)

        with self._critical_section(oid):
            now = self._clock()
            self._expire_if_due(oid, now)
            with self._store.atomic():
                if self._store.get_active_participant(oid, pid) is not None:
                    logger.info("Rejected duplicate join of %s by %s", oid, pid)
                    raise AlreadyJoinedError(str(oid), str(pid))
                entry = self._apply(self._ledger.try_increment, oid, now)
                quote = self._quote(entry)
                record = self._store.add_participant(
                    ParticipantRecord(
                        offering_id=oid,
                        participant_id=pid,
                        joined_at=now,
                        price_paid=Money(quote.effective_price),
                    )
                )
            self._stage(EventKind.PARTICIPANT_JOINED, entry, quote, pid)

        became_full = entry.status_changed and entry.new_status is OfferingStatus.FULL
        logger.info(
            "%s joined %s: %d/%d at %s (%s%% off)%s",
            pid,
            oid,
            entry.new_count,
            entry.offering.target_participants.value,
            quote.effective_price,
            quote.discount_percent,
            ", group is now full" if became_full else "",
        )
        self._after_commit(oid)
        return JoinOutcome(
            offering_id=oid,
            new_count=entry.new_count,
            quote=quote,
            became_full=became_full,
            record=record,
        )

    def leave(self, offering_id: str | OfferingId, participant_id: str | ParticipantId) -> LeaveOutcome:
        """Give up a participant's place; the advertised price is re-resolved for the new count.

        Prices already recorded for other participants are left untouched.

        Raises:
            InvalidOfferingIdError: If the offering_id is not a valid UUID.
            NotParticipantError: If the participant holds no active place.
            OfferingNotJoinableError, OfferingNotFoundError: If the ledger rejects the decrement.
            BusyError: If the offering lock is not acquired in time.
        """
        oid = parse_offering_id(offering_id)
        pid = participant_id if isinstance(participant_id, ParticipantId) else ParticipantId(participant_id)

        with self._critical_section(oid):
            now = self._clock()
            self._expire_if_due(oid, now)
            with self._store.atomic():
                if self._store.get_active_participant(oid, pid) is None:
                    if self._store.get_offering(oid) is None:
                        raise OfferingNotFoundError(str(oid))
                    raise NotParticipantError(str(oid), str(pid))
                entry = self._apply(self._ledger.try_decrement, oid, participant_id=pid)
                self._store.cancel_participant(oid, pid, now)
                quote = self._quote(entry)
            self._stage(EventKind.PARTICIPANT_LEFT, entry, quote, pid)

        reopened = entry.status_changed and entry.previous_status is OfferingStatus.FULL
        logger.info("%s left %s: %d participants, price now %s", pid, oid, entry.new_count, quote.effective_price)
        self._after_commit(oid)
        return LeaveOutcome(offering_id=oid, new_count=entry.new_count, quote=quote, reopened=reopened)

    def expire(self, offering_id: str | OfferingId) -> LedgerEntry:
        return self._close(offering_id, OfferingStatus.EXPIRED)

    def complete(self, offering_id: str | OfferingId) -> LedgerEntry:
        return self._close(offering_id, OfferingStatus.COMPLETED)

    def expire_due(self, now: datetime | None = None) -> list[OfferingId]:
        """Expire every open offering whose deadline has passed; returns the ids expired."""
        now = now or self._clock()
        expired = []
        for oid in self._store.list_due_for_expiry(now):
            try:
                self.expire(oid)
            except (OfferingNotJoinableError, OfferingNotFoundError, BusyError) as exc:
                logger.info("Skipped expiry of %s: %s", oid, exc)
                continue
            expired.append(oid)
        if expired:
            logger.info("Expired %d offerings", len(expired))
        return expired

    def observe(self, offering_id: str | OfferingId) -> tuple[OfferingSnapshot, int]:
        """Return a fresh snapshot and the sequence of the last event it includes.

        Read under the offering lock, so events with a higher sequence are
        exactly the changes the snapshot does not contain yet. Subscribe
        before observing to miss nothing.

        Raises:
            InvalidOfferingIdError: If the offering_id is not a valid UUID.
            OfferingNotFoundError: If the offering does not exist.
            BusyError: If the offering lock is not acquired in time.
        """
        oid = parse_offering_id(offering_id)
        with self._critical_section(oid):
            snapshot = self._read_model.read_snapshot(oid)
            sequence = self._fanout.last_sequence(oid)
        return snapshot, sequence

    def _close(self, offering_id: str | OfferingId, status: OfferingStatus) -> LedgerEntry:
        oid = parse_offering_id(offering_id)
        with self._critical_section(oid):
            entry = self._apply(self._ledger.transition, oid, status)
            self._stage(EventKind.STATUS_CHANGED, entry, self._quote(entry), None)
        logger.info("Offering %s moved %s -> %s", oid, entry.previous_status.value, status.value)
        self._after_commit(oid)
        return entry

    def _expire_if_due(self, oid: OfferingId, now: datetime) -> None:
        """Inside the critical section: expire an overdue offering and refuse the request."""
        entry = self._ledger.expire_if_due(oid, now)
        if entry is None:
            return
        self._stage(EventKind.STATUS_CHANGED, entry, self._quote(entry), None)
        # Runs inside the offering lock; dispatch only schedules delivery.
        self._after_commit(oid)
        raise OfferingNotJoinableError(str(oid), OfferingStatus.EXPIRED.value)

    def _critical_section(self, oid: OfferingId):
        return _BoundedSection(self._ledger, oid, self._lock_timeout)

    def _apply(self, operation, oid: OfferingId, *args, participant_id: ParticipantId | None = None) -> LedgerEntry:
        try:
            return operation(oid, *args)
        except CapacityError as exc:
            raise self._translate(exc, participant_id) from exc

    def _translate(self, exc: CapacityError, participant_id: ParticipantId | None = None) -> DomainError:
        offering_id = str(exc.offering_id)
        if exc.reason is CapacityRejection.FULL:
            return OfferingFullError(offering_id)
        if exc.reason is CapacityRejection.NOT_JOINABLE:
            return OfferingNotJoinableError(offering_id, exc.status.value if exc.status else "")
        if exc.reason is CapacityRejection.EMPTY:
            return NotParticipantError(offering_id, str(participant_id or ""))
        return OfferingNotFoundError(offering_id)

    @staticmethod
    def _quote(entry: LedgerEntry) -> PriceQuote:
        offering = entry.offering
        return resolve(entry.new_count, offering.base_price.amount, offering.discount_rules)

    def _stage(self, kind: EventKind, entry: LedgerEntry, quote, participant_id: ParticipantId | None) -> None:
        offering = entry.offering
        self._fanout.stage(
            OfferingEvent(
                kind=kind,
                offering_id=offering.id,
                new_count=entry.new_count,
                quote=quote,
                status=entry.new_status,
                participant_id=participant_id,
            )
        )
        if kind is not EventKind.STATUS_CHANGED and entry.status_changed:
            self._fanout.stage(
                OfferingEvent(
                    kind=EventKind.STATUS_CHANGED,
                    offering_id=offering.id,
                    new_count=entry.new_count,
                    quote=quote,
                    status=entry.new_status,
                )
            )

    def _after_commit(self, oid: OfferingId) -> None:
        self._read_model.invalidate(oid)
        self._fanout.dispatch(oid)


class _BoundedSection:
    """The offering's critical section with a bounded wait; a timeout surfaces as Busy."""

    def __init__(self, ledger: CapacityLedger, oid: OfferingId, timeout: float) -> None:
        self._held = ledger.hold(oid, timeout)
        self._oid = oid
        self._timeout = timeout

    def __enter__(self) -> "_BoundedSection":
        try:
            self._held.__enter__()
        except LockTimeout:
            logger.info("Offering %s busy after %.2fs", self._oid, self._timeout)
            raise BusyError(str(self._oid), self._timeout) from None
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return self._held.__exit__(exc_type, exc, tb)
