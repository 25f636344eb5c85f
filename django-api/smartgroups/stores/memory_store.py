"""In-memory implementation of the OfferingStore.

Used by unit tests and by single-process deployments configured with
``SMARTGROUPS["STORE"] = "memory"``. Callers serialise writes per offering
through the capacity ledger; the store lock only protects the dicts.
"""

import threading
from contextlib import nullcontext
from dataclasses import replace
from datetime import datetime

from smartgroups.domain import (
    JoinCode,
    Offering,
    OfferingId,
    OfferingStatus,
    ParticipantId,
    ParticipantRecord,
    ParticipantStatus,
)
from smartgroups.stores.interfaces import OfferingStore


class InMemoryOfferingStore(OfferingStore):
    """Dict-backed offering store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._offerings: dict[OfferingId, Offering] = {}
        self._participants: dict[OfferingId, list[ParticipantRecord]] = {}

    def atomic(self):
        return nullcontext()

    def add_offering(self, offering: Offering) -> Offering:
        with self._lock:
            self._offerings[offering.id] = offering
            self._participants.setdefault(offering.id, [])
        return offering

    def get_offering(self, offering_id: OfferingId) -> Offering | None:
        with self._lock:
            return self._offerings.get(offering_id)

    def lock_offering(self, offering_id: OfferingId) -> Offering | None:
        return self.get_offering(offering_id)

    def find_by_join_code(self, code: JoinCode) -> Offering | None:
        with self._lock:
            for offering in self._offerings.values():
                if offering.join_code == code:
                    return offering
        return None

    def save_state(self, offering_id: OfferingId, count: int, status: OfferingStatus) -> None:
        with self._lock:
            current = self._offerings[offering_id]
            self._offerings[offering_id] = current.with_count(count, status)

    def get_active_participant(
        self, offering_id: OfferingId, participant_id: ParticipantId
    ) -> ParticipantRecord | None:
        with self._lock:
            for record in self._participants.get(offering_id, []):
                if record.participant_id == participant_id and record.status is ParticipantStatus.JOINED:
                    return record
        return None

    def add_participant(self, record: ParticipantRecord) -> ParticipantRecord:
        with self._lock:
            self._participants.setdefault(record.offering_id, []).append(record)
        return record

    def cancel_participant(
        self, offering_id: OfferingId, participant_id: ParticipantId, left_at: datetime
    ) -> ParticipantRecord:
        with self._lock:
            records = self._participants.get(offering_id, [])
            for index, record in enumerate(records):
                if record.participant_id == participant_id and record.status is ParticipantStatus.JOINED:
                    cancelled = replace(record, status=ParticipantStatus.CANCELLED, left_at=left_at)
                    records[index] = cancelled
                    return cancelled
        raise LookupError(f"No active participant {participant_id} in {offering_id}")

    def list_participants(self, offering_id: OfferingId) -> list[ParticipantRecord]:
        with self._lock:
            records = [
                r for r in self._participants.get(offering_id, []) if r.status is ParticipantStatus.JOINED
            ]
        return sorted(records, key=lambda r: r.joined_at)

    def list_due_for_expiry(self, now: datetime) -> list[OfferingId]:
        with self._lock:
            return [
                o.id
                for o in self._offerings.values()
                if o.expires_at is not None and o.expires_at <= now and not o.status.is_terminal
            ]
