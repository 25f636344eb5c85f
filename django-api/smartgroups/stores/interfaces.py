"""Store interfaces (repository pattern).

Stores must be swappable and return domain models. They hold no locks of
their own: per-offering mutual exclusion belongs to the capacity ledger.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import ContextManager

from smartgroups.domain import (
    JoinCode,
    Offering,
    OfferingId,
    OfferingStatus,
    ParticipantId,
    ParticipantRecord,
)


class OfferingStore(ABC):
    """Interface for offering and participant persistence operations."""

    @abstractmethod
    def atomic(self) -> ContextManager:
        """Return a context manager grouping writes into one transaction."""
        ...

    @abstractmethod
    def add_offering(self, offering: Offering) -> Offering:
        """Persist a newly created offering."""
        ...

    @abstractmethod
    def get_offering(self, offering_id: OfferingId) -> Offering | None:
        """Return an offering by ID, or None if not found."""
        ...

    @abstractmethod
    def lock_offering(self, offering_id: OfferingId) -> Offering | None:
        """Return an offering for update; the row stays locked until the enclosing
        ``atomic()`` block ends. Must be called inside ``atomic()``.
        """
        ...

    @abstractmethod
    def find_by_join_code(self, code: JoinCode) -> Offering | None:
        """Return the offering shared under an invite code."""
        ...

    @abstractmethod
    def save_state(self, offering_id: OfferingId, count: int, status: OfferingStatus) -> None:
        """Write the participant count and status of an offering together."""
        ...

    @abstractmethod
    def get_active_participant(
        self, offering_id: OfferingId, participant_id: ParticipantId
    ) -> ParticipantRecord | None:
        """Return the participant's non-cancelled record, if any."""
        ...

    @abstractmethod
    def add_participant(self, record: ParticipantRecord) -> ParticipantRecord:
        """Persist a participant record."""
        ...

    @abstractmethod
    def cancel_participant(
        self, offering_id: OfferingId, participant_id: ParticipantId, left_at: datetime
    ) -> ParticipantRecord:
        """Mark the participant's active record as cancelled and return it."""
        ...

    @abstractmethod
    def list_participants(self, offering_id: OfferingId) -> list[ParticipantRecord]:
        """Return active participants ordered by joined_at ascending."""
        ...

    @abstractmethod
    def list_due_for_expiry(self, now: datetime) -> list[OfferingId]:
        """Return open offerings whose expires_at is at or before ``now``."""
        ...
