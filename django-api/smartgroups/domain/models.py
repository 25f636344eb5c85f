"""Domain models representing persisted and computed state.

These are pure domain objects with no API input rules.
Django ORM models are in smartgroups/models.py (persistence layer).
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum

from smartgroups.domain.value_objects import (
    Capacity,
    JoinCode,
    Money,
    OfferingId,
    ParticipantId,
)


class OfferingStatus(str, Enum):
    ACTIVE = "active"
    FULL = "full"
    EXPIRED = "expired"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (OfferingStatus.EXPIRED, OfferingStatus.COMPLETED)


class OfferingKind(str, Enum):
    TOUR = "tour"
    SERVICE = "service"


class ParticipantStatus(str, Enum):
    JOINED = "joined"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class DiscountRule:
    """Percentage off once the group reaches ``threshold`` participants."""

    threshold: int
    discount_percent: Decimal

    def __post_init__(self) -> None:
        if self.threshold < 0:
            raise ValueError("Discount threshold cannot be negative")
        if not Decimal(0) <= Decimal(self.discount_percent) <= Decimal(100):
            raise ValueError("Discount percent must be between 0 and 100")
        object.__setattr__(self, "discount_percent", Decimal(self.discount_percent))


@dataclass(frozen=True)
class Offering:
    """Domain representation of a group-bookable tour or service."""

    id: OfferingId
    title: str
    kind: OfferingKind
    target_participants: Capacity
    current_participants: int
    base_price: Money
    status: OfferingStatus
    join_code: JoinCode
    discount_rules: tuple[DiscountRule, ...] = ()
    expires_at: datetime | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.current_participants <= self.target_participants.value:
            raise ValueError("Participant count out of range")
        if self.status is OfferingStatus.FULL and not self.is_at_capacity:
            raise ValueError("Only an offering at capacity can be full")

    @property
    def is_at_capacity(self) -> bool:
        return self.current_participants == self.target_participants.value

    def with_count(self, count: int, status: OfferingStatus) -> "Offering":
        return replace(self, current_participants=count, status=status)


@dataclass(frozen=True)
class ParticipantRecord:
    """One successful join; ``price_paid`` is fixed at join time."""

    offering_id: OfferingId
    participant_id: ParticipantId
    joined_at: datetime
    price_paid: Money
    status: ParticipantStatus = ParticipantStatus.JOINED
    left_at: datetime | None = None


@dataclass(frozen=True)
class PriceQuote:
    """Resolved price for a participant count."""

    effective_price: Decimal
    discount_percent: Decimal
    original_price: Decimal | None = None


@dataclass(frozen=True)
class LedgerEntry:
    """Result of one committed ledger step."""

    offering: Offering
    previous_status: OfferingStatus

    @property
    def new_count(self) -> int:
        return self.offering.current_participants

    @property
    def new_status(self) -> OfferingStatus:
        return self.offering.status

    @property
    def status_changed(self) -> bool:
        return self.previous_status is not self.offering.status


@dataclass(frozen=True)
class JoinOutcome:
    offering_id: OfferingId
    new_count: int
    quote: PriceQuote
    became_full: bool
    record: ParticipantRecord


@dataclass(frozen=True)
class LeaveOutcome:
    offering_id: OfferingId
    new_count: int
    quote: PriceQuote
    reopened: bool


@dataclass(frozen=True)
class OfferingSnapshot:
    """Read model for initial page render; may be stale as soon as it is read."""

    offering_id: OfferingId
    title: str
    kind: OfferingKind
    current_participants: int
    target_participants: int
    status: OfferingStatus
    quote: PriceQuote
    join_code: str
    discount_rules: tuple[DiscountRule, ...] = field(default=())
