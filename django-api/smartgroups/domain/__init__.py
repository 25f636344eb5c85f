from smartgroups.domain.models import (
    DiscountRule,
    JoinOutcome,
    LeaveOutcome,
    LedgerEntry,
    Offering,
    OfferingKind,
    OfferingSnapshot,
    OfferingStatus,
    ParticipantRecord,
    ParticipantStatus,
    PriceQuote,
)
from smartgroups.domain.value_objects import Capacity, JoinCode, Money, OfferingId, ParticipantId

__all__ = [
    "Offering",
    "OfferingKind",
    "OfferingStatus",
    "OfferingSnapshot",
    "DiscountRule",
    "ParticipantRecord",
    "ParticipantStatus",
    "PriceQuote",
    "LedgerEntry",
    "JoinOutcome",
    "LeaveOutcome",
    "OfferingId",
    "ParticipantId",
    "JoinCode",
    "Money",
    "Capacity",
]
