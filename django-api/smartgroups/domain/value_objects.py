"""Domain primitives that enforce validity at creation time."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Self
from uuid import UUID

JOIN_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
JOIN_CODE_LENGTH = 8


@dataclass(frozen=True)
class OfferingId:
    """Unique identifier for a group-bookable Offering."""

    value: UUID

    @classmethod
    def from_string(cls, value: str) -> Self:
        return cls(value=UUID(str(value)))

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class ParticipantId:
    """Opaque identity of a joining traveller."""

    value: str

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise ValueError("Participant id cannot be blank")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Money:
    """Price representation with validation."""

    amount: Decimal

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("Money amount cannot be negative")

    def __str__(self) -> str:
        return f"{self.amount:.2f}"


@dataclass(frozen=True)
class Capacity:
    """Participant ceiling of an offering; a group needs room for at least one."""

    value: int

    def __post_init__(self) -> None:
        if self.value < 1:
            raise ValueError("Capacity must be at least 1")


@dataclass(frozen=True)
class JoinCode:
    """Invite code shared to bring friends into a group."""

    value: str

    def __post_init__(self) -> None:
        if len(self.value) != JOIN_CODE_LENGTH:
            raise ValueError(f"Join code must be {JOIN_CODE_LENGTH} characters")
        if any(ch not in JOIN_CODE_ALPHABET for ch in self.value):
            raise ValueError("Join code contains invalid characters")

    @classmethod
    def from_string(cls, value: str) -> Self:
        return cls(value=value.strip().upper())

    def __str__(self) -> str:
        return self.value
