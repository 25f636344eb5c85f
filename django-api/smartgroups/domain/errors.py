"""Domain error codes for the smart group module.

The codes are part of the public contract: clients show a specific reason
(group full, already joined, ...) for each one.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    OFFERING_FULL = "OfferingFull"
    OFFERING_NOT_JOINABLE = "OfferingNotJoinable"
    OFFERING_NOT_FOUND = "OfferingNotFound"
    ALREADY_JOINED = "AlreadyJoined"
    NOT_PARTICIPANT = "NotParticipant"
    BUSY = "Busy"
    INVALID_OFFERING_ID = "InvalidOfferingId"
    RATE_LIMITED = "RateLimited"
    INVALID_REQUEST = "InvalidRequest"


@dataclass(frozen=True)
class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    @property
    def retryable(self) -> bool:
        return self.code is ErrorCode.BUSY


class OfferingFullError(DomainError):
    """Raised when the group already holds its target number of participants."""

    def __init__(self, offering_id: str) -> None:
        super().__init__(
            code=ErrorCode.OFFERING_FULL,
            message="This group is already full",
        )
        object.__setattr__(self, "offering_id", offering_id)


class OfferingNotJoinableError(DomainError):
    """Raised when the offering is expired or completed."""

    def __init__(self, offering_id: str, status: str) -> None:
        super().__init__(
            code=ErrorCode.OFFERING_NOT_JOINABLE,
            message="This group is no longer open",
        )
        object.__setattr__(self, "offering_id", offering_id)
        object.__setattr__(self, "status", status)


class OfferingNotFoundError(DomainError):
    """Raised when an offering is not found."""

    def __init__(self, offering_id: str) -> None:
        super().__init__(
            code=ErrorCode.OFFERING_NOT_FOUND,
            message="Offering not found",
        )
        object.__setattr__(self, "offering_id", offering_id)


class AlreadyJoinedError(DomainError):
    """Raised when the participant already holds a place in the group."""

    def __init__(self, offering_id: str, participant_id: str) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_JOINED,
            message="You have already joined this group",
        )
        object.__setattr__(self, "offering_id", offering_id)
        object.__setattr__(self, "participant_id", participant_id)


class NotParticipantError(DomainError):
    """Raised when leaving a group the participant never joined."""

    def __init__(self, offering_id: str, participant_id: str) -> None:
        super().__init__(
            code=ErrorCode.NOT_PARTICIPANT,
            message="You are not a participant in this group",
        )
        object.__setattr__(self, "offering_id", offering_id)
        object.__setattr__(self, "participant_id", participant_id)


class BusyError(DomainError):
    """Raised when the offering lock could not be acquired in time."""

    def __init__(self, offering_id: str, timeout: float) -> None:
        super().__init__(
            code=ErrorCode.BUSY,
            message="This group is busy, please try again",
        )
        object.__setattr__(self, "offering_id", offering_id)
        object.__setattr__(self, "timeout", timeout)


class InvalidOfferingIdError(DomainError):
    """Raised when an offering ID is invalid."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.INVALID_OFFERING_ID,
            message="Invalid offering ID format",
        )


class RateLimitedError(DomainError):
    """Raised when an actor exceeds its request budget."""

    def __init__(self, actor_id: str) -> None:
        super().__init__(
            code=ErrorCode.RATE_LIMITED,
            message="Too many booking attempts, please slow down",
        )
        object.__setattr__(self, "actor_id", actor_id)


class InvalidRequestError(DomainError):
    """Raised when a request body cannot be parsed or is missing fields."""

    def __init__(self, fields: tuple[str, ...] = ()) -> None:
        message = "Invalid request body"
        if fields:
            message = f"{message}: {', '.join(fields)}"
        super().__init__(code=ErrorCode.INVALID_REQUEST, message=message)
        object.__setattr__(self, "fields", tuple(fields))
