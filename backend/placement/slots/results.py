"""Typed outcomes for slot operations.

Precondition failures are values, not exceptions: every ledger and controller
operation returns an ``Outcome`` carrying either a value or a ``SlotError``.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar
from uuid import UUID

from .schemas import NotificationFailure, SlotResponse

T = TypeVar("T")


class SlotErrorCode(enum.StrEnum):
    INSUFFICIENT_APPLICANTS = "insufficient_applicants"
    INVALID_WINDOW = "invalid_window"
    NO_CAPACITY = "no_capacity"
    ALREADY_ASSIGNED = "already_assigned"
    ALREADY_WAITLISTED = "already_waitlisted"
    NOT_ASSIGNED = "not_assigned"
    INVALID_TRANSITION = "invalid_transition"
    SLOT_NOT_FOUND = "slot_not_found"
    INCONSISTENT_STATE = "inconsistent_state"
    CONCURRENT_MODIFICATION = "concurrent_modification"


@dataclass(frozen=True)
class SlotError:
    code: SlotErrorCode
    message: str
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: T | None = None
    error: SlotError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, code: SlotErrorCode, message: str, **detail: Any) -> "Outcome[T]":
        return cls(error=SlotError(code=code, message=message, detail=detail))


@dataclass(frozen=True)
class Seat:
    """Snapshot of one seat after a ledger operation."""

    student_id: UUID
    application_id: UUID | None
    time_slot: str
    status: str


@dataclass(frozen=True)
class LedgerChange:
    """What a committed ledger operation did to a slot.

    ``status`` is the candidate's new status for seat operations and the
    slot's status for lifecycle transitions. ``slot`` is the committed
    aggregate, filled in by the ledger after commit.
    """

    slot_id: UUID
    status: str
    available_slots: int
    student_id: UUID | None = None
    time_slot: str | None = None
    application_id: UUID | None = None
    priority: int | None = None
    promoted: Seat | None = None
    released: tuple[Seat, ...] = ()
    slot: SlotResponse | None = None


@dataclass(frozen=True)
class ActionResult:
    """A committed ledger change plus the side effects that could not be delivered."""

    change: LedgerChange
    notification_failures: tuple[NotificationFailure, ...] = ()
