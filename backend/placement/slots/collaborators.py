"""Interfaces of the systems the slot engine reads from and writes to.

Shipped SQL adapters live in ``placement.applications`` and
``placement.notifications``; tests substitute in-memory fakes.
"""

import enum
from typing import Any, Protocol
from uuid import UUID

from .schemas import ApplicationRecord, CandidateProfile


class ApplicationStatus(enum.StrEnum):
    APPLIED = "applied"
    UNDER_REVIEW = "under_review"
    SHORTLISTED = "shortlisted"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    INTERVIEW_COMPLETED = "interview_completed"
    SELECTED = "selected"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


TERMINAL_APPLICATION_STATUSES = frozenset(
    {ApplicationStatus.SELECTED, ApplicationStatus.REJECTED, ApplicationStatus.WITHDRAWN}
)


class NotificationKind(enum.StrEnum):
    ASSIGNMENT = "assignment"
    REMINDER_24H = "reminder_24h"
    REMINDER_2H = "reminder_2h"
    CONFIRMATION = "confirmation"
    NO_SHOW = "no_show"
    CANCELLATION = "cancellation"


class ApplicationStatusError(Exception):
    """The application is missing or already in a terminal status."""


class ApplicationGateway(Protocol):
    def count_applied(self, job_id: UUID) -> int: ...
    def find_applied(self, job_id: UUID) -> list[ApplicationRecord]: ...
    def find_application(self, job_id: UUID, student_id: UUID) -> ApplicationRecord | None: ...
    def update_status(self, application_id: UUID, new_status: ApplicationStatus, note: str) -> None: ...


class ProfileLookup(Protocol):
    def get_profile(self, student_id: UUID) -> CandidateProfile | None: ...


class NotificationDispatcher(Protocol):
    def notify(self, student_id: UUID, kind: NotificationKind, payload: dict[str, Any]) -> None: ...
