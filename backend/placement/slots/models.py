"""Interview slot aggregate: the slot row plus its seat and waitlist rows."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database.base import Base


class SlotStatus(enum.StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_SLOT_STATUSES = frozenset({SlotStatus.COMPLETED, SlotStatus.CANCELLED})


class CandidateStatus(enum.StrEnum):
    ASSIGNED = "assigned"
    CONFIRMED = "confirmed"
    ATTENDED = "attended"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"


# Statuses that hold a seat.
ACTIVE_CANDIDATE_STATUSES = frozenset({CandidateStatus.ASSIGNED, CandidateStatus.CONFIRMED, CandidateStatus.ATTENDED})


class AssignmentAlgorithm(enum.StrEnum):
    SCORE_BASED = "score_based"
    FIRST_COME_FIRST_SERVE = "first_come_first_serve"
    RANDOM = "random"


class InterviewMode(enum.StrEnum):
    PHYSICAL = "physical"
    VIRTUAL = "virtual"
    HYBRID = "hybrid"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InterviewSlot(Base):
    __tablename__ = "interview_slots"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id = Column(UUID(as_uuid=True), nullable=False)
    recruiter_id = Column(UUID(as_uuid=True), nullable=False)
    college_id = Column(UUID(as_uuid=True), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Window
    scheduled_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # "09:00"
    end_time = Column(String(5), nullable=False)  # "17:00"
    duration = Column(Integer, nullable=False)  # minutes per candidate

    # Capacity
    total_capacity = Column(Integer, nullable=False)
    available_slots = Column(Integer, nullable=False)

    # Passthrough details
    mode = Column(
        SQLEnum(InterviewMode, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    location = Column(JSON, nullable=True)
    virtual_meeting_details = Column(JSON, nullable=True)
    interviewers = Column(JSON, default=list)
    candidate_instructions = Column(JSON, nullable=True)

    eligibility_criteria = Column(JSON, nullable=False)
    auto_assignment_settings = Column(JSON, nullable=False)

    status = Column(
        SQLEnum(SlotStatus, values_callable=lambda e: [s.value for s in e]),
        default=SlotStatus.DRAFT,
        nullable=False,
    )
    published_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    needs_reconciliation = Column(Boolean, default=False, nullable=False)
    reconciliation_note = Column(Text, nullable=True)

    created_by = Column(UUID(as_uuid=True), nullable=True)
    last_modified_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Optimistic concurrency revision. The ledger bumps it on every write and
    # the UPDATE only matches the revision it read.
    version = Column(Integer, nullable=False, default=1)

    assigned_candidates = relationship(
        "SlotAssignment",
        back_populates="slot",
        cascade="all, delete-orphan",
        order_by="SlotAssignment.position",
    )
    waitlist_candidates = relationship(
        "WaitlistEntry",
        back_populates="slot",
        cascade="all, delete-orphan",
        order_by="WaitlistEntry.priority",
    )

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    __table_args__ = (
        Index("idx_slots_job_status", "job_id", "status"),
        Index("idx_slots_college_date", "college_id", "scheduled_date"),
        Index("idx_slots_status_date", "status", "scheduled_date"),
        Index("idx_slots_recruiter_status", "recruiter_id", "status"),
    )


class SlotAssignment(Base):
    """One candidate's seat on a slot."""

    __tablename__ = "slot_assignments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slot_id = Column(
        UUID(as_uuid=True),
        ForeignKey("interview_slots.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id = Column(UUID(as_uuid=True), nullable=False)
    application_id = Column(UUID(as_uuid=True), nullable=True)
    time_slot = Column(String(11), nullable=False)  # "09:00-09:30"
    status = Column(
        SQLEnum(CandidateStatus, values_callable=lambda e: [s.value for s in e]),
        default=CandidateStatus.ASSIGNED,
        nullable=False,
    )
    position = Column(Integer, nullable=False)
    assigned_at = Column(DateTime(timezone=True), default=_utcnow)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    attended_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    slot = relationship("InterviewSlot", back_populates="assigned_candidates")

    __table_args__ = (
        UniqueConstraint("slot_id", "student_id", name="uq_assignment_slot_student"),
        Index("idx_assignments_student_status", "student_id", "status"),
    )


class WaitlistEntry(Base):
    __tablename__ = "slot_waitlist_entries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slot_id = Column(
        UUID(as_uuid=True),
        ForeignKey("interview_slots.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id = Column(UUID(as_uuid=True), nullable=False)
    application_id = Column(UUID(as_uuid=True), nullable=True)
    priority = Column(Integer, nullable=False)  # lower = served first
    added_at = Column(DateTime(timezone=True), default=_utcnow)
    notes = Column(Text, nullable=True)

    slot = relationship("InterviewSlot", back_populates="waitlist_candidates")

    __table_args__ = (
        UniqueConstraint("slot_id", "student_id", name="uq_waitlist_slot_student"),
        UniqueConstraint("slot_id", "priority", name="uq_waitlist_slot_priority"),
        Index("idx_waitlist_student", "student_id"),
    )
