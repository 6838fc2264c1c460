"""Interview slot read-side queries."""

from datetime import date, timedelta
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from ..config import settings
from .models import InterviewSlot, SlotAssignment, SlotStatus


def _active_slots(db: Session):
    return db.query(InterviewSlot).filter(InterviewSlot.is_active.is_(True))


def get_slot(db: Session, slot_id: UUID) -> InterviewSlot | None:
    """Get an active slot with its seats and waitlist."""
    return (
        _active_slots(db)
        .options(
            selectinload(InterviewSlot.assigned_candidates),
            selectinload(InterviewSlot.waitlist_candidates),
        )
        .filter(InterviewSlot.id == slot_id)
        .first()
    )


def list_slots(
    db: Session,
    job_id: UUID,
    *,
    status: SlotStatus | None = None,
    college_id: UUID | None = None,
) -> list[InterviewSlot]:
    query = _active_slots(db).filter(InterviewSlot.job_id == job_id)
    if status is not None:
        query = query.filter(InterviewSlot.status == status)
    if college_id is not None:
        query = query.filter(InterviewSlot.college_id == college_id)
    return (
        query.options(
            selectinload(InterviewSlot.assigned_candidates),
            selectinload(InterviewSlot.waitlist_candidates),
        )
        .order_by(InterviewSlot.scheduled_date.asc(), InterviewSlot.start_time.asc())
        .all()
    )


def get_upcoming_slots(db: Session, today: date, days: int | None = None) -> list[InterviewSlot]:
    """Published or running slots scheduled between today and ``days`` ahead."""
    horizon = today + timedelta(days=days if days is not None else settings.upcoming_days)
    return (
        _active_slots(db)
        .filter(
            InterviewSlot.status.in_([SlotStatus.PUBLISHED, SlotStatus.IN_PROGRESS]),
            InterviewSlot.scheduled_date >= today,
            InterviewSlot.scheduled_date <= horizon,
        )
        .options(
            selectinload(InterviewSlot.assigned_candidates),
            selectinload(InterviewSlot.waitlist_candidates),
        )
        .order_by(InterviewSlot.scheduled_date.asc(), InterviewSlot.start_time.asc())
        .all()
    )


def find_candidate_assignments(db: Session, student_id: UUID, status: str | None = None) -> list[dict]:
    """Every seat a student holds or held, newest interview first."""
    query = (
        db.query(SlotAssignment, InterviewSlot)
        .join(InterviewSlot, SlotAssignment.slot_id == InterviewSlot.id)
        .filter(SlotAssignment.student_id == student_id, InterviewSlot.is_active.is_(True))
    )
    if status:
        query = query.filter(SlotAssignment.status == status)
    rows = query.order_by(InterviewSlot.scheduled_date.desc(), SlotAssignment.time_slot.asc()).all()
    return [
        {
            "slot_id": slot.id,
            "job_id": slot.job_id,
            "title": slot.title,
            "scheduled_date": slot.scheduled_date,
            "mode": slot.mode,
            "time_slot": seat.time_slot,
            "status": seat.status,
            "assigned_at": seat.assigned_at,
            "confirmed_at": seat.confirmed_at,
        }
        for seat, slot in rows
    ]
