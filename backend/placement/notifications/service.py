"""Notification outbox.

Delivery (email, WhatsApp, push) is done by a separate worker reading the
``notification_logs`` table; this service only enqueues. Interview reminders
are swept here too, once per slot, candidate and reminder kind.
"""

import logging
import uuid
from datetime import UTC, datetime, time, timedelta
from typing import Any

from sqlalchemy.orm import Session, selectinload, sessionmaker

from ..slots import timegrid
from ..slots.collaborators import NotificationDispatcher, NotificationKind
from ..slots.effects import slot_payload
from ..slots.models import CandidateStatus, InterviewSlot, SlotStatus
from ..slots.schemas import SlotResponse
from .models import NotificationLog

logger = logging.getLogger(__name__)

_REMINDER_WINDOWS = (
    (NotificationKind.REMINDER_2H, timedelta(hours=2)),
    (NotificationKind.REMINDER_24H, timedelta(hours=24)),
)


def _slot_id(payload: dict[str, Any]) -> uuid.UUID:
    return uuid.UUID(str(payload["slot_id"]))


class OutboxNotificationDispatcher:
    """Writes notifications to the outbox table for the delivery worker."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def notify(self, student_id: uuid.UUID, kind: NotificationKind, payload: dict[str, Any]) -> None:
        with self._session_factory() as db:
            db.add(
                NotificationLog(
                    slot_id=_slot_id(payload),
                    student_id=student_id,
                    notification_type=str(kind),
                    payload=payload,
                    status="queued",
                )
            )
            db.commit()
        logger.info("Queued %s notification for %s", kind, student_id)

    def record_failure(
        self,
        slot_id: uuid.UUID,
        student_id: uuid.UUID,
        kind: NotificationKind,
        payload: dict[str, Any],
        error: str,
    ) -> None:
        with self._session_factory() as db:
            db.add(
                NotificationLog(
                    slot_id=slot_id,
                    student_id=student_id,
                    notification_type=str(kind),
                    payload=payload,
                    status="failed",
                    detail=error[:2000],
                )
            )
            db.commit()


def _already_notified(db: Session, slot_id: uuid.UUID, student_id: uuid.UUID, notification_type: str) -> bool:
    """Check if this notification type was already queued for this candidate and slot."""
    return (
        db.query(NotificationLog)
        .filter(
            NotificationLog.slot_id == slot_id,
            NotificationLog.student_id == student_id,
            NotificationLog.notification_type == notification_type,
            NotificationLog.status == "queued",
        )
        .first()
        is not None
    )


def _interview_start(slot: InterviewSlot, time_slot: str) -> datetime:
    start, _ = timegrid.slot_bounds(time_slot)
    return datetime.combine(slot.scheduled_date, time(start // 60, start % 60), tzinfo=UTC)


def enqueue_interview_reminders(
    session_factory: sessionmaker,
    dispatcher: NotificationDispatcher,
    now: datetime | None = None,
) -> int:
    """Queue 24h and 2h reminders for candidates holding a seat on an upcoming slot.

    Slot times are interpreted as UTC. A candidate inside the 2h window gets
    only the 2h reminder. Returns the number of reminders queued.
    """
    now = now or datetime.now(UTC)
    db = session_factory()
    try:
        slots = (
            db.query(InterviewSlot)
            .options(selectinload(InterviewSlot.assigned_candidates))
            .filter(
                InterviewSlot.is_active.is_(True),
                InterviewSlot.status.in_([SlotStatus.PUBLISHED, SlotStatus.IN_PROGRESS]),
                InterviewSlot.scheduled_date >= now.date(),
                InterviewSlot.scheduled_date <= (now + timedelta(hours=24)).date(),
            )
            .all()
        )

        due = []
        for slot in slots:
            snapshot = None
            for seat in slot.assigned_candidates:
                if seat.status not in (CandidateStatus.ASSIGNED, CandidateStatus.CONFIRMED):
                    continue
                until = _interview_start(slot, seat.time_slot) - now
                if until <= timedelta(0):
                    continue
                kind = next((k for k, window in _REMINDER_WINDOWS if until <= window), None)
                if kind is None or _already_notified(db, slot.id, seat.student_id, kind):
                    continue
                snapshot = snapshot or SlotResponse.model_validate(slot)
                due.append((seat.student_id, kind, slot_payload(snapshot, seat.time_slot)))
    finally:
        db.close()

    sent_count = 0
    for student_id, kind, payload in due:
        try:
            dispatcher.notify(student_id, kind, payload)
        except Exception:
            logger.exception("Failed to queue %s reminder for %s", kind, student_id)
            continue
        sent_count += 1

    if sent_count:
        logger.info("Queued %d interview reminder(s)", sent_count)
    return sent_count
