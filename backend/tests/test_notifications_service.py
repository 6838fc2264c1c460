"""Tests for the notification outbox and interview reminders."""

import uuid
from datetime import date

from placement.notifications.models import NotificationLog
from placement.notifications.service import (
    OutboxNotificationDispatcher,
    _already_notified,
    enqueue_interview_reminders,
)
from placement.slots.collaborators import NotificationKind

NOW_SLOT_DATE = date(2026, 3, 10)
TOMORROW = date(2026, 3, 11)


def _queued(db, kind=None):
    query = db.query(NotificationLog).filter(NotificationLog.status == "queued")
    if kind:
        query = query.filter(NotificationLog.notification_type == kind)
    return query.all()


class TestOutboxDispatcher:
    def test_notify_queues_row(self, session_factory, db_session, draft_slot):
        slot = draft_slot()
        student = uuid.uuid4()
        dispatcher = OutboxNotificationDispatcher(session_factory)

        dispatcher.notify(student, NotificationKind.ASSIGNMENT, {"slot_id": str(slot.id), "time_slot": "09:00-09:30"})

        (row,) = _queued(db_session)
        assert row.slot_id == slot.id
        assert row.student_id == student
        assert row.notification_type == "assignment"
        assert row.payload["time_slot"] == "09:00-09:30"

    def test_record_failure(self, session_factory, db_session, draft_slot):
        slot = draft_slot()
        student = uuid.uuid4()
        dispatcher = OutboxNotificationDispatcher(session_factory)

        dispatcher.record_failure(slot.id, student, NotificationKind.NO_SHOW, {}, "smtp down")

        row = db_session.query(NotificationLog).one()
        assert row.status == "failed"
        assert row.detail == "smtp down"
        assert _queued(db_session) == []


class TestAlreadyNotified:
    def test_false_when_nothing_queued(self, db_session, draft_slot):
        slot = draft_slot()
        assert _already_notified(db_session, slot.id, uuid.uuid4(), "reminder_24h") is False

    def test_true_after_queue(self, session_factory, db_session, draft_slot):
        slot = draft_slot()
        student = uuid.uuid4()
        OutboxNotificationDispatcher(session_factory).notify(
            student, NotificationKind.REMINDER_24H, {"slot_id": str(slot.id)}
        )
        assert _already_notified(db_session, slot.id, student, "reminder_24h") is True

    def test_other_type_or_failed_row_not_matched(self, session_factory, db_session, draft_slot):
        slot = draft_slot()
        student = uuid.uuid4()
        dispatcher = OutboxNotificationDispatcher(session_factory)
        dispatcher.notify(student, NotificationKind.ASSIGNMENT, {"slot_id": str(slot.id)})
        dispatcher.record_failure(slot.id, student, NotificationKind.REMINDER_2H, {}, "boom")

        assert _already_notified(db_session, slot.id, student, "reminder_2h") is False


class TestInterviewReminders:
    def test_picks_window_per_seat(self, controller, published_slot, applicants, session_factory, db_session, clock):
        today = published_slot(scheduled_date=NOW_SLOT_DATE, start_time="09:00", end_time="12:00")
        tomorrow = published_slot(scheduled_date=TOMORROW, start_time="07:00", end_time="10:00")
        soon, later = applicants([90, 80])
        controller.assign_candidate(today.id, soon)
        controller.assign_candidate(tomorrow.id, later)

        sent = enqueue_interview_reminders(session_factory, OutboxNotificationDispatcher(session_factory), now=clock())

        assert sent == 2
        assert [r.student_id for r in _queued(db_session, "reminder_2h")] == [soon]
        assert [r.student_id for r in _queued(db_session, "reminder_24h")] == [later]

    def test_second_sweep_sends_nothing(self, controller, published_slot, applicants, session_factory, clock):
        slot = published_slot(scheduled_date=NOW_SLOT_DATE)
        (student,) = applicants([90])
        controller.assign_candidate(slot.id, student)
        dispatcher = OutboxNotificationDispatcher(session_factory)

        assert enqueue_interview_reminders(session_factory, dispatcher, now=clock()) == 1
        assert enqueue_interview_reminders(session_factory, dispatcher, now=clock()) == 0

    def test_skips_released_and_past_seats(self, controller, published_slot, applicants, session_factory, clock):
        slot = published_slot(scheduled_date=NOW_SLOT_DATE, start_time="07:00", end_time="10:00")
        past, cancelled = applicants([90, 80])
        controller.assign_candidate(slot.id, past)
        controller.assign_candidate(slot.id, cancelled)
        controller.cancel_candidate(slot.id, cancelled)

        sent = enqueue_interview_reminders(session_factory, OutboxNotificationDispatcher(session_factory), now=clock())

        assert sent == 0

    def test_draft_slots_ignored(self, draft_slot, session_factory, clock):
        draft_slot(scheduled_date=NOW_SLOT_DATE)
        assert enqueue_interview_reminders(session_factory, OutboxNotificationDispatcher(session_factory), now=clock()) == 0

    def test_dispatch_errors_not_counted(self, controller, published_slot, applicants, session_factory, clock):
        slot = published_slot(scheduled_date=NOW_SLOT_DATE)
        (student,) = applicants([90])
        controller.assign_candidate(slot.id, student)

        class _Broken:
            def notify(self, student_id, kind, payload):
                raise RuntimeError("outbox unavailable")

        assert enqueue_interview_reminders(session_factory, _Broken(), now=clock()) == 0
