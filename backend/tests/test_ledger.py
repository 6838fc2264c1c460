"""Tests for the capacity ledger."""

import gc
import threading
import uuid

from placement.slots.ledger import CapacityLedger, SlotLockRegistry, assign_seat, check_invariants, load_slot
from placement.slots.models import CandidateStatus, InterviewSlot, SlotAssignment, SlotStatus
from placement.slots.results import SlotErrorCode


def _assert_sound(session_factory, slot_id):
    with session_factory() as db:
        slot = load_slot(db, slot_id)
        assert check_invariants(slot) == []
        return slot


class TestAssign:
    def test_assigns_first_time_slot_and_decrements(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=2, start_time="09:00", end_time="10:00")
        student = uuid.uuid4()

        outcome = ledger.assign(slot.id, student)

        assert outcome.ok
        assert outcome.value.time_slot == "09:00-09:30"
        assert outcome.value.status == CandidateStatus.ASSIGNED
        assert outcome.value.available_slots == 1
        assert outcome.value.slot.available_slots == 1
        assert outcome.value.slot.version == 2

    def test_distinct_time_slots(self, ledger, draft_slot, session_factory):
        slot = draft_slot(total_capacity=2, start_time="09:00", end_time="10:00")
        first = ledger.assign(slot.id, uuid.uuid4())
        second = ledger.assign(slot.id, uuid.uuid4())

        assert {first.value.time_slot, second.value.time_slot} == {"09:00-09:30", "09:30-10:00"}
        _assert_sound(session_factory, slot.id)

    def test_twice_for_same_candidate(self, ledger, draft_slot, session_factory):
        slot = draft_slot(total_capacity=3)
        student = uuid.uuid4()

        assert ledger.assign(slot.id, student).ok
        again = ledger.assign(slot.id, student)

        assert again.error.code == SlotErrorCode.ALREADY_ASSIGNED
        assert _assert_sound(session_factory, slot.id).available_slots == 2

    def test_waitlisted_candidate_cannot_be_assigned(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=1)
        student = uuid.uuid4()
        ledger.add_to_waitlist(slot.id, student)

        assert ledger.assign(slot.id, student).error.code == SlotErrorCode.ALREADY_ASSIGNED

    def test_capacity_checked_before_time_grid(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=2, start_time="09:00", end_time="10:00")
        ledger.assign(slot.id, uuid.uuid4())
        ledger.assign(slot.id, uuid.uuid4())

        third = ledger.assign(slot.id, uuid.uuid4())

        assert third.error.code == SlotErrorCode.NO_CAPACITY

    def test_zero_capacity_never_assigns(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=0)
        assert ledger.assign(slot.id, uuid.uuid4()).error.code == SlotErrorCode.NO_CAPACITY

    def test_capacity_checked_before_duplicates(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=1)
        student = uuid.uuid4()
        ledger.assign(slot.id, student)

        assert ledger.assign(slot.id, student).error.code == SlotErrorCode.NO_CAPACITY

    def test_missing_slot(self, ledger):
        assert ledger.assign(uuid.uuid4(), uuid.uuid4()).error.code == SlotErrorCode.SLOT_NOT_FOUND

    def test_terminal_slot_refused(self, ledger, draft_slot, session_factory):
        slot = draft_slot()
        with session_factory() as db:
            db.get(InterviewSlot, slot.id).status = SlotStatus.COMPLETED
            db.commit()

        outcome = ledger.assign(slot.id, uuid.uuid4())

        assert outcome.error.code == SlotErrorCode.INVALID_TRANSITION

    def test_records_actor(self, ledger, draft_slot, session_factory):
        slot = draft_slot()
        actor = uuid.uuid4()

        ledger.assign(slot.id, uuid.uuid4(), actor_id=actor)

        with session_factory() as db:
            assert db.get(InterviewSlot, slot.id).last_modified_by == actor


class TestWaitlist:
    def test_priorities_increase(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=0)
        first = ledger.add_to_waitlist(slot.id, uuid.uuid4())
        second = ledger.add_to_waitlist(slot.id, uuid.uuid4())

        assert (first.value.priority, second.value.priority) == (1, 2)

    def test_duplicate_waitlist_entry(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=0)
        student = uuid.uuid4()
        ledger.add_to_waitlist(slot.id, student)

        assert ledger.add_to_waitlist(slot.id, student).error.code == SlotErrorCode.ALREADY_WAITLISTED

    def test_assigned_candidate_cannot_be_waitlisted(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=1)
        student = uuid.uuid4()
        ledger.assign(slot.id, student)

        assert ledger.add_to_waitlist(slot.id, student).error.code == SlotErrorCode.ALREADY_ASSIGNED


class TestAttendance:
    def test_confirm_then_attend(self, ledger, draft_slot):
        slot = draft_slot()
        student = uuid.uuid4()
        ledger.assign(slot.id, student)

        confirmed = ledger.confirm_attendance(slot.id, student)
        attended = ledger.mark_attended(slot.id, student, notes="Strong communicator")

        assert confirmed.value.status == CandidateStatus.CONFIRMED
        assert attended.value.status == CandidateStatus.ATTENDED
        # Attending keeps the seat consumed.
        assert attended.value.available_slots == slot.total_capacity - 1
        seat = attended.value.slot.assigned_candidates[0]
        assert seat.notes == "Strong communicator"
        assert seat.confirmed_at is not None

    def test_confirm_requires_assigned(self, ledger, draft_slot):
        slot = draft_slot()
        student = uuid.uuid4()
        ledger.assign(slot.id, student)
        ledger.confirm_attendance(slot.id, student)

        again = ledger.confirm_attendance(slot.id, student)

        assert again.error.code == SlotErrorCode.NOT_ASSIGNED
        assert again.error.detail["current_status"] == "confirmed"

    def test_unknown_candidate(self, ledger, draft_slot):
        slot = draft_slot()
        assert ledger.mark_attended(slot.id, uuid.uuid4()).error.code == SlotErrorCode.NOT_ASSIGNED

    def test_no_show_after_attended_refused(self, ledger, draft_slot):
        slot = draft_slot()
        student = uuid.uuid4()
        ledger.assign(slot.id, student)
        ledger.mark_attended(slot.id, student)

        assert ledger.mark_no_show(slot.id, student).error.code == SlotErrorCode.NOT_ASSIGNED


class TestRelease:
    def test_no_show_promotes_head_of_waitlist(self, ledger, draft_slot, session_factory):
        slot = draft_slot(total_capacity=2, start_time="09:00", end_time="10:00")
        a, b, c, d = (uuid.uuid4() for _ in range(4))
        ledger.assign(slot.id, a)
        ledger.assign(slot.id, b)
        ledger.add_to_waitlist(slot.id, c)
        ledger.add_to_waitlist(slot.id, d)

        outcome = ledger.mark_no_show(slot.id, a)

        change = outcome.value
        assert change.status == CandidateStatus.NO_SHOW
        assert change.promoted.student_id == c
        assert change.promoted.time_slot == "09:00-09:30"
        assert change.available_slots == 0
        assert [w.student_id for w in change.slot.waitlist_candidates] == [d]
        _assert_sound(session_factory, slot.id)

    def test_full_again_after_promotion(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=1)
        a, b = uuid.uuid4(), uuid.uuid4()
        ledger.assign(slot.id, a)
        ledger.add_to_waitlist(slot.id, b)
        ledger.mark_no_show(slot.id, a)

        assert ledger.assign(slot.id, uuid.uuid4()).error.code == SlotErrorCode.NO_CAPACITY

    def test_cancel_without_waitlist_frees_seat(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=1)
        a = uuid.uuid4()
        ledger.assign(slot.id, a)

        outcome = ledger.cancel(slot.id, a, notes="Family emergency")

        assert outcome.value.status == CandidateStatus.CANCELLED
        assert outcome.value.promoted is None
        assert outcome.value.available_slots == 1

    def test_released_candidate_cannot_rejoin(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=2)
        a = uuid.uuid4()
        ledger.assign(slot.id, a)
        ledger.cancel(slot.id, a)

        assert ledger.assign(slot.id, a).error.code == SlotErrorCode.ALREADY_ASSIGNED

    def test_priority_restarts_after_waitlist_drains(self, ledger, draft_slot):
        slot = draft_slot(total_capacity=1)
        a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        ledger.assign(slot.id, a)
        ledger.add_to_waitlist(slot.id, b)
        ledger.cancel(slot.id, a)

        assert ledger.add_to_waitlist(slot.id, c).value.priority == 1


class TestSlotLockRegistry:
    def test_lock_registered_while_held(self):
        registry = SlotLockRegistry()
        slot_id = uuid.uuid4()

        with registry.hold(slot_id):
            assert slot_id in registry._locks
            assert registry._locks[slot_id].locked()

    def test_lock_dropped_after_release(self):
        registry = SlotLockRegistry()
        slot_ids = [uuid.uuid4() for _ in range(50)]
        for slot_id in slot_ids:
            with registry.hold(slot_id):
                pass

        gc.collect()
        assert len(registry._locks) == 0


class TestConcurrency:
    def test_two_assigns_for_last_seat(self, ledger, draft_slot, session_factory):
        slot = draft_slot(total_capacity=1)
        barrier = threading.Barrier(2)
        results = {}

        def _worker(name):
            barrier.wait()
            results[name] = ledger.assign(slot.id, uuid.uuid4())

        threads = [threading.Thread(target=_worker, args=(n,)) for n in ("D", "E")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        codes = sorted(r.error.code if r.error else "ok" for r in results.values())
        assert codes == [SlotErrorCode.NO_CAPACITY, "ok"]
        assert _assert_sound(session_factory, slot.id).available_slots == 0

    def test_many_concurrent_assigns_never_overbook(self, ledger, draft_slot, session_factory):
        slot = draft_slot(total_capacity=3)
        outcomes = []
        lock = threading.Lock()

        def _worker():
            outcome = ledger.assign(slot.id, uuid.uuid4())
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=_worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for o in outcomes if o.ok) == 3
        assert _assert_sound(session_factory, slot.id).available_slots == 0

    def test_stale_write_is_replayed(self, session_factory, draft_slot, clock):
        """A writer in another process commits between our read and our write."""
        slot = draft_slot(total_capacity=1)
        ours = CapacityLedger(session_factory, clock=clock)
        theirs = CapacityLedger(session_factory, locks=SlotLockRegistry(), clock=clock)
        intruder = uuid.uuid4()
        attempts = []

        def _operation(s, now):
            attempts.append(s.version)
            if len(attempts) == 1:
                assert theirs.assign(slot.id, intruder).ok
            return assign_seat(s, now, uuid.uuid4())

        outcome = ours.run(slot.id, _operation)

        assert len(attempts) == 2
        assert outcome.error.code == SlotErrorCode.NO_CAPACITY

    def test_gives_up_after_max_attempts(self, session_factory, draft_slot, clock):
        slot = draft_slot(total_capacity=5)
        ours = CapacityLedger(session_factory, clock=clock, max_attempts=2)
        theirs = CapacityLedger(session_factory, locks=SlotLockRegistry(), clock=clock)

        def _operation(s, now):
            assert theirs.assign(slot.id, uuid.uuid4()).ok
            return assign_seat(s, now, uuid.uuid4())

        outcome = ours.run(slot.id, _operation)

        assert outcome.error.code == SlotErrorCode.CONCURRENT_MODIFICATION
        assert outcome.error.detail["attempts"] == 2


class TestReconciliation:
    def _corrupt(self, session_factory, slot_id):
        with session_factory() as db:
            db.get(InterviewSlot, slot_id).available_slots = 0
            db.commit()

    def test_corrupted_counter_quarantines_slot(self, ledger, draft_slot, session_factory):
        slot = draft_slot(total_capacity=2)
        self._corrupt(session_factory, slot.id)

        first = ledger.assign(slot.id, uuid.uuid4())
        second = ledger.assign(slot.id, uuid.uuid4())

        assert first.error.code == SlotErrorCode.INCONSISTENT_STATE
        assert "available_slots 0 != derived 2" in first.error.detail["problems"]
        assert second.error.code == SlotErrorCode.INCONSISTENT_STATE
        assert second.error.message == "Slot is awaiting reconciliation"
        with session_factory() as db:
            stored = db.get(InterviewSlot, slot.id)
            assert stored.needs_reconciliation
            assert "available_slots" in stored.reconciliation_note

    def test_reconcile_recomputes_and_unblocks(self, ledger, draft_slot, session_factory):
        slot = draft_slot(total_capacity=2)
        ledger.assign(slot.id, uuid.uuid4())
        self._corrupt(session_factory, slot.id)
        ledger.assign(slot.id, uuid.uuid4())

        reconciled = ledger.reconcile(slot.id)

        assert reconciled.ok
        assert reconciled.value.available_slots == 1
        assert not reconciled.value.slot.needs_reconciliation
        assert ledger.assign(slot.id, uuid.uuid4()).ok

    def test_reconcile_refuses_structural_damage(self, ledger, draft_slot, session_factory):
        slot = draft_slot(total_capacity=2, start_time="09:00", end_time="10:00")
        ledger.assign(slot.id, uuid.uuid4())
        with session_factory() as db:
            db.add(
                SlotAssignment(
                    slot_id=slot.id,
                    student_id=uuid.uuid4(),
                    time_slot="09:15-09:45",
                    status=CandidateStatus.ASSIGNED,
                    position=2,
                )
            )
            db.commit()

        assert ledger.assign(slot.id, uuid.uuid4()).error.code == SlotErrorCode.INCONSISTENT_STATE
        outcome = ledger.reconcile(slot.id)

        assert outcome.error.code == SlotErrorCode.INCONSISTENT_STATE
        assert any("overlap" in p for p in outcome.error.detail["problems"])

