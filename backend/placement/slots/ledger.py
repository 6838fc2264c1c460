"""Capacity ledger: the only writer of a slot's seats and waitlist.

Every operation is one read-modify-write transaction on one slot:

1. take the slot's in-process lock,
2. load the slot and re-derive its invariants from the seat/waitlist rows,
3. apply the change and re-check the invariants,
4. commit; the ``version`` column makes a concurrent writer in another
   process fail with ``StaleDataError``, in which case the whole step is
   replayed from a fresh read.

Precondition failures come back as ``Outcome.failure`` and leave the slot
untouched. An invariant violation quarantines the slot
(``needs_reconciliation``) until ``reconcile`` succeeds.
"""

import logging
import threading
import weakref
from collections import Counter
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from . import timegrid
from .models import (
    ACTIVE_CANDIDATE_STATUSES,
    TERMINAL_SLOT_STATUSES,
    CandidateStatus,
    InterviewSlot,
    SlotAssignment,
    WaitlistEntry,
)
from .results import LedgerChange, Outcome, Seat, SlotErrorCode
from .schemas import SlotResponse

logger = logging.getLogger(__name__)

Operation = Callable[[InterviewSlot, datetime], Outcome[LedgerChange]]


class SlotLockRegistry:
    """One lock per slot id; different slots never contend.

    A lock lives only while some caller holds a reference to it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[UUID, threading.Lock] = weakref.WeakValueDictionary()

    @contextmanager
    def hold(self, slot_id: UUID) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(slot_id)
            if lock is None:
                lock = self._locks[slot_id] = threading.Lock()
        with lock:
            yield


# ── Invariants ────────────────────────────────────────────────────────


def active_seats(slot: InterviewSlot) -> list[SlotAssignment]:
    return [a for a in slot.assigned_candidates if a.status in ACTIVE_CANDIDATE_STATUSES]


def derived_available(slot: InterviewSlot) -> int:
    return slot.total_capacity - len(active_seats(slot))


def check_invariants(slot: InterviewSlot, include_counter: bool = True) -> list[str]:
    """Return every invariant the slot currently violates."""
    problems = []
    derived = derived_available(slot)
    if derived < 0:
        problems.append(f"{-derived} more active seats than total_capacity {slot.total_capacity}")
    if include_counter:
        if slot.available_slots != derived:
            problems.append(f"available_slots {slot.available_slots} != derived {derived}")
        if not 0 <= slot.available_slots <= slot.total_capacity:
            problems.append(f"available_slots {slot.available_slots} outside [0, {slot.total_capacity}]")

    members = [a.student_id for a in slot.assigned_candidates] + [w.student_id for w in slot.waitlist_candidates]
    duplicates = [str(sid) for sid, n in Counter(members).items() if n > 1]
    if duplicates:
        problems.append(f"candidates listed more than once: {', '.join(sorted(duplicates))}")

    priorities = Counter(w.priority for w in slot.waitlist_candidates)
    if any(n > 1 for n in priorities.values()):
        problems.append("waitlist priorities are not unique")

    bounds = []
    for seat in active_seats(slot):
        try:
            bounds.append((*timegrid.slot_bounds(seat.time_slot), seat.time_slot))
        except ValueError:
            problems.append(f"malformed time slot {seat.time_slot!r}")
    bounds.sort()
    for (_, prev_end, prev), (start, _, current) in zip(bounds, bounds[1:]):
        if start < prev_end:
            problems.append(f"time slots {prev} and {current} overlap")
    return problems


# ── Row helpers ───────────────────────────────────────────────────────


def _find_seat(slot: InterviewSlot, student_id: UUID) -> SlotAssignment | None:
    return next((a for a in slot.assigned_candidates if a.student_id == student_id), None)


def _find_waitlisted(slot: InterviewSlot, student_id: UUID) -> WaitlistEntry | None:
    return next((w for w in slot.waitlist_candidates if w.student_id == student_id), None)


def _seat(row: SlotAssignment) -> Seat:
    return Seat(
        student_id=row.student_id,
        application_id=row.application_id,
        time_slot=row.time_slot,
        status=str(row.status),
    )


def _not_assigned(student_id: UUID, row: SlotAssignment | None, expected: str) -> Outcome[LedgerChange]:
    current = str(row.status) if row else None
    if row is None:
        message = f"Candidate {student_id} not found in assigned list"
    else:
        message = f"Candidate {student_id} is {current}, expected {expected}"
    return Outcome.failure(
        SlotErrorCode.NOT_ASSIGNED, message, student_id=str(student_id), current_status=current
    )


# ── Operations (run inside the ledger transaction) ────────────────────


def assign_seat(
    slot: InterviewSlot,
    now: datetime,
    student_id: UUID,
    application_id: UUID | None = None,
    notes: str | None = None,
) -> Outcome[LedgerChange]:
    available = derived_available(slot)
    if available <= 0:
        return Outcome.failure(
            SlotErrorCode.NO_CAPACITY,
            "No available slots",
            total_capacity=slot.total_capacity,
            available_slots=max(available, 0),
        )
    if _find_seat(slot, student_id) or _find_waitlisted(slot, student_id):
        return Outcome.failure(
            SlotErrorCode.ALREADY_ASSIGNED,
            f"Candidate {student_id} already assigned to this slot",
            student_id=str(student_id),
        )

    used = [a.time_slot for a in active_seats(slot)]
    time_slot = timegrid.next_available(slot.start_time, slot.end_time, slot.duration, used)
    if time_slot is None:
        # Unreachable while total_capacity <= grid size, which creation enforces.
        logger.error("Slot %s has %d free seats but no free time slot", slot.id, available)
        return Outcome.failure(
            SlotErrorCode.INCONSISTENT_STATE,
            "No available time slots",
            available_slots=available,
        )

    row = SlotAssignment(
        student_id=student_id,
        application_id=application_id,
        time_slot=time_slot,
        status=CandidateStatus.ASSIGNED,
        position=max((a.position for a in slot.assigned_candidates), default=0) + 1,
        assigned_at=now,
        notes=notes,
    )
    slot.assigned_candidates.append(row)
    slot.available_slots = derived_available(slot)
    return Outcome.success(
        LedgerChange(
            slot_id=slot.id,
            student_id=student_id,
            status=CandidateStatus.ASSIGNED,
            available_slots=slot.available_slots,
            time_slot=time_slot,
            application_id=application_id,
        )
    )


def waitlist_candidate(
    slot: InterviewSlot,
    now: datetime,
    student_id: UUID,
    application_id: UUID | None = None,
    notes: str | None = None,
) -> Outcome[LedgerChange]:
    if _find_seat(slot, student_id):
        return Outcome.failure(
            SlotErrorCode.ALREADY_ASSIGNED,
            f"Candidate {student_id} already assigned to this slot",
            student_id=str(student_id),
        )
    if _find_waitlisted(slot, student_id):
        return Outcome.failure(
            SlotErrorCode.ALREADY_WAITLISTED,
            f"Candidate {student_id} already on the waitlist",
            student_id=str(student_id),
        )

    priority = max((w.priority for w in slot.waitlist_candidates), default=0) + 1
    slot.waitlist_candidates.append(
        WaitlistEntry(
            student_id=student_id,
            application_id=application_id,
            priority=priority,
            added_at=now,
            notes=notes,
        )
    )
    return Outcome.success(
        LedgerChange(
            slot_id=slot.id,
            student_id=student_id,
            status="waitlisted",
            available_slots=slot.available_slots,
            application_id=application_id,
            priority=priority,
        )
    )


def confirm_seat(slot: InterviewSlot, now: datetime, student_id: UUID) -> Outcome[LedgerChange]:
    row = _find_seat(slot, student_id)
    if row is None or row.status != CandidateStatus.ASSIGNED:
        return _not_assigned(student_id, row, "assigned")
    row.status = CandidateStatus.CONFIRMED
    row.confirmed_at = now
    return Outcome.success(
        LedgerChange(
            slot_id=slot.id,
            student_id=student_id,
            status=CandidateStatus.CONFIRMED,
            available_slots=slot.available_slots,
            time_slot=row.time_slot,
            application_id=row.application_id,
        )
    )


def mark_seat_attended(
    slot: InterviewSlot, now: datetime, student_id: UUID, notes: str | None = None
) -> Outcome[LedgerChange]:
    row = _find_seat(slot, student_id)
    if row is None or row.status not in (CandidateStatus.ASSIGNED, CandidateStatus.CONFIRMED):
        return _not_assigned(student_id, row, "assigned or confirmed")
    row.status = CandidateStatus.ATTENDED
    row.attended_at = now
    if notes:
        row.notes = notes
    return Outcome.success(
        LedgerChange(
            slot_id=slot.id,
            student_id=student_id,
            status=CandidateStatus.ATTENDED,
            available_slots=slot.available_slots,
            time_slot=row.time_slot,
            application_id=row.application_id,
        )
    )


def release_seat(
    slot: InterviewSlot,
    now: datetime,
    student_id: UUID,
    new_status: CandidateStatus,
    notes: str | None = None,
) -> Outcome[LedgerChange]:
    """Release a held seat, then hand it to the head of the waitlist."""
    row = _find_seat(slot, student_id)
    if row is None or row.status not in (CandidateStatus.ASSIGNED, CandidateStatus.CONFIRMED):
        return _not_assigned(student_id, row, "assigned or confirmed")

    row.status = new_status
    row.released_at = now
    if notes:
        row.notes = notes
    slot.available_slots = derived_available(slot)

    promoted = None
    if slot.waitlist_candidates:
        head = min(slot.waitlist_candidates, key=lambda w: w.priority)
        slot.waitlist_candidates.remove(head)
        # Eligibility is not re-checked on promotion.
        outcome = assign_seat(slot, now, head.student_id, head.application_id, head.notes)
        if not outcome.ok:
            return outcome
        promoted = Seat(
            student_id=head.student_id,
            application_id=head.application_id,
            time_slot=outcome.value.time_slot,
            status=CandidateStatus.ASSIGNED,
        )
        logger.info(
            "Slot %s: promoted %s from waitlist (priority %d) into %s",
            slot.id, head.student_id, head.priority, promoted.time_slot,
        )

    return Outcome.success(
        LedgerChange(
            slot_id=slot.id,
            student_id=student_id,
            status=new_status,
            available_slots=slot.available_slots,
            time_slot=row.time_slot,
            application_id=row.application_id,
            promoted=promoted,
        )
    )


def release_all_seats(slot: InterviewSlot, now: datetime, notes: str | None = None) -> list[Seat]:
    """Cancel every held seat without promotion. Used when the slot itself is cancelled."""
    released = []
    for row in active_seats(slot):
        row.status = CandidateStatus.CANCELLED
        row.released_at = now
        if notes:
            row.notes = notes
        released.append(_seat(row))
    slot.available_slots = derived_available(slot)
    return released


# ── Ledger ────────────────────────────────────────────────────────────


class CapacityLedger:
    """Atomic seat and waitlist operations against persisted slots."""

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        locks: SlotLockRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._locks = locks or SlotLockRegistry()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._max_attempts = max_attempts or settings.ledger_max_attempts

    def assign(
        self,
        slot_id: UUID,
        student_id: UUID,
        *,
        application_id: UUID | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> Outcome[LedgerChange]:
        return self.run(
            slot_id,
            lambda slot, now: assign_seat(slot, now, student_id, application_id, notes),
            actor_id=actor_id,
        )

    def add_to_waitlist(
        self,
        slot_id: UUID,
        student_id: UUID,
        *,
        application_id: UUID | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> Outcome[LedgerChange]:
        return self.run(
            slot_id,
            lambda slot, now: waitlist_candidate(slot, now, student_id, application_id, notes),
            actor_id=actor_id,
        )

    def confirm_attendance(
        self, slot_id: UUID, student_id: UUID, *, actor_id: UUID | None = None
    ) -> Outcome[LedgerChange]:
        return self.run(slot_id, lambda slot, now: confirm_seat(slot, now, student_id), actor_id=actor_id)

    def mark_attended(
        self, slot_id: UUID, student_id: UUID, *, notes: str | None = None, actor_id: UUID | None = None
    ) -> Outcome[LedgerChange]:
        return self.run(
            slot_id, lambda slot, now: mark_seat_attended(slot, now, student_id, notes), actor_id=actor_id
        )

    def mark_no_show(
        self, slot_id: UUID, student_id: UUID, *, notes: str | None = None, actor_id: UUID | None = None
    ) -> Outcome[LedgerChange]:
        return self.run(
            slot_id,
            lambda slot, now: release_seat(slot, now, student_id, CandidateStatus.NO_SHOW, notes),
            actor_id=actor_id,
        )

    def cancel(
        self, slot_id: UUID, student_id: UUID, *, notes: str | None = None, actor_id: UUID | None = None
    ) -> Outcome[LedgerChange]:
        return self.run(
            slot_id,
            lambda slot, now: release_seat(slot, now, student_id, CandidateStatus.CANCELLED, notes),
            actor_id=actor_id,
        )

    def reconcile(self, slot_id: UUID, *, actor_id: UUID | None = None) -> Outcome[LedgerChange]:
        """Recompute ``available_slots`` and lift the quarantine if the rows are sound."""

        def _reconcile(slot: InterviewSlot, now: datetime) -> Outcome[LedgerChange]:
            problems = check_invariants(slot, include_counter=False)
            if problems:
                return Outcome.failure(
                    SlotErrorCode.INCONSISTENT_STATE,
                    "Slot rows need manual correction before reconciliation",
                    problems=problems,
                )
            previous = slot.available_slots
            slot.available_slots = derived_available(slot)
            slot.needs_reconciliation = False
            slot.reconciliation_note = None
            logger.info("Slot %s reconciled: available_slots %s -> %d", slot.id, previous, slot.available_slots)
            return Outcome.success(
                LedgerChange(slot_id=slot.id, status=str(slot.status), available_slots=slot.available_slots)
            )

        return self.run(slot_id, _reconcile, actor_id=actor_id, allow_terminal=True, verify=False)

    def run(
        self,
        slot_id: UUID,
        operation: Operation,
        *,
        actor_id: UUID | None = None,
        allow_terminal: bool = False,
        verify: bool = True,
    ) -> Outcome[LedgerChange]:
        """Apply ``operation`` to the slot as one linearizable transaction.

        ``verify=False`` skips the quarantine gate and the pre-check; only
        reconciliation uses it.
        """
        for attempt in range(1, self._max_attempts + 1):
            with self._locks.hold(slot_id):
                db = self._session_factory()
                try:
                    return self._apply(db, slot_id, operation, actor_id, allow_terminal, verify)
                except StaleDataError:
                    db.rollback()
                    logger.warning(
                        "Slot %s changed concurrently (attempt %d/%d), retrying",
                        slot_id, attempt, self._max_attempts,
                    )
                finally:
                    db.close()

        logger.error("Slot %s: giving up after %d conflicting attempts", slot_id, self._max_attempts)
        return Outcome.failure(
            SlotErrorCode.CONCURRENT_MODIFICATION,
            "Slot was modified concurrently, please retry",
            attempts=self._max_attempts,
        )

    def _apply(
        self,
        db: Session,
        slot_id: UUID,
        operation: Operation,
        actor_id: UUID | None,
        allow_terminal: bool,
        verify: bool,
    ) -> Outcome[LedgerChange]:
        slot = load_slot(db, slot_id)
        if slot is None:
            return Outcome.failure(SlotErrorCode.SLOT_NOT_FOUND, "Interview slot not found", slot_id=str(slot_id))

        if verify:
            if slot.needs_reconciliation:
                return Outcome.failure(
                    SlotErrorCode.INCONSISTENT_STATE,
                    "Slot is awaiting reconciliation",
                    note=slot.reconciliation_note,
                )
            problems = check_invariants(slot)
            if problems:
                self._quarantine(db, slot_id, problems)
                return Outcome.failure(SlotErrorCode.INCONSISTENT_STATE, "Slot invariants violated", problems=problems)

        if not allow_terminal and slot.status in TERMINAL_SLOT_STATUSES:
            return Outcome.failure(
                SlotErrorCode.INVALID_TRANSITION,
                f"Interview slot is {slot.status}",
                status=str(slot.status),
            )

        now = self._clock()
        outcome = operation(slot, now)
        if not outcome.ok:
            db.rollback()
            return outcome

        problems = check_invariants(slot)
        if problems:
            self._quarantine(db, slot_id, problems)
            return Outcome.failure(SlotErrorCode.INCONSISTENT_STATE, "Slot invariants violated", problems=problems)

        # Bump the revision on every write so seat-only changes also conflict.
        slot.version = slot.version + 1
        slot.updated_at = now
        if actor_id is not None:
            slot.last_modified_by = actor_id
        db.commit()

        snapshot = SlotResponse.model_validate(slot)
        return Outcome.success(replace(outcome.value, slot=snapshot))

    def _quarantine(self, db: Session, slot_id: UUID, problems: list[str]) -> None:
        db.rollback()
        logger.error("Slot %s failed invariant check, refusing further mutation: %s", slot_id, "; ".join(problems))
        slot = load_slot(db, slot_id)
        if slot is None:
            return
        slot.needs_reconciliation = True
        slot.reconciliation_note = "; ".join(problems)[:2000]
        slot.version = slot.version + 1
        db.commit()


def load_slot(db: Session, slot_id: UUID) -> InterviewSlot | None:
    return (
        db.query(InterviewSlot)
        .options(
            selectinload(InterviewSlot.assigned_candidates),
            selectinload(InterviewSlot.waitlist_candidates),
        )
        .filter(InterviewSlot.id == slot_id, InterviewSlot.is_active.is_(True))
        .populate_existing()
        .first()
    )
