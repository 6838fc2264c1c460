"""Slot lifecycle: draft -> published -> in_progress -> completed, or cancelled.

The controller owns status transitions and the side effects of seat
changes. Every write goes through the capacity ledger, so transitions and
seat operations on one slot are serialized against each other.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import sessionmaker

from ..config import settings
from . import timegrid
from .collaborators import ApplicationStatus, NotificationKind
from .effects import SideEffects
from .ledger import CapacityLedger, active_seats, release_all_seats
from .models import TERMINAL_SLOT_STATUSES, InterviewSlot, SlotStatus
from .pipeline import PROMOTION_NOTE, AssignmentPipeline
from .results import ActionResult, LedgerChange, Outcome, Seat, SlotErrorCode
from .schemas import (
    AutoAssignmentSettings,
    NotificationFailure,
    PublishResponse,
    SlotCancellationResponse,
    SlotCreateRequest,
    SlotResponse,
)
from .service import get_slot

logger = logging.getLogger(__name__)

MANUAL_ASSIGN_NOTE = "Assigned to interview slot"


def _transition(slot: InterviewSlot, allowed: set[SlotStatus], target: SlotStatus) -> Outcome[LedgerChange] | None:
    if slot.status not in allowed:
        return Outcome.failure(
            SlotErrorCode.INVALID_TRANSITION,
            f"Cannot move interview slot from {slot.status} to {target}",
            status=str(slot.status),
            target=str(target),
        )
    return None


def _status_change(slot: InterviewSlot, released: tuple[Seat, ...] = ()) -> Outcome[LedgerChange]:
    return Outcome.success(
        LedgerChange(
            slot_id=slot.id,
            status=str(slot.status),
            available_slots=slot.available_slots,
            released=released,
        )
    )


class SlotLifecycleController:
    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: CapacityLedger,
        pipeline: AssignmentPipeline,
        effects: SideEffects,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.ledger = ledger
        self.pipeline = pipeline
        self.effects = effects
        self._clock = clock or (lambda: datetime.now(UTC))

    # ── Reads ─────────────────────────────────────────────────────────

    def get_slot(self, slot_id: UUID) -> SlotResponse | None:
        db = self._session_factory()
        try:
            slot = get_slot(db, slot_id)
            return SlotResponse.model_validate(slot) if slot else None
        finally:
            db.close()

    # ── Creation ──────────────────────────────────────────────────────

    def create_slot(
        self, job_id: UUID, college_id: UUID, request: SlotCreateRequest, actor_id: UUID | None = None
    ) -> Outcome[SlotResponse]:
        outcome = self.create_slots_for_colleges(
            job_id, request.model_copy(update={"college_ids": [college_id]}), actor_id
        )
        if not outcome.ok:
            return Outcome(error=outcome.error)
        return Outcome.success(outcome.value[0])

    def create_slots_for_colleges(
        self, job_id: UUID, request: SlotCreateRequest, actor_id: UUID | None = None
    ) -> Outcome[list[SlotResponse]]:
        """Create one draft slot per accepted college invitation, in a single transaction."""
        problems = timegrid.validate_window(
            request.start_time, request.end_time, request.duration, request.total_capacity
        )
        if problems:
            return Outcome.failure(SlotErrorCode.INVALID_WINDOW, "; ".join(problems), problems=problems)

        now = self._clock()
        db = self._session_factory()
        try:
            slots = []
            for college_id in dict.fromkeys(request.college_ids):
                slot = InterviewSlot(
                    job_id=job_id,
                    recruiter_id=request.recruiter_id,
                    college_id=college_id,
                    title=request.title,
                    description=request.description,
                    scheduled_date=request.scheduled_date,
                    start_time=request.start_time,
                    end_time=request.end_time,
                    duration=request.duration,
                    total_capacity=request.total_capacity,
                    available_slots=request.total_capacity,
                    mode=request.mode,
                    location=request.location.model_dump(mode="json") if request.location else None,
                    virtual_meeting_details=(
                        request.virtual_meeting_details.model_dump(mode="json")
                        if request.virtual_meeting_details
                        else None
                    ),
                    interviewers=[i.model_dump(mode="json") for i in request.interviewers],
                    candidate_instructions=(
                        request.candidate_instructions.model_dump(mode="json")
                        if request.candidate_instructions
                        else None
                    ),
                    eligibility_criteria=request.eligibility_criteria.model_dump(mode="json"),
                    auto_assignment_settings=request.auto_assignment_settings.model_dump(mode="json"),
                    status=SlotStatus.DRAFT,
                    version=1,
                    created_by=actor_id,
                    last_modified_by=actor_id,
                    created_at=now,
                    updated_at=now,
                )
                db.add(slot)
                slots.append(slot)
            db.commit()
            created = [SlotResponse.model_validate(s) for s in slots]
        finally:
            db.close()

        logger.info("Created %d draft interview slot(s) for job %s", len(created), job_id)
        return Outcome.success(created)

    # ── Transitions ───────────────────────────────────────────────────

    def publish(
        self, slot_id: UUID, minimum_applicants: int | None = None, actor_id: UUID | None = None
    ) -> Outcome[PublishResponse]:
        threshold = settings.minimum_applicants if minimum_applicants is None else minimum_applicants

        def _publish(slot: InterviewSlot, now: datetime) -> Outcome[LedgerChange]:
            refused = _transition(slot, {SlotStatus.DRAFT}, SlotStatus.PUBLISHED)
            if refused:
                return refused
            count = self.effects.applications.count_applied(slot.job_id)
            if count < threshold:
                return Outcome.failure(
                    SlotErrorCode.INSUFFICIENT_APPLICANTS,
                    f"Minimum {threshold} applicants required. Currently have {count}.",
                    minimum_applicants=threshold,
                    applicants=count,
                )
            slot.status = SlotStatus.PUBLISHED
            slot.published_at = now
            return _status_change(slot)

        outcome = self.ledger.run(slot_id, _publish, actor_id=actor_id)
        if not outcome.ok:
            return Outcome(error=outcome.error)
        logger.info("Interview slot %s published", slot_id)

        snapshot = outcome.value.slot
        summary = None
        if AutoAssignmentSettings.model_validate(snapshot.auto_assignment_settings).is_enabled:
            summary = self.pipeline.run(snapshot, actor_id)
            snapshot = self.get_slot(slot_id) or snapshot
        return Outcome.success(PublishResponse(slot=snapshot, assignment=summary))

    def run_assignment(self, slot_id: UUID, actor_id: UUID | None = None) -> Outcome[PublishResponse]:
        """Re-run the assignment pipeline; candidates already on the slot are left alone."""
        snapshot = self.get_slot(slot_id)
        if snapshot is None:
            return Outcome.failure(SlotErrorCode.SLOT_NOT_FOUND, "Interview slot not found", slot_id=str(slot_id))
        if snapshot.needs_reconciliation:
            return Outcome.failure(SlotErrorCode.INCONSISTENT_STATE, "Slot is awaiting reconciliation")
        if snapshot.status not in (SlotStatus.PUBLISHED, SlotStatus.IN_PROGRESS):
            return Outcome.failure(
                SlotErrorCode.INVALID_TRANSITION,
                f"Auto-assignment is not allowed for a {snapshot.status} slot",
                status=str(snapshot.status),
            )
        summary = self.pipeline.run(snapshot, actor_id)
        return Outcome.success(PublishResponse(slot=self.get_slot(slot_id) or snapshot, assignment=summary))

    def start(self, slot_id: UUID, actor_id: UUID | None = None) -> Outcome[SlotResponse]:
        def _start(slot: InterviewSlot, now: datetime) -> Outcome[LedgerChange]:
            refused = _transition(slot, {SlotStatus.PUBLISHED}, SlotStatus.IN_PROGRESS)
            if refused:
                return refused
            slot.status = SlotStatus.IN_PROGRESS
            slot.started_at = now
            return _status_change(slot)

        return self._slot_outcome(self.ledger.run(slot_id, _start, actor_id=actor_id))

    def complete(self, slot_id: UUID, actor_id: UUID | None = None) -> Outcome[SlotResponse]:
        def _complete(slot: InterviewSlot, now: datetime) -> Outcome[LedgerChange]:
            refused = _transition(slot, {SlotStatus.PUBLISHED, SlotStatus.IN_PROGRESS}, SlotStatus.COMPLETED)
            if refused:
                return refused
            if slot.scheduled_date > now.date():
                return Outcome.failure(
                    SlotErrorCode.INVALID_TRANSITION,
                    "Cannot complete an interview slot before its scheduled date",
                    scheduled_date=slot.scheduled_date.isoformat(),
                )
            slot.status = SlotStatus.COMPLETED
            slot.completed_at = now
            return _status_change(slot)

        return self._slot_outcome(self.ledger.run(slot_id, _complete, actor_id=actor_id))

    def cancel_slot(
        self, slot_id: UUID, reason: str | None = None, actor_id: UUID | None = None
    ) -> Outcome[SlotCancellationResponse]:
        """Cancel the slot and every held seat. The waitlist is not promoted."""

        def _cancel(slot: InterviewSlot, now: datetime) -> Outcome[LedgerChange]:
            released = release_all_seats(slot, now, notes="Interview slot cancelled")
            slot.status = SlotStatus.CANCELLED
            slot.cancelled_at = now
            slot.cancellation_reason = reason
            return _status_change(slot, tuple(released))

        outcome = self.ledger.run(slot_id, _cancel, actor_id=actor_id)
        if not outcome.ok:
            return Outcome(error=outcome.error)

        change = outcome.value
        note = f"Interview slot cancelled: {reason}" if reason else "Interview slot cancelled"
        failures = []
        for seat in change.released:
            self.effects.try_update_application(seat.application_id, ApplicationStatus.WITHDRAWN, note)
            failure = self.effects.notify(
                change.slot, seat.student_id, NotificationKind.CANCELLATION, seat.time_slot, reason=reason
            )
            if failure:
                failures.append(failure)

        logger.info("Interview slot %s cancelled, %d candidate(s) affected", slot_id, len(change.released))
        return Outcome.success(
            SlotCancellationResponse(
                slot=change.slot,
                affected_candidates=[seat.student_id for seat in change.released],
                notification_failures=failures,
            )
        )

    def deactivate(self, slot_id: UUID, actor_id: UUID | None = None) -> Outcome[SlotResponse]:
        def _deactivate(slot: InterviewSlot, now: datetime) -> Outcome[LedgerChange]:
            if slot.status != SlotStatus.DRAFT and slot.status not in TERMINAL_SLOT_STATUSES:
                return Outcome.failure(
                    SlotErrorCode.INVALID_TRANSITION,
                    f"Cannot deactivate a {slot.status} interview slot, cancel it first",
                    status=str(slot.status),
                )
            held = active_seats(slot)
            if slot.status == SlotStatus.DRAFT and held:
                return Outcome.failure(
                    SlotErrorCode.INVALID_TRANSITION,
                    f"Cannot deactivate an interview slot with {len(held)} held seat(s), cancel them first",
                    held_seats=len(held),
                )
            slot.is_active = False
            return _status_change(slot)

        outcome = self.ledger.run(slot_id, _deactivate, actor_id=actor_id, allow_terminal=True)
        if outcome.ok:
            logger.info("Interview slot %s deactivated", slot_id)
        return self._slot_outcome(outcome)

    def reconcile(self, slot_id: UUID, actor_id: UUID | None = None) -> Outcome[SlotResponse]:
        return self._slot_outcome(self.ledger.reconcile(slot_id, actor_id=actor_id))

    # ── Seat actions ──────────────────────────────────────────────────

    def assign_candidate(
        self,
        slot_id: UUID,
        student_id: UUID,
        application_id: UUID | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> Outcome[ActionResult]:
        application_id = application_id or self._find_application_id(slot_id, student_id)
        outcome = self.ledger.assign(
            slot_id, student_id, application_id=application_id, notes=notes, actor_id=actor_id
        )
        if not outcome.ok:
            return Outcome(error=outcome.error)

        change = outcome.value
        failures: list[NotificationFailure] = []
        seat = Seat(student_id, change.application_id, change.time_slot, str(change.status))
        if not self.pipeline.settle_seat(change.slot, seat, MANUAL_ASSIGN_NOTE, failures, actor_id):
            return Outcome.failure(
                SlotErrorCode.INVALID_TRANSITION,
                "Application is closed; the seat was released",
                student_id=str(student_id),
            )
        return Outcome.success(ActionResult(change, tuple(failures)))

    def add_to_waitlist(
        self,
        slot_id: UUID,
        student_id: UUID,
        application_id: UUID | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> Outcome[ActionResult]:
        application_id = application_id or self._find_application_id(slot_id, student_id)
        outcome = self.ledger.add_to_waitlist(
            slot_id, student_id, application_id=application_id, notes=notes, actor_id=actor_id
        )
        if not outcome.ok:
            return Outcome(error=outcome.error)
        return Outcome.success(ActionResult(outcome.value))

    def confirm_attendance(
        self, slot_id: UUID, student_id: UUID, actor_id: UUID | None = None
    ) -> Outcome[ActionResult]:
        outcome = self.ledger.confirm_attendance(slot_id, student_id, actor_id=actor_id)
        if not outcome.ok:
            return Outcome(error=outcome.error)
        change = outcome.value
        failure = self.effects.notify(change.slot, student_id, NotificationKind.CONFIRMATION, change.time_slot)
        return Outcome.success(ActionResult(change, (failure,) if failure else ()))

    def record_attendance(
        self,
        slot_id: UUID,
        student_id: UUID,
        attended: bool,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> Outcome[ActionResult]:
        if attended:
            outcome = self.ledger.mark_attended(slot_id, student_id, notes=notes, actor_id=actor_id)
            if not outcome.ok:
                return Outcome(error=outcome.error)
            change = outcome.value
            self.effects.try_update_application(
                change.application_id, ApplicationStatus.INTERVIEW_COMPLETED, "Attended interview"
            )
            return Outcome.success(ActionResult(change))

        outcome = self.ledger.mark_no_show(slot_id, student_id, notes=notes, actor_id=actor_id)
        return self._after_release(outcome, NotificationKind.NO_SHOW, "Did not attend interview", actor_id)

    def cancel_candidate(
        self, slot_id: UUID, student_id: UUID, notes: str | None = None, actor_id: UUID | None = None
    ) -> Outcome[ActionResult]:
        outcome = self.ledger.cancel(slot_id, student_id, notes=notes, actor_id=actor_id)
        return self._after_release(outcome, NotificationKind.CANCELLATION, "Interview seat cancelled", actor_id)

    # ── Helpers ───────────────────────────────────────────────────────

    def _after_release(
        self, outcome: Outcome[LedgerChange], kind: NotificationKind, note: str, actor_id: UUID | None
    ) -> Outcome[ActionResult]:
        """Side effects of a released seat and of the waitlist promotion it triggered."""
        if not outcome.ok:
            return Outcome(error=outcome.error)
        change = outcome.value
        failures: list[NotificationFailure] = []

        self.effects.try_update_application(change.application_id, ApplicationStatus.WITHDRAWN, note)
        failure = self.effects.notify(change.slot, change.student_id, kind, change.time_slot)
        if failure:
            failures.append(failure)

        if change.promoted is not None:
            self.pipeline.settle_seat(change.slot, change.promoted, PROMOTION_NOTE, failures, actor_id)
        return Outcome.success(ActionResult(change, tuple(failures)))

    def _find_application_id(self, slot_id: UUID, student_id: UUID) -> UUID | None:
        snapshot = self.get_slot(slot_id)
        if snapshot is None:
            return None
        record = self.effects.applications.find_application(snapshot.job_id, student_id)
        return record.application_id if record else None

    @staticmethod
    def _slot_outcome(outcome: Outcome[LedgerChange]) -> Outcome[SlotResponse]:
        if not outcome.ok:
            return Outcome(error=outcome.error)
        return Outcome.success(outcome.value.slot)
