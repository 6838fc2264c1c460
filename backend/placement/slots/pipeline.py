"""Batch assignment: filter, rank and seat the applicants of one slot.

The batch is a sequence of short per-candidate ledger transactions, so manual
actions on the same slot interleave safely with a running pipeline. A
candidate's failure is recorded in the summary and never aborts the batch.
"""

import logging
import random
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from uuid import UUID

from ..config import settings
from .collaborators import ApplicationStatus, ApplicationStatusError, NotificationKind, ProfileLookup
from .effects import SideEffects
from .eligibility import is_eligible
from .ledger import CapacityLedger
from .ranking import RankingCandidate, rank
from .results import LedgerChange, Outcome, Seat, SlotErrorCode
from .schemas import (
    ApplicationRecord,
    AssignmentSummary,
    AutoAssignmentSettings,
    CandidateProfile,
    EligibilityCriteria,
    NotificationFailure,
    SkippedCandidate,
    SlotResponse,
)

logger = logging.getLogger(__name__)

AUTO_ASSIGN_NOTE = "Auto-assigned to interview slot"
PROMOTION_NOTE = "Promoted from interview waitlist"

_DUPLICATE_CODES = {SlotErrorCode.ALREADY_ASSIGNED, SlotErrorCode.ALREADY_WAITLISTED}


def _default_rng() -> random.Random:
    return random.Random(settings.assignment_random_seed)


class AssignmentPipeline:
    def __init__(
        self,
        ledger: CapacityLedger,
        profiles: ProfileLookup,
        effects: SideEffects,
        *,
        rng_factory: Callable[[], random.Random] | None = None,
        lookup_timeout: float | None = None,
        lookup_workers: int | None = None,
    ) -> None:
        self._ledger = ledger
        self._profiles = profiles
        self._effects = effects
        self._rng_factory = rng_factory or _default_rng
        self._lookup_timeout = lookup_timeout if lookup_timeout is not None else settings.profile_lookup_timeout_seconds
        self._lookup_workers = lookup_workers or settings.profile_lookup_workers

    def run(self, slot: SlotResponse, actor_id: UUID | None = None) -> AssignmentSummary:
        summary = AssignmentSummary()
        criteria = EligibilityCriteria.model_validate(slot.eligibility_criteria)
        options = AutoAssignmentSettings.model_validate(slot.auto_assignment_settings)

        applications = self._effects.applications.find_applied(slot.job_id)
        profiles = self._lookup_profiles(applications, summary)

        pool = []
        for app in applications:
            profile = profiles.get(app.student_id)
            if profile is None:
                continue
            if not is_eligible(profile, criteria, slot.college_id):
                summary.skipped.append(SkippedCandidate(student_id=app.student_id, reason="ineligible"))
                continue
            pool.append(
                RankingCandidate(
                    student_id=app.student_id,
                    application_id=app.application_id,
                    match_score=app.match_score,
                    applied_at=app.applied_at,
                )
            )

        ranked = rank(pool, options.assignment_algorithm, options.minimum_score, self._rng_factory())
        kept = {c.student_id for c in ranked}
        for candidate in pool:
            if candidate.student_id not in kept:
                summary.skipped.append(
                    SkippedCandidate(
                        student_id=candidate.student_id,
                        reason="below_minimum_score",
                        detail=f"{candidate.match_score} < {options.minimum_score}",
                    )
                )

        present = {a.student_id for a in slot.assigned_candidates} | {w.student_id for w in slot.waitlist_candidates}
        remaining = []
        for candidate in ranked:
            if candidate.student_id in present:
                summary.unchanged_count += 1
            else:
                remaining.append(candidate)

        # A closed application hands its seat back mid-run, so everyone tries assign first.
        for candidate in remaining:
            outcome = self._ledger.assign(
                slot.id, candidate.student_id, application_id=candidate.application_id, actor_id=actor_id
            )
            if outcome.ok:
                summary.assigned_count += 1
                change = outcome.value
                settled = self.settle_seat(
                    change.slot, _granted(change), AUTO_ASSIGN_NOTE, summary.notification_failures, actor_id
                )
                if not settled:
                    summary.assigned_count -= 1
                    summary.skipped.append(
                        SkippedCandidate(student_id=candidate.student_id, reason="application_closed")
                    )
            elif outcome.error.code == SlotErrorCode.NO_CAPACITY:
                self._waitlist(slot.id, candidate, summary, actor_id)
            else:
                self._record_failure(candidate.student_id, outcome, summary)

        logger.info(
            "Slot %s assignment: %d assigned, %d waitlisted, %d unchanged, %d skipped, %d notification failures",
            slot.id,
            summary.assigned_count,
            summary.waitlisted_count,
            summary.unchanged_count,
            len(summary.skipped),
            len(summary.notification_failures),
        )
        return summary

    def settle_seat(
        self,
        slot: SlotResponse,
        seat: Seat,
        note: str,
        failures: list[NotificationFailure],
        actor_id: UUID | None = None,
    ) -> bool:
        """Schedule the application and notify the holder of a newly granted seat.

        Returns False when the application turned out to be closed; the seat
        is then handed back through the ledger, which promotes the next
        waitlisted candidate in turn.
        """
        try:
            self._effects.update_application(seat.application_id, ApplicationStatus.INTERVIEW_SCHEDULED, note)
        except ApplicationStatusError as exc:
            logger.warning("Releasing seat of %s on slot %s: %s", seat.student_id, slot.id, exc)
            released = self._ledger.cancel(slot.id, seat.student_id, notes="Application closed", actor_id=actor_id)
            if not released.ok:
                logger.error(
                    "Could not release seat of %s on slot %s: %s", seat.student_id, slot.id, released.error.message
                )
            elif released.value.promoted is not None:
                self.settle_seat(released.value.slot, released.value.promoted, PROMOTION_NOTE, failures, actor_id)
            return False
        except Exception:
            logger.exception("Application update failed for %s on slot %s; seat kept", seat.student_id, slot.id)

        failure = self._effects.notify(slot, seat.student_id, NotificationKind.ASSIGNMENT, seat.time_slot)
        if failure is not None:
            failures.append(failure)
        return True

    def _waitlist(
        self, slot_id: UUID, candidate: RankingCandidate, summary: AssignmentSummary, actor_id: UUID | None
    ) -> None:
        outcome = self._ledger.add_to_waitlist(
            slot_id, candidate.student_id, application_id=candidate.application_id, actor_id=actor_id
        )
        if outcome.ok:
            summary.waitlisted_count += 1
        else:
            self._record_failure(candidate.student_id, outcome, summary)

    def _record_failure(self, student_id: UUID, outcome: Outcome[LedgerChange], summary: AssignmentSummary) -> None:
        if outcome.error.code in _DUPLICATE_CODES:
            summary.unchanged_count += 1
            return
        logger.warning("Candidate %s not placed: %s (%s)", student_id, outcome.error.code, outcome.error.message)
        summary.skipped.append(
            SkippedCandidate(student_id=student_id, reason=str(outcome.error.code), detail=outcome.error.message)
        )

    def _lookup_profiles(
        self, applications: list[ApplicationRecord], summary: AssignmentSummary
    ) -> dict[UUID, CandidateProfile]:
        """Resolve every applicant's profile in a bounded pool; failures become skips."""
        profiles: dict[UUID, CandidateProfile] = {}
        if not applications:
            return profiles

        executor = ThreadPoolExecutor(max_workers=self._lookup_workers, thread_name_prefix="profile-lookup")
        try:
            futures = [(app.student_id, executor.submit(self._profiles.get_profile, app.student_id)) for app in applications]
            for student_id, future in futures:
                try:
                    profile = future.result(timeout=self._lookup_timeout)
                except FutureTimeout:
                    logger.warning("Profile lookup for %s timed out after %.1fs", student_id, self._lookup_timeout)
                    summary.skipped.append(
                        SkippedCandidate(student_id=student_id, reason="profile_lookup_timeout", detail="retry later")
                    )
                    continue
                except Exception as exc:
                    logger.exception("Profile lookup for %s failed", student_id)
                    summary.skipped.append(
                        SkippedCandidate(student_id=student_id, reason="profile_lookup_failed", detail=str(exc))
                    )
                    continue
                if profile is None:
                    summary.skipped.append(SkippedCandidate(student_id=student_id, reason="profile_not_found"))
                else:
                    profiles[student_id] = profile
        finally:
            # Do not block the batch on lookups that already timed out.
            executor.shutdown(wait=False, cancel_futures=True)
        return profiles


def _granted(change: LedgerChange) -> Seat:
    return Seat(
        student_id=change.student_id,
        application_id=change.application_id,
        time_slot=change.time_slot,
        status=str(change.status),
    )
