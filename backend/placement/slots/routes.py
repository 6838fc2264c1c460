"""Interview slot JSON API routes."""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..config import settings
from ..database.session import get_db
from ..dependencies import get_actor_id, get_controller
from ..rate_limit import limiter
from .controller import SlotLifecycleController
from .models import CandidateStatus, SlotStatus
from .results import ActionResult, Outcome, SlotErrorCode
from .schemas import (
    AttendanceRequest,
    CancelSlotRequest,
    CandidateActionRequest,
    CandidateActionResponse,
    PromotedCandidate,
    PublishRequest,
    SlotCreateRequest,
    SlotResponse,
    StudentAssignmentResponse,
)
from .service import find_candidate_assignments, get_slot, get_upcoming_slots, list_slots

router = APIRouter(tags=["interview-slots"])

_HTTP_STATUS = {
    SlotErrorCode.INSUFFICIENT_APPLICANTS: 400,
    SlotErrorCode.INVALID_WINDOW: 422,
    SlotErrorCode.SLOT_NOT_FOUND: 404,
    SlotErrorCode.NOT_ASSIGNED: 404,
    SlotErrorCode.NO_CAPACITY: 409,
    SlotErrorCode.ALREADY_ASSIGNED: 409,
    SlotErrorCode.ALREADY_WAITLISTED: 409,
    SlotErrorCode.INVALID_TRANSITION: 409,
    SlotErrorCode.CONCURRENT_MODIFICATION: 409,
    SlotErrorCode.INCONSISTENT_STATE: 423,
}


def _error(outcome: Outcome) -> JSONResponse:
    err = outcome.error
    return JSONResponse(
        {"error": err.message, "code": str(err.code), "detail": err.detail},
        status_code=_HTTP_STATUS.get(err.code, 400),
    )


def _slot_json(slot) -> dict:
    return SlotResponse.model_validate(slot).model_dump(mode="json")


def _action_json(result: ActionResult) -> dict:
    change = result.change
    promoted = None
    if change.promoted is not None:
        promoted = PromotedCandidate(
            student_id=change.promoted.student_id,
            application_id=change.promoted.application_id,
            time_slot=change.promoted.time_slot,
        )
    return CandidateActionResponse(
        slot=change.slot,
        student_id=change.student_id,
        status=str(change.status),
        time_slot=change.time_slot,
        priority=change.priority,
        promoted=promoted,
        notification_failures=list(result.notification_failures),
    ).model_dump(mode="json")


# ── Reads ─────────────────────────────────────────────────────────────


@router.get("/jobs/{job_id}/interview-slots")
def list_job_slots(
    job_id: UUID,
    status: SlotStatus | None = None,
    college_id: UUID | None = None,
    db: Session = Depends(get_db),
):
    slots = list_slots(db, job_id, status=status, college_id=college_id)
    return JSONResponse({"slots": [_slot_json(s) for s in slots]})


@router.get("/interview-slots/upcoming")
def upcoming_slots(
    days: int = Query(settings.upcoming_days, ge=1, le=90),
    db: Session = Depends(get_db),
):
    slots = get_upcoming_slots(db, datetime.now(UTC).date(), days)
    return JSONResponse({"slots": [_slot_json(s) for s in slots]})


@router.get("/interview-slots/{slot_id}")
def slot_detail(slot_id: UUID, db: Session = Depends(get_db)):
    slot = get_slot(db, slot_id)
    if not slot:
        return JSONResponse({"error": "Interview slot not found", "code": SlotErrorCode.SLOT_NOT_FOUND}, status_code=404)
    return JSONResponse(_slot_json(slot))


@router.get("/students/{student_id}/interview-assignments")
def student_assignments(
    student_id: UUID,
    status: CandidateStatus | None = None,
    db: Session = Depends(get_db),
):
    rows = find_candidate_assignments(db, student_id, status)
    return JSONResponse(
        {"assignments": [StudentAssignmentResponse(**row).model_dump(mode="json") for row in rows]}
    )


# ── Slot lifecycle ────────────────────────────────────────────────────


@router.post("/jobs/{job_id}/interview-slots")
def create_slots(
    request: Request,
    job_id: UUID,
    body: SlotCreateRequest,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    """Create one draft slot per accepted college."""
    outcome = controller.create_slots_for_colleges(job_id, body, actor_id)
    if not outcome.ok:
        return _error(outcome)
    audit(db, request, "slot_create", f"job={job_id}, slots={len(outcome.value)}", actor_id)
    db.commit()
    return JSONResponse({"slots": [s.model_dump(mode="json") for s in outcome.value]}, status_code=201)


@router.post("/interview-slots/{slot_id}/publish")
@limiter.limit(settings.rate_limit_publish)
def publish_slot(
    request: Request,
    slot_id: UUID,
    body: PublishRequest | None = None,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    minimum = body.minimum_applicants if body else None
    outcome = controller.publish(slot_id, minimum, actor_id)
    if not outcome.ok:
        return _error(outcome)
    summary = outcome.value.assignment
    audit(
        db,
        request,
        "slot_publish",
        f"slot={slot_id}, assigned={summary.assigned_count if summary else 0}, "
        f"waitlisted={summary.waitlisted_count if summary else 0}",
        actor_id,
    )
    db.commit()
    return JSONResponse(outcome.value.model_dump(mode="json"))


@router.post("/interview-slots/{slot_id}/auto-assign")
@limiter.limit(settings.rate_limit_publish)
def auto_assign(
    request: Request,
    slot_id: UUID,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    outcome = controller.run_assignment(slot_id, actor_id)
    if not outcome.ok:
        return _error(outcome)
    summary = outcome.value.assignment
    audit(
        db,
        request,
        "slot_auto_assign",
        f"slot={slot_id}, assigned={summary.assigned_count}, waitlisted={summary.waitlisted_count}",
        actor_id,
    )
    db.commit()
    return JSONResponse(outcome.value.model_dump(mode="json"))


@router.post("/interview-slots/{slot_id}/start")
def start_slot(
    request: Request,
    slot_id: UUID,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    outcome = controller.start(slot_id, actor_id)
    if not outcome.ok:
        return _error(outcome)
    audit(db, request, "slot_start", f"slot={slot_id}", actor_id)
    db.commit()
    return JSONResponse(outcome.value.model_dump(mode="json"))


@router.post("/interview-slots/{slot_id}/complete")
def complete_slot(
    request: Request,
    slot_id: UUID,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    outcome = controller.complete(slot_id, actor_id)
    if not outcome.ok:
        return _error(outcome)
    audit(db, request, "slot_complete", f"slot={slot_id}", actor_id)
    db.commit()
    return JSONResponse(outcome.value.model_dump(mode="json"))


@router.post("/interview-slots/{slot_id}/cancel")
def cancel_slot(
    request: Request,
    slot_id: UUID,
    body: CancelSlotRequest | None = None,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    reason = body.reason if body else None
    outcome = controller.cancel_slot(slot_id, reason, actor_id)
    if not outcome.ok:
        return _error(outcome)
    audit(
        db,
        request,
        "slot_cancel",
        f"slot={slot_id}, affected={len(outcome.value.affected_candidates)}, reason={reason or ''}",
        actor_id,
    )
    db.commit()
    return JSONResponse(outcome.value.model_dump(mode="json"))


@router.post("/interview-slots/{slot_id}/reconcile")
def reconcile_slot(
    request: Request,
    slot_id: UUID,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    outcome = controller.reconcile(slot_id, actor_id)
    if not outcome.ok:
        return _error(outcome)
    audit(db, request, "slot_reconcile", f"slot={slot_id}", actor_id)
    db.commit()
    return JSONResponse(outcome.value.model_dump(mode="json"))


@router.delete("/interview-slots/{slot_id}")
def deactivate_slot(
    request: Request,
    slot_id: UUID,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    outcome = controller.deactivate(slot_id, actor_id)
    if not outcome.ok:
        return _error(outcome)
    audit(db, request, "slot_deactivate", f"slot={slot_id}", actor_id)
    db.commit()
    return JSONResponse({"ok": True})


# ── Seats ─────────────────────────────────────────────────────────────


@router.post("/interview-slots/{slot_id}/candidates/{student_id}")
def assign_candidate(
    request: Request,
    slot_id: UUID,
    student_id: UUID,
    body: CandidateActionRequest | None = None,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    body = body or CandidateActionRequest()
    outcome = controller.assign_candidate(slot_id, student_id, body.application_id, body.notes, actor_id)
    if not outcome.ok:
        return _error(outcome)
    audit(db, request, "slot_assign", f"slot={slot_id}, student={student_id}", actor_id)
    db.commit()
    return JSONResponse(_action_json(outcome.value))


@router.post("/interview-slots/{slot_id}/waitlist/{student_id}")
def waitlist_candidate(
    request: Request,
    slot_id: UUID,
    student_id: UUID,
    body: CandidateActionRequest | None = None,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    body = body or CandidateActionRequest()
    outcome = controller.add_to_waitlist(slot_id, student_id, body.application_id, body.notes, actor_id)
    if not outcome.ok:
        return _error(outcome)
    audit(db, request, "slot_waitlist", f"slot={slot_id}, student={student_id}", actor_id)
    db.commit()
    return JSONResponse(_action_json(outcome.value))


@router.post("/interview-slots/{slot_id}/confirm/{student_id}")
def confirm_candidate(
    request: Request,
    slot_id: UUID,
    student_id: UUID,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    outcome = controller.confirm_attendance(slot_id, student_id, actor_id)
    if not outcome.ok:
        return _error(outcome)
    audit(db, request, "slot_confirm", f"slot={slot_id}, student={student_id}", actor_id)
    db.commit()
    return JSONResponse(_action_json(outcome.value))


@router.post("/interview-slots/{slot_id}/attendance/{student_id}")
def record_attendance(
    request: Request,
    slot_id: UUID,
    student_id: UUID,
    body: AttendanceRequest,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    outcome = controller.record_attendance(slot_id, student_id, body.attended, body.notes, actor_id)
    if not outcome.ok:
        return _error(outcome)
    action = "slot_attended" if body.attended else "slot_no_show"
    audit(db, request, action, f"slot={slot_id}, student={student_id}", actor_id)
    db.commit()
    return JSONResponse(_action_json(outcome.value))


@router.post("/interview-slots/{slot_id}/candidates/{student_id}/cancel")
def cancel_candidate(
    request: Request,
    slot_id: UUID,
    student_id: UUID,
    body: CandidateActionRequest | None = None,
    db: Session = Depends(get_db),
    controller: SlotLifecycleController = Depends(get_controller),
    actor_id: UUID | None = Depends(get_actor_id),
):
    notes = body.notes if body else None
    outcome = controller.cancel_candidate(slot_id, student_id, notes, actor_id)
    if not outcome.ok:
        return _error(outcome)
    audit(db, request, "slot_cancel_candidate", f"slot={slot_id}, student={student_id}", actor_id)
    db.commit()
    return JSONResponse(_action_json(outcome.value))
