"""Interview slot request/response schemas and engine value types."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field

from .models import AssignmentAlgorithm, CandidateStatus, InterviewMode, SlotStatus

# ── Engine value types ────────────────────────────────────────────────


class EligibilityCriteria(BaseModel):
    min_cgpa: float | None = Field(None, ge=0, le=10)
    required_skills: list[str] = Field(default_factory=list)
    courses: list[str] = Field(...)
    graduation_year: int
    max_backlogs: int | None = Field(None, ge=0)


class AutoAssignmentSettings(BaseModel):
    is_enabled: bool = True
    assignment_algorithm: AssignmentAlgorithm = AssignmentAlgorithm.SCORE_BASED
    minimum_score: float | None = Field(None, ge=0, le=100)


class CandidateProfile(BaseModel):
    """Academic profile as returned by the profile lookup."""

    student_id: UUID
    college_id: UUID
    cgpa: float | None = None
    backlogs: int = 0
    courses: list[str] = Field(default_factory=list)
    graduation_year: int | None = None
    skills: list[str] = Field(default_factory=list)


class ApplicationRecord(BaseModel):
    """The fields of an application the engine reads."""

    application_id: UUID
    student_id: UUID
    match_score: float = 0.0
    applied_at: datetime
    status: str = "applied"


# ── Passthrough details ───────────────────────────────────────────────


class Location(BaseModel):
    venue: str = ""
    address: str = ""
    room: str | None = None
    landmarks: str | None = None


class VirtualMeetingDetails(BaseModel):
    platform: str = ""
    meeting_id: str = ""
    passcode: str | None = None
    join_url: str = ""


class Interviewer(BaseModel):
    name: str
    designation: str
    email: str
    phone_number: str | None = None


class CandidateInstructions(BaseModel):
    pre_interview_instructions: str | None = None
    documents_required: list[str] = Field(default_factory=list)
    dresscode: str | None = None
    additional_notes: str | None = None


# ── Requests ──────────────────────────────────────────────────────────


class SlotCreateRequest(BaseModel):
    college_ids: list[UUID] = Field(..., min_length=1)
    recruiter_id: UUID
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    scheduled_date: date
    start_time: str = Field(..., max_length=5)
    end_time: str = Field(..., max_length=5)
    duration: int
    total_capacity: int
    mode: InterviewMode
    location: Location | None = None
    virtual_meeting_details: VirtualMeetingDetails | None = None
    eligibility_criteria: EligibilityCriteria
    auto_assignment_settings: AutoAssignmentSettings = Field(default_factory=AutoAssignmentSettings)
    interviewers: list[Interviewer] = Field(default_factory=list)
    candidate_instructions: CandidateInstructions | None = None


class PublishRequest(BaseModel):
    minimum_applicants: int | None = Field(None, ge=0)


class CandidateActionRequest(BaseModel):
    application_id: UUID | None = None
    notes: str | None = Field(None, max_length=2000)


class AttendanceRequest(BaseModel):
    attended: bool
    notes: str | None = Field(None, max_length=2000)


class CancelSlotRequest(BaseModel):
    reason: str | None = Field(None, max_length=2000)


# ── Responses ─────────────────────────────────────────────────────────


class AssignedCandidateResponse(BaseModel):
    student_id: UUID
    application_id: UUID | None = None
    time_slot: str
    status: CandidateStatus
    assigned_at: datetime | None = None
    confirmed_at: datetime | None = None
    attended_at: datetime | None = None
    released_at: datetime | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}


class WaitlistEntryResponse(BaseModel):
    student_id: UUID
    application_id: UUID | None = None
    priority: int
    added_at: datetime | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}


class SlotResponse(BaseModel):
    id: UUID
    job_id: UUID
    recruiter_id: UUID
    college_id: UUID
    title: str
    description: str | None = None
    scheduled_date: date
    start_time: str
    end_time: str
    duration: int
    total_capacity: int
    available_slots: int
    mode: InterviewMode
    location: dict | None = None
    virtual_meeting_details: dict | None = None
    interviewers: list[dict] = Field(default_factory=list)
    candidate_instructions: dict | None = None
    eligibility_criteria: dict
    auto_assignment_settings: dict
    status: SlotStatus
    published_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    is_active: bool
    needs_reconciliation: bool
    version: int
    assigned_candidates: list[AssignedCandidateResponse] = Field(default_factory=list)
    waitlist_candidates: list[WaitlistEntryResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class SkippedCandidate(BaseModel):
    student_id: UUID
    reason: str
    detail: str = ""


class NotificationFailure(BaseModel):
    student_id: UUID
    kind: str
    error: str


class AssignmentSummary(BaseModel):
    """Per-candidate outcomes of one assignment pipeline run."""

    assigned_count: int = 0
    waitlisted_count: int = 0
    unchanged_count: int = 0
    skipped: list[SkippedCandidate] = Field(default_factory=list)
    notification_failures: list[NotificationFailure] = Field(default_factory=list)


class PublishResponse(BaseModel):
    slot: SlotResponse
    assignment: AssignmentSummary | None = None


class SlotCancellationResponse(BaseModel):
    slot: SlotResponse
    affected_candidates: list[UUID] = Field(default_factory=list)
    notification_failures: list[NotificationFailure] = Field(default_factory=list)


class PromotedCandidate(BaseModel):
    student_id: UUID
    application_id: UUID | None = None
    time_slot: str


class CandidateActionResponse(BaseModel):
    slot: SlotResponse
    student_id: UUID
    status: str
    time_slot: str | None = None
    priority: int | None = None
    promoted: PromotedCandidate | None = None
    notification_failures: list[NotificationFailure] = Field(default_factory=list)


class StudentAssignmentResponse(BaseModel):
    """One seat of a student, with the slot it belongs to."""

    slot_id: UUID
    job_id: UUID
    title: str
    scheduled_date: date
    mode: InterviewMode
    time_slot: str
    status: CandidateStatus
    assigned_at: datetime | None = None
    confirmed_at: datetime | None = None
