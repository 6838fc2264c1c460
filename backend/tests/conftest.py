"""Shared test fixtures."""

import random
import time
import uuid
from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from placement.applications.models import Application, StudentProfile
from placement.audit.models import AuditLog
from placement.database.base import Base
from placement.notifications.models import NotificationLog
from placement.slots.collaborators import TERMINAL_APPLICATION_STATUSES, ApplicationStatusError
from placement.slots.controller import SlotLifecycleController
from placement.slots.effects import SideEffects
from placement.slots.ledger import CapacityLedger
from placement.slots.models import InterviewSlot, SlotAssignment, WaitlistEntry
from placement.slots.pipeline import AssignmentPipeline
from placement.slots.schemas import ApplicationRecord, CandidateProfile, SlotCreateRequest

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [InterviewSlot, SlotAssignment, WaitlistEntry, Application, StudentProfile, NotificationLog, AuditLog]

NOW = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)
JOB_ID = uuid.UUID("00000000-0000-0000-0000-00000000a001")
COLLEGE_ID = uuid.UUID("00000000-0000-0000-0000-00000000c001")
OTHER_COLLEGE_ID = uuid.UUID("00000000-0000-0000-0000-00000000c002")
RECRUITER_ID = uuid.UUID("00000000-0000-0000-0000-00000000b001")


# ── Collaborator fakes ────────────────────────────────────────────────


class FakeApplications:
    """In-memory application pipeline."""

    def __init__(self) -> None:
        self.records: dict[uuid.UUID, ApplicationRecord] = {}
        self.job_of: dict[uuid.UUID, uuid.UUID] = {}
        self.updates: list[tuple[uuid.UUID, str, str]] = []

    def add(self, student_id, *, job_id=JOB_ID, match_score=50.0, applied_at=None, status="applied"):
        record = ApplicationRecord(
            application_id=uuid.uuid4(),
            student_id=student_id,
            match_score=match_score,
            applied_at=applied_at or NOW - timedelta(days=len(self.records) + 1),
            status=status,
        )
        self.records[record.application_id] = record
        self.job_of[record.application_id] = job_id
        return record

    def status_of(self, student_id) -> str:
        return next(r.status for r in self.records.values() if r.student_id == student_id)

    def count_applied(self, job_id):
        return len(self.find_applied(job_id))

    def find_applied(self, job_id):
        return [r for a, r in self.records.items() if self.job_of[a] == job_id and r.status == "applied"]

    def find_application(self, job_id, student_id):
        return next(
            (r for a, r in self.records.items() if self.job_of[a] == job_id and r.student_id == student_id),
            None,
        )

    def update_status(self, application_id, new_status, note):
        record = self.records.get(application_id)
        if record is None:
            raise ApplicationStatusError(f"Application {application_id} not found")
        if record.status in TERMINAL_APPLICATION_STATUSES:
            raise ApplicationStatusError(f"Application {application_id} is already {record.status}")
        self.records[application_id] = record.model_copy(update={"status": str(new_status)})
        self.updates.append((application_id, str(new_status), note))


class FakeProfiles:
    """Profile lookup with per-student failure and delay injection."""

    def __init__(self) -> None:
        self.profiles: dict[uuid.UUID, CandidateProfile] = {}
        self.errors: dict[uuid.UUID, Exception] = {}
        self.delays: dict[uuid.UUID, float] = {}

    def add(self, student_id, *, college_id=COLLEGE_ID, cgpa=8.0, backlogs=0, courses=("B.Tech",), graduation_year=2026):
        self.profiles[student_id] = CandidateProfile(
            student_id=student_id,
            college_id=college_id,
            cgpa=cgpa,
            backlogs=backlogs,
            courses=list(courses),
            graduation_year=graduation_year,
        )

    def get_profile(self, student_id):
        if student_id in self.delays:
            time.sleep(self.delays[student_id])
        if student_id in self.errors:
            raise self.errors[student_id]
        return self.profiles.get(student_id)


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[uuid.UUID, str, dict]] = []
        self.fail_for: set[uuid.UUID] = set()

    def notify(self, student_id, kind, payload):
        if student_id in self.fail_for:
            raise RuntimeError("gateway unavailable")
        self.sent.append((student_id, str(kind), payload))

    def kinds_for(self, student_id) -> list[str]:
        return [kind for sid, kind, _ in self.sent if sid == student_id]


# ── Database ──────────────────────────────────────────────────────────


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so sessions on different threads see the same data.

    Note: SQLite drops timezone info on round-trip.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ── Engine wiring ─────────────────────────────────────────────────────


@pytest.fixture
def applications():
    return FakeApplications()


@pytest.fixture
def profiles():
    return FakeProfiles()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def ledger(session_factory, clock):
    return CapacityLedger(session_factory, clock=clock)


@pytest.fixture
def effects(applications, notifier):
    return SideEffects(applications, notifier)


@pytest.fixture
def pipeline(ledger, profiles, effects):
    return AssignmentPipeline(
        ledger,
        profiles,
        effects,
        rng_factory=lambda: random.Random(42),
        lookup_timeout=2.0,
        lookup_workers=4,
    )


@pytest.fixture
def controller(session_factory, ledger, pipeline, effects, clock):
    return SlotLifecycleController(session_factory, ledger, pipeline, effects, clock=clock)


@pytest.fixture
def slot_request():
    """Factory for slot creation requests; defaults to a 09:00-12:00 window of 30 min seats."""

    def _make(**overrides) -> SlotCreateRequest:
        data = {
            "college_ids": [COLLEGE_ID],
            "recruiter_id": RECRUITER_ID,
            "title": "Backend Engineer - Round 1",
            "scheduled_date": date(2026, 3, 10),
            "start_time": "09:00",
            "end_time": "12:00",
            "duration": 30,
            "total_capacity": 3,
            "mode": "virtual",
            "virtual_meeting_details": {"platform": "Meet", "meeting_id": "abc", "join_url": "https://meet.example/abc"},
            "eligibility_criteria": {"min_cgpa": 7.0, "courses": ["B.Tech"], "graduation_year": 2026},
            "auto_assignment_settings": {"is_enabled": True, "assignment_algorithm": "score_based"},
        }
        data.update(overrides)
        return SlotCreateRequest(**data)

    return _make


@pytest.fixture
def draft_slot(controller, slot_request):
    """Factory creating one draft slot and returning its snapshot."""

    def _make(**overrides):
        outcome = controller.create_slots_for_colleges(JOB_ID, slot_request(**overrides))
        assert outcome.ok, outcome.error
        return outcome.value[0]

    return _make


@pytest.fixture
def published_slot(draft_slot, session_factory):
    """Factory creating a slot already in ``published`` without running the pipeline."""

    def _make(**overrides):
        snapshot = draft_slot(**overrides)
        with session_factory() as db:
            slot = db.get(InterviewSlot, snapshot.id)
            slot.status = "published"
            slot.published_at = NOW
            db.commit()
        return snapshot

    return _make


@pytest.fixture
def applicants(applications, profiles):
    """Factory adding eligible applicants: ``applicants([90, 80, ...])`` -> list of student ids."""

    def _make(scores, **profile_overrides):
        ids = []
        for score in scores:
            student_id = uuid.uuid4()
            applications.add(student_id, match_score=score)
            profiles.add(student_id, **profile_overrides)
            ids.append(student_id)
        return ids

    return _make
