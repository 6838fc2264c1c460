"""Per-slot eligibility filter. Binary pass/fail, no partial credit."""

from uuid import UUID

from .schemas import CandidateProfile, EligibilityCriteria


def is_eligible(profile: CandidateProfile, criteria: EligibilityCriteria, college_id: UUID) -> bool:
    if profile.college_id != college_id:
        return False
    if profile.graduation_year != criteria.graduation_year:
        return False
    if criteria.min_cgpa is not None and (profile.cgpa is None or profile.cgpa < criteria.min_cgpa):
        return False
    if criteria.max_backlogs is not None and profile.backlogs > criteria.max_backlogs:
        return False
    if criteria.courses and not set(profile.courses) & set(criteria.courses):
        return False
    return True
