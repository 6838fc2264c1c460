"""Assignment ranking.

Each algorithm is a small ranker class registered under its
``AssignmentAlgorithm`` tag; ``rank`` is the single dispatch point. Adding an
algorithm means adding a class and a registry entry.
"""

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from .models import AssignmentAlgorithm


@dataclass(frozen=True)
class RankingCandidate:
    student_id: UUID
    application_id: UUID | None
    match_score: float
    applied_at: datetime


class Ranker(Protocol):
    def rank(
        self,
        candidates: list[RankingCandidate],
        minimum_score: float | None,
        rng: random.Random,
    ) -> list[RankingCandidate]: ...


class ScoreBased:
    """Highest match score first; ties go to the earlier application."""

    def rank(
        self, candidates: list[RankingCandidate], minimum_score: float | None, rng: random.Random
    ) -> list[RankingCandidate]:
        pool = [c for c in candidates if minimum_score is None or c.match_score >= minimum_score]
        return sorted(pool, key=lambda c: (-c.match_score, c.applied_at, str(c.student_id)))


class FirstComeFirstServe:
    def rank(
        self, candidates: list[RankingCandidate], minimum_score: float | None, rng: random.Random
    ) -> list[RankingCandidate]:
        return sorted(candidates, key=lambda c: (c.applied_at, str(c.student_id)))


class RandomOrder:
    def rank(
        self, candidates: list[RankingCandidate], minimum_score: float | None, rng: random.Random
    ) -> list[RankingCandidate]:
        # Canonical order first so a seeded rng gives the same result for any input order.
        pool = sorted(candidates, key=lambda c: str(c.student_id))
        rng.shuffle(pool)
        return pool


RANKERS: dict[AssignmentAlgorithm, Ranker] = {
    AssignmentAlgorithm.SCORE_BASED: ScoreBased(),
    AssignmentAlgorithm.FIRST_COME_FIRST_SERVE: FirstComeFirstServe(),
    AssignmentAlgorithm.RANDOM: RandomOrder(),
}


def rank(
    candidates: list[RankingCandidate],
    algorithm: AssignmentAlgorithm | str,
    minimum_score: float | None = None,
    rng: random.Random | None = None,
) -> list[RankingCandidate]:
    """Return the total assignment order for ``candidates``.

    Raises ValueError for an unknown algorithm.
    """
    try:
        ranker = RANKERS[AssignmentAlgorithm(algorithm)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown assignment algorithm: {algorithm!r}") from None
    return ranker.rank(list(candidates), minimum_score, rng or random.Random())


def split_ranking(
    ranked: list[RankingCandidate], capacity: int
) -> tuple[list[RankingCandidate], list[RankingCandidate]]:
    """Split a ranking into (seat candidates, waitlist candidates), order preserved."""
    capacity = max(capacity, 0)
    return ranked[:capacity], ranked[capacity:]
