"""
Scoring and leveling rules shared by the session engine and progress tracker.

Pure functions only; nothing here reads the clock or the database.

Bands per step (step -> low/high level pair):
- percentage < 25        -> no level (failed)
- 25 <= percentage < 50  -> low level of the pair
- percentage >= 50       -> high level of the pair

Pass: percentage >= 25. Advance: percentage >= 75 and not on the final step.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from competency.engines.assessment.types import (
    LEVEL_ORDER,
    STEP_LEVELS,
    AssessmentAnswer,
    AssessmentLevel,
    SessionQuestion,
)

PASS_THRESHOLD = 25
HIGH_LEVEL_THRESHOLD = 50
ADVANCE_THRESHOLD = 75
FINAL_STEP = 3


@dataclass(frozen=True)
class ScoreResult:
    score: int
    percentage: int
    correct_answers: int
    total_points: int


def percentage_of(earned: int, possible: int) -> int:
    """earned/possible as a whole percentage, halves rounded up; 0 if nothing was possible."""
    if possible <= 0:
        return 0
    # Integer form of floor(earned * 100 / possible + 0.5)
    return (200 * earned + possible) // (2 * possible)


def calculate_score(
    questions: Sequence[SessionQuestion],
    answers: Iterable[AssessmentAnswer],
) -> ScoreResult:
    """Score = points of correct answers; percentage against every question's points."""
    total_points = sum(q.points for q in questions)
    correct = [a for a in answers if a.is_correct]
    score = sum(a.points_earned for a in correct)
    return ScoreResult(
        score=score,
        percentage=percentage_of(score, total_points),
        correct_answers=len(correct),
        total_points=total_points,
    )


def determine_level(step: int, percentage: int) -> Optional[AssessmentLevel]:
    """Level certified by a percentage on the given step, None when failed."""
    if percentage < PASS_THRESHOLD:
        return None
    levels = STEP_LEVELS.get(step)
    if levels is None:
        return None
    low, high = levels
    return high if percentage >= HIGH_LEVEL_THRESHOLD else low


def is_passed(percentage: int) -> bool:
    return percentage >= PASS_THRESHOLD


def can_proceed(step: int, percentage: int) -> bool:
    return percentage >= ADVANCE_THRESHOLD and step < FINAL_STEP


def level_rank(level: AssessmentLevel) -> int:
    return LEVEL_ORDER.index(level)


def highest_level(levels: Iterable[Optional[AssessmentLevel]]) -> Optional[AssessmentLevel]:
    """Maximum by canonical ordering, ignoring unset levels."""
    present = [lvl for lvl in levels if lvl is not None]
    if not present:
        return None
    return max(present, key=level_rank)


def answers_match(selected: Iterable[str], correct: Iterable[str]) -> bool:
    """Exact, order-independent set equality. An empty selection never matches."""
    selected_set = set(selected)
    if not selected_set:
        return False
    return selected_set == set(correct)
