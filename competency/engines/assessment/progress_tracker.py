"""
Progress Tracker - folds completed sessions into the per-user aggregate.

Pure functions over AssessmentProgress. Each mutation works on a copy and
re-validates it before returning, so a failure leaves the caller's value
untouched and a half-applied update is never observable.

Eligibility:
- Step 1: retake allowed, or step 1 never completed
- Step 2: step 1 completed with a score >= 75
- Step 3: step 2 completed with a score >= 75
"""

from datetime import datetime
from typing import List, Optional

from competency.engines.assessment import rules
from competency.engines.assessment.errors import InvalidInput
from competency.engines.assessment.notifications import SessionCompleted
from competency.engines.assessment.types import (
    STEP_LEVELS,
    Achievement,
    AchievementType,
    AssessmentLevel,
    AssessmentProgress,
    CompetencyResult,
    CompetencyScore,
)

WEAK_COMPETENCY_THRESHOLD = 50
PRACTICE_THRESHOLD = 75


def new_progress(user_id: str) -> AssessmentProgress:
    """Initial progress: step 1, level A1, retake enabled, nothing recorded."""
    return AssessmentProgress(user_id=user_id)


def recompute_derived(progress: AssessmentProgress) -> AssessmentProgress:
    """Recompute current_step, highest_level_achieved and average_score in place."""
    if progress.step2_completed or progress.step3_completed:
        progress.current_step = 3
    elif progress.step1_completed:
        progress.current_step = 2
    else:
        progress.current_step = 1

    best = rules.highest_level(progress.step_level(step) for step in STEP_LEVELS)
    progress.highest_level_achieved = best or AssessmentLevel.A1

    scores = [s for s in (progress.step_score(step) for step in STEP_LEVELS) if s is not None]
    progress.average_score = sum(scores) / len(scores) if scores else 0.0
    return progress


def _upsert_competency(
    scores: List[CompetencyScore],
    result: CompetencyResult,
    now: datetime,
) -> None:
    for index, existing in enumerate(scores):
        if existing.competency == result.competency:
            scores[index] = CompetencyScore(
                competency=existing.competency,
                score=max(existing.score, result.score),
                level=result.level,
                questions_attempted=existing.questions_attempted + result.total_questions,
                correct_answers=existing.correct_answers + result.correct_answers,
                last_updated=now,
            )
            return
    scores.append(
        CompetencyScore(
            competency=result.competency,
            score=result.score,
            level=result.level,
            questions_attempted=result.total_questions,
            correct_answers=result.correct_answers,
            last_updated=now,
        )
    )


def level_achievement(level: AssessmentLevel, step: int, now: datetime) -> Achievement:
    return Achievement(
        id=f"level_{level.value}",
        name=f"Level {level.value} Achieved",
        description=f"Reached digital competency level {level.value} in Step {step}",
        type=AchievementType.LEVEL,
        unlocked_at=now,
    )


def add_achievement(progress: AssessmentProgress, achievement: Achievement) -> None:
    """Append an achievement in place; an id already present is a no-op."""
    if not any(a.id == achievement.id for a in progress.achievements):
        progress.achievements.append(achievement)


def apply_completion(
    progress: AssessmentProgress,
    event: SessionCompleted,
    now: Optional[datetime] = None,
) -> AssessmentProgress:
    """
    Fold one completed session into the user's progress.

    The step score stores the session percentage. A step 1 result below the
    pass threshold clears can_retake_step1; only reset_step1_retake sets it
    again.
    """
    if event.user_id != progress.user_id:
        raise InvalidInput(
            "Completion event belongs to another user",
            session_id=event.session_id,
        )
    if event.step not in STEP_LEVELS:
        raise InvalidInput(f"Invalid step: {event.step}", session_id=event.session_id)

    now = now or event.completed_at
    updated = progress.model_copy(deep=True)
    step = event.step

    setattr(updated, f"step{step}_completed", True)
    setattr(updated, f"step{step}_score", event.percentage)
    setattr(updated, f"step{step}_level", event.level_achieved)
    setattr(updated, f"step{step}_completed_at", event.completed_at)

    if step == 1 and event.percentage < rules.PASS_THRESHOLD:
        updated.can_retake_step1 = False

    updated.total_assessments_taken += 1
    updated.total_time_spent += event.time_spent_seconds

    for result in event.competency_breakdown:
        _upsert_competency(updated.competency_scores, result, now)

    if event.level_achieved is not None:
        add_achievement(updated, level_achievement(event.level_achieved, step, now))

    recompute_derived(updated)
    # Re-run field validation over the whole aggregate before handing it back
    return AssessmentProgress.model_validate(updated.model_dump())


def reset_step1_retake(
    progress: AssessmentProgress,
    next_assessment_date: Optional[datetime] = None,
) -> AssessmentProgress:
    """Explicit external reset; the only way can_retake_step1 becomes true again."""
    updated = progress.model_copy(deep=True)
    updated.can_retake_step1 = True
    updated.next_assessment_date = next_assessment_date
    return updated


# Eligibility

def can_take_step(progress: AssessmentProgress, step: int) -> bool:
    if step == 1:
        return progress.can_retake_step1 or not progress.step1_completed
    if step == 2:
        return progress.step1_completed and (progress.step1_score or 0) >= rules.ADVANCE_THRESHOLD
    if step == 3:
        return progress.step2_completed and (progress.step2_score or 0) >= rules.ADVANCE_THRESHOLD
    return False


def get_next_available_step(progress: AssessmentProgress) -> Optional[int]:
    """Lowest eligible step, or None when nothing can be taken."""
    for step in sorted(STEP_LEVELS):
        if can_take_step(progress, step):
            return step
    return None


# Derived views

def steps_completed(progress: AssessmentProgress) -> int:
    return sum(1 for step in STEP_LEVELS if progress.step_completed(step))


def calculate_overall_progress(progress: AssessmentProgress) -> int:
    total = 0.0
    if progress.step1_completed:
        total += 33.33
    if progress.step2_completed:
        total += 33.33
    if progress.step3_completed:
        total += 33.34
    return round(total)


def completion_status(progress: AssessmentProgress) -> str:
    if progress.step3_completed:
        return "Completed"
    if progress.step2_completed:
        return "Advanced"
    if progress.step1_completed:
        return "Intermediate"
    return "Beginner"


def best_competency(progress: AssessmentProgress) -> Optional[CompetencyScore]:
    best = None
    for cs in progress.competency_scores:
        if best is None or cs.score > best.score:
            best = cs
    return best


def weakest_competency(progress: AssessmentProgress) -> Optional[CompetencyScore]:
    weakest = None
    for cs in progress.competency_scores:
        if weakest is None or cs.score < weakest.score:
            weakest = cs
    return weakest


def get_recommendations(progress: AssessmentProgress) -> List[str]:
    recommendations = []

    weak = [cs for cs in progress.competency_scores if cs.score < WEAK_COMPETENCY_THRESHOLD]
    if weak:
        names = ", ".join(cs.competency.value for cs in weak)
        recommendations.append(f"Focus on improving: {names}")

    next_step = get_next_available_step(progress)
    if next_step:
        recommendations.append(f"You're ready to take Step {next_step}!")

    if progress.step3_completed:
        recommendations.append("Congratulations! You have completed all assessment steps.")

    if progress.average_score < PRACTICE_THRESHOLD:
        recommendations.append("Consider practicing more to improve your overall score.")

    return recommendations
