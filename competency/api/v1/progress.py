"""
Progress endpoints - step progress, eligibility, recommendations.
"""

from typing import Optional

from fastapi import APIRouter

from competency.api.deps import AdminUser, AssessmentServiceDep, CurrentUser
from competency.engines.assessment import progress_tracker
from competency.engines.assessment.types import AssessmentProgress, CompetencyScore
from competency.schemas.progress import (
    AchievementResponse,
    CompetencyScoreResponse,
    EligibilityResponse,
    ProgressResponse,
    RecommendationsResponse,
    RetakeResetRequest,
    StepEligibilityResponse,
    StepProgressResponse,
)

router = APIRouter()


def _competency(cs: Optional[CompetencyScore]) -> Optional[CompetencyScoreResponse]:
    if cs is None:
        return None
    return CompetencyScoreResponse(
        competency=cs.competency.value,
        score=cs.score,
        level=cs.level.value if cs.level else None,
        questions_attempted=cs.questions_attempted,
        correct_answers=cs.correct_answers,
        last_updated=cs.last_updated,
    )


def _progress_to_response(progress: AssessmentProgress) -> ProgressResponse:
    steps = []
    for step in (1, 2, 3):
        level = progress.step_level(step)
        steps.append(
            StepProgressResponse(
                step=step,
                completed=progress.step_completed(step),
                score=progress.step_score(step),
                level=level.value if level else None,
                completed_at=getattr(progress, f"step{step}_completed_at"),
            )
        )
    return ProgressResponse(
        user_id=progress.user_id,
        current_step=progress.current_step,
        highest_level_achieved=progress.highest_level_achieved.value,
        steps=steps,
        steps_completed=progress_tracker.steps_completed(progress),
        overall_progress=progress_tracker.calculate_overall_progress(progress),
        completion_status=progress_tracker.completion_status(progress),
        total_assessments_taken=progress.total_assessments_taken,
        total_time_spent=progress.total_time_spent,
        average_score=progress.average_score,
        can_retake_step1=progress.can_retake_step1,
        next_assessment_date=progress.next_assessment_date,
        next_available_step=progress_tracker.get_next_available_step(progress),
        competency_scores=[_competency(cs) for cs in progress.competency_scores],
        best_competency=_competency(progress_tracker.best_competency(progress)),
        weakest_competency=_competency(progress_tracker.weakest_competency(progress)),
        achievements=[
            AchievementResponse(
                id=a.id,
                name=a.name,
                description=a.description,
                type=a.type.value,
                unlocked_at=a.unlocked_at,
                icon_url=a.icon_url,
            )
            for a in progress.achievements
        ],
    )


@router.get("", response_model=ProgressResponse)
async def get_progress(
    user: CurrentUser,
    service: AssessmentServiceDep,
):
    """Get the current user's progress across all steps."""
    progress = await service.get_progress(user.id)
    return _progress_to_response(progress)


@router.get("/eligibility", response_model=EligibilityResponse)
async def get_eligibility(
    user: CurrentUser,
    service: AssessmentServiceDep,
):
    eligibility = await service.get_eligibility(user.id)
    return EligibilityResponse(
        steps=[
            StepEligibilityResponse(step=step, eligible=eligible)
            for step, eligible in eligibility.steps.items()
        ],
        next_available_step=eligibility.next_available_step,
        can_retake_step1=eligibility.can_retake_step1,
        next_assessment_date=eligibility.next_assessment_date,
    )


@router.get("/recommendations", response_model=RecommendationsResponse)
async def get_recommendations(
    user: CurrentUser,
    service: AssessmentServiceDep,
):
    progress = await service.get_progress(user.id)
    return RecommendationsResponse(recommendations=progress_tracker.get_recommendations(progress))


@router.post("/{user_id}/retake-reset", response_model=ProgressResponse)
async def reset_step1_retake(
    user_id: str,
    body: RetakeResetRequest,
    admin: AdminUser,
    service: AssessmentServiceDep,
):
    """Admin: allow a user to retake step 1 again."""
    progress = await service.reset_step1_retake(
        user_id,
        reset_by=admin.id,
        next_assessment_date=body.next_assessment_date,
    )
    return _progress_to_response(progress)
