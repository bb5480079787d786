"""
Pydantic schemas for progress API.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class StepProgressResponse(BaseModel):
    step: int
    completed: bool
    score: Optional[int] = None
    level: Optional[str] = None
    completed_at: Optional[datetime] = None


class CompetencyScoreResponse(BaseModel):
    competency: str
    score: int
    level: Optional[str] = None
    questions_attempted: int
    correct_answers: int
    last_updated: datetime


class AchievementResponse(BaseModel):
    id: str
    name: str
    description: str
    type: str
    unlocked_at: datetime
    icon_url: Optional[str] = None


class ProgressResponse(BaseModel):
    """User's assessment progress across all steps."""

    user_id: str
    current_step: int
    highest_level_achieved: str
    steps: List[StepProgressResponse]
    steps_completed: int
    overall_progress: int
    completion_status: str
    total_assessments_taken: int
    total_time_spent: int
    average_score: float
    can_retake_step1: bool
    next_assessment_date: Optional[datetime] = None
    next_available_step: Optional[int] = None
    competency_scores: List[CompetencyScoreResponse] = []
    best_competency: Optional[CompetencyScoreResponse] = None
    weakest_competency: Optional[CompetencyScoreResponse] = None
    achievements: List[AchievementResponse] = []


class StepEligibilityResponse(BaseModel):
    step: int
    eligible: bool


class EligibilityResponse(BaseModel):
    steps: List[StepEligibilityResponse]
    next_available_step: Optional[int] = None
    can_retake_step1: bool
    next_assessment_date: Optional[datetime] = None


class RecommendationsResponse(BaseModel):
    recommendations: List[str]


class RetakeResetRequest(BaseModel):
    """Admin: re-enable the step 1 retake for a user."""

    next_assessment_date: Optional[datetime] = None


class LevelStatsResponse(BaseModel):
    level: str
    users: int
    average_assessments_taken: float
    average_score: float


class ProgressStatsResponse(BaseModel):
    levels: List[LevelStatsResponse]


class CompetencyStatsResponse(BaseModel):
    competency: str
    average_score: float
    total_attempts: int
    total_correct: int
    success_rate: float


class CompetencyStatsListResponse(BaseModel):
    competencies: List[CompetencyStatsResponse]
