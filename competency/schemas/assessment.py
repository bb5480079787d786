"""
Pydantic schemas for assessment session API.

Correct answers never leave the server while a session is in flight;
answer correctness is only shown once the session is completed.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from competency.engines.assessment.types import CheatingFlagType, FlagSeverity


class StartSessionRequest(BaseModel):
    """Body for starting an assessment session."""

    step: int = Field(ge=1, le=3)
    exclude_question_ids: List[str] = Field(default_factory=list, max_length=500)
    browser_fingerprint: Optional[str] = Field(default=None, max_length=255)


class QuestionOptionResponse(BaseModel):
    id: str
    text: str
    order: int


class SessionQuestionResponse(BaseModel):
    """Question as shown to the candidate."""

    question_id: str
    order: int
    competency: str
    level: str
    question_type: str
    text: str
    points: int
    time_allowed: int
    options: List[QuestionOptionResponse] = []
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None


class AnswerResponse(BaseModel):
    question_id: str
    selected_answers: List[str]
    time_spent: int
    answered_at: datetime
    changed_answers: int
    # Filled in once the session is completed
    is_correct: Optional[bool] = None
    points_earned: Optional[int] = None


class CompetencyResultResponse(BaseModel):
    competency: str
    score: int
    total_questions: int
    answered: int
    correct_answers: int
    level: Optional[str] = None


class SessionResultResponse(BaseModel):
    """Frozen outcome of a completed session."""

    score: int
    percentage: int
    correct_answers: int
    level_achieved: Optional[str] = None
    passed: bool
    can_proceed_to_next_step: bool
    next_step_unlocked_at: Optional[datetime] = None
    competency_breakdown: List[CompetencyResultResponse] = []


class SessionSummaryResponse(BaseModel):
    """Session without its question content."""

    id: str
    step: int
    status: str
    status_text: str
    start_time: datetime
    end_time: Optional[datetime] = None
    time_allowed: int
    remaining_seconds: int
    question_count: int
    answered_count: int
    completion_percentage: int
    duration_minutes: int
    has_cheating_flags: bool
    result: Optional[SessionResultResponse] = None


class SessionResponse(SessionSummaryResponse):
    """Full session as returned to its owner."""

    questions: List[SessionQuestionResponse]
    answers: List[AnswerResponse] = []


class SessionListResponse(BaseModel):
    items: List[SessionSummaryResponse]
    limit: int
    offset: int


class SessionTimeResponse(BaseModel):
    session_id: str
    remaining_seconds: int
    is_expired: bool
    time_allowed: int
    start_time: datetime
    answered_count: int
    total_questions: int


class SubmitAnswerRequest(BaseModel):
    question_id: str = Field(min_length=1)
    selected_answers: List[str] = Field(max_length=10)
    time_spent: int = Field(ge=0, le=14400)
    tab_switches: int = Field(default=0, ge=0)
    copy_paste_detected: bool = False


class SubmitAnswerResponse(BaseModel):
    session_id: str
    question_id: str
    changed_answers: int
    answered_count: int
    total_questions: int
    remaining_seconds: int
    status: str


class CheatingFlagRequest(BaseModel):
    type: CheatingFlagType
    details: str = Field(default="", max_length=500)
    severity: FlagSeverity = FlagSeverity.MEDIUM


class CheatingFlagResponse(BaseModel):
    session_id: str
    flag_count: int
    has_cheating_flags: bool


class StepStatsResponse(BaseModel):
    step: int
    total_sessions: int
    average_percentage: float
    pass_rate: float
    average_duration_minutes: float


class SessionStatsResponse(BaseModel):
    steps: List[StepStatsResponse]
