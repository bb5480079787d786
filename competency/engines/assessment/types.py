"""
Domain types for the assessment engine.

Questions live in the bank; sessions carry frozen copies of them
(SessionQuestion) so later bank edits never reach an attempt in flight.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AssessmentLevel(str, Enum):
    """Proficiency grades, lowest to highest."""
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"


LEVEL_ORDER: Tuple[AssessmentLevel, ...] = (
    AssessmentLevel.A1,
    AssessmentLevel.A2,
    AssessmentLevel.B1,
    AssessmentLevel.B2,
    AssessmentLevel.C1,
    AssessmentLevel.C2,
)


class AssessmentStatus(str, Enum):
    """Lifecycle states of an assessment session."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class DigitalCompetency(str, Enum):
    """The 22 tracked digital-skill categories."""

    # Information & data literacy
    INFORMATION_SEARCH = "information_search"
    INFORMATION_EVALUATION = "information_evaluation"
    DATA_MANAGEMENT = "data_management"

    # Communication & collaboration
    DIGITAL_COMMUNICATION = "digital_communication"
    ONLINE_COLLABORATION = "online_collaboration"
    SOCIAL_MEDIA_LITERACY = "social_media_literacy"

    # Content creation
    CONTENT_DEVELOPMENT = "content_development"
    MULTIMEDIA_EDITING = "multimedia_editing"
    COPYRIGHT_LICENSING = "copyright_licensing"

    # Safety
    DEVICE_PROTECTION = "device_protection"
    PERSONAL_DATA_PROTECTION = "personal_data_protection"
    PRIVACY_MANAGEMENT = "privacy_management"
    HEALTH_WELLBEING = "health_wellbeing"
    ENVIRONMENTAL_PROTECTION = "environmental_protection"

    # Problem solving
    TECHNICAL_TROUBLESHOOTING = "technical_troubleshooting"
    IDENTIFYING_NEEDS = "identifying_needs"
    CREATIVE_USE_OF_TECHNOLOGY = "creative_use_of_technology"
    IDENTIFYING_GAPS = "identifying_gaps"

    # Digital tools
    OPERATING_SYSTEMS = "operating_systems"
    OFFICE_PRODUCTIVITY = "office_productivity"
    WEB_BROWSERS = "web_browsers"
    MOBILE_APPLICATIONS = "mobile_applications"


class QuestionType(str, Enum):
    """Types of bank questions."""
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SCENARIO = "scenario"
    PRACTICAL = "practical"


class CheatingFlagType(str, Enum):
    """Integrity violations reported by the client."""
    TAB_SWITCH = "tab_switch"
    COPY_PASTE = "copy_paste"
    SUSPICIOUS_TIMING = "suspicious_timing"
    MULTIPLE_SESSIONS = "multiple_sessions"
    NETWORK_CHANGE = "network_change"


class FlagSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AchievementType(str, Enum):
    LEVEL = "level"
    SPEED = "speed"
    ACCURACY = "accuracy"
    STREAK = "streak"
    SPECIAL = "special"


# Which two levels each step certifies
STEP_LEVELS = {
    1: (AssessmentLevel.A1, AssessmentLevel.A2),
    2: (AssessmentLevel.B1, AssessmentLevel.B2),
    3: (AssessmentLevel.C1, AssessmentLevel.C2),
}

TRUE_FALSE_ANSWERS = frozenset({"true", "false"})


class QuestionOption(BaseModel):
    """Single option of a multiple-choice question."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    text: str = Field(min_length=1, max_length=500)
    is_correct: bool = False
    order: int = Field(ge=1)


class Question(BaseModel):
    """A question bank item. Unsaved questions carry an empty id."""

    id: str = ""
    text: str = Field(min_length=10, max_length=2000)
    question_type: QuestionType
    competency: DigitalCompetency
    level: AssessmentLevel
    step: int = Field(ge=1, le=3)
    options: List[QuestionOption] = Field(default_factory=list)
    correct_answers: List[str] = Field(min_length=1)
    difficulty: int = Field(default=3, ge=1, le=5)
    time_allowed: int = Field(default=60, ge=30, le=300)  # seconds
    points: int = Field(default=1, ge=1, le=10)
    explanation: Optional[str] = Field(default=None, max_length=1000)
    tags: List[str] = Field(default_factory=list, max_length=10)
    is_active: bool = True
    image_url: Optional[str] = Field(default=None, pattern=r"^https?://.+")
    audio_url: Optional[str] = Field(default=None, pattern=r"^https?://.+")
    video_url: Optional[str] = Field(default=None, pattern=r"^https?://.+")
    times_answered: int = Field(default=0, ge=0)
    correct_answer_rate: int = Field(default=0, ge=0, le=100)

    @model_validator(mode="after")
    def _check_consistency(self) -> "Question":
        if self.level not in STEP_LEVELS[self.step]:
            raise ValueError(f"Level {self.level.value} is not valid for Step {self.step}")

        if self.question_type == QuestionType.MULTIPLE_CHOICE:
            if not 2 <= len(self.options) <= 6:
                raise ValueError("Multiple choice questions must have 2-6 options")
            self.options = [
                opt if opt.id else opt.model_copy(update={"id": f"option_{index + 1}"})
                for index, opt in enumerate(self.options)
            ]
            option_ids = {opt.id for opt in self.options}
            invalid = [a for a in self.correct_answers if a not in option_ids]
            if invalid:
                raise ValueError(f"Correct answers contain invalid option IDs: {', '.join(invalid)}")
        elif self.options:
            raise ValueError("Only multiple choice questions can have options")

        if self.question_type == QuestionType.TRUE_FALSE:
            normalized = [a.lower() for a in self.correct_answers]
            if any(a not in TRUE_FALSE_ANSWERS for a in normalized):
                raise ValueError('True/false questions must have "true" or "false" as correct answers')
            self.correct_answers = normalized

        return self

    @property
    def difficulty_text(self) -> str:
        return {
            1: "Very Easy",
            2: "Easy",
            3: "Medium",
            4: "Hard",
            5: "Very Hard",
        }.get(self.difficulty, "Unknown")

    @property
    def step_text(self) -> str:
        low, high = STEP_LEVELS[self.step]
        return f"Step {self.step} ({low.value}-{high.value})"


class SessionQuestion(BaseModel):
    """Immutable copy of a bank question taken when the session is created."""

    model_config = ConfigDict(frozen=True)

    question_id: str
    order: int = Field(ge=1)
    competency: DigitalCompetency
    level: AssessmentLevel
    points: int = Field(ge=1)
    time_allowed: int = Field(ge=30)
    text: str
    question_type: QuestionType
    options: Tuple[QuestionOption, ...] = ()
    correct_answers: Tuple[str, ...] = ()
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None


class AssessmentAnswer(BaseModel):
    """One answer inside a session; replaced in place on resubmission."""

    question_id: str
    selected_answers: List[str]
    time_spent: int = Field(ge=0)  # seconds
    is_correct: bool
    points_earned: int = Field(ge=0)
    answered_at: datetime
    changed_answers: int = Field(default=0, ge=0)
    tab_switches: int = Field(default=0, ge=0)
    copy_paste_detected: bool = False


class CheatingFlag(BaseModel):
    """Append-only integrity flag."""

    type: CheatingFlagType
    details: str = Field(max_length=500)
    severity: FlagSeverity = FlagSeverity.MEDIUM
    timestamp: datetime


class AssessmentSession(BaseModel):
    """One timed, scored attempt at a step."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    step: int = Field(ge=1, le=3)
    status: AssessmentStatus = AssessmentStatus.NOT_STARTED

    questions: List[SessionQuestion] = Field(min_length=1, max_length=50)

    start_time: datetime
    end_time: Optional[datetime] = None
    time_allowed: int = Field(ge=1800, le=14400)  # seconds

    answers: List[AssessmentAnswer] = Field(default_factory=list)
    cheating_details: List[CheatingFlag] = Field(default_factory=list)

    # Results, frozen at completion
    score: Optional[int] = None
    percentage: Optional[int] = Field(default=None, ge=0, le=100)
    correct_answers: Optional[int] = None
    level_achieved: Optional[AssessmentLevel] = None
    passed: bool = False
    can_proceed_to_next_step: bool = False
    next_step_unlocked_at: Optional[datetime] = None

    is_completed: bool = False
    is_submitted: bool = False
    # Set once the completion message reached the notifier
    completion_notified_at: Optional[datetime] = None

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    browser_fingerprint: Optional[str] = None

    # Row version for optimistic concurrency; None until persisted
    version: Optional[int] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "AssessmentSession":
        if len(self.answers) > len(self.questions):
            raise ValueError("A session cannot hold more answers than questions")
        if self.is_completed and (self.status != AssessmentStatus.COMPLETED or self.end_time is None):
            raise ValueError("A completed session must have status 'completed' and an end time")
        return self

    @property
    def has_cheating_flags(self) -> bool:
        return len(self.cheating_details) > 0

    def find_question(self, question_id: str) -> Optional[SessionQuestion]:
        return next((q for q in self.questions if q.question_id == question_id), None)

    def find_answer_index(self, question_id: str) -> Optional[int]:
        for index, answer in enumerate(self.answers):
            if answer.question_id == question_id:
                return index
        return None


class CompetencyResult(BaseModel):
    """Per-competency outcome of one session."""

    competency: DigitalCompetency
    score: int = Field(ge=0, le=100)
    total_questions: int = Field(ge=0)
    answered: int = Field(ge=0)
    correct_answers: int = Field(ge=0)
    level: Optional[AssessmentLevel] = None


class CompetencyScore(BaseModel):
    """Best-ever score for a competency, accumulated across sessions."""

    competency: DigitalCompetency
    score: int = Field(ge=0, le=100)
    level: Optional[AssessmentLevel] = None
    questions_attempted: int = Field(ge=0)
    correct_answers: int = Field(ge=0)
    last_updated: datetime


class Achievement(BaseModel):
    id: str
    name: str = Field(max_length=100)
    description: str = Field(max_length=500)
    type: AchievementType
    unlocked_at: datetime
    icon_url: Optional[str] = Field(default=None, pattern=r"^https?://.+")


class AssessmentProgress(BaseModel):
    """Durable per-user aggregate of step outcomes and eligibility."""

    user_id: str

    # Derived
    current_step: int = Field(default=1, ge=1, le=3)
    highest_level_achieved: AssessmentLevel = AssessmentLevel.A1

    step1_completed: bool = False
    step1_score: Optional[int] = Field(default=None, ge=0, le=100)
    step1_level: Optional[AssessmentLevel] = None
    step1_completed_at: Optional[datetime] = None

    step2_completed: bool = False
    step2_score: Optional[int] = Field(default=None, ge=0, le=100)
    step2_level: Optional[AssessmentLevel] = None
    step2_completed_at: Optional[datetime] = None

    step3_completed: bool = False
    step3_score: Optional[int] = Field(default=None, ge=0, le=100)
    step3_level: Optional[AssessmentLevel] = None
    step3_completed_at: Optional[datetime] = None

    total_assessments_taken: int = Field(default=0, ge=0)
    total_time_spent: int = Field(default=0, ge=0)  # seconds
    average_score: float = Field(default=0.0, ge=0, le=100)

    competency_scores: List[CompetencyScore] = Field(default_factory=list)

    can_retake_step1: bool = True
    next_assessment_date: Optional[datetime] = None

    achievements: List[Achievement] = Field(default_factory=list)

    version: Optional[int] = None

    @field_validator("competency_scores")
    @classmethod
    def _one_entry_per_competency(cls, value: List[CompetencyScore]) -> List[CompetencyScore]:
        seen = [cs.competency for cs in value]
        if len(seen) != len(set(seen)):
            raise ValueError("competency_scores must hold one entry per competency")
        return value

    def step_completed(self, step: int) -> bool:
        return bool(getattr(self, f"step{step}_completed"))

    def step_score(self, step: int) -> Optional[int]:
        return getattr(self, f"step{step}_score")

    def step_level(self, step: int) -> Optional[AssessmentLevel]:
        return getattr(self, f"step{step}_level")
