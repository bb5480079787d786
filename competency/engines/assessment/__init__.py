"""
Assessment Engine - timed, scored competency sessions and progression.

Steps:
- Step 1: A1-A2
- Step 2: B1-B2
- Step 3: C1-C2

Bands (per session percentage):
- < 25%: failed, no level
- 25-49%: lower level of the step
- >= 50%: higher level of the step
- >= 75% (steps 1-2): next step unlocked
"""

from competency.engines.assessment.errors import (
    AssessmentError,
    InvalidInput,
    SessionAlreadyCompleted,
    SessionExpired,
    StepNotEligible,
    ActiveSessionExists,
    ConcurrentModification,
    SessionNotFound,
    QuestionNotInSession,
    InsufficientQuestions,
    ScoringError,
)
from competency.engines.assessment.locks import AssessmentLocks, KeyedLock
from competency.engines.assessment.notifications import (
    CompletionNotifier,
    LoggingCompletionNotifier,
    SessionCompleted,
)
from competency.engines.assessment.question_selector import QuestionBank, QuestionSelector
from competency.engines.assessment.service import AssessmentService
from competency.engines.assessment.types import (
    AssessmentLevel,
    AssessmentProgress,
    AssessmentSession,
    AssessmentStatus,
    DigitalCompetency,
    Question,
    QuestionType,
)

__all__ = [
    "AssessmentError",
    "InvalidInput",
    "SessionAlreadyCompleted",
    "SessionExpired",
    "StepNotEligible",
    "ActiveSessionExists",
    "ConcurrentModification",
    "SessionNotFound",
    "QuestionNotInSession",
    "InsufficientQuestions",
    "ScoringError",
    "AssessmentLocks",
    "KeyedLock",
    "CompletionNotifier",
    "LoggingCompletionNotifier",
    "SessionCompleted",
    "QuestionBank",
    "QuestionSelector",
    "AssessmentService",
    "AssessmentLevel",
    "AssessmentProgress",
    "AssessmentSession",
    "AssessmentStatus",
    "DigitalCompetency",
    "Question",
    "QuestionType",
]
