"""
Event type definitions using Pydantic for validation.

These are the payload schemas for events logged to the audit trail.
The SessionCompleted message handed to notification consumers lives with
the engine (competency.engines.assessment.notifications).
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseEvent(BaseModel):
    """Base event payload structure."""

    model_config = ConfigDict(extra="allow")

    timestamp: datetime = Field(default_factory=_utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# Session Events

class SessionEvent(BaseEvent):
    """Session-related event payloads."""

    session_id: str
    step: int


class SessionStartedEvent(SessionEvent):
    question_count: int
    time_allowed: int
    question_ids: List[str] = Field(default_factory=list)


class AnswerSubmittedEvent(SessionEvent):
    question_id: str
    changed_answers: int
    answered_count: int
    time_spent: int


class CheatingFlaggedEvent(SessionEvent):
    flag_type: str
    severity: str
    details: str


# Progress Events

class ProgressEvent(BaseEvent):
    """Progress-related event payloads."""

    current_step: Optional[int] = None
    highest_level_achieved: Optional[str] = None


class ProgressUpdatedEvent(ProgressEvent):
    session_id: str
    step: int
    step_score: int
    total_assessments_taken: int
    average_score: float


class StepUnlockedEvent(ProgressEvent):
    session_id: str
    unlocked_step: int


class RetakeDisabledEvent(ProgressEvent):
    session_id: str
    step_score: int


class AchievementUnlockedEvent(ProgressEvent):
    achievement_id: str
    name: str


class RetakeResetEvent(ProgressEvent):
    reset_by: str
    next_assessment_date: Optional[datetime] = None
