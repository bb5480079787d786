"""
Completion notifications.

SessionCompleted is the single externally observable completion signal.
The service hands it to an injected CompletionNotifier exactly once per
session, after the completing transaction has committed.
"""

from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from competency.engines.assessment.types import AssessmentLevel, CompetencyResult
from competency.logging_config import get_logger

logger = get_logger(__name__)


class SessionCompleted(BaseModel):
    """Outcome of one completed session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    user_id: str
    step: int
    score: int
    percentage: int = Field(ge=0, le=100)
    level_achieved: Optional[AssessmentLevel] = None
    passed: bool
    can_proceed_to_next_step: bool
    competency_breakdown: List[CompetencyResult] = Field(default_factory=list)
    time_spent_seconds: int = Field(default=0, ge=0)
    completed_at: datetime


@runtime_checkable
class CompletionNotifier(Protocol):
    """Consumer of completion events (email, webhooks, analytics...)."""

    async def session_completed(self, event: SessionCompleted) -> None:
        ...


class LoggingCompletionNotifier:
    """Default notifier: writes the completion to the application log."""

    async def session_completed(self, event: SessionCompleted) -> None:
        logger.info(
            "Assessment completed",
            extra={
                "session_id": event.session_id,
                "user_id": event.user_id,
                "step": event.step,
                "percentage": event.percentage,
                "level_achieved": event.level_achieved.value if event.level_achieved else None,
                "passed": event.passed,
            },
        )
