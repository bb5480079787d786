"""
Kernel Data Models

SQLAlchemy models for the question bank, assessment sessions, per-user
progress and the audit log.
"""

from competency.kernel.models.base import Base, TimestampMixin, generate_id
from competency.kernel.models.question import Question
from competency.kernel.models.assessment import AssessmentSession, AssessmentProgress
from competency.kernel.models.event_log import EventLog, EventType

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "generate_id",
    # Question bank
    "Question",
    # Assessment
    "AssessmentSession",
    "AssessmentProgress",
    # Event Log
    "EventLog",
    "EventType",
]
