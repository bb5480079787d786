"""
Event sourcing infrastructure.

Provides append-only audit logging with immutable events.
"""

from competency.kernel.events.event_store import EventStore
from competency.kernel.events.event_types import (
    BaseEvent,
    SessionEvent,
    SessionStartedEvent,
    AnswerSubmittedEvent,
    CheatingFlaggedEvent,
    ProgressEvent,
    ProgressUpdatedEvent,
    StepUnlockedEvent,
    RetakeDisabledEvent,
    AchievementUnlockedEvent,
    RetakeResetEvent,
)

__all__ = [
    "EventStore",
    "BaseEvent",
    "SessionEvent",
    "SessionStartedEvent",
    "AnswerSubmittedEvent",
    "CheatingFlaggedEvent",
    "ProgressEvent",
    "ProgressUpdatedEvent",
    "StepUnlockedEvent",
    "RetakeDisabledEvent",
    "AchievementUnlockedEvent",
    "RetakeResetEvent",
]
