"""
Stable Kernel Layer

Foundational pieces shared by the engines and the API:
- ORM models (question bank, sessions, progress)
- Immutable Event Log (every session/progress mutation is logged)
- Identity Core (access token verification)

Invariants:
- Audit events are written in the same transaction as the change they describe
- Event log rows are never updated or deleted
"""

from competency.kernel.models import (
    Base,
    Question,
    AssessmentSession,
    AssessmentProgress,
    EventLog,
    EventType,
)

__all__ = [
    "Base",
    # Question bank
    "Question",
    # Assessment
    "AssessmentSession",
    "AssessmentProgress",
    # Event Log
    "EventLog",
    "EventType",
]
