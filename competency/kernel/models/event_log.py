"""
Immutable event log for audit trail.

Session and progress mutations are logged here in the same transaction
that persists them, so the log never disagrees with the stored state.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, String, Text, func, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from competency.kernel.models.base import Base, generate_id


class EventType(str, Enum):
    """All event types for the audit log."""

    # Session events
    SESSION_STARTED = "assessment.session_started"
    ANSWER_SUBMITTED = "assessment.answer_submitted"
    CHEATING_FLAGGED = "assessment.cheating_flagged"
    SESSION_COMPLETED = "assessment.session_completed"

    # Progress events
    PROGRESS_UPDATED = "progress.updated"
    STEP_UNLOCKED = "progress.step_unlocked"
    RETAKE_DISABLED = "progress.retake_disabled"
    ACHIEVEMENT_UNLOCKED = "progress.achievement_unlocked"

    # Admin events
    RETAKE_RESET = "admin.retake_reset"


class EventLog(Base):
    """
    Immutable audit event log.

    This table is append-only - no updates or deletes allowed.
    """

    __tablename__ = "event_logs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_id,
    )

    event_type: Mapped[EventType] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    # Entity reference
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    entity_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    # Actor; system events (expiry sweeps) carry the session owner
    user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )

    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45),
        nullable=True,
    )
    user_agent: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_event_logs_entity", "entity_type", "entity_id"),
        Index("ix_event_logs_user_time", "user_id", "created_at"),
        Index("ix_event_logs_type_time", "event_type", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<EventLog {self.event_type} {self.entity_type}:{self.entity_id}>"
