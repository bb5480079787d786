"""
Assessment models - timed sessions and the per-user progress aggregate.

Both rows carry a version column; SQLAlchemy checks it on every UPDATE so a
second writer holding a stale copy fails instead of overwriting.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, JSON, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from competency.kernel.models.base import Base, TimestampMixin, generate_id


class AssessmentSession(Base, TimestampMixin):
    """
    One timed attempt at a step.

    questions/answers/cheating_details are embedded JSON documents; the
    question snapshot is written once at creation and never rewritten.
    """

    __tablename__ = "assessment_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="not_started", index=True)

    questions: Mapped[list] = mapped_column(JSON, nullable=False)

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    time_allowed: Mapped[int] = mapped_column(Integer, nullable=False)

    answers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    cheating_details: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    has_cheating_flags: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Results
    score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    percentage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    correct_answers: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    level_achieved: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_proceed_to_next_step: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    next_step_unlocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    is_submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completion_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    browser_fingerprint: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_assessment_sessions_user_step", "user_id", "step"),
        Index("ix_assessment_sessions_user_created", "user_id", "created_at"),
        # At most one uncompleted session per user, across workers
        Index(
            "uq_assessment_sessions_live_user",
            "user_id",
            unique=True,
            sqlite_where=text("is_completed = 0"),
            postgresql_where=text("is_completed = false"),
        ),
    )


class AssessmentProgress(Base, TimestampMixin):
    """Per-user progression aggregate. Exactly one row per user."""

    __tablename__ = "assessment_progress"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=1, index=True)
    highest_level_achieved: Mapped[str] = mapped_column(String(2), nullable=False, default="A1", index=True)

    step1_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    step1_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    step1_level: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    step1_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    step2_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    step2_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    step2_level: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    step2_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    step3_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    step3_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    step3_level: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    step3_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    total_assessments_taken: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_time_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # seconds
    average_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    competency_scores: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    can_retake_step1: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    next_assessment_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    achievements: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
