"""
Question bank model.

Content is authored elsewhere; the engine only reads questions and bumps
their usage statistics after each answer.
"""

from typing import Optional

from sqlalchemy import Boolean, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from competency.kernel.models.base import Base, TimestampMixin


class Question(Base, TimestampMixin):
    """A question bank item. The integer key doubles as bank insertion order."""

    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(String(30), nullable=False)
    competency: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    level: Mapped[str] = mapped_column(String(2), nullable=False)
    step: Mapped[int] = mapped_column(Integer, nullable=False)

    # [{"id", "text", "is_correct", "order"}]
    options: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    correct_answers: Mapped[list] = mapped_column(JSON, nullable=False)

    difficulty: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    time_allowed: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    audio_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    video_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Usage statistics
    times_answered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    times_correct: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_answer_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_questions_step_level_active", "step", "level", "is_active"),
        Index("ix_questions_difficulty_usage", "difficulty", "times_answered"),
    )
