"""
Question Selector - picks and snapshots the questions for a session.

Selection prefers easy, underused items:
- filter: active, level allowed for the step, not excluded
- order: difficulty asc, times_answered asc, bank insertion order for ties
- size: at most `limit` (44 by default, never more than 50)

The SQL-backed QuestionBank lists candidates in insertion order (integer
primary key) and keeps the per-question usage statistics.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from competency.config import get_settings
from competency.engines.assessment.errors import InsufficientQuestions, InvalidInput
from competency.engines.assessment.rules import percentage_of
from competency.engines.assessment.types import (
    STEP_LEVELS,
    AssessmentLevel,
    DigitalCompetency,
    Question,
    QuestionOption,
    QuestionType,
    SessionQuestion,
)
from competency.kernel.models.question import Question as QuestionRow
from competency.logging_config import get_logger

logger = get_logger(__name__)

QUESTIONS_PER_STEP = 44
MAX_QUESTIONS_PER_SESSION = 50

# Difficulty recalibration
RECALIBRATION_INTERVAL = 10
EASY_RATE_THRESHOLD = 80
HARD_RATE_THRESHOLD = 40


class QuestionSelector:
    """Read-only selection over an in-memory list of bank items."""

    def __init__(self, limit: int = QUESTIONS_PER_STEP, minimum: int = 1):
        if limit < 1:
            raise InvalidInput("Question limit must be at least 1", limit=limit)
        self.limit = min(limit, MAX_QUESTIONS_PER_SESSION)
        self.minimum = max(1, min(minimum, self.limit))

    def select(
        self,
        bank_items: Sequence[Question],
        step: int,
        exclude_ids: Iterable[str] = (),
    ) -> List[Question]:
        """
        Select the questions for one session.

        `bank_items` must be in bank insertion order; sorted() is stable so
        that order breaks ties.
        """
        if step not in STEP_LEVELS:
            raise InvalidInput(f"Invalid step: {step}", step=step)

        allowed_levels = STEP_LEVELS[step]
        excluded = {str(qid) for qid in exclude_ids}

        candidates = [
            q for q in bank_items
            if q.is_active and q.level in allowed_levels and q.id not in excluded
        ]
        candidates = sorted(candidates, key=lambda q: (q.difficulty, q.times_answered))

        if len(candidates) < self.minimum:
            raise InsufficientQuestions(step=step, available=len(candidates), required=self.minimum)

        return candidates[: self.limit]


def select_questions(
    bank_items: Sequence[Question],
    step: int,
    exclude_ids: Iterable[str] = (),
    limit: int = QUESTIONS_PER_STEP,
    minimum: int = 1,
) -> List[Question]:
    """Convenience wrapper around QuestionSelector.select."""
    return QuestionSelector(limit=limit, minimum=minimum).select(bank_items, step, exclude_ids)


def snapshot_question(question: Question, order: int) -> SessionQuestion:
    """Frozen copy of a bank question; option correctness follows correct_answers."""
    correct = set(question.correct_answers)
    options = tuple(
        opt.model_copy(update={"is_correct": opt.id in correct})
        for opt in question.options
    )
    return SessionQuestion(
        question_id=question.id,
        order=order,
        competency=question.competency,
        level=question.level,
        points=question.points,
        time_allowed=question.time_allowed,
        text=question.text,
        question_type=question.question_type,
        options=options,
        correct_answers=tuple(question.correct_answers),
        image_url=question.image_url,
        audio_url=question.audio_url,
        video_url=question.video_url,
    )


def snapshot_questions(questions: Sequence[Question]) -> List[SessionQuestion]:
    return [snapshot_question(q, order) for order, q in enumerate(questions, start=1)]


def row_to_question(row: QuestionRow) -> Question:
    """Build the domain Question from a bank row."""
    return Question(
        id=str(row.id),
        text=row.question_text,
        question_type=QuestionType(row.question_type),
        competency=DigitalCompetency(row.competency),
        level=AssessmentLevel(row.level),
        step=row.step,
        options=[QuestionOption.model_validate(o) for o in row.options or []],
        correct_answers=list(row.correct_answers or []),
        difficulty=row.difficulty,
        time_allowed=row.time_allowed,
        points=row.points,
        explanation=row.explanation,
        tags=list(row.tags or []),
        is_active=row.is_active,
        image_url=row.image_url,
        audio_url=row.audio_url,
        video_url=row.video_url,
        times_answered=row.times_answered,
        correct_answer_rate=row.correct_answer_rate,
    )


def _question_columns(question: Question) -> Dict[str, Any]:
    return {
        "question_text": question.text,
        "question_type": question.question_type.value,
        "competency": question.competency.value,
        "level": question.level.value,
        "step": question.step,
        "options": [o.model_dump() for o in question.options],
        "correct_answers": list(question.correct_answers),
        "difficulty": question.difficulty,
        "time_allowed": question.time_allowed,
        "points": question.points,
        "explanation": question.explanation,
        "tags": list(question.tags),
        "is_active": question.is_active,
        "image_url": question.image_url,
        "audio_url": question.audio_url,
        "video_url": question.video_url,
    }


def parse_question_dicts(
    items: Iterable[dict],
    default_time_allowed: Optional[int] = None,
) -> List[Question]:
    """
    Validate raw question dicts; invalid items are logged and skipped.

    Items without a time_allowed get the configured per-question default.
    """
    if default_time_allowed is None:
        default_time_allowed = get_settings().default_question_time_seconds
    questions = []
    for index, item in enumerate(items):
        try:
            if isinstance(item, dict):
                item = {"time_allowed": default_time_allowed, **item}
            questions.append(Question.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "Skipping invalid question",
                extra={"index": index, "errors": e.error_count()},
            )
    return questions


def load_questions_from_json(path: Path) -> List[Question]:
    """
    Load questions from a JSON file holding a list of question objects
    (or {"questions": [...]}).
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("questions", [])
    if not isinstance(data, list):
        raise InvalidInput("Question file must contain a list of questions", path=str(path))
    return parse_question_dicts(data)


class QuestionBank:
    """
    SQL-backed question bank.

    Usage:
        bank = QuestionBank(db)
        questions = await bank.select_questions(step=1, exclude_ids=seen)
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()

    async def list_candidates(self, step: int) -> List[Question]:
        """Active questions for the step's levels, in insertion order."""
        levels = [lvl.value for lvl in STEP_LEVELS.get(step, ())]
        query = (
            select(QuestionRow)
            .where(
                QuestionRow.step == step,
                QuestionRow.level.in_(levels),
                QuestionRow.is_active.is_(True),
            )
            .order_by(QuestionRow.id)
        )
        result = await self.session.execute(query)
        return [row_to_question(row) for row in result.scalars().all()]

    async def select_questions(
        self,
        step: int,
        exclude_ids: Iterable[str] = (),
        limit: Optional[int] = None,
        minimum: Optional[int] = None,
    ) -> List[Question]:
        selector = QuestionSelector(
            limit=limit or self.settings.questions_per_step,
            minimum=minimum or self.settings.min_questions_per_step,
        )
        candidates = await self.list_candidates(step)
        return selector.select(candidates, step, exclude_ids)

    async def get(self, question_id: str) -> Optional[Question]:
        row = await self._get_row(question_id)
        return row_to_question(row) if row else None

    async def add(self, question: Question) -> Question:
        """Insert a validated question; the bank assigns its id."""
        row = QuestionRow(**_question_columns(question))
        self.session.add(row)
        await self.session.flush()
        return row_to_question(row)

    async def add_many(self, questions: Iterable[Question]) -> List[Question]:
        return [await self.add(q) for q in questions]

    async def update(self, question_id: str, **changes: Any) -> Question:
        """Edit a bank question. Sessions already holding a snapshot are unaffected."""
        row = await self._get_row(question_id)
        if row is None:
            raise InvalidInput("Question not found", question_id=question_id)

        updated = Question.model_validate(
            {**row_to_question(row).model_dump(), **changes}
        )
        for column, value in _question_columns(updated).items():
            setattr(row, column, value)
        await self.session.flush()
        return row_to_question(row)

    async def record_answer_outcome(self, question_id: str, was_correct: bool) -> Optional[Question]:
        """
        Bump usage statistics after an answer.

        Every RECALIBRATION_INTERVAL answers the difficulty moves one notch
        toward the observed correct rate.
        """
        row = await self._get_row(question_id, for_update=True)
        if row is None:
            logger.warning("Answer outcome for unknown question", extra={"question_id": question_id})
            return None

        row.times_answered += 1
        if was_correct:
            row.times_correct += 1
        row.correct_answer_rate = percentage_of(row.times_correct, row.times_answered)

        if row.times_answered >= RECALIBRATION_INTERVAL and row.times_answered % RECALIBRATION_INTERVAL == 0:
            if row.correct_answer_rate > EASY_RATE_THRESHOLD:
                row.difficulty = max(1, row.difficulty - 1)
            elif row.correct_answer_rate < HARD_RATE_THRESHOLD:
                row.difficulty = min(5, row.difficulty + 1)

        await self.session.flush()
        return row_to_question(row)

    async def _get_row(self, question_id: str, for_update: bool = False) -> Optional[QuestionRow]:
        try:
            key = int(question_id)
        except (TypeError, ValueError):
            return None
        query = select(QuestionRow).where(QuestionRow.id == key)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()
