"""
Persistence for sessions and progress: ORM rows <-> domain values.

Repositories remember the rows they loaded; `save` copies the domain value
back onto that row and flushes. The version column turns a write from a
stale copy into StaleDataError, which the service reports as
ConcurrentModification.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from competency.engines.assessment.types import (
    Achievement,
    AssessmentAnswer,
    AssessmentLevel,
    AssessmentProgress,
    AssessmentSession,
    AssessmentStatus,
    CheatingFlag,
    CompetencyScore,
    SessionQuestion,
)
from competency.kernel.models.assessment import AssessmentProgress as ProgressRow
from competency.kernel.models.assessment import AssessmentSession as SessionRow


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _level(value: Optional[str]) -> Optional[AssessmentLevel]:
    return AssessmentLevel(value) if value else None


def _dump_list(items) -> list:
    return [item.model_dump(mode="json") for item in items]


# Sessions

def session_from_row(row: SessionRow) -> AssessmentSession:
    return AssessmentSession(
        id=row.id,
        user_id=row.user_id,
        step=row.step,
        status=AssessmentStatus(row.status),
        questions=[SessionQuestion.model_validate(q) for q in row.questions],
        start_time=_as_utc(row.start_time),
        end_time=_as_utc(row.end_time),
        time_allowed=row.time_allowed,
        answers=[AssessmentAnswer.model_validate(a) for a in row.answers or []],
        cheating_details=[CheatingFlag.model_validate(f) for f in row.cheating_details or []],
        score=row.score,
        percentage=row.percentage,
        correct_answers=row.correct_answers,
        level_achieved=_level(row.level_achieved),
        passed=row.passed,
        can_proceed_to_next_step=row.can_proceed_to_next_step,
        next_step_unlocked_at=_as_utc(row.next_step_unlocked_at),
        is_completed=row.is_completed,
        is_submitted=row.is_submitted,
        completion_notified_at=_as_utc(row.completion_notified_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        browser_fingerprint=row.browser_fingerprint,
        version=row.version,
    )


def _copy_session_onto_row(session: AssessmentSession, row: SessionRow) -> None:
    # The question snapshot is written once, on insert
    row.status = session.status.value
    row.end_time = session.end_time
    row.answers = _dump_list(session.answers)
    row.cheating_details = _dump_list(session.cheating_details)
    row.has_cheating_flags = session.has_cheating_flags
    row.score = session.score
    row.percentage = session.percentage
    row.correct_answers = session.correct_answers
    row.level_achieved = session.level_achieved.value if session.level_achieved else None
    row.passed = session.passed
    row.can_proceed_to_next_step = session.can_proceed_to_next_step
    row.next_step_unlocked_at = session.next_step_unlocked_at
    row.is_completed = session.is_completed
    row.is_submitted = session.is_submitted
    row.completion_notified_at = session.completion_notified_at


class SessionRepository:
    """Load/save AssessmentSession values."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._rows: Dict[str, SessionRow] = {}

    def _remember(self, row: SessionRow) -> AssessmentSession:
        self._rows[row.id] = row
        return session_from_row(row)

    async def get(self, session_id: str) -> Optional[AssessmentSession]:
        result = await self.db.execute(
            select(SessionRow)
            .where(SessionRow.id == session_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._remember(row) if row else None

    async def find_active(self, user_id: str) -> Optional[AssessmentSession]:
        """The user's not-yet-completed session, if any (newest first)."""
        result = await self.db.execute(
            select(SessionRow)
            .where(SessionRow.user_id == user_id, SessionRow.is_completed.is_(False))
            .order_by(desc(SessionRow.start_time))
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return self._remember(row) if row else None

    async def list_in_flight(
        self,
        after: Optional[Tuple[datetime, str]] = None,
        limit: int = 500,
    ) -> List[AssessmentSession]:
        """
        One page of uncompleted sessions, oldest first.

        Pass the (start_time, id) of the last session of the previous page as
        `after`. Expiry is decided by the caller's clock.
        """
        query = select(SessionRow).where(SessionRow.is_completed.is_(False))
        if after is not None:
            start_time, session_id = after
            query = query.where(
                or_(
                    SessionRow.start_time > start_time,
                    and_(SessionRow.start_time == start_time, SessionRow.id > session_id),
                )
            )
        result = await self.db.execute(
            query.order_by(SessionRow.start_time, SessionRow.id).limit(limit)
        )
        return [self._remember(row) for row in result.scalars().all()]

    async def list_undelivered(self, limit: int = 500) -> List[AssessmentSession]:
        """Completed sessions whose completion never reached the notifier."""
        result = await self.db.execute(
            select(SessionRow)
            .where(SessionRow.is_completed.is_(True), SessionRow.completion_notified_at.is_(None))
            .order_by(SessionRow.end_time)
            .limit(limit)
        )
        return [self._remember(row) for row in result.scalars().all()]

    async def list_completed(self, user_id: str, limit: int = 50, offset: int = 0) -> List[AssessmentSession]:
        """Completed sessions for a user, most recent first."""
        result = await self.db.execute(
            select(SessionRow)
            .where(SessionRow.user_id == user_id, SessionRow.is_completed.is_(True))
            .order_by(desc(SessionRow.end_time))
            .offset(offset)
            .limit(limit)
        )
        return [self._remember(row) for row in result.scalars().all()]

    async def list_completed_results(self, step: Optional[int] = None) -> List[tuple]:
        """(step, percentage, start_time, end_time) of every completed session."""
        query = select(
            SessionRow.step,
            SessionRow.percentage,
            SessionRow.start_time,
            SessionRow.end_time,
        ).where(SessionRow.is_completed.is_(True))
        if step is not None:
            query = query.where(SessionRow.step == step)
        result = await self.db.execute(query.order_by(SessionRow.step))
        return [
            (s, pct or 0, _as_utc(start), _as_utc(end))
            for s, pct, start, end in result.all()
        ]

    async def add(self, session: AssessmentSession) -> AssessmentSession:
        row = SessionRow(
            id=session.id,
            user_id=session.user_id,
            step=session.step,
            status=session.status.value,
            questions=_dump_list(session.questions),
            start_time=session.start_time,
            time_allowed=session.time_allowed,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            browser_fingerprint=session.browser_fingerprint,
        )
        _copy_session_onto_row(session, row)
        self.db.add(row)
        await self.db.flush()
        return self._remember(row)

    async def save(self, session: AssessmentSession) -> AssessmentSession:
        row = self._rows.get(session.id)
        if row is None:
            raise KeyError(f"Session {session.id} was not loaded through this repository")
        _copy_session_onto_row(session, row)
        await self.db.flush()
        return self._remember(row)


# Progress

def progress_from_row(row: ProgressRow) -> AssessmentProgress:
    return AssessmentProgress(
        user_id=row.user_id,
        current_step=row.current_step,
        highest_level_achieved=AssessmentLevel(row.highest_level_achieved),
        step1_completed=row.step1_completed,
        step1_score=row.step1_score,
        step1_level=_level(row.step1_level),
        step1_completed_at=_as_utc(row.step1_completed_at),
        step2_completed=row.step2_completed,
        step2_score=row.step2_score,
        step2_level=_level(row.step2_level),
        step2_completed_at=_as_utc(row.step2_completed_at),
        step3_completed=row.step3_completed,
        step3_score=row.step3_score,
        step3_level=_level(row.step3_level),
        step3_completed_at=_as_utc(row.step3_completed_at),
        total_assessments_taken=row.total_assessments_taken,
        total_time_spent=row.total_time_spent,
        average_score=row.average_score,
        competency_scores=[CompetencyScore.model_validate(c) for c in row.competency_scores or []],
        can_retake_step1=row.can_retake_step1,
        next_assessment_date=_as_utc(row.next_assessment_date),
        achievements=[Achievement.model_validate(a) for a in row.achievements or []],
        version=row.version,
    )


def _copy_progress_onto_row(progress: AssessmentProgress, row: ProgressRow) -> None:
    row.current_step = progress.current_step
    row.highest_level_achieved = progress.highest_level_achieved.value
    for step in (1, 2, 3):
        level = progress.step_level(step)
        setattr(row, f"step{step}_completed", progress.step_completed(step))
        setattr(row, f"step{step}_score", progress.step_score(step))
        setattr(row, f"step{step}_level", level.value if level else None)
        setattr(row, f"step{step}_completed_at", getattr(progress, f"step{step}_completed_at"))
    row.total_assessments_taken = progress.total_assessments_taken
    row.total_time_spent = progress.total_time_spent
    row.average_score = progress.average_score
    row.competency_scores = _dump_list(progress.competency_scores)
    row.can_retake_step1 = progress.can_retake_step1
    row.next_assessment_date = progress.next_assessment_date
    row.achievements = _dump_list(progress.achievements)


class ProgressRepository:
    """Load/save AssessmentProgress values. One row per user."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._rows: Dict[str, ProgressRow] = {}

    def _remember(self, row: ProgressRow) -> AssessmentProgress:
        self._rows[row.user_id] = row
        return progress_from_row(row)

    async def get(self, user_id: str) -> Optional[AssessmentProgress]:
        result = await self.db.execute(
            select(ProgressRow)
            .where(ProgressRow.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._remember(row) if row else None

    async def add(self, progress: AssessmentProgress) -> AssessmentProgress:
        row = ProgressRow(user_id=progress.user_id)
        _copy_progress_onto_row(progress, row)
        self.db.add(row)
        await self.db.flush()
        return self._remember(row)

    async def save(self, progress: AssessmentProgress) -> AssessmentProgress:
        row = self._rows.get(progress.user_id)
        if row is None:
            raise KeyError(f"Progress for {progress.user_id} was not loaded through this repository")
        _copy_progress_onto_row(progress, row)
        await self.db.flush()
        return self._remember(row)

    async def level_summary(self) -> List[tuple]:
        """(highest level, users, mean assessments taken, mean average score) per level."""
        result = await self.db.execute(
            select(
                ProgressRow.highest_level_achieved,
                func.count(ProgressRow.id),
                func.avg(ProgressRow.total_assessments_taken),
                func.avg(ProgressRow.average_score),
            )
            .group_by(ProgressRow.highest_level_achieved)
            .order_by(ProgressRow.highest_level_achieved)
        )
        return [
            (AssessmentLevel(level), users, float(taken or 0), float(score or 0))
            for level, users, taken, score in result.all()
        ]

    async def list_competency_scores(self) -> List[CompetencyScore]:
        """Every user's per-competency record, flattened."""
        result = await self.db.execute(select(ProgressRow.competency_scores))
        return [
            CompetencyScore.model_validate(item)
            for scores in result.scalars().all()
            for item in scores or []
        ]
