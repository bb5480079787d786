"""
Assessment Service - load -> pure transform -> save, under locks.

Usage:
    service = AssessmentService(db, locks=locks, notifier=notifier)
    session = await service.start_session(user_id, step=1)
    await service.submit_answer(user_id, session.id, question_id, ["option_2"], time_spent=40)
    session = await service.complete_session(user_id, session.id)

Each mutating call commits its own transaction while holding the relevant
keyed lock, so the audit record and the state change land together and a
completion is handed to the notifier only after it is durable.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from competency.engines.assessment import progress_tracker, rules, session_engine
from competency.engines.assessment.errors import (
    ActiveSessionExists,
    ConcurrentModification,
    SessionNotFound,
    StepNotEligible,
)
from competency.engines.assessment.locks import AssessmentLocks
from competency.engines.assessment.notifications import (
    CompletionNotifier,
    LoggingCompletionNotifier,
    SessionCompleted,
)
from competency.engines.assessment.question_selector import QuestionBank, snapshot_questions
from competency.engines.assessment.repositories import ProgressRepository, SessionRepository
from competency.engines.assessment.types import (
    STEP_LEVELS,
    AssessmentAnswer,
    AssessmentLevel,
    AssessmentProgress,
    AssessmentSession,
    CheatingFlagType,
    CompetencyScore,
    DigitalCompetency,
    FlagSeverity,
)
from competency.kernel.events import (
    AchievementUnlockedEvent,
    AnswerSubmittedEvent,
    CheatingFlaggedEvent,
    EventStore,
    ProgressUpdatedEvent,
    RetakeDisabledEvent,
    RetakeResetEvent,
    SessionStartedEvent,
    StepUnlockedEvent,
)
from competency.kernel.models.event_log import EventType
from competency.logging_config import get_logger

logger = get_logger(__name__)

SESSION_ENTITY = "assessment_session"
PROGRESS_ENTITY = "assessment_progress"

IN_FLIGHT_PAGE_SIZE = 500


@dataclass
class Eligibility:
    steps: Dict[int, bool]
    next_available_step: Optional[int]
    can_retake_step1: bool
    next_assessment_date: Optional[datetime] = None


@dataclass
class StepStats:
    step: int
    total_sessions: int
    average_percentage: float
    pass_rate: float
    average_duration_minutes: float


@dataclass
class LevelStats:
    level: AssessmentLevel
    users: int
    average_assessments_taken: float
    average_score: float


@dataclass
class CompetencyStats:
    competency: DigitalCompetency
    average_score: float
    total_attempts: int
    total_correct: int
    success_rate: float


@dataclass
class SessionTime:
    session_id: str
    remaining_seconds: int
    is_expired: bool
    time_allowed: int
    start_time: datetime
    answered: int = 0
    total_questions: int = 0


class AssessmentService:
    """Orchestrates sessions, progress and the audit trail for one DB session."""

    def __init__(
        self,
        db: AsyncSession,
        locks: Optional[AssessmentLocks] = None,
        notifier: Optional[CompletionNotifier] = None,
        bank: Optional[QuestionBank] = None,
    ):
        self.db = db
        self.locks = locks or AssessmentLocks()
        self.notifier = notifier or LoggingCompletionNotifier()
        self.bank = bank or QuestionBank(db)
        self.sessions = SessionRepository(db)
        self.progress = ProgressRepository(db)
        self.events = EventStore(db)

    @asynccontextmanager
    async def _unit_of_work(self, entity: str, entity_id: str) -> AsyncIterator[None]:
        """Commit on success; roll back and translate version/uniqueness conflicts."""
        try:
            yield
            await self.db.commit()
        except (StaleDataError, IntegrityError) as e:
            await self.db.rollback()
            logger.warning(
                "Concurrent modification detected",
                extra={"entity": entity, "entity_id": entity_id, "error": type(e).__name__},
            )
            raise ConcurrentModification(entity, entity_id) from e
        except BaseException:
            await self.db.rollback()
            raise

    async def _get_owned(self, user_id: str, session_id: str) -> AssessmentSession:
        """A session that exists and belongs to the user; anything else is not found."""
        session = await self.sessions.get(session_id)
        if session is None or session.user_id != user_id:
            raise SessionNotFound(session_id)
        return session

    async def _get_or_create_progress(self, user_id: str) -> AssessmentProgress:
        progress = await self.progress.get(user_id)
        if progress is None:
            progress = await self.progress.add(progress_tracker.new_progress(user_id))
            logger.info("Progress record created", extra={"user_id": user_id})
        return progress

    # Session lifecycle

    async def start_session(
        self,
        user_id: str,
        step: int,
        exclude_question_ids: Iterable[str] = (),
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        browser_fingerprint: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AssessmentSession:
        """
        Create a new session for the step.

        An active session whose time ran out is completed first; a live one
        blocks the new attempt.
        """
        now = now or session_engine.utcnow()

        async with self.locks.users.hold(user_id):
            active = await self.sessions.find_active(user_id)
            if active is not None and session_engine.is_expired(active, now):
                logger.info(
                    "Completing expired session before starting a new one",
                    extra={"session_id": active.id, "user_id": user_id},
                )
                await self._complete_locked(active.id, now)
                active = None

            async with self._unit_of_work(PROGRESS_ENTITY, user_id):
                if active is not None:
                    raise ActiveSessionExists(user_id, active.id, active.step)

                progress = await self._get_or_create_progress(user_id)
                if not progress_tracker.can_take_step(progress, step):
                    raise StepNotEligible(
                        user_id,
                        step,
                        progress_tracker.get_next_available_step(progress),
                    )

                questions = await self.bank.select_questions(step, exclude_question_ids)
                session = session_engine.create_session(
                    user_id,
                    step,
                    snapshot_questions(questions),
                    now=now,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    browser_fingerprint=browser_fingerprint,
                )
                session = await self.sessions.add(session)

                await self.events.log_from_model(
                    event_type=EventType.SESSION_STARTED,
                    entity_type=SESSION_ENTITY,
                    entity_id=session.id,
                    user_id=user_id,
                    payload_model=SessionStartedEvent(
                        session_id=session.id,
                        step=step,
                        question_count=len(session.questions),
                        time_allowed=session.time_allowed,
                        question_ids=[q.question_id for q in session.questions],
                    ),
                    ip_address=ip_address,
                    user_agent=user_agent,
                )

        logger.info(
            "Assessment session started",
            extra={
                "session_id": session.id,
                "user_id": user_id,
                "step": step,
                "question_count": len(session.questions),
                "time_allowed": session.time_allowed,
            },
        )
        return session

    async def submit_answer(
        self,
        user_id: str,
        session_id: str,
        question_id: str,
        selected_answers: List[str],
        time_spent: int,
        tab_switches: int = 0,
        copy_paste_detected: bool = False,
        now: Optional[datetime] = None,
    ) -> Tuple[AssessmentSession, AssessmentAnswer]:
        now = now or session_engine.utcnow()

        async with self.locks.sessions.hold(session_id):
            async with self._unit_of_work(SESSION_ENTITY, session_id):
                session = await self._get_owned(user_id, session_id)
                updated = session_engine.submit_answer(
                    session,
                    question_id,
                    selected_answers,
                    time_spent,
                    now=now,
                    tab_switches=tab_switches,
                    copy_paste_detected=copy_paste_detected,
                )
                saved = await self.sessions.save(updated)
                answer = saved.answers[saved.find_answer_index(question_id)]

                await self.events.log_from_model(
                    event_type=EventType.ANSWER_SUBMITTED,
                    entity_type=SESSION_ENTITY,
                    entity_id=session_id,
                    user_id=user_id,
                    payload_model=AnswerSubmittedEvent(
                        session_id=session_id,
                        step=saved.step,
                        question_id=question_id,
                        changed_answers=answer.changed_answers,
                        answered_count=len(saved.answers),
                        time_spent=time_spent,
                    ),
                )

        # Bank statistics count first answers only
        if answer.changed_answers == 0:
            await self._record_outcome(question_id, answer.is_correct)

        logger.debug(
            "Answer recorded",
            extra={"session_id": session_id, "question_id": question_id, "changed": answer.changed_answers},
        )
        return saved, answer

    async def _record_outcome(self, question_id: str, was_correct: bool) -> None:
        """Bank statistics are advisory; a failure here never fails the submission."""
        try:
            await self.bank.record_answer_outcome(question_id, was_correct)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception("Failed to record answer outcome", extra={"question_id": question_id})

    async def flag_session(
        self,
        user_id: str,
        session_id: str,
        flag_type: CheatingFlagType,
        details: str,
        severity: FlagSeverity = FlagSeverity.MEDIUM,
        now: Optional[datetime] = None,
    ) -> AssessmentSession:
        now = now or session_engine.utcnow()

        async with self.locks.sessions.hold(session_id):
            async with self._unit_of_work(SESSION_ENTITY, session_id):
                session = await self._get_owned(user_id, session_id)
                updated = session_engine.add_cheating_flag(session, flag_type, details, severity, now=now)
                saved = await self.sessions.save(updated)

                await self.events.log_from_model(
                    event_type=EventType.CHEATING_FLAGGED,
                    entity_type=SESSION_ENTITY,
                    entity_id=session_id,
                    user_id=user_id,
                    payload_model=CheatingFlaggedEvent(
                        session_id=session_id,
                        step=saved.step,
                        flag_type=flag_type.value,
                        severity=severity.value,
                        details=details,
                    ),
                )

        logger.warning(
            "Cheating flag recorded",
            extra={"session_id": session_id, "flag_type": flag_type.value, "severity": severity.value},
        )
        return saved

    async def complete_session(
        self,
        user_id: str,
        session_id: str,
        now: Optional[datetime] = None,
    ) -> AssessmentSession:
        """Complete a session. Completing it again returns the frozen result."""
        now = now or session_engine.utcnow()
        async with self.locks.users.hold(user_id):
            await self._get_owned(user_id, session_id)
            completed, _ = await self._complete_locked(session_id, now)
        return completed

    async def complete_expired_sessions(self, now: Optional[datetime] = None) -> List[AssessmentSession]:
        """
        Complete every in-flight session whose budget has elapsed, and retry
        completion messages the notifier never took.

        Meant to be called by an external scheduler; the engine itself never
        schedules anything.
        """
        now = now or session_engine.utcnow()
        candidates = []
        after = None
        while True:
            page = await self.sessions.list_in_flight(after=after, limit=IN_FLIGHT_PAGE_SIZE)
            candidates.extend(s for s in page if session_engine.is_expired(s, now))
            if len(page) < IN_FLIGHT_PAGE_SIZE:
                break
            after = (page[-1].start_time, page[-1].id)
        undelivered = await self.sessions.list_undelivered()
        await self.db.rollback()

        completed = []
        for candidate in candidates:
            async with self.locks.users.hold(candidate.user_id):
                try:
                    session, event = await self._complete_locked(candidate.id, now)
                except ConcurrentModification:
                    logger.warning("Expired session changed concurrently; skipped", extra={"session_id": candidate.id})
                    continue
            if event is not None:
                completed.append(session)

        for pending in undelivered:
            async with self.locks.users.hold(pending.user_id):
                try:
                    await self._complete_locked(pending.id, now)
                except ConcurrentModification:
                    logger.warning("Redelivery raced another worker; skipped", extra={"session_id": pending.id})

        if completed:
            logger.info("Completed expired sessions", extra={"count": len(completed)})
        return completed

    async def _complete_locked(
        self,
        session_id: str,
        now: datetime,
    ) -> Tuple[AssessmentSession, Optional[SessionCompleted]]:
        """
        Complete a session and fold it into progress in one transaction.

        The caller holds the owner's user lock. Returns the completion event
        when this call made the transition, None when it was already done.
        A completion the notifier has not accepted yet is delivered here,
        whether the transition is new or not.
        """
        event = None
        async with self.locks.sessions.hold(session_id):
            async with self._unit_of_work(SESSION_ENTITY, session_id):
                session = await self.sessions.get(session_id)
                if session is None:
                    raise SessionNotFound(session_id)

                completed, changed = session_engine.mark_completed(session, now)
                if changed:
                    completed = await self.sessions.save(completed)
                    event = session_engine.build_completion_event(completed)

                    progress = await self._get_or_create_progress(completed.user_id)
                    updated = progress_tracker.apply_completion(progress, event, now=now)
                    await self.progress.save(updated)

                    await self._log_completion(completed, event, progress, updated)

            if event is not None:
                logger.info(
                    "Assessment session completed",
                    extra={
                        "session_id": session_id,
                        "user_id": completed.user_id,
                        "step": completed.step,
                        "percentage": completed.percentage,
                        "passed": completed.passed,
                    },
                )
            if session_engine.needs_notification(completed):
                completed = await self._deliver(completed)
        return completed, event

    async def _log_completion(
        self,
        session: AssessmentSession,
        event: SessionCompleted,
        before: AssessmentProgress,
        after: AssessmentProgress,
    ) -> None:
        user_id = session.user_id

        await self.events.log(
            event_type=EventType.SESSION_COMPLETED,
            entity_type=SESSION_ENTITY,
            entity_id=session.id,
            user_id=user_id,
            payload=event.model_dump(mode="json"),
        )
        await self.events.log_from_model(
            event_type=EventType.PROGRESS_UPDATED,
            entity_type=PROGRESS_ENTITY,
            entity_id=user_id,
            user_id=user_id,
            payload_model=ProgressUpdatedEvent(
                session_id=session.id,
                step=session.step,
                step_score=event.percentage,
                total_assessments_taken=after.total_assessments_taken,
                average_score=after.average_score,
                current_step=after.current_step,
                highest_level_achieved=after.highest_level_achieved.value,
            ),
        )

        if session.can_proceed_to_next_step:
            await self.events.log_from_model(
                event_type=EventType.STEP_UNLOCKED,
                entity_type=PROGRESS_ENTITY,
                entity_id=user_id,
                user_id=user_id,
                payload_model=StepUnlockedEvent(session_id=session.id, unlocked_step=session.step + 1),
            )

        if before.can_retake_step1 and not after.can_retake_step1:
            await self.events.log_from_model(
                event_type=EventType.RETAKE_DISABLED,
                entity_type=PROGRESS_ENTITY,
                entity_id=user_id,
                user_id=user_id,
                payload_model=RetakeDisabledEvent(session_id=session.id, step_score=event.percentage),
            )

        known = {a.id for a in before.achievements}
        for achievement in after.achievements:
            if achievement.id not in known:
                await self.events.log_from_model(
                    event_type=EventType.ACHIEVEMENT_UNLOCKED,
                    entity_type=PROGRESS_ENTITY,
                    entity_id=user_id,
                    user_id=user_id,
                    payload_model=AchievementUnlockedEvent(achievement_id=achievement.id, name=achievement.name),
                )

    async def _deliver(self, session: AssessmentSession) -> AssessmentSession:
        """
        Hand a committed completion to the notifier and record the delivery.

        The caller holds the session lock. When the notifier fails the session
        stays undelivered and the next completion call or sweep retries.
        """
        event = session_engine.build_completion_event(session)
        try:
            await self.notifier.session_completed(event)
        except Exception:
            logger.exception("Completion notifier failed; will retry", extra={"session_id": session.id})
            return session

        async with self._unit_of_work(SESSION_ENTITY, session.id):
            current = await self.sessions.get(session.id)
            if current is None:
                raise SessionNotFound(session.id)
            return await self.sessions.save(session_engine.mark_notified(current))

    # Queries

    async def get_session(self, user_id: str, session_id: str) -> AssessmentSession:
        return await self._get_owned(user_id, session_id)

    async def get_remaining_time(
        self,
        user_id: str,
        session_id: str,
        now: Optional[datetime] = None,
    ) -> SessionTime:
        """Remaining budget; reading it never changes the session."""
        now = now or session_engine.utcnow()
        session = await self._get_owned(user_id, session_id)
        return SessionTime(
            session_id=session.id,
            remaining_seconds=session_engine.get_remaining_time(session, now),
            is_expired=session_engine.is_expired(session, now),
            time_allowed=session.time_allowed,
            start_time=session.start_time,
            answered=len(session.answers),
            total_questions=len(session.questions),
        )

    async def get_progress(self, user_id: str) -> AssessmentProgress:
        """Stored progress, or the defaults for a user who never started a session."""
        progress = await self.progress.get(user_id)
        return progress or progress_tracker.new_progress(user_id)

    async def get_eligibility(self, user_id: str) -> Eligibility:
        progress = await self.get_progress(user_id)
        return Eligibility(
            steps={step: progress_tracker.can_take_step(progress, step) for step in sorted(STEP_LEVELS)},
            next_available_step=progress_tracker.get_next_available_step(progress),
            can_retake_step1=progress.can_retake_step1,
            next_assessment_date=progress.next_assessment_date,
        )

    async def list_completed_sessions(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AssessmentSession]:
        return await self.sessions.list_completed(user_id, limit=limit, offset=offset)

    async def get_session_stats(self, step: Optional[int] = None) -> List[StepStats]:
        """Per-step totals over completed sessions."""
        grouped: Dict[int, List[tuple]] = {}
        for row in await self.sessions.list_completed_results(step):
            grouped.setdefault(row[0], []).append(row)

        stats = []
        for step_number in sorted(grouped):
            rows = grouped[step_number]
            total = len(rows)
            percentages = [pct for _, pct, _, _ in rows]
            durations = [
                (end - start).total_seconds() / 60
                for _, _, start, end in rows
                if start is not None and end is not None
            ]
            stats.append(
                StepStats(
                    step=step_number,
                    total_sessions=total,
                    average_percentage=sum(percentages) / total,
                    pass_rate=sum(1 for pct in percentages if rules.is_passed(pct)) / total,
                    average_duration_minutes=sum(durations) / len(durations) if durations else 0.0,
                )
            )
        return stats

    async def get_progress_stats(self) -> List[LevelStats]:
        """Users grouped by highest level achieved, lowest level first."""
        return [
            LevelStats(
                level=level,
                users=users,
                average_assessments_taken=taken,
                average_score=score,
            )
            for level, users, taken, score in await self.progress.level_summary()
        ]

    async def get_competency_stats(self) -> List[CompetencyStats]:
        """Per-competency totals across all users, best average score first."""
        grouped: Dict[DigitalCompetency, List[CompetencyScore]] = {}
        for score in await self.progress.list_competency_scores():
            grouped.setdefault(score.competency, []).append(score)

        stats = []
        for competency, scores in grouped.items():
            attempts = sum(s.questions_attempted for s in scores)
            correct = sum(s.correct_answers for s in scores)
            stats.append(
                CompetencyStats(
                    competency=competency,
                    average_score=sum(s.score for s in scores) / len(scores),
                    total_attempts=attempts,
                    total_correct=correct,
                    success_rate=correct / attempts * 100 if attempts else 0.0,
                )
            )
        stats.sort(key=lambda s: s.average_score, reverse=True)
        return stats

    # Admin

    async def reset_step1_retake(
        self,
        user_id: str,
        reset_by: str,
        next_assessment_date: Optional[datetime] = None,
    ) -> AssessmentProgress:
        """Re-enable the step 1 retake for a user. Only administrators call this."""
        async with self.locks.users.hold(user_id):
            async with self._unit_of_work(PROGRESS_ENTITY, user_id):
                progress = await self._get_or_create_progress(user_id)
                updated = progress_tracker.reset_step1_retake(progress, next_assessment_date)
                saved = await self.progress.save(updated)

                await self.events.log_from_model(
                    event_type=EventType.RETAKE_RESET,
                    entity_type=PROGRESS_ENTITY,
                    entity_id=user_id,
                    user_id=user_id,
                    payload_model=RetakeResetEvent(
                        reset_by=reset_by,
                        next_assessment_date=next_assessment_date,
                        current_step=saved.current_step,
                        highest_level_achieved=saved.highest_level_achieved.value,
                    ),
                )

        logger.info("Step 1 retake re-enabled", extra={"user_id": user_id, "reset_by": reset_by})
        return saved
