"""
Session Engine - pure transforms over an AssessmentSession value.

States: not_started -> in_progress -> completed. "expired" is never stored
by this module; it is derived from the clock (see effective_status) until
someone calls mark_completed. "failed" is a completed session with
passed == False.

Every function here takes the session by value and returns a new one;
persistence is the caller's concern (load -> transform -> save). Anything
that depends on the clock accepts an explicit `now`.
"""

import math
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

from competency.config import get_settings
from competency.engines.assessment import rules
from competency.engines.assessment.errors import (
    InvalidInput,
    QuestionNotInSession,
    ScoringError,
    SessionAlreadyCompleted,
    SessionExpired,
)
from competency.engines.assessment.notifications import SessionCompleted
from competency.engines.assessment.question_selector import MAX_QUESTIONS_PER_SESSION
from competency.engines.assessment.types import (
    STEP_LEVELS,
    AssessmentAnswer,
    AssessmentSession,
    AssessmentStatus,
    CheatingFlag,
    CheatingFlagType,
    CompetencyResult,
    FlagSeverity,
    QuestionType,
    SessionQuestion,
)

MAX_FLAG_DETAILS_LENGTH = 500

STATUS_TEXT = {
    AssessmentStatus.NOT_STARTED: "Not Started",
    AssessmentStatus.IN_PROGRESS: "In Progress",
    AssessmentStatus.COMPLETED: "Completed",
    AssessmentStatus.FAILED: "Failed",
    AssessmentStatus.EXPIRED: "Expired",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_time_allowed(
    questions: Sequence[SessionQuestion],
    min_seconds: Optional[int] = None,
    max_seconds: Optional[int] = None,
) -> int:
    """Sum of per-question budgets, clamped to the configured session bounds."""
    settings = get_settings()
    low = settings.session_min_seconds if min_seconds is None else min_seconds
    high = settings.session_time_cap_seconds if max_seconds is None else max_seconds
    total = sum(q.time_allowed for q in questions)
    return max(low, min(high, total))


def create_session(
    user_id: str,
    step: int,
    questions: Sequence[SessionQuestion],
    now: Optional[datetime] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    browser_fingerprint: Optional[str] = None,
) -> AssessmentSession:
    """New not_started session over an already snapshotted question list."""
    if step not in STEP_LEVELS:
        raise InvalidInput(f"Invalid step: {step}", step=step)
    if not questions:
        raise InvalidInput("A session needs at least one question", step=step)
    if len(questions) > MAX_QUESTIONS_PER_SESSION:
        raise InvalidInput(
            f"A session holds at most {MAX_QUESTIONS_PER_SESSION} questions",
            step=step,
            question_count=len(questions),
        )

    return AssessmentSession(
        user_id=user_id,
        step=step,
        status=AssessmentStatus.NOT_STARTED,
        questions=list(questions),
        start_time=now or utcnow(),
        time_allowed=compute_time_allowed(questions),
        ip_address=ip_address,
        user_agent=user_agent,
        browser_fingerprint=browser_fingerprint,
    )


# Timing

def elapsed_seconds(session: AssessmentSession, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    return max(0, math.floor((now - session.start_time).total_seconds()))


def get_remaining_time(session: AssessmentSession, now: Optional[datetime] = None) -> int:
    """Seconds left in the budget; 0 once elapsed and always 0 for completed sessions."""
    if session.is_completed:
        return 0
    return max(0, session.time_allowed - elapsed_seconds(session, now))


def is_expired(session: AssessmentSession, now: Optional[datetime] = None) -> bool:
    return not session.is_completed and get_remaining_time(session, now) == 0


def effective_status(session: AssessmentSession, now: Optional[datetime] = None) -> AssessmentStatus:
    """Stored status, or expired for a live session whose budget has run out."""
    if is_expired(session, now):
        return AssessmentStatus.EXPIRED
    return session.status


def time_spent_seconds(session: AssessmentSession, now: Optional[datetime] = None) -> int:
    """Wall time of the attempt, never more than its budget."""
    end = session.end_time or now or utcnow()
    return min(session.time_allowed, max(0, math.floor((end - session.start_time).total_seconds())))


def duration_minutes(session: AssessmentSession, now: Optional[datetime] = None) -> int:
    end = session.end_time or now or utcnow()
    return round((end - session.start_time).total_seconds() / 60)


def completion_percentage(session: AssessmentSession) -> int:
    if not session.questions:
        return 0
    return rules.percentage_of(len(session.answers), len(session.questions))


def status_text(status: AssessmentStatus) -> str:
    return STATUS_TEXT.get(status, "Unknown")


# Answers

def correct_answer_set(question: SessionQuestion) -> Set[str]:
    """Ids/values that make an answer correct. Multiple choice goes by option flags."""
    if question.question_type == QuestionType.MULTIPLE_CHOICE:
        return {opt.id for opt in question.options if opt.is_correct}
    if question.question_type == QuestionType.TRUE_FALSE:
        return {a.lower() for a in question.correct_answers}
    return set(question.correct_answers)


def check_answer(
    question: SessionQuestion,
    selected_answers: Sequence[str],
    session_id: str = "",
) -> bool:
    correct = correct_answer_set(question)
    if not correct:
        raise ScoringError(session_id, question.question_id, "question has no correct answer set")
    if question.question_type == QuestionType.TRUE_FALSE:
        selected_answers = [a.lower() for a in selected_answers]
    return rules.answers_match(selected_answers, correct)


def _validate_answer_input(
    question_id: str,
    selected_answers: Sequence[str],
    time_spent: int,
    tab_switches: int,
) -> None:
    if not isinstance(question_id, str) or not question_id:
        raise InvalidInput("question_id must be a non-empty string")
    if not isinstance(selected_answers, (list, tuple)):
        raise InvalidInput("selected_answers must be a list of strings", question_id=question_id)
    if any(not isinstance(a, str) for a in selected_answers):
        raise InvalidInput("selected_answers must be a list of strings", question_id=question_id)
    for name, value in (("time_spent", time_spent), ("tab_switches", tab_switches)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidInput(f"{name} must be a non-negative integer", question_id=question_id)


def submit_answer(
    session: AssessmentSession,
    question_id: str,
    selected_answers: Sequence[str],
    time_spent: int,
    now: Optional[datetime] = None,
    tab_switches: int = 0,
    copy_paste_detected: bool = False,
) -> AssessmentSession:
    """
    Record (or replace) the answer to one question.

    A resubmission overwrites the previous answer in place and bumps its
    changed_answers counter; tab switches accumulate and a copy/paste
    detection stays set.
    """
    now = now or utcnow()
    _validate_answer_input(question_id, selected_answers, time_spent, tab_switches)

    if session.is_completed:
        raise SessionAlreadyCompleted(session.id)
    if get_remaining_time(session, now) == 0:
        raise SessionExpired(session.id)

    question = session.find_question(question_id)
    if question is None:
        raise QuestionNotInSession(session.id, question_id)

    is_correct = check_answer(question, selected_answers, session_id=session.id)

    updated = session.model_copy(deep=True)
    index = updated.find_answer_index(question_id)
    previous = updated.answers[index] if index is not None else None

    answer = AssessmentAnswer(
        question_id=question_id,
        selected_answers=list(selected_answers),
        time_spent=time_spent,
        is_correct=is_correct,
        points_earned=question.points if is_correct else 0,
        answered_at=now,
        changed_answers=previous.changed_answers + 1 if previous else 0,
        tab_switches=(previous.tab_switches if previous else 0) + tab_switches,
        copy_paste_detected=bool(copy_paste_detected or (previous and previous.copy_paste_detected)),
    )

    if index is None:
        updated.answers.append(answer)
    else:
        updated.answers[index] = answer

    if updated.status == AssessmentStatus.NOT_STARTED:
        updated.status = AssessmentStatus.IN_PROGRESS

    return updated


# Integrity

def add_cheating_flag(
    session: AssessmentSession,
    flag_type: CheatingFlagType,
    details: str,
    severity: FlagSeverity = FlagSeverity.MEDIUM,
    now: Optional[datetime] = None,
) -> AssessmentSession:
    """Append an integrity flag. Scoring is unaffected."""
    if session.is_completed:
        raise SessionAlreadyCompleted(session.id)
    if len(details) > MAX_FLAG_DETAILS_LENGTH:
        raise InvalidInput(
            f"Flag details cannot exceed {MAX_FLAG_DETAILS_LENGTH} characters",
            session_id=session.id,
        )

    updated = session.model_copy(deep=True)
    updated.cheating_details.append(
        CheatingFlag(
            type=flag_type,
            details=details,
            severity=severity,
            timestamp=now or utcnow(),
        )
    )
    return updated


# Completion

def mark_completed(
    session: AssessmentSession,
    now: Optional[datetime] = None,
) -> Tuple[AssessmentSession, bool]:
    """
    Freeze the results of a session.

    Returns (session, transitioned). A session that is already completed
    comes back unchanged with transitioned == False.
    """
    if session.is_completed:
        return session, False

    now = now or utcnow()
    result = rules.calculate_score(session.questions, session.answers)
    proceed = rules.can_proceed(session.step, result.percentage)

    updated = session.model_copy(deep=True)
    updated.score = result.score
    updated.percentage = result.percentage
    updated.correct_answers = result.correct_answers
    updated.level_achieved = rules.determine_level(session.step, result.percentage)
    updated.passed = rules.is_passed(result.percentage)
    updated.can_proceed_to_next_step = proceed
    updated.next_step_unlocked_at = now if proceed else None
    updated.status = AssessmentStatus.COMPLETED
    updated.is_completed = True
    updated.is_submitted = True
    updated.end_time = now
    return updated, True


def needs_notification(session: AssessmentSession) -> bool:
    return session.is_completed and session.completion_notified_at is None


def mark_notified(session: AssessmentSession, now: Optional[datetime] = None) -> AssessmentSession:
    """Record that the completion message was delivered."""
    if not session.is_completed:
        raise InvalidInput("Session is not completed", session_id=session.id)
    return session.model_copy(update={"completion_notified_at": now or utcnow()})


def competency_breakdown(session: AssessmentSession) -> List[CompetencyResult]:
    """Per-competency totals, in order of first appearance in the snapshot."""
    answers: Dict[str, AssessmentAnswer] = {a.question_id: a for a in session.answers}
    groups: "OrderedDict[str, List[SessionQuestion]]" = OrderedDict()
    for question in session.questions:
        groups.setdefault(question.competency.value, []).append(question)

    results = []
    for questions in groups.values():
        possible = sum(q.points for q in questions)
        answered = [answers[q.question_id] for q in questions if q.question_id in answers]
        correct = [a for a in answered if a.is_correct]
        score = rules.percentage_of(sum(a.points_earned for a in correct), possible)
        results.append(
            CompetencyResult(
                competency=questions[0].competency,
                score=score,
                total_questions=len(questions),
                answered=len(answered),
                correct_answers=len(correct),
                level=rules.determine_level(session.step, score),
            )
        )
    return results


def build_completion_event(session: AssessmentSession) -> SessionCompleted:
    """The SessionCompleted message for a completed session."""
    if not session.is_completed or session.end_time is None:
        raise InvalidInput("Session is not completed", session_id=session.id)
    return SessionCompleted(
        session_id=session.id,
        user_id=session.user_id,
        step=session.step,
        score=session.score or 0,
        percentage=session.percentage or 0,
        level_achieved=session.level_achieved,
        passed=session.passed,
        can_proceed_to_next_step=session.can_proceed_to_next_step,
        competency_breakdown=competency_breakdown(session),
        time_spent_seconds=time_spent_seconds(session),
        completed_at=session.end_time,
    )
