"""
Assessment session endpoints - start, answer, flag, complete, history.
"""

from typing import Optional

from fastapi import APIRouter, Query, Request, status

from competency.api.deps import (
    AdminUser,
    AssessmentServiceDep,
    CurrentUser,
    get_client_ip,
    get_user_agent,
)
from competency.engines.assessment import session_engine
from competency.engines.assessment.types import AssessmentSession
from competency.schemas.assessment import (
    AnswerResponse,
    CheatingFlagRequest,
    CheatingFlagResponse,
    CompetencyResultResponse,
    QuestionOptionResponse,
    SessionListResponse,
    SessionQuestionResponse,
    SessionResponse,
    SessionResultResponse,
    SessionStatsResponse,
    SessionSummaryResponse,
    SessionTimeResponse,
    StartSessionRequest,
    StepStatsResponse,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
)
from competency.schemas.progress import (
    CompetencyStatsListResponse,
    CompetencyStatsResponse,
    LevelStatsResponse,
    ProgressStatsResponse,
)

router = APIRouter()


def _result(session: AssessmentSession) -> Optional[SessionResultResponse]:
    if not session.is_completed:
        return None
    return SessionResultResponse(
        score=session.score or 0,
        percentage=session.percentage or 0,
        correct_answers=session.correct_answers or 0,
        level_achieved=session.level_achieved.value if session.level_achieved else None,
        passed=session.passed,
        can_proceed_to_next_step=session.can_proceed_to_next_step,
        next_step_unlocked_at=session.next_step_unlocked_at,
        competency_breakdown=[
            CompetencyResultResponse(
                competency=r.competency.value,
                score=r.score,
                total_questions=r.total_questions,
                answered=r.answered,
                correct_answers=r.correct_answers,
                level=r.level.value if r.level else None,
            )
            for r in session_engine.competency_breakdown(session)
        ],
    )


def _summary_fields(session: AssessmentSession) -> dict:
    now = session_engine.utcnow()
    current = session_engine.effective_status(session, now)
    return dict(
        id=session.id,
        step=session.step,
        status=current.value,
        status_text=session_engine.status_text(current),
        start_time=session.start_time,
        end_time=session.end_time,
        time_allowed=session.time_allowed,
        remaining_seconds=session_engine.get_remaining_time(session, now),
        question_count=len(session.questions),
        answered_count=len(session.answers),
        completion_percentage=session_engine.completion_percentage(session),
        duration_minutes=session_engine.duration_minutes(session, now),
        has_cheating_flags=session.has_cheating_flags,
        result=_result(session),
    )


def _session_to_summary(session: AssessmentSession) -> SessionSummaryResponse:
    return SessionSummaryResponse(**_summary_fields(session))


def _session_to_response(session: AssessmentSession) -> SessionResponse:
    reveal = session.is_completed
    return SessionResponse(
        **_summary_fields(session),
        questions=[
            SessionQuestionResponse(
                question_id=q.question_id,
                order=q.order,
                competency=q.competency.value,
                level=q.level.value,
                question_type=q.question_type.value,
                text=q.text,
                points=q.points,
                time_allowed=q.time_allowed,
                options=[QuestionOptionResponse(id=o.id, text=o.text, order=o.order) for o in q.options],
                image_url=q.image_url,
                audio_url=q.audio_url,
                video_url=q.video_url,
            )
            for q in session.questions
        ],
        answers=[
            AnswerResponse(
                question_id=a.question_id,
                selected_answers=a.selected_answers,
                time_spent=a.time_spent,
                answered_at=a.answered_at,
                changed_answers=a.changed_answers,
                is_correct=a.is_correct if reveal else None,
                points_earned=a.points_earned if reveal else None,
            )
            for a in session.answers
        ],
    )


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_session(
    body: StartSessionRequest,
    request: Request,
    user: CurrentUser,
    service: AssessmentServiceDep,
):
    """Start a timed session for a step the user is eligible for."""
    session = await service.start_session(
        user.id,
        body.step,
        exclude_question_ids=body.exclude_question_ids,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        browser_fingerprint=body.browser_fingerprint,
    )
    return _session_to_response(session)


@router.get("/sessions", response_model=SessionListResponse)
async def list_completed_sessions(
    user: CurrentUser,
    service: AssessmentServiceDep,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Completed sessions of the current user, most recent first."""
    sessions = await service.list_completed_sessions(user.id, limit=limit, offset=offset)
    return SessionListResponse(
        items=[_session_to_summary(s) for s in sessions],
        limit=limit,
        offset=offset,
    )


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    user: CurrentUser,
    service: AssessmentServiceDep,
):
    session = await service.get_session(user.id, session_id)
    return _session_to_response(session)


@router.get("/sessions/{session_id}/time", response_model=SessionTimeResponse)
async def get_remaining_time(
    session_id: str,
    user: CurrentUser,
    service: AssessmentServiceDep,
):
    """Remaining time. Reading it never completes the session."""
    timing = await service.get_remaining_time(user.id, session_id)
    return SessionTimeResponse(
        session_id=timing.session_id,
        remaining_seconds=timing.remaining_seconds,
        is_expired=timing.is_expired,
        time_allowed=timing.time_allowed,
        start_time=timing.start_time,
        answered_count=timing.answered,
        total_questions=timing.total_questions,
    )


@router.post("/sessions/{session_id}/answers", response_model=SubmitAnswerResponse)
async def submit_answer(
    session_id: str,
    body: SubmitAnswerRequest,
    user: CurrentUser,
    service: AssessmentServiceDep,
):
    """Submit or replace the answer to one question."""
    session, answer = await service.submit_answer(
        user.id,
        session_id,
        body.question_id,
        body.selected_answers,
        body.time_spent,
        tab_switches=body.tab_switches,
        copy_paste_detected=body.copy_paste_detected,
    )
    return SubmitAnswerResponse(
        session_id=session.id,
        question_id=answer.question_id,
        changed_answers=answer.changed_answers,
        answered_count=len(session.answers),
        total_questions=len(session.questions),
        remaining_seconds=session_engine.get_remaining_time(session),
        status=session.status.value,
    )


@router.post("/sessions/{session_id}/flags", response_model=CheatingFlagResponse)
async def flag_session(
    session_id: str,
    body: CheatingFlagRequest,
    user: CurrentUser,
    service: AssessmentServiceDep,
):
    """Record an integrity flag reported by the client."""
    session = await service.flag_session(
        user.id,
        session_id,
        body.type,
        body.details,
        body.severity,
    )
    return CheatingFlagResponse(
        session_id=session.id,
        flag_count=len(session.cheating_details),
        has_cheating_flags=session.has_cheating_flags,
    )


@router.post("/sessions/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
    session_id: str,
    user: CurrentUser,
    service: AssessmentServiceDep,
):
    """Complete the session and update progress. Safe to call more than once."""
    session = await service.complete_session(user.id, session_id)
    return _session_to_response(session)


@router.post("/expired/complete")
async def complete_expired_sessions(
    _: AdminUser,
    service: AssessmentServiceDep,
):
    """Admin/scheduler: complete every session whose time ran out."""
    completed = await service.complete_expired_sessions()
    return {"completed": [s.id for s in completed], "count": len(completed)}


@router.get("/stats", response_model=SessionStatsResponse)
async def get_session_stats(
    _: AdminUser,
    service: AssessmentServiceDep,
    step: Optional[int] = Query(None, ge=1, le=3),
):
    """Admin: per-step totals over completed sessions."""
    stats = await service.get_session_stats(step)
    return SessionStatsResponse(
        steps=[
            StepStatsResponse(
                step=s.step,
                total_sessions=s.total_sessions,
                average_percentage=s.average_percentage,
                pass_rate=s.pass_rate,
                average_duration_minutes=s.average_duration_minutes,
            )
            for s in stats
        ]
    )


@router.get("/stats/levels", response_model=ProgressStatsResponse)
async def get_progress_stats(
    _: AdminUser,
    service: AssessmentServiceDep,
):
    """Admin: users grouped by the highest level they reached."""
    stats = await service.get_progress_stats()
    return ProgressStatsResponse(
        levels=[
            LevelStatsResponse(
                level=s.level.value,
                users=s.users,
                average_assessments_taken=s.average_assessments_taken,
                average_score=s.average_score,
            )
            for s in stats
        ]
    )


@router.get("/stats/competencies", response_model=CompetencyStatsListResponse)
async def get_competency_stats(
    _: AdminUser,
    service: AssessmentServiceDep,
):
    """Admin: per-competency scores and success rates across all users."""
    stats = await service.get_competency_stats()
    return CompetencyStatsListResponse(
        competencies=[
            CompetencyStatsResponse(
                competency=s.competency.value,
                average_score=s.average_score,
                total_attempts=s.total_attempts,
                total_correct=s.total_correct,
                success_rate=s.success_rate,
            )
            for s in stats
        ]
    )
