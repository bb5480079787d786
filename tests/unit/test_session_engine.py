"""Unit tests for the session engine: timing, answers, flags, completion."""

from datetime import timedelta

import pytest

from competency.engines.assessment import session_engine
from competency.engines.assessment.errors import (
    InvalidInput,
    QuestionNotInSession,
    ScoringError,
    SessionAlreadyCompleted,
    SessionExpired,
)
from competency.engines.assessment.types import (
    AssessmentLevel,
    AssessmentStatus,
    CheatingFlagType,
    DigitalCompetency,
    FlagSeverity,
    QuestionOption,
    QuestionType,
    SessionQuestion,
)

from conftest import START, make_session_questions


def _session(count: int = 44, step: int = 1, **kwargs):
    return session_engine.create_session(
        "user-1",
        step,
        make_session_questions(count, **kwargs),
        now=START,
    )


def _answer_all(session, correct: int, total_answered: int = None):
    """Answer the first `total_answered` questions, the first `correct` of them right."""
    total_answered = len(session.questions) if total_answered is None else total_answered
    for i in range(1, total_answered + 1):
        choice = "option_2" if i <= correct else "option_1"
        session = session_engine.submit_answer(
            session, f"q{i}", [choice], time_spent=20, now=START + timedelta(seconds=i)
        )
    return session


class TestCreateSession:
    def test_new_session_is_not_started(self):
        session = _session()
        assert session.status == AssessmentStatus.NOT_STARTED
        assert session.answers == []
        assert session.is_completed is False
        assert session.start_time == START

    def test_time_allowed_is_sum_of_question_budgets(self):
        # 44 x 60s
        assert _session(44).time_allowed == 2640

    def test_time_allowed_has_a_floor(self):
        assert _session(10).time_allowed == 1800

    def test_time_allowed_has_a_cap(self):
        assert session_engine.compute_time_allowed(make_session_questions(50), max_seconds=2400) == 2400

    def test_rejects_bad_step_and_sizes(self):
        with pytest.raises(InvalidInput):
            session_engine.create_session("u", 4, make_session_questions(5))
        with pytest.raises(InvalidInput):
            session_engine.create_session("u", 1, [])
        with pytest.raises(InvalidInput):
            session_engine.create_session("u", 1, make_session_questions(51))


class TestTiming:
    def test_remaining_time_counts_down(self):
        session = _session()
        assert session_engine.get_remaining_time(session, START) == 2640
        assert session_engine.get_remaining_time(session, START + timedelta(seconds=100.9)) == 2540

    def test_remaining_time_is_zero_exactly_at_the_deadline(self):
        session = _session()
        deadline = START + timedelta(seconds=session.time_allowed)

        assert session_engine.get_remaining_time(session, deadline - timedelta(seconds=1)) == 1
        assert session_engine.get_remaining_time(session, deadline) == 0
        assert session_engine.is_expired(session, deadline) is True
        assert session_engine.effective_status(session, deadline) == AssessmentStatus.EXPIRED
        # Reading the clock never mutates the stored session
        assert session.status == AssessmentStatus.NOT_STARTED
        assert session.is_completed is False

    def test_remaining_time_never_negative(self):
        session = _session()
        assert session_engine.get_remaining_time(session, START + timedelta(days=1)) == 0

    def test_completed_session_has_no_remaining_time(self):
        session, _ = session_engine.mark_completed(_session(), START + timedelta(seconds=10))
        assert session_engine.get_remaining_time(session, START + timedelta(seconds=11)) == 0
        assert session_engine.is_expired(session, START + timedelta(days=1)) is False

    def test_status_text(self):
        assert session_engine.status_text(AssessmentStatus.IN_PROGRESS) == "In Progress"
        assert session_engine.status_text(AssessmentStatus.EXPIRED) == "Expired"


class TestSubmitAnswer:
    def test_first_answer_starts_the_session(self):
        session = _session()
        updated = session_engine.submit_answer(session, "q1", ["option_2"], 30, now=START)

        assert updated.status == AssessmentStatus.IN_PROGRESS
        assert len(updated.answers) == 1
        answer = updated.answers[0]
        assert answer.is_correct is True
        assert answer.points_earned == 1
        assert answer.changed_answers == 0
        # Input value untouched
        assert session.answers == []
        assert session.status == AssessmentStatus.NOT_STARTED

    def test_resubmission_replaces_and_counts_changes(self):
        session = _session()
        session = session_engine.submit_answer(session, "q1", ["option_1"], 30, now=START, tab_switches=2)
        session = session_engine.submit_answer(
            session, "q1", ["option_2"], 15, now=START + timedelta(seconds=5), tab_switches=1,
            copy_paste_detected=True,
        )
        session = session_engine.submit_answer(session, "q1", ["option_2"], 5, now=START + timedelta(seconds=9))

        assert len(session.answers) == 1
        answer = session.answers[0]
        assert answer.changed_answers == 2
        assert answer.is_correct is True
        assert answer.time_spent == 5
        assert answer.tab_switches == 3
        assert answer.copy_paste_detected is True

    def test_wrong_and_partial_answers(self):
        question = SessionQuestion(
            question_id="multi",
            order=1,
            competency=DigitalCompetency.DATA_MANAGEMENT,
            level=AssessmentLevel.A1,
            points=2,
            time_allowed=60,
            text="Pick both backup targets",
            question_type=QuestionType.MULTIPLE_CHOICE,
            options=(
                QuestionOption(id="a", text="Cloud", order=1, is_correct=True),
                QuestionOption(id="b", text="External disk", order=2, is_correct=True),
                QuestionOption(id="c", text="Same folder", order=3, is_correct=False),
            ),
            correct_answers=("a", "b"),
        )
        session = session_engine.create_session("u", 1, [question], now=START)

        partial = session_engine.submit_answer(session, "multi", ["a"], 5, now=START)
        assert partial.answers[0].is_correct is False
        assert partial.answers[0].points_earned == 0

        full = session_engine.submit_answer(session, "multi", ["b", "a"], 5, now=START)
        assert full.answers[0].is_correct is True
        assert full.answers[0].points_earned == 2

    def test_true_false_is_case_insensitive(self):
        question = SessionQuestion(
            question_id="tf",
            order=1,
            competency=DigitalCompetency.PRIVACY_MANAGEMENT,
            level=AssessmentLevel.A1,
            points=1,
            time_allowed=30,
            text="Cookies can track you",
            question_type=QuestionType.TRUE_FALSE,
            correct_answers=("true",),
        )
        session = session_engine.create_session("u", 1, [question], now=START)
        updated = session_engine.submit_answer(session, "tf", ["True"], 5, now=START)
        assert updated.answers[0].is_correct is True

    def test_question_without_correct_answers_cannot_be_scored(self):
        question = SessionQuestion(
            question_id="broken",
            order=1,
            competency=DigitalCompetency.WEB_BROWSERS,
            level=AssessmentLevel.A1,
            points=1,
            time_allowed=30,
            text="No right option",
            question_type=QuestionType.MULTIPLE_CHOICE,
            options=(
                QuestionOption(id="a", text="One", order=1),
                QuestionOption(id="b", text="Two", order=2),
            ),
        )
        session = session_engine.create_session("u", 1, [question], now=START)
        with pytest.raises(ScoringError):
            session_engine.submit_answer(session, "broken", ["a"], 5, now=START)

    def test_unknown_question(self):
        with pytest.raises(QuestionNotInSession):
            session_engine.submit_answer(_session(), "nope", ["option_1"], 5, now=START)

    def test_expired_session_rejects_answers(self):
        session = _session()
        deadline = START + timedelta(seconds=session.time_allowed)
        with pytest.raises(SessionExpired):
            session_engine.submit_answer(session, "q1", ["option_2"], 5, now=deadline)

    def test_completed_session_rejects_answers(self):
        session, _ = session_engine.mark_completed(_session(), START)
        with pytest.raises(SessionAlreadyCompleted):
            session_engine.submit_answer(session, "q1", ["option_2"], 5, now=START)

    @pytest.mark.parametrize(
        "question_id,selected,time_spent,tab_switches",
        [
            ("", ["option_2"], 5, 0),
            ("q1", "option_2", 5, 0),
            ("q1", [2], 5, 0),
            ("q1", ["option_2"], -1, 0),
            ("q1", ["option_2"], 5, -3),
        ],
    )
    def test_invalid_input_is_rejected_before_state_checks(self, question_id, selected, time_spent, tab_switches):
        completed, _ = session_engine.mark_completed(_session(), START)
        with pytest.raises(InvalidInput):
            session_engine.submit_answer(
                completed, question_id, selected, time_spent, now=START, tab_switches=tab_switches
            )


class TestCheatingFlags:
    def test_flags_accumulate_without_touching_scores(self):
        session = _answer_all(_session(10), correct=10)
        flagged = session_engine.add_cheating_flag(
            session, CheatingFlagType.TAB_SWITCH, "left the window", FlagSeverity.LOW, now=START
        )
        flagged = session_engine.add_cheating_flag(flagged, CheatingFlagType.COPY_PASTE, "", now=START)

        assert flagged.has_cheating_flags is True
        assert len(flagged.cheating_details) == 2
        assert flagged.cheating_details[1].severity == FlagSeverity.MEDIUM
        assert session.has_cheating_flags is False

        completed, _ = session_engine.mark_completed(flagged, START + timedelta(minutes=5))
        assert completed.percentage == 100

    def test_details_length_limit(self):
        with pytest.raises(InvalidInput):
            session_engine.add_cheating_flag(_session(), CheatingFlagType.NETWORK_CHANGE, "x" * 501, now=START)

    def test_completed_session_rejects_flags(self):
        completed, _ = session_engine.mark_completed(_session(), START)
        with pytest.raises(SessionAlreadyCompleted):
            session_engine.add_cheating_flag(completed, CheatingFlagType.TAB_SWITCH, "late", now=START)


class TestCompletion:
    def test_step1_30_of_44_reaches_a2_without_proceeding(self):
        session = _answer_all(_session(44), correct=30, total_answered=40)
        completed, changed = session_engine.mark_completed(session, START + timedelta(minutes=20))

        assert changed is True
        assert completed.score == 30
        assert completed.correct_answers == 30
        assert completed.percentage == 68
        assert completed.level_achieved == AssessmentLevel.A2
        assert completed.passed is True
        assert completed.can_proceed_to_next_step is False
        assert completed.next_step_unlocked_at is None
        assert completed.status == AssessmentStatus.COMPLETED
        assert completed.is_completed is True
        assert completed.is_submitted is True
        assert completed.end_time == START + timedelta(minutes=20)

    def test_step2_34_of_44_unlocks_step3(self):
        session = _answer_all(_session(44, step=2, level=AssessmentLevel.B1), correct=34)
        end = START + timedelta(minutes=30)
        completed, _ = session_engine.mark_completed(session, end)

        assert completed.percentage == 77
        assert completed.level_achieved == AssessmentLevel.B2
        assert completed.can_proceed_to_next_step is True
        assert completed.next_step_unlocked_at == end

    def test_step1_5_of_44_fails(self):
        session = _answer_all(_session(44), correct=5)
        completed, _ = session_engine.mark_completed(session, START + timedelta(minutes=10))

        assert completed.percentage == 11
        assert completed.level_achieved is None
        assert completed.passed is False
        assert completed.status == AssessmentStatus.COMPLETED

    def test_final_step_never_proceeds(self):
        session = _answer_all(_session(10, step=3, level=AssessmentLevel.C1), correct=10)
        completed, _ = session_engine.mark_completed(session, START)
        assert completed.level_achieved == AssessmentLevel.C2
        assert completed.can_proceed_to_next_step is False

    def test_completion_is_idempotent(self):
        session = _answer_all(_session(10), correct=6)
        first, changed = session_engine.mark_completed(session, START + timedelta(minutes=5))
        second, changed_again = session_engine.mark_completed(first, START + timedelta(hours=3))

        assert changed is True
        assert changed_again is False
        assert second == first
        assert second.end_time == START + timedelta(minutes=5)

    def test_completion_after_expiry_keeps_answers(self):
        session = _answer_all(_session(10), correct=3)
        late = START + timedelta(seconds=session.time_allowed + 600)
        completed, _ = session_engine.mark_completed(session, late)
        assert completed.percentage == 30
        assert session_engine.time_spent_seconds(completed) == session.time_allowed

    def test_competency_breakdown_in_order_of_appearance(self):
        competencies = [DigitalCompetency.WEB_BROWSERS, DigitalCompetency.DATA_MANAGEMENT]
        session = _session(4, competencies=competencies)
        # q1, q3 -> web browsers; q2, q4 -> data management
        session = session_engine.submit_answer(session, "q1", ["option_2"], 5, now=START)
        session = session_engine.submit_answer(session, "q3", ["option_2"], 5, now=START)
        session = session_engine.submit_answer(session, "q2", ["option_1"], 5, now=START)
        completed, _ = session_engine.mark_completed(session, START + timedelta(minutes=1))

        breakdown = session_engine.competency_breakdown(completed)
        assert [r.competency for r in breakdown] == competencies
        web, data = breakdown
        assert (web.score, web.answered, web.correct_answers, web.total_questions) == (100, 2, 2, 2)
        assert web.level == AssessmentLevel.A2
        assert (data.score, data.answered, data.correct_answers) == (0, 1, 0)
        assert data.level is None

    def test_completion_event(self):
        session = _answer_all(_session(10), correct=8)
        completed, _ = session_engine.mark_completed(session, START + timedelta(minutes=12))
        event = session_engine.build_completion_event(completed)

        assert event.session_id == completed.id
        assert event.user_id == "user-1"
        assert event.percentage == 80
        assert event.level_achieved == AssessmentLevel.A2
        assert event.can_proceed_to_next_step is True
        assert event.time_spent_seconds == 720
        assert event.completed_at == START + timedelta(minutes=12)

    def test_completion_event_requires_completed_session(self):
        with pytest.raises(InvalidInput):
            session_engine.build_completion_event(_session())

    def test_notification_is_pending_until_marked(self):
        session = _session(10)
        assert session_engine.needs_notification(session) is False
        with pytest.raises(InvalidInput):
            session_engine.mark_notified(session, START)

        completed, _ = session_engine.mark_completed(session, START + timedelta(minutes=3))
        assert session_engine.needs_notification(completed) is True

        delivered = session_engine.mark_notified(completed, START + timedelta(minutes=4))
        assert delivered.completion_notified_at == START + timedelta(minutes=4)
        assert session_engine.needs_notification(delivered) is False
        assert completed.completion_notified_at is None

    def test_duration_and_completion_percentage(self):
        session = _answer_all(_session(44), correct=0, total_answered=11)
        assert session_engine.completion_percentage(session) == 25
        completed, _ = session_engine.mark_completed(session, START + timedelta(minutes=17, seconds=40))
        assert session_engine.duration_minutes(completed) == 18
