"""Unit tests for scoring and leveling rules."""

import pytest

from competency.engines.assessment import rules
from competency.engines.assessment.types import AssessmentAnswer, AssessmentLevel

from conftest import START, make_session_questions


def _answer(question_id: str, correct: bool, points: int = 1) -> AssessmentAnswer:
    return AssessmentAnswer(
        question_id=question_id,
        selected_answers=["option_2" if correct else "option_1"],
        time_spent=10,
        is_correct=correct,
        points_earned=points if correct else 0,
        answered_at=START,
    )


class TestPercentage:
    """Whole percentages with halves rounded up."""

    @pytest.mark.parametrize(
        "earned,possible,expected",
        [
            (30, 44, 68),   # 68.18
            (34, 44, 77),   # 77.27
            (5, 44, 11),    # 11.36
            (1, 8, 13),     # 12.5 rounds up
            (11, 44, 25),   # exactly the pass threshold
            (0, 44, 0),
            (44, 44, 100),
        ],
    )
    def test_percentage_of(self, earned, possible, expected):
        assert rules.percentage_of(earned, possible) == expected

    def test_nothing_possible_is_zero(self):
        assert rules.percentage_of(0, 0) == 0


class TestCalculateScore:
    def test_counts_points_of_correct_answers_only(self):
        questions = make_session_questions(44)
        answers = [_answer(f"q{i}", correct=i <= 30) for i in range(1, 41)]

        result = rules.calculate_score(questions, answers)

        assert result.score == 30
        assert result.correct_answers == 30
        assert result.total_points == 44
        assert result.percentage == 68

    def test_unanswered_questions_count_against_the_total(self):
        questions = make_session_questions(10)
        answers = [_answer("q1", True)]
        assert rules.calculate_score(questions, answers).percentage == 10

    def test_no_answers_scores_zero(self):
        result = rules.calculate_score(make_session_questions(5), [])
        assert result.score == 0
        assert result.percentage == 0
        assert result.correct_answers == 0


class TestLevels:
    @pytest.mark.parametrize(
        "step,percentage,expected",
        [
            (1, 24, None),
            (1, 25, AssessmentLevel.A1),
            (1, 49, AssessmentLevel.A1),
            (1, 50, AssessmentLevel.A2),
            (1, 68, AssessmentLevel.A2),
            (2, 30, AssessmentLevel.B1),
            (2, 77, AssessmentLevel.B2),
            (3, 25, AssessmentLevel.C1),
            (3, 100, AssessmentLevel.C2),
        ],
    )
    def test_determine_level(self, step, percentage, expected):
        assert rules.determine_level(step, percentage) == expected

    def test_unknown_step_has_no_level(self):
        assert rules.determine_level(4, 90) is None

    def test_highest_level_ignores_unset(self):
        levels = [None, AssessmentLevel.B1, AssessmentLevel.A2, None]
        assert rules.highest_level(levels) == AssessmentLevel.B1

    def test_highest_level_of_nothing(self):
        assert rules.highest_level([None, None]) is None


class TestPassAndProceed:
    def test_pass_threshold(self):
        assert rules.is_passed(25) is True
        assert rules.is_passed(24) is False

    def test_proceed_needs_75(self):
        assert rules.can_proceed(1, 75) is True
        assert rules.can_proceed(1, 74) is False
        assert rules.can_proceed(2, 77) is True

    def test_no_proceeding_past_the_final_step(self):
        assert rules.can_proceed(3, 100) is False


class TestAnswersMatch:
    def test_order_independent(self):
        assert rules.answers_match(["b", "a"], ["a", "b"]) is True

    def test_partial_selection_is_wrong(self):
        assert rules.answers_match(["a"], ["a", "b"]) is False

    def test_extra_selection_is_wrong(self):
        assert rules.answers_match(["a", "b", "c"], ["a", "b"]) is False

    def test_empty_selection_never_matches(self):
        assert rules.answers_match([], []) is False
