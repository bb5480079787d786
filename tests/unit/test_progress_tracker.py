"""Unit tests for progress folding, eligibility and derived views."""

from datetime import timedelta
from typing import List, Optional

import pytest

from competency.engines.assessment import progress_tracker
from competency.engines.assessment.errors import InvalidInput
from competency.engines.assessment.notifications import SessionCompleted
from competency.engines.assessment.types import (
    AssessmentLevel,
    CompetencyResult,
    DigitalCompetency,
)

from conftest import START


def _event(
    step: int,
    percentage: int,
    level: Optional[AssessmentLevel],
    user_id: str = "user-1",
    breakdown: Optional[List[CompetencyResult]] = None,
    time_spent: int = 1200,
    proceed: Optional[bool] = None,
) -> SessionCompleted:
    return SessionCompleted(
        session_id=f"session-{step}-{percentage}",
        user_id=user_id,
        step=step,
        score=percentage,
        percentage=percentage,
        level_achieved=level,
        passed=percentage >= 25,
        can_proceed_to_next_step=proceed if proceed is not None else (percentage >= 75 and step < 3),
        competency_breakdown=breakdown or [],
        time_spent_seconds=time_spent,
        completed_at=START,
    )


def _result(competency: DigitalCompetency, score: int, total: int = 4, correct: int = 2) -> CompetencyResult:
    return CompetencyResult(
        competency=competency,
        score=score,
        total_questions=total,
        answered=total,
        correct_answers=correct,
        level=AssessmentLevel.A1 if score >= 25 else None,
    )


class TestNewProgress:
    def test_defaults(self):
        progress = progress_tracker.new_progress("user-1")
        assert progress.current_step == 1
        assert progress.highest_level_achieved == AssessmentLevel.A1
        assert progress.can_retake_step1 is True
        assert progress.total_assessments_taken == 0
        assert progress.average_score == 0.0
        assert progress_tracker.get_next_available_step(progress) == 1


class TestApplyCompletion:
    def test_step1_a2_without_unlocking_step2(self):
        progress = progress_tracker.new_progress("user-1")
        updated = progress_tracker.apply_completion(progress, _event(1, 68, AssessmentLevel.A2))

        assert updated.step1_completed is True
        assert updated.step1_score == 68
        assert updated.step1_level == AssessmentLevel.A2
        assert updated.step1_completed_at == START
        assert updated.current_step == 2
        assert updated.highest_level_achieved == AssessmentLevel.A2
        assert updated.total_assessments_taken == 1
        assert updated.total_time_spent == 1200
        assert updated.average_score == 68.0
        assert updated.can_retake_step1 is True
        assert progress_tracker.can_take_step(updated, 2) is False
        assert [a.id for a in updated.achievements] == ["level_A2"]
        # Input untouched
        assert progress.step1_completed is False

    def test_step2_77_unlocks_step3(self):
        progress = progress_tracker.new_progress("user-1")
        progress = progress_tracker.apply_completion(progress, _event(1, 80, AssessmentLevel.A2))
        progress = progress_tracker.apply_completion(progress, _event(2, 77, AssessmentLevel.B2))

        assert progress.current_step == 3
        assert progress.highest_level_achieved == AssessmentLevel.B2
        assert progress.average_score == pytest.approx(78.5)
        assert progress_tracker.can_take_step(progress, 3) is True
        assert progress_tracker.get_next_available_step(progress) == 1

    def test_step1_failure_disables_retake(self):
        progress = progress_tracker.new_progress("user-1")
        updated = progress_tracker.apply_completion(progress, _event(1, 11, None))

        assert updated.can_retake_step1 is False
        assert updated.step1_completed is True
        assert updated.step1_level is None
        assert updated.highest_level_achieved == AssessmentLevel.A1
        assert updated.achievements == []
        assert progress_tracker.can_take_step(updated, 1) is False
        assert progress_tracker.get_next_available_step(updated) is None

    def test_retake_overwrites_step_score(self):
        progress = progress_tracker.new_progress("user-1")
        progress = progress_tracker.apply_completion(progress, _event(1, 40, AssessmentLevel.A1))
        progress = progress_tracker.apply_completion(progress, _event(1, 90, AssessmentLevel.A2))

        assert progress.step1_score == 90
        assert progress.total_assessments_taken == 2
        assert progress.average_score == 90.0
        assert [a.id for a in progress.achievements] == ["level_A1", "level_A2"]

    def test_level_achievement_awarded_once(self):
        progress = progress_tracker.new_progress("user-1")
        progress = progress_tracker.apply_completion(progress, _event(1, 60, AssessmentLevel.A2))
        progress = progress_tracker.apply_completion(progress, _event(1, 70, AssessmentLevel.A2))
        assert len(progress.achievements) == 1

    def test_add_achievement_is_idempotent_by_id(self):
        progress = progress_tracker.new_progress("user-1")
        achievement = progress_tracker.level_achievement(AssessmentLevel.B1, 2, START)
        progress_tracker.add_achievement(progress, achievement)
        progress_tracker.add_achievement(progress, achievement.model_copy())
        assert [a.id for a in progress.achievements] == ["level_B1"]

    def test_highest_level_never_regresses(self):
        progress = progress_tracker.new_progress("user-1")
        progress = progress_tracker.apply_completion(progress, _event(1, 80, AssessmentLevel.A2))
        progress = progress_tracker.apply_completion(progress, _event(2, 30, AssessmentLevel.B1))
        assert progress.highest_level_achieved == AssessmentLevel.B1

    def test_competency_scores_keep_best_and_sum_counts(self):
        progress = progress_tracker.new_progress("user-1")
        first = _event(1, 60, AssessmentLevel.A2, breakdown=[
            _result(DigitalCompetency.WEB_BROWSERS, 75, total=4, correct=3),
            _result(DigitalCompetency.DATA_MANAGEMENT, 25, total=4, correct=1),
        ])
        second = _event(1, 50, AssessmentLevel.A2, breakdown=[
            _result(DigitalCompetency.WEB_BROWSERS, 50, total=4, correct=2),
        ])
        progress = progress_tracker.apply_completion(progress, first)
        progress = progress_tracker.apply_completion(progress, second, now=START + timedelta(days=1))

        scores = {cs.competency: cs for cs in progress.competency_scores}
        web = scores[DigitalCompetency.WEB_BROWSERS]
        assert web.score == 75
        assert web.questions_attempted == 8
        assert web.correct_answers == 5
        assert web.last_updated == START + timedelta(days=1)
        assert scores[DigitalCompetency.DATA_MANAGEMENT].score == 25

        assert progress_tracker.best_competency(progress).competency == DigitalCompetency.WEB_BROWSERS
        assert progress_tracker.weakest_competency(progress).competency == DigitalCompetency.DATA_MANAGEMENT

    def test_rejects_event_for_another_user(self):
        progress = progress_tracker.new_progress("user-1")
        with pytest.raises(InvalidInput):
            progress_tracker.apply_completion(progress, _event(1, 50, AssessmentLevel.A2, user_id="user-2"))

    def test_step3_completion(self):
        progress = progress_tracker.new_progress("user-1")
        for step, pct, level in [(1, 90, AssessmentLevel.A2), (2, 80, AssessmentLevel.B2), (3, 55, AssessmentLevel.C2)]:
            progress = progress_tracker.apply_completion(progress, _event(step, pct, level))

        assert progress.current_step == 3
        assert progress.highest_level_achieved == AssessmentLevel.C2
        assert progress_tracker.steps_completed(progress) == 3
        assert progress_tracker.calculate_overall_progress(progress) == 100
        assert progress_tracker.completion_status(progress) == "Completed"


class TestRetakeReset:
    def test_reset_reenables_step1(self):
        progress = progress_tracker.apply_completion(
            progress_tracker.new_progress("user-1"), _event(1, 10, None)
        )
        next_date = START + timedelta(days=30)
        reset = progress_tracker.reset_step1_retake(progress, next_date)

        assert reset.can_retake_step1 is True
        assert reset.next_assessment_date == next_date
        assert progress_tracker.can_take_step(reset, 1) is True
        assert progress.can_retake_step1 is False


class TestViews:
    def test_overall_progress_and_status(self):
        progress = progress_tracker.new_progress("user-1")
        assert progress_tracker.calculate_overall_progress(progress) == 0
        assert progress_tracker.completion_status(progress) == "Beginner"

        progress = progress_tracker.apply_completion(progress, _event(1, 80, AssessmentLevel.A2))
        assert progress_tracker.calculate_overall_progress(progress) == 33
        assert progress_tracker.completion_status(progress) == "Intermediate"

        progress = progress_tracker.apply_completion(progress, _event(2, 40, AssessmentLevel.B1))
        assert progress_tracker.calculate_overall_progress(progress) == 67
        assert progress_tracker.completion_status(progress) == "Advanced"

    def test_no_competencies(self):
        progress = progress_tracker.new_progress("user-1")
        assert progress_tracker.best_competency(progress) is None
        assert progress_tracker.weakest_competency(progress) is None

    def test_recommendations(self):
        progress = progress_tracker.apply_completion(
            progress_tracker.new_progress("user-1"),
            _event(1, 80, AssessmentLevel.A2, breakdown=[
                _result(DigitalCompetency.WEB_BROWSERS, 30),
                _result(DigitalCompetency.DATA_MANAGEMENT, 90),
            ]),
        )
        recommendations = progress_tracker.get_recommendations(progress)

        assert recommendations[0] == "Focus on improving: web_browsers"
        assert "You're ready to take Step 1!" in recommendations
        assert "Consider practicing more to improve your overall score." not in recommendations

    def test_recommendations_for_low_average(self):
        progress = progress_tracker.apply_completion(
            progress_tracker.new_progress("user-1"), _event(1, 40, AssessmentLevel.A1)
        )
        recommendations = progress_tracker.get_recommendations(progress)
        assert "Consider practicing more to improve your overall score." in recommendations
