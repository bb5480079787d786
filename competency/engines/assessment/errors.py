"""
Typed errors raised by the assessment engine.

Every error carries an HTTP status and a structured context for logging, so
the API layer can render it without knowing the individual classes:

    try:
        await service.submit_answer(...)
    except AssessmentError as e:
        logger.warning(str(e), extra={"error_context": e.context})
        raise

Categories:
- input errors: malformed values, no state was touched
- state errors: the session/progress is in the wrong state for the call
- consistency errors: a concurrent writer won, retrying the call is safe
- data errors: question content or configuration problems
"""

from typing import Any, Dict, Optional


class AssessmentError(Exception):
    """Base class for every engine error."""

    status_code: int = 500
    code: str = "assessment_error"
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self._extra_context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    @property
    def context(self) -> Dict[str, Any]:
        """Structured context for logging."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "details": str(self),
            "http_status": self.status_code,
            **self._extra_context,
        }


# Input errors

class InvalidInput(AssessmentError):
    status_code = 422
    code = "invalid_input"


# State errors

class SessionAlreadyCompleted(AssessmentError):
    status_code = 409
    code = "session_already_completed"

    def __init__(self, session_id: str):
        super().__init__("Assessment session is already completed", session_id=session_id)


class SessionExpired(AssessmentError):
    status_code = 409
    code = "session_expired"

    def __init__(self, session_id: str):
        super().__init__("Assessment session time has expired", session_id=session_id)


class StepNotEligible(AssessmentError):
    status_code = 403
    code = "step_not_eligible"

    def __init__(self, user_id: str, step: int, next_step: Optional[int] = None):
        super().__init__(
            f"User is not eligible to take step {step}",
            user_id=user_id,
            step=step,
            next_available_step=next_step,
        )


class ActiveSessionExists(AssessmentError):
    status_code = 409
    code = "active_session_exists"

    def __init__(self, user_id: str, session_id: str, step: int):
        super().__init__(
            "User already has an assessment in progress",
            user_id=user_id,
            session_id=session_id,
            step=step,
        )


# Consistency errors

class ConcurrentModification(AssessmentError):
    status_code = 409
    code = "concurrent_modification"
    retryable = True

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            f"{entity} was modified concurrently; retry the operation",
            entity=entity,
            entity_id=entity_id,
        )


# Data errors

class SessionNotFound(AssessmentError):
    status_code = 404
    code = "session_not_found"

    def __init__(self, session_id: str):
        super().__init__("Assessment session not found", session_id=session_id)


class QuestionNotInSession(AssessmentError):
    status_code = 404
    code = "question_not_in_session"

    def __init__(self, session_id: str, question_id: str):
        super().__init__(
            "Question not found in session",
            session_id=session_id,
            question_id=question_id,
        )


class InsufficientQuestions(AssessmentError):
    status_code = 503
    code = "insufficient_questions"

    def __init__(self, step: int, available: int, required: int):
        super().__init__(
            f"Only {available} active questions available for step {step}; {required} required",
            step=step,
            available=available,
            required=required,
        )


class ScoringError(AssessmentError):
    status_code = 500
    code = "scoring_error"

    def __init__(self, session_id: str, question_id: str, reason: str):
        super().__init__(
            f"Cannot score question: {reason}",
            session_id=session_id,
            question_id=question_id,
        )
