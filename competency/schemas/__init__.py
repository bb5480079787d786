"""
Pydantic schemas for API request/response validation.
"""

from competency.schemas.common import ErrorResponse, HealthResponse
from competency.schemas.assessment import (
    StartSessionRequest,
    SessionResponse,
    SessionSummaryResponse,
    SessionListResponse,
    SessionTimeResponse,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
    CheatingFlagRequest,
    CheatingFlagResponse,
    SessionStatsResponse,
)
from competency.schemas.progress import (
    ProgressResponse,
    EligibilityResponse,
    RecommendationsResponse,
    RetakeResetRequest,
    ProgressStatsResponse,
    CompetencyStatsListResponse,
)

__all__ = [
    # Common
    "ErrorResponse",
    "HealthResponse",
    # Assessment
    "StartSessionRequest",
    "SessionResponse",
    "SessionSummaryResponse",
    "SessionListResponse",
    "SessionTimeResponse",
    "SubmitAnswerRequest",
    "SubmitAnswerResponse",
    "CheatingFlagRequest",
    "CheatingFlagResponse",
    "SessionStatsResponse",
    # Progress
    "ProgressResponse",
    "EligibilityResponse",
    "RecommendationsResponse",
    "RetakeResetRequest",
    "ProgressStatsResponse",
    "CompetencyStatsListResponse",
]
