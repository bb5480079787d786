"""
API v1 routes.
"""

from fastapi import APIRouter

from competency.api.v1 import assessments, progress

router = APIRouter()

router.include_router(assessments.router, prefix="/assessments", tags=["Assessments"])
router.include_router(progress.router, prefix="/progress", tags=["Progress"])
